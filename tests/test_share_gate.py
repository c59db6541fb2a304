import os

os.environ.setdefault('SECRET_KEY', 'test-secret')

from services import share_gate
from services.share_gate import GateState, ShareGate


def make_store(**gates):
    return dict(gates)


def lookup_in(store):
    return store.get


def test_unknown_or_empty_token_is_not_found():
    store = make_store()
    assert share_gate.resolve('nope', lookup_in(store)).state is GateState.NOT_FOUND
    assert share_gate.resolve('', lookup_in(store)).state is GateState.NOT_FOUND


def test_token_without_password_is_open():
    store = make_store(abc=ShareGate('w1', 'Homepage', 'abc'))
    resolution = share_gate.resolve('abc', lookup_in(store))
    assert resolution.state is GateState.OPEN
    assert resolution.widget_id == 'w1'


def test_password_unlocks_locked_gate():
    hashed = share_gate.hash_share_password('s3cret')
    store = make_store(abc=ShareGate('w1', 'Homepage', 'abc', hashed))
    locked = share_gate.resolve('abc', lookup_in(store))
    assert locked.state is GateState.LOCKED

    assert share_gate.authenticate(locked, 's3cret').state is GateState.OPEN


def test_wrong_password_stays_locked_and_counts_attempts():
    store = make_store(abc=ShareGate('w1', 'Homepage', 'abc', share_gate.hash_share_password('s3cret')))
    resolution = share_gate.resolve('abc', lookup_in(store))
    for expected in range(1, 6):
        resolution = share_gate.authenticate(resolution, 'guess')
        assert resolution.state is GateState.LOCKED
        assert resolution.attempts == expected
    # No lockout: the right password still works afterwards
    assert share_gate.authenticate(resolution, 's3cret').state is GateState.OPEN


def test_authenticate_leaves_open_gate_alone():
    open_resolution = share_gate.resolve('abc', lookup_in(make_store(abc=ShareGate('w1', 'H', 'abc'))))
    assert share_gate.authenticate(open_resolution, 'anything') == open_resolution


def test_empty_password_disables_protection():
    assert share_gate.hash_share_password('') is None
    assert share_gate.hash_share_password(None) is None
    assert share_gate.hash_share_password('x') != 'x'


def test_rotate_invalidates_previous_token():
    hashed = share_gate.hash_share_password('pw')
    store = make_store(old=ShareGate('w1', 'Homepage', 'old', hashed))

    def save(widget_id, token):
        gate = next(g for g in store.values() if g.widget_id == widget_id)
        del store[gate.token]
        store[token] = ShareGate(widget_id, gate.widget_name, token, gate.password_hash)

    new_token = share_gate.rotate('w1', save)

    assert new_token != 'old'
    assert len(new_token) == 32
    assert share_gate.resolve('old', lookup_in(store)).state is GateState.NOT_FOUND
    # Password survives rotation
    assert share_gate.resolve(new_token, lookup_in(store)).state is GateState.LOCKED
