import os

os.environ.setdefault('SECRET_KEY', 'test-secret')

from services.navigation import NAV_ITEMS, can_enter_dashboard, visible_nav_items


def labels(role):
    return [item.label for item in visible_nav_items(role)]


def test_admin_sees_everything_but_agency_only():
    admin = labels('admin')
    assert 'Site Settings' in admin
    assert 'Clients' in admin
    assert 'Agency Settings' not in admin
    assert len(admin) == len(NAV_ITEMS) - 1


def test_agency_sees_shared_and_agency_items():
    assert labels('agency') == ['Overview', 'Widgets', 'Analytics', 'Settings', 'Agency Settings']


def test_plain_user_sees_only_shared_items():
    assert labels('user') == ['Overview', 'Widgets', 'Analytics', 'Settings']


def test_dashboard_access_by_role():
    assert can_enter_dashboard('admin')
    assert can_enter_dashboard('agency')
    assert not can_enter_dashboard('user')
    assert not can_enter_dashboard(None)
