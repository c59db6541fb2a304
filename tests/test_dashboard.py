import os
import tempfile
from io import BytesIO

import pytest

os.environ.setdefault('SECRET_KEY', 'test-secret')

from app import app
from database import db_connect, init_db, insert_row


@pytest.fixture
def client(tmp_path):
    db_fd, db_path = tempfile.mkstemp()
    app.config.update(
        DATABASE_PATH=db_path,
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        MAIL_ENABLED=False,
        SESSION_COOKIE_SECURE=False,
        UPLOAD_DIR=str(tmp_path / 'uploads'),
    )
    with app.app_context():
        init_db()
    with app.test_client() as c:
        yield c
    os.close(db_fd)
    os.unlink(db_path)


def fetch_all(sql, params=()):
    conn = db_connect(app.config['DATABASE_PATH'])
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return rows


def login(client, email, password):
    return client.post('/login', data={'email': email, 'password': password}, follow_redirects=True)


def login_admin(client):
    return login(client, app.config['ADMIN_EMAIL'], app.config['ADMIN_PASSWORD'])


def make_agency(client, email='agency@example.com', widget_limit=1):
    client.post('/register', data={
        'full_name': 'Agency Owner',
        'email': email,
        'password': 'StrongPass1',
        'confirm_password': 'StrongPass1',
    })
    client.post('/logout')
    login_admin(client)
    resp = client.post('/dashboard/agencies', data={
        'email': email,
        'agency_name': 'Pixel Agency',
        'widget_limit': str(widget_limit),
    }, follow_redirects=True)
    client.post('/logout')
    return resp


def widget_form(name='Homepage Popup', **extra):
    data = {'name': name, 'video_url': 'https://cdn.example.com/v.mp4', 'status': 'active'}
    data.update(extra)
    return data


def test_overview_counts(client):
    with app.app_context():
        widget_id = insert_row('widgets', {'name': 'W', 'video_url': 'https://x.example.com/v.mp4', 'status': 'active'})
        insert_row('widgets', {'name': 'Draft', 'video_url': 'https://x.example.com/v.mp4', 'status': 'draft'})
        insert_row('clients', {'name': 'Acme'})
        for event_type in ('view', 'view', 'click', 'close'):
            insert_row('widget_analytics', {'widget_id': widget_id, 'event_type': event_type})
    resp = login_admin(client)
    html = resp.data.decode()
    assert 'id="total-widgets">2<' in html
    assert 'id="active-widgets">1<' in html
    assert 'id="total-clients">1<' in html
    assert 'id="total-views">2<' in html
    assert 'id="total-clicks">1<' in html


def test_admin_creates_widget_with_share_token(client):
    login_admin(client)
    resp = client.post('/dashboard/widgets', data=widget_form(), follow_redirects=True)
    assert b'Widget created.' in resp.data

    rows = fetch_all('SELECT * FROM widgets')
    assert len(rows) == 1
    assert len(rows[0]['analytics_token']) == 32
    assert rows[0]['analytics_token'].encode() in resp.data


def test_widget_requires_name_and_video(client):
    login_admin(client)
    resp = client.post('/dashboard/widgets', data={'name': '', 'video_url': ''}, follow_redirects=True)
    assert b'Widget name is required.' in resp.data
    resp = client.post('/dashboard/widgets', data={'name': 'X', 'video_url': 'javascript:alert(1)'}, follow_redirects=True)
    assert b'Enter a valid video URL' in resp.data
    assert fetch_all('SELECT * FROM widgets') == []


def test_share_password_and_rotation(client):
    login_admin(client)
    client.post('/dashboard/widgets', data=widget_form())
    widget = fetch_all('SELECT * FROM widgets')[0]
    old_token = widget['analytics_token']

    resp = client.post(f"/dashboard/widgets/{widget['id']}/share", data={'password': 'letmein'}, follow_redirects=True)
    assert b'Password protection enabled.' in resp.data
    stored = fetch_all('SELECT analytics_password FROM widgets')[0]['analytics_password']
    assert stored and stored != 'letmein'
    assert b'password protected' in client.get(f'/analytics/{old_token}').data

    resp = client.post(f"/dashboard/widgets/{widget['id']}/share/rotate", follow_redirects=True)
    assert b'New analytics link generated.' in resp.data
    new_token = fetch_all('SELECT analytics_token FROM widgets')[0]['analytics_token']
    assert new_token != old_token
    assert client.get(f'/analytics/{old_token}').status_code == 404
    assert client.get(f'/analytics/{new_token}').status_code == 200

    resp = client.post(f"/dashboard/widgets/{widget['id']}/share", data={'password': ''}, follow_redirects=True)
    assert b'Password protection disabled.' in resp.data
    assert b'33%' not in client.get(f'/analytics/{new_token}').data
    assert b'password protected' not in client.get(f'/analytics/{new_token}').data


def test_agency_widget_limit_and_scope(client):
    created = make_agency(client)
    assert b'Agency account created successfully.' in created.data
    assert fetch_all("SELECT role FROM users WHERE email = 'agency@example.com'")[0]['role'] == 'agency'

    login_admin(client)
    client.post('/dashboard/widgets', data=widget_form(name='Admin Only Widget'))
    client.post('/logout')

    resp = login(client, 'agency@example.com', 'StrongPass1')
    assert b'Agency Settings' in resp.data
    assert b'Site Settings' not in resp.data

    first = client.post('/dashboard/widgets', data=widget_form(name='Agency Widget'), follow_redirects=True)
    assert b'Widget created.' in first.data
    second = client.post('/dashboard/widgets', data=widget_form(name='One Too Many'), follow_redirects=True)
    assert b'Widget limit reached (1/1)' in second.data

    listing = client.get('/dashboard/widgets').data
    assert b'Agency Widget' in listing
    assert b'Admin Only Widget' not in listing
    assert fetch_all('SELECT widgets_used FROM agency_settings')[0]['widgets_used'] == 1

    admin_widget = fetch_all("SELECT id FROM widgets WHERE name = 'Admin Only Widget'")[0]['id']
    resp = client.get(f'/dashboard/widgets/{admin_widget}', follow_redirects=True)
    assert b'Widget not found.' in resp.data

    own = fetch_all("SELECT id FROM widgets WHERE name = 'Agency Widget'")[0]['id']
    client.post(f'/dashboard/widgets/{own}/delete')
    assert fetch_all('SELECT widgets_used FROM agency_settings')[0]['widgets_used'] == 0


def test_agency_cannot_open_admin_pages(client):
    make_agency(client)
    login(client, 'agency@example.com', 'StrongPass1')
    resp = client.get('/dashboard/clients', follow_redirects=True)
    assert b'Only administrators can open that page.' in resp.data


def test_agency_for_unknown_user(client):
    login_admin(client)
    resp = client.post('/dashboard/agencies', data={'email': 'ghost@example.com', 'agency_name': 'Ghost'}, follow_redirects=True)
    assert b'No user with that email' in resp.data


def test_deleting_agency_revokes_role(client):
    make_agency(client)
    login_admin(client)
    agency_id = fetch_all('SELECT id FROM agency_settings')[0]['id']
    client.post(f'/dashboard/agencies/{agency_id}/delete')
    assert fetch_all('SELECT * FROM agency_settings') == []
    assert fetch_all("SELECT role FROM users WHERE email = 'agency@example.com'")[0]['role'] == 'user'


def test_client_crud(client):
    login_admin(client)
    resp = client.post('/dashboard/clients', data={'name': 'Acme Co', 'email': 'hi@acme.test'}, follow_redirects=True)
    assert b'Client has been created.' in resp.data
    client_id = fetch_all('SELECT id FROM clients')[0]['id']

    client.post('/dashboard/clients', data={'id': client_id, 'name': 'Acme Corp'})
    assert fetch_all('SELECT name FROM clients')[0]['name'] == 'Acme Corp'

    resp = client.post('/dashboard/clients', data={'name': ''}, follow_redirects=True)
    assert b'Client name is required.' in resp.data

    client.post(f'/dashboard/clients/{client_id}/delete')
    assert fetch_all('SELECT * FROM clients') == []


def test_lead_status_update(client):
    with app.app_context():
        lead_id = insert_row('leads', {'name': 'Jane', 'email': 'jane@example.com'})
    login_admin(client)
    resp = client.post(f'/dashboard/leads/{lead_id}/status', data={'status': 'qualified'}, follow_redirects=True)
    assert b'Status updated' in resp.data
    assert fetch_all('SELECT status FROM leads')[0]['status'] == 'qualified'

    resp = client.post(f'/dashboard/leads/{lead_id}/status', data={'status': 'archived'}, follow_redirects=True)
    assert b'Invalid status' in resp.data


def test_testimonials_get_increasing_order(client):
    login_admin(client)
    for name in ('A', 'B', 'C'):
        client.post('/dashboard/testimonials', data={'name': name, 'quote': f'Quote {name}', 'is_active': '1'})
    rows = fetch_all('SELECT name, display_order FROM testimonials ORDER BY display_order')
    assert [(r['name'], r['display_order']) for r in rows] == [('A', 0), ('B', 1), ('C', 2)]

    resp = client.post('/dashboard/testimonials', data={'name': 'D', 'quote': ''}, follow_redirects=True)
    assert b'Name and quote are required.' in resp.data


def test_reorder_testimonials_json(client):
    login_admin(client)
    for i in range(5):
        client.post('/dashboard/testimonials', data={'name': f'T{i}', 'quote': 'Great', 'is_active': '1'})

    resp = client.post('/dashboard/testimonials/reorder', json={'source_index': 4, 'destination_index': 0})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['success'] is True
    assert body['failed'] == []

    rows = fetch_all('SELECT name, display_order FROM testimonials ORDER BY display_order')
    assert [r['name'] for r in rows] == ['T4', 'T0', 'T1', 'T2', 'T3']
    assert [r['display_order'] for r in rows] == [0, 1, 2, 3, 4]


def test_reorder_rejects_bad_indices(client):
    login_admin(client)
    client.post('/dashboard/testimonials', data={'name': 'Only', 'quote': 'Great'})
    resp = client.post('/dashboard/testimonials/reorder', json={'source_index': 0, 'destination_index': 3})
    assert resp.status_code == 400
    assert 'out of range' in resp.get_json()['error']

    resp = client.post('/dashboard/testimonials/reorder', json={'source_index': 'x', 'destination_index': 0})
    assert resp.status_code == 400


def test_reorder_form_and_toggle(client):
    login_admin(client)
    for name in ('First', 'Second'):
        client.post('/dashboard/testimonials', data={'name': name, 'quote': 'Great', 'is_active': '1'})
    resp = client.post('/dashboard/testimonials/reorder', data={'source_index': '1', 'destination_index': '0'}, follow_redirects=True)
    assert b'Order updated!' in resp.data
    rows = fetch_all('SELECT id, name FROM testimonials ORDER BY display_order')
    assert [r['name'] for r in rows] == ['Second', 'First']

    client.post(f"/dashboard/testimonials/{rows[0]['id']}/toggle")
    assert fetch_all('SELECT is_active FROM testimonials WHERE id = ?', (rows[0]['id'],))[0]['is_active'] == 0


def test_sample_upload(client):
    login_admin(client)
    resp = client.post('/dashboard/samples', data={
        'title': 'Dentist site',
        'is_active': '1',
        'image': (BytesIO(b'\x89PNG\r\n\x1a\nfake'), 'shot.png'),
    }, content_type='multipart/form-data', follow_redirects=True)
    assert b'Sample added successfully.' in resp.data

    image_url = fetch_all('SELECT image_url FROM showcase_samples')[0]['image_url']
    assert image_url.startswith('/uploads/') and image_url.endswith('.png')
    assert client.get(image_url).status_code == 200


def test_sample_rejects_bad_extension(client):
    login_admin(client)
    resp = client.post('/dashboard/samples', data={
        'title': 'Bad',
        'image': (BytesIO(b'MZ'), 'virus.exe'),
    }, content_type='multipart/form-data', follow_redirects=True)
    assert b'Unsupported image type' in resp.data
    assert fetch_all('SELECT * FROM showcase_samples') == []


def test_analytics_dashboard_json(client):
    with app.app_context():
        widget_id = insert_row('widgets', {'name': 'W', 'video_url': 'https://x.example.com/v.mp4', 'status': 'active'})
        for event_type, created_at in [
            ('view', '2024-01-05T09:00:00+00:00'),
            ('view', '2024-01-05T10:00:00+00:00'),
            ('click', '2024-01-05T11:00:00+00:00'),
            ('view', '2024-01-06T09:00:00+00:00'),
        ]:
            insert_row('widget_analytics', {'widget_id': widget_id, 'event_type': event_type, 'created_at': created_at})
    login_admin(client)

    resp = client.get(f'/dashboard/analytics?widget={widget_id}', headers={'Accept': 'application/json'})
    assert resp.get_json() == {
        'views': 3, 'clicks': 1, 'closes': 0, 'clickRate': 33, 'closeRate': 0,
        'dailyData': [
            {'date': 'Jan 5', 'views': 2, 'clicks': 1},
            {'date': 'Jan 6', 'views': 1, 'clicks': 0},
        ],
    }

    html = client.get('/dashboard/analytics').data
    assert b'33%' in html


def test_site_settings_update(client):
    login_admin(client)
    resp = client.post('/dashboard/site-settings', data={
        'hero_title': 'Video that sells',
        'hero_subtitle': 'Popups for every page',
        'price_amount': '49',
        'price_currency': 'eur',
        'admin_email': 'owner@example.com',
    }, follow_redirects=True)
    assert b'Site settings saved.' in resp.data
    home = client.get('/').data
    assert b'Video that sells' in home
    # Pricing checkbox left unticked hides pricing
    assert b'49 EUR' not in home


def test_agency_settings_saved(client):
    make_agency(client)
    login(client, 'agency@example.com', 'StrongPass1')
    resp = client.post('/dashboard/agency-settings', data={
        'branding_text': 'Built by Pixel',
        'notification_email': 'alerts@pixel.test',
    }, follow_redirects=True)
    assert b'Settings saved successfully' in resp.data
    row = fetch_all('SELECT branding_text, notification_email FROM agency_settings')[0]
    assert row['branding_text'] == 'Built by Pixel'
    assert row['notification_email'] == 'alerts@pixel.test'


def test_ampersands_survive_testimonial_round_trip(client):
    login_admin(client)
    client.post('/dashboard/testimonials', data={
        'name': 'Pat <b>Lee</b>',
        'company': 'Smith & Sons',
        'quote': 'Fast & friendly',
        'is_active': '1',
    })
    row = fetch_all('SELECT name, company, quote FROM testimonials')[0]
    assert row['company'] == 'Smith & Sons'
    assert row['quote'] == 'Fast & friendly'
    assert row['name'] == 'Pat Lee'

    home = client.get('/').data
    assert b'Smith &amp; Sons' in home
    assert b'Fast &amp; friendly' in home
    assert b'&amp;amp;' not in home


def test_reassigning_widget_respects_agency_limit(client):
    make_agency(client, widget_limit=1)
    login_admin(client)
    agency_id = fetch_all('SELECT id FROM agency_settings')[0]['id']
    client.post('/dashboard/widgets', data=widget_form(name='Agency One', agency_id=agency_id))
    client.post('/dashboard/widgets', data=widget_form(name='Unassigned'))
    unassigned = fetch_all("SELECT id FROM widgets WHERE name = 'Unassigned'")[0]['id']

    resp = client.post(
        f'/dashboard/widgets/{unassigned}',
        data=widget_form(name='Unassigned', agency_id=agency_id),
        follow_redirects=True,
    )
    assert b'Widget limit reached (1/1)' in resp.data
    agency = fetch_all('SELECT widgets_used, widget_limit FROM agency_settings')[0]
    assert agency['widgets_used'] <= agency['widget_limit']
    assert fetch_all('SELECT agency_id FROM widgets WHERE id = ?', (unassigned,))[0]['agency_id'] is None

    # Saving a widget that already belongs to the agency is not a new assignment
    owned = fetch_all("SELECT id FROM widgets WHERE name = 'Agency One'")[0]['id']
    resp = client.post(
        f'/dashboard/widgets/{owned}',
        data=widget_form(name='Agency One Renamed', agency_id=agency_id),
        follow_redirects=True,
    )
    assert b'Widget updated.' in resp.data
    assert fetch_all('SELECT widgets_used FROM agency_settings')[0]['widgets_used'] == 1


def test_deleting_testimonial_leaves_gap_and_new_item_goes_last(client):
    login_admin(client)
    for name in ('A', 'B', 'C'):
        client.post('/dashboard/testimonials', data={'name': name, 'quote': 'Great', 'is_active': '1'})
    middle = fetch_all("SELECT id FROM testimonials WHERE name = 'B'")[0]['id']

    client.post(f'/dashboard/testimonials/{middle}/delete')
    rows = fetch_all('SELECT name, display_order FROM testimonials ORDER BY display_order')
    assert [(r['name'], r['display_order']) for r in rows] == [('A', 0), ('C', 2)]

    client.post('/dashboard/testimonials', data={'name': 'D', 'quote': 'Great', 'is_active': '1'})
    assert fetch_all("SELECT display_order FROM testimonials WHERE name = 'D'")[0]['display_order'] == 3


def test_reorder_reports_failed_writes(client, monkeypatch):
    import app as app_module
    from services.errors import StorageError

    login_admin(client)
    for i in range(5):
        client.post('/dashboard/testimonials', data={'name': f'T{i}', 'quote': 'Great', 'is_active': '1'})
    stuck = fetch_all("SELECT id FROM testimonials WHERE name = 'T0'")[0]['id']
    real_update = app_module.update_row

    def flaky_update(table, row_id, fields):
        if row_id == stuck:
            raise StorageError('Could not update testimonials.')
        return real_update(table, row_id, fields)

    monkeypatch.setattr(app_module, 'update_row', flaky_update)
    resp = client.post('/dashboard/testimonials/reorder', json={'source_index': 4, 'destination_index': 0})

    assert resp.status_code == 500
    body = resp.get_json()
    assert body['success'] is False
    assert body['failed'] == [stuck]
    assert stuck not in body['succeeded']
    orders = {r['name']: r['display_order'] for r in fetch_all('SELECT name, display_order FROM testimonials')}
    assert orders == {'T4': 0, 'T0': 0, 'T1': 2, 'T2': 3, 'T3': 4}


def test_oversized_upload_ignores_referer(client, monkeypatch):
    login_admin(client)
    monkeypatch.setitem(app.config, 'MAX_CONTENT_LENGTH', 64)
    resp = client.post('/dashboard/samples', data={
        'title': 'Huge',
        'image': (BytesIO(b'x' * 4096), 'huge.png'),
    }, content_type='multipart/form-data', headers={'Referer': 'https://attacker.example/phish'})

    assert resp.status_code == 413
    assert 'attacker.example' not in resp.headers['Location']
    assert resp.headers['Location'].endswith('/dashboard/samples')
