"""
VideoPop - Flask Application
Marketing site with lead capture, the admin/agency dashboard, shared analytics
pages and the JSON endpoints used by embedded video popup widgets
"""

import html
import os
import secrets
import sqlite3
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from functools import wraps
from time import perf_counter, time
import logging
from logging.handlers import RotatingFileHandler

from flask import (
    Flask,
    render_template,
    request,
    redirect,
    url_for,
    flash,
    jsonify,
    send_from_directory,
)
from flask_login import (
    LoginManager,
    UserMixin,
    login_user,
    logout_user,
    login_required,
    current_user,
)
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename
import bleach
from email.utils import parseaddr
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from config import Config
from database import (
    db_connect,
    init_db,
    select_rows,
    select_one,
    count_rows,
    insert_row,
    update_row,
    delete_row,
)
from models import (
    EVENT_TYPES,
    LEAD_STATUSES,
    WIDGET_POSITIONS,
    WIDGET_STATUSES,
    WIDGET_TRIGGERS,
    Agency,
    Client,
    Event,
    Lead,
    ShowcaseSample,
    SiteSettings,
    Testimonial,
    Widget,
)
from services import share_gate
from services.analytics import aggregate_events, count_event_types
from services.errors import AuthError, NotFoundError, StorageError, ValidationError, VideoPopError
from services.navigation import can_enter_dashboard, visible_nav_items
from services.notifications import init_mail, notify_new_lead
from services.ordering import move_item, next_display_order, persist_order
from services.share_gate import GateState, ShareGate

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)


@app.context_processor
def inject_layout():
    nav_items = []
    if current_user and current_user.is_authenticated and can_enter_dashboard(current_user.role):
        nav_items = visible_nav_items(current_user.role)
    return {
        "current_year": datetime.now(timezone.utc).year,
        "nav_items": nav_items,
    }

# Initialize CSRF protection
csrf = CSRFProtect(app)

# Initialize basic rate limiting
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=app.config.get('RATELIMIT_STORAGE_URI', 'memory://'),
    strategy='fixed-window',
    default_limits=["2000 per day", "300 per hour"],
)
limiter.init_app(app)

@limiter.request_filter
def _rate_limit_exempt_for_tests():
    return app.config.get('TESTING', False)

# Initialize email service
init_mail(app)

os.makedirs(app.config.get('LOG_DIR', 'logs'), exist_ok=True)
_file_handler = RotatingFileHandler(
    os.path.join(app.config.get('LOG_DIR', 'logs'), 'app.log'),
    maxBytes=5 * 1024 * 1024,
    backupCount=5,
)
_file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
    app.logger.addHandler(_file_handler)

if app.config.get('SENTRY_DSN'):
    sentry_sdk.init(
        dsn=app.config.get('SENTRY_DSN'),
        integrations=[FlaskIntegration()],
        traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
    )

MAX_NAME_LENGTH = 120
MAX_TEXT_LENGTH = 2000
MAX_URL_LENGTH = 2048
ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
EMAIL_REGEX = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
COLOR_REGEX = re.compile(r'^#[0-9a-fA-F]{3,8}$')

REQUEST_METRICS = {
    'requests_total': 0,
    'errors_total': 0,
    'latency_ms_total': 0.0,
}


@app.before_request
def _metrics_before_request():
    request._start_ts = perf_counter()


@app.after_request
def _metrics_after_request(response):
    started = getattr(request, '_start_ts', None)
    if started is not None:
        REQUEST_METRICS['requests_total'] += 1
        elapsed = (perf_counter() - started) * 1000.0
        REQUEST_METRICS['latency_ms_total'] += elapsed
        if response.status_code >= 400:
            REQUEST_METRICS['errors_total'] += 1
    return response


@app.after_request
def _cors_for_embed_api(response):
    if request.path.startswith('/api/'):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Headers'] = 'authorization, x-client-info, apikey, content-type'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
    return response


# ===== FORM HELPERS =====

def is_valid_email(email):
    if not email:
        return False
    _, parsed = parseaddr(email)
    return bool(parsed and EMAIL_REGEX.match(parsed) and len(parsed) <= 254)


def validate_password_strength(password):
    if not password or len(password) < 8:
        return False, 'Password must be at least 8 characters long.'
    if not re.search(r'[A-Z]', password):
        return False, 'Password must include at least one uppercase letter.'
    if not re.search(r'[a-z]', password):
        return False, 'Password must include at least one lowercase letter.'
    if not re.search(r'\d', password):
        return False, 'Password must include at least one number.'
    return True, ''


def form_text(name, max_length=MAX_NAME_LENGTH):
    """Sanitized, stripped form value or None when empty."""
    value = (request.form.get(name) or '').strip()
    if len(value) > max_length:
        raise ValidationError(f'{name.replace("_", " ").capitalize()} must be at most {max_length} characters.')
    return plain_text(value) or None


def plain_text(value):
    """Drop any markup; the result is stored as text and escaped on output."""
    return html.unescape(bleach.clean(value, tags=[], strip=True))


def form_url(name, required=False, label=None):
    value = (request.form.get(name) or '').strip()
    label = label or name.replace('_', ' ')
    if not value:
        if required:
            raise ValidationError(f'A valid {label} is required.')
        return None
    if len(value) > MAX_URL_LENGTH or not value.startswith(('http://', 'https://', '/')):
        raise ValidationError(f'Enter a valid {label} starting with http:// or https://.')
    return value


def form_int(name, default=None, minimum=None, maximum=None):
    raw = (request.form.get(name) or '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f'{name.replace("_", " ").capitalize()} must be a whole number.')
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ValidationError(f'{name.replace("_", " ").capitalize()} must be between {minimum} and {maximum}.')
    return value


def form_choice(name, choices, default):
    value = (request.form.get(name) or '').strip() or default
    if value not in choices:
        raise ValidationError(f'Invalid {name.replace("_", " ")}: {value}.')
    return value


def form_color(name):
    value = (request.form.get(name) or '').strip()
    if not value:
        return None
    if not COLOR_REGEX.match(value):
        raise ValidationError(f'{name.replace("_", " ").capitalize()} must be a hex color like #6366f1.')
    return value


def form_flag(name):
    return request.form.get(name) in ('1', 'on', 'true', 'yes')


def wants_json():
    return request.is_json or request.accept_mimetypes.best == 'application/json'


# ===== USERS / FLASK-LOGIN =====

class User(UserMixin):
    def __init__(self, id, email, role='user', full_name=None):
        self.id = id
        self.email = email
        self.role = role or 'user'
        self.full_name = full_name

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def is_agency(self):
        return self.role == 'agency'

    @property
    def display_name(self):
        return self.full_name or self.email


login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    try:
        row = select_one('users', {'id': int(user_id)})
    except (ValueError, StorageError):
        return None
    if not row:
        return None
    return User(id=row['id'], email=row['email'], role=row['role'], full_name=row['full_name'])


login_manager.init_app(app)
login_manager.login_view = 'login'


def dashboard_required(view):
    """Signed-in admin or agency. Plain users get the contact page."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not can_enter_dashboard(current_user.role):
            return render_template('dashboard/no_access.html'), 403
        return view(*args, **kwargs)
    return login_required(wrapped)


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_admin:
            flash('Only administrators can open that page.', 'danger')
            return redirect(url_for('dashboard'))
        return view(*args, **kwargs)
    return dashboard_required(wrapped)


def agency_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_agency:
            flash('That page is only available to agency accounts.', 'danger')
            return redirect(url_for('dashboard'))
        return view(*args, **kwargs)
    return dashboard_required(wrapped)


# ===== DATA ACCESS =====

def get_site_settings():
    row = select_one('site_settings', {})
    return SiteSettings.from_row(row) if row else SiteSettings(id='')


def current_agency():
    if not current_user.is_authenticated:
        return None
    row = select_one('agency_settings', {'user_id': current_user.id})
    return Agency.from_row(row) if row else None


def list_agencies():
    conn = db_connect()
    try:
        rows = conn.execute(
            '''
            SELECT a.*, u.email AS owner_email
            FROM agency_settings a
            INNER JOIN users u ON u.id = a.user_id
            ORDER BY a.created_at DESC
            '''
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError('Could not load agencies.') from exc
    finally:
        conn.close()
    return [Agency.from_row(row) for row in rows]


def adjust_widgets_used(agency_id, delta):
    if not agency_id:
        return
    conn = db_connect()
    try:
        conn.execute(
            'UPDATE agency_settings SET widgets_used = MAX(widgets_used + ?, 0) WHERE id = ?',
            (delta, agency_id),
        )
        conn.commit()
    except sqlite3.Error as exc:
        raise StorageError('Could not update the agency widget count.') from exc
    finally:
        conn.close()


def widget_scope():
    """Row filter limiting widgets to what the current user may manage."""
    if current_user.is_admin:
        return {}
    agency = current_agency()
    # An agency role without a settings row owns nothing
    return {'agency_id': agency.id if agency else ''}


def list_widgets():
    return [Widget.from_row(row) for row in select_rows('widgets', widget_scope(), order_by='name')]


def get_widget_or_404(widget_id):
    filters = dict(widget_scope(), id=widget_id)
    row = select_one('widgets', filters)
    if not row:
        raise NotFoundError('Widget not found.')
    return Widget.from_row(row)


def load_events(widget_ids=None):
    """Events for the given widgets, or every event when ``widget_ids`` is None."""
    filters = {} if widget_ids is None else {'widget_id': list(widget_ids)}
    rows = select_rows('widget_analytics', filters, order_by='created_at')
    return [Event.from_row(row) for row in rows]


def lookup_share_gate(token):
    row = select_one('widgets', {'analytics_token': token})
    if not row:
        return None
    return ShareGate(
        widget_id=row['id'],
        widget_name=row['name'],
        token=row['analytics_token'],
        password_hash=row['analytics_password'],
    )


def load_ordered(table, model, active_only=False):
    filters = {'is_active': 1} if active_only else {}
    rows = select_rows(table, filters, order_by=('display_order', 'created_at'))
    return [model.from_row(row) for row in rows]


def save_uploaded_image(file):
    filename = secure_filename(file.filename or '')
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError('Unsupported image type. Upload a PNG, JPG, GIF or WebP file.')
    upload_dir = app.config['UPLOAD_DIR']
    os.makedirs(upload_dir, exist_ok=True)
    stored_name = f'{int(time() * 1000)}-{secrets.token_hex(4)}.{ext}'
    file.save(os.path.join(upload_dir, stored_name))
    app.logger.info('Stored uploaded image %s', stored_name)
    return url_for('uploaded_file', filename=stored_name)


# ===== PUBLIC / MARKETING ROUTES =====

@app.route('/')
def marketing_home():
    """Landing page with samples, testimonials, pricing and the lead form."""
    try:
        settings = get_site_settings()
        samples = load_ordered('showcase_samples', ShowcaseSample, active_only=True)
        testimonials = load_ordered('testimonials', Testimonial, active_only=True)
    except StorageError as exc:
        app.logger.error('Landing page data unavailable: %s', exc.message)
        settings, samples, testimonials = SiteSettings(id=''), [], []
    return render_template(
        'marketing_home.html',
        settings=settings,
        samples=samples,
        testimonials=testimonials,
    )


@app.route('/leads', methods=['POST'])
@limiter.limit('10 per hour')
def submit_lead():
    """Lead form submission; notifies the site admin afterwards."""
    back = url_for('marketing_home') + '#contact'
    email = (request.form.get('email') or '').strip().lower()
    try:
        name = form_text('name')
        if not name or not is_valid_email(email):
            raise ValidationError('Please enter your name and a valid email address.')
        fields = {
            'name': name,
            'email': email,
            'phone': form_text('phone', 40),
            'website': form_url('website'),
            'company': form_text('company'),
            'message': form_text('message', MAX_TEXT_LENGTH),
            'status': 'new',
        }
        lead_id = insert_row('leads', fields)
        lead = Lead.from_row(select_one('leads', {'id': lead_id}))
    except ValidationError as exc:
        flash(exc.message, 'danger')
        return redirect(back)
    except StorageError:
        flash('Failed to submit. Please try again.', 'danger')
        return redirect(back)

    try:
        notify_new_lead(lead, get_site_settings())
    except StorageError as exc:
        app.logger.warning('Lead %s saved but notification skipped: %s', lead.id, exc.message)

    flash("Thank you! We'll be in touch soon.", 'success')
    return redirect(back)


@app.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(os.path.abspath(app.config['UPLOAD_DIR']), filename)


@app.route('/analytics/<token>', methods=['GET', 'POST'])
@limiter.exempt
def public_analytics(token):
    """Shared analytics report behind an unguessable link and optional password."""
    resolution = share_gate.resolve(token, lookup_share_gate)
    if resolution.state is GateState.NOT_FOUND:
        return render_template('public_analytics.html', resolution=resolution), 404

    error = None
    if request.method == 'POST' and resolution.state is GateState.LOCKED:
        # The form carries the running attempt count back to us
        previous = request.form.get('attempts', '')
        resolution = replace(resolution, attempts=int(previous) if previous.isdigit() else 0)
        resolution = share_gate.authenticate(resolution, request.form.get('password'))
        if resolution.state is GateState.LOCKED:
            error = 'Incorrect password'
            app.logger.info('Wrong analytics password for widget %s (attempt %s)', resolution.widget_id, resolution.attempts)

    if resolution.state is GateState.LOCKED:
        return render_template('public_analytics.html', resolution=resolution, error=error), (401 if error else 200)

    summary = aggregate_events(
        load_events([resolution.widget_id]),
        max_days=app.config['PUBLIC_ANALYTICS_DAYS'],
        tz=app.config['ANALYTICS_TIMEZONE'],
    )
    return render_template('public_analytics.html', resolution=resolution, summary=summary)


# ===== EMBED API =====

@app.route('/api/track', methods=['POST'])
@csrf.exempt
@limiter.exempt
def track_event():
    """Record one widget interaction sent by the embed script."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    widget_id = payload.get('widget_id')
    event_type = payload.get('event_type')

    if not widget_id or not event_type:
        return jsonify({'error': 'widget_id and event_type required'}), 400
    if event_type not in EVENT_TYPES:
        return jsonify({'error': 'Invalid event type'}), 400

    try:
        insert_row('widget_analytics', {
            'widget_id': str(widget_id),
            'event_type': event_type,
            'visitor_id': str(payload['visitor_id'])[:255] if payload.get('visitor_id') else None,
            'page_url': str(payload['page_url'])[:MAX_URL_LENGTH] if payload.get('page_url') else None,
            'user_agent': request.headers.get('User-Agent') or None,
        })
    except StorageError:
        app.logger.error('Failed to track %s for widget %s', event_type, widget_id)
        return jsonify({'error': 'Failed to track event'}), 500

    app.logger.info('Tracked %s for widget %s', event_type, widget_id)
    return jsonify({'success': True})


@app.route('/api/widget')
@csrf.exempt
def widget_config():
    """Public configuration for an active widget."""
    widget_id = request.args.get('id')
    if not widget_id:
        return jsonify({'error': 'Widget ID required'}), 400

    try:
        row = select_one('widgets', {'id': widget_id, 'status': 'active'})
    except StorageError:
        return jsonify({'error': 'Database error'}), 500
    if not row:
        return jsonify({'error': 'Widget not found or inactive'}), 404

    response = jsonify(Widget.from_row(row).public_config())
    response.headers['Cache-Control'] = f"public, max-age={app.config['WIDGET_CACHE_SECONDS']}"
    return response


# ===== AUTH ROUTES =====

@app.route('/register', methods=['GET', 'POST'])
@limiter.limit('5 per hour')
def register():
    """Self-service sign up. New accounts start without dashboard access."""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))

    if request.method == 'POST':
        errors = {}
        full_name = (request.form.get('full_name') or '').strip()
        email = (request.form.get('email') or '').strip().lower()
        password = request.form.get('password') or ''
        confirm_password = request.form.get('confirm_password') or ''

        if not is_valid_email(email):
            errors['email'] = 'Enter a valid email address.'
        if len(full_name) < 2 or len(full_name) > MAX_NAME_LENGTH:
            errors['full_name'] = f'Enter your full name (2-{MAX_NAME_LENGTH} characters).'
        ok_password, password_msg = validate_password_strength(password)
        if not ok_password:
            errors['password'] = password_msg
        if password != confirm_password:
            errors['confirm_password'] = 'Passwords do not match.'

        if not errors and select_one('users', {'email': email}):
            errors['email'] = 'An account with that email already exists.'

        if errors:
            flash('Please correct the highlighted fields and submit again.', 'danger')
            return render_template('register.html', errors=errors)

        try:
            user_id = insert_row('users', {
                'email': email,
                'password_hash': generate_password_hash(password),
                'full_name': plain_text(full_name),
                'role': 'user',
            })
        except StorageError:
            flash('We could not create your account. Please try again.', 'danger')
            return render_template('register.html', errors={})

        app.logger.info('Registered user %s', user_id)
        login_user(load_user(user_id))
        flash('Your account has been created.', 'success')
        return redirect(url_for('dashboard'))

    return render_template('register.html', errors={})


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit('5 per 15 minutes')
def login():
    """Sign in for administrators and agencies."""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))

    if request.method == 'POST':
        email = (request.form.get('email') or '').strip().lower()
        password = request.form.get('password') or ''

        if not email or not password:
            flash('Email and password are required to sign in.', 'danger')
            return redirect(url_for('login'))

        row = select_one('users', {'email': email})
        if row and check_password_hash(row['password_hash'], password):
            login_user(load_user(row['id']))
            flash('You are now signed in.', 'success')
            return redirect(url_for('dashboard'))

        flash('Sign-in failed. Check your email and password and try again.', 'danger')
        return redirect(url_for('login'))

    return render_template('login.html')


@app.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    flash('You have been signed out.', 'info')
    return redirect(url_for('marketing_home'))


# ===== DASHBOARD: OVERVIEW & ANALYTICS =====

@app.route('/dashboard')
@dashboard_required
def dashboard():
    """Totals for the widgets the current user manages."""
    widgets = list_widgets()
    if current_user.is_admin:
        total_clients = count_rows('clients')
        events = load_events()
    else:
        total_clients = len({w.client_id for w in widgets if w.client_id})
        events = load_events([w.id for w in widgets])
    counts = count_event_types(events)
    stats = {
        'total_widgets': len(widgets),
        'active_widgets': sum(1 for w in widgets if w.is_active),
        'total_clients': total_clients,
        'total_views': counts['view'],
        'total_clicks': counts['click'],
    }
    return render_template('dashboard/overview.html', stats=stats, agency=current_agency())


@app.route('/dashboard/analytics')
@dashboard_required
def analytics_dashboard():
    widgets = list_widgets()
    selected = request.args.get('widget', 'all')
    widget_ids = {w.id for w in widgets}
    if selected != 'all' and selected not in widget_ids:
        flash('Widget not found.', 'warning')
        selected = 'all'

    if selected != 'all':
        events = load_events([selected])
    elif current_user.is_admin:
        events = load_events()
    else:
        events = load_events(widget_ids)

    summary = aggregate_events(
        events,
        max_days=app.config['DASHBOARD_ANALYTICS_DAYS'],
        tz=app.config['ANALYTICS_TIMEZONE'],
    )
    if wants_json():
        return jsonify(summary.as_dict())
    return render_template(
        'dashboard/analytics.html',
        widgets=widgets,
        selected=selected,
        summary=summary,
    )


# ===== DASHBOARD: WIDGETS =====

def _widget_fields_from_form():
    name = form_text('name')
    if not name:
        raise ValidationError('Widget name is required.')
    return {
        'name': name,
        'status': form_choice('status', WIDGET_STATUSES, 'draft'),
        'video_url': form_url('video_url', required=True, label='video URL'),
        'video_type': form_choice('video_type', ('url', 'youtube', 'vimeo', 'upload'), 'url'),
        'video_orientation': form_choice('video_orientation', ('vertical', 'horizontal'), 'vertical'),
        'person_name': form_text('person_name'),
        'person_title': form_text('person_title'),
        'person_avatar': form_url('person_avatar', label='avatar URL'),
        'cta_text': form_text('cta_text', 60),
        'cta_url': form_url('cta_url', label='CTA URL'),
        'cta_color': form_color('cta_color'),
        'position': form_choice('position', WIDGET_POSITIONS, 'bottom-right'),
        'trigger_type': form_choice('trigger_type', WIDGET_TRIGGERS, 'time'),
        'trigger_value': form_int('trigger_value', default=3, minimum=0, maximum=3600),
        'primary_color': form_color('primary_color'),
        'background_color': form_color('background_color'),
        'text_color': form_color('text_color'),
        'border_radius': form_int('border_radius', default=16, minimum=0, maximum=64),
        'custom_css': (request.form.get('custom_css') or '').strip()[:MAX_TEXT_LENGTH] or None,
        'animation': form_choice('animation', ('slide', 'fade', 'bounce', 'none'), 'slide'),
    }


def _assigned_agency_id():
    """Agency that should own a widget submitted by the current user."""
    if not current_user.is_admin:
        agency = current_agency()
        if not agency:
            raise ValidationError('No agency profile is linked to your account yet.')
        return agency.id
    agency_id = request.form.get('agency_id') or None
    if agency_id and not select_one('agency_settings', {'id': agency_id}):
        raise ValidationError('Selected agency does not exist.')
    return agency_id


def _client_choice():
    client_id = request.form.get('client_id') or None
    if client_id and not select_one('clients', {'id': client_id}):
        raise ValidationError('Selected client does not exist.')
    return client_id


def _ensure_widget_capacity(agency_id):
    """Refuse to hand one more widget to an agency that is at its limit."""
    if not agency_id:
        return
    agency = Agency.from_row(select_one('agency_settings', {'id': agency_id}))
    if agency.at_widget_limit:
        raise ValidationError(
            f'Widget limit reached ({agency.widgets_used}/{agency.widget_limit}). '
            'Contact us to raise your limit.'
        )


@app.route('/dashboard/widgets', methods=['GET', 'POST'])
@dashboard_required
def widgets():
    if request.method == 'POST':
        try:
            fields = _widget_fields_from_form()
            fields['agency_id'] = _assigned_agency_id()
            if current_user.is_admin:
                fields['client_id'] = _client_choice()
            _ensure_widget_capacity(fields['agency_id'])
            fields['analytics_token'] = share_gate.generate_token()
            widget_id = insert_row('widgets', fields)
            adjust_widgets_used(fields['agency_id'], 1)
        except VideoPopError as exc:
            flash(exc.message, 'danger')
            return redirect(url_for('widgets'))
        app.logger.info('Widget %s created by user %s', widget_id, current_user.id)
        flash('Widget created.', 'success')
        return redirect(url_for('edit_widget', widget_id=widget_id))

    return render_template(
        'dashboard/widgets.html',
        widgets=list_widgets(),
        clients=[Client.from_row(r) for r in select_rows('clients', order_by='name')] if current_user.is_admin else [],
        agencies=list_agencies() if current_user.is_admin else [],
        agency=current_agency(),
    )


@app.route('/dashboard/widgets/<widget_id>', methods=['GET', 'POST'])
@dashboard_required
def edit_widget(widget_id):
    try:
        widget = get_widget_or_404(widget_id)
    except NotFoundError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('widgets'))

    if request.method == 'POST':
        try:
            fields = _widget_fields_from_form()
            if current_user.is_admin:
                fields['client_id'] = _client_choice()
                fields['agency_id'] = _assigned_agency_id()
                if fields['agency_id'] != widget.agency_id:
                    _ensure_widget_capacity(fields['agency_id'])
            update_row('widgets', widget.id, fields)
            if current_user.is_admin and fields['agency_id'] != widget.agency_id:
                adjust_widgets_used(widget.agency_id, -1)
                adjust_widgets_used(fields['agency_id'], 1)
        except VideoPopError as exc:
            flash(exc.message, 'danger')
            return redirect(url_for('edit_widget', widget_id=widget.id))
        flash('Widget updated.', 'success')
        return redirect(url_for('edit_widget', widget_id=widget.id))

    share_url = None
    if widget.analytics_token:
        share_url = url_for('public_analytics', token=widget.analytics_token, _external=True)
    return render_template(
        'dashboard/widget_form.html',
        widget=widget,
        share_url=share_url,
        clients=[Client.from_row(r) for r in select_rows('clients', order_by='name')] if current_user.is_admin else [],
        agencies=list_agencies() if current_user.is_admin else [],
    )


@app.route('/dashboard/widgets/<widget_id>/delete', methods=['POST'])
@dashboard_required
def delete_widget(widget_id):
    try:
        widget = get_widget_or_404(widget_id)
        delete_row('widgets', widget.id)
        adjust_widgets_used(widget.agency_id, -1)
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('widgets'))
    flash('Widget has been deleted.', 'success')
    return redirect(url_for('widgets'))


@app.route('/dashboard/widgets/<widget_id>/share', methods=['POST'])
@dashboard_required
def update_share_settings(widget_id):
    """Set or clear the password protecting the shared analytics link."""
    password = request.form.get('password') or ''
    try:
        widget = get_widget_or_404(widget_id)
        update_row('widgets', widget.id, {'analytics_password': share_gate.hash_share_password(password)})
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('widgets'))
    if password:
        flash('Password protection enabled.', 'success')
    else:
        flash('Password protection disabled.', 'success')
    return redirect(url_for('edit_widget', widget_id=widget.id))


@app.route('/dashboard/widgets/<widget_id>/share/rotate', methods=['POST'])
@dashboard_required
def rotate_share_link(widget_id):
    try:
        widget = get_widget_or_404(widget_id)
        share_gate.rotate(
            widget.id,
            lambda target_id, token: update_row('widgets', target_id, {'analytics_token': token}),
        )
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('widgets'))
    app.logger.info('Analytics link rotated for widget %s', widget.id)
    flash('New analytics link generated.', 'success')
    return redirect(url_for('edit_widget', widget_id=widget.id))


# ===== DASHBOARD: CLIENTS =====

@app.route('/dashboard/clients', methods=['GET', 'POST'])
@admin_required
def clients():
    if request.method == 'POST':
        client_id = request.form.get('id') or None
        try:
            name = form_text('name')
            if not name:
                raise ValidationError('Client name is required.')
            email = (request.form.get('email') or '').strip().lower() or None
            if email and not is_valid_email(email):
                raise ValidationError('Enter a valid client email address.')
            fields = {
                'name': name,
                'email': email,
                'website': form_url('website'),
                'notes': form_text('notes', MAX_TEXT_LENGTH),
            }
            if client_id:
                if not update_row('clients', client_id, fields):
                    raise NotFoundError('Client not found.')
                flash('Client has been updated.', 'success')
            else:
                insert_row('clients', fields)
                flash('Client has been created.', 'success')
        except VideoPopError as exc:
            flash(exc.message, 'danger')
        return redirect(url_for('clients'))

    editing = None
    if request.args.get('edit'):
        row = select_one('clients', {'id': request.args['edit']})
        editing = Client.from_row(row) if row else None
    rows = select_rows('clients', order_by='created_at', descending=True)
    return render_template('dashboard/clients.html', clients=[Client.from_row(r) for r in rows], editing=editing)


@app.route('/dashboard/clients/<client_id>/delete', methods=['POST'])
@admin_required
def delete_client(client_id):
    try:
        if not delete_row('clients', client_id):
            raise NotFoundError('Client not found.')
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('clients'))
    flash('Client has been deleted.', 'success')
    return redirect(url_for('clients'))


# ===== DASHBOARD: LEADS =====

@app.route('/dashboard/leads')
@admin_required
def leads():
    rows = select_rows('leads', order_by='created_at', descending=True)
    return render_template('dashboard/leads.html', leads=[Lead.from_row(r) for r in rows], statuses=LEAD_STATUSES)


@app.route('/dashboard/leads/<lead_id>/status', methods=['POST'])
@admin_required
def update_lead_status(lead_id):
    try:
        status = form_choice('status', LEAD_STATUSES, 'new')
        if not update_row('leads', lead_id, {'status': status}):
            raise NotFoundError('Lead not found.')
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('leads'))
    flash('Status updated', 'success')
    return redirect(url_for('leads'))


@app.route('/dashboard/leads/<lead_id>/delete', methods=['POST'])
@admin_required
def delete_lead(lead_id):
    try:
        if not delete_row('leads', lead_id):
            raise NotFoundError('Lead not found.')
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('leads'))
    flash('Lead deleted', 'success')
    return redirect(url_for('leads'))


# ===== DASHBOARD: AGENCIES =====

@app.route('/dashboard/agencies', methods=['GET', 'POST'])
@admin_required
def agencies():
    if request.method == 'POST':
        agency_id = request.form.get('id') or None
        try:
            agency_name = form_text('agency_name')
            if not agency_name:
                raise ValidationError('Agency name is required.')
            widget_limit = form_int(
                'widget_limit', default=app.config['DEFAULT_AGENCY_WIDGET_LIMIT'], minimum=0, maximum=10000,
            )
            if agency_id:
                if not update_row('agency_settings', agency_id, {'agency_name': agency_name, 'widget_limit': widget_limit}):
                    raise NotFoundError('Agency not found.')
                flash('Agency settings updated.', 'success')
            else:
                email = (request.form.get('email') or '').strip().lower()
                user_row = select_one('users', {'email': email}) if email else None
                if not user_row:
                    raise NotFoundError('No user with that email. Ask them to sign up first.')
                if select_one('agency_settings', {'user_id': user_row['id']}):
                    raise ValidationError('That user already has an agency.')
                if user_row['role'] != 'admin':
                    update_row('users', user_row['id'], {'role': 'agency'})
                insert_row('agency_settings', {
                    'user_id': user_row['id'],
                    'agency_name': agency_name,
                    'widget_limit': widget_limit,
                })
                app.logger.info('Agency created for user %s', user_row['id'])
                flash('Agency account created successfully.', 'success')
        except VideoPopError as exc:
            flash(exc.message, 'danger')
        return redirect(url_for('agencies'))

    all_agencies = list_agencies()
    editing = next((a for a in all_agencies if a.id == request.args.get('edit')), None)
    return render_template('dashboard/agencies.html', agencies=all_agencies, editing=editing)


@app.route('/dashboard/agencies/<agency_id>/delete', methods=['POST'])
@admin_required
def delete_agency(agency_id):
    try:
        row = select_one('agency_settings', {'id': agency_id})
        if not row:
            raise NotFoundError('Agency not found.')
        user_row = select_one('users', {'id': row['user_id']})
        if user_row and user_row['role'] == 'agency':
            update_row('users', user_row['id'], {'role': 'user'})
        delete_row('agency_settings', agency_id)
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('agencies'))
    flash('Agency has been deleted.', 'success')
    return redirect(url_for('agencies'))


# ===== DASHBOARD: ORDERED COLLECTIONS (TESTIMONIALS, SAMPLES) =====

def _reorder_collection(table, model, endpoint):
    """Apply a single drag-and-drop move and persist the changed positions."""
    payload = request.get_json(silent=True) if request.is_json else request.form
    if not isinstance(payload, dict):
        payload = {}
    try:
        try:
            source = int(payload.get('source_index'))
            destination = int(payload.get('destination_index'))
        except (TypeError, ValueError):
            raise ValidationError('source_index and destination_index must be whole numbers.')
        plan = move_item(load_ordered(table, model), source, destination)
    except VideoPopError as exc:
        if wants_json():
            return jsonify({'error': exc.message}), exc.status_code
        flash(exc.message, 'danger')
        return redirect(url_for(endpoint))

    def write_one(item_id, position):
        if not update_row(table, item_id, {'display_order': position}):
            raise StorageError('Item no longer exists.')

    outcome = persist_order(plan.writes, write_one)
    if outcome.failed:
        app.logger.warning('Reorder of %s left %d failed writes: %s', table, len(outcome.failed), outcome.failed)

    if wants_json():
        body = {
            'success': outcome.ok,
            'succeeded': outcome.succeeded,
            'failed': outcome.failed,
            'order': [item.id for item in plan.items],
        }
        return jsonify(body), (200 if outcome.ok else 500)

    if outcome.ok:
        flash('Order updated!', 'success')
    else:
        flash(
            f'Could not save the new position for {len(outcome.failed)} item(s). '
            'Reload the page to see the stored order.',
            'warning',
        )
    return redirect(url_for(endpoint))


def _toggle_active(table, item_id):
    row = select_one(table, {'id': item_id})
    if not row:
        raise NotFoundError('Item not found.')
    update_row(table, item_id, {'is_active': 0 if row['is_active'] else 1})


@app.route('/dashboard/testimonials', methods=['GET', 'POST'])
@admin_required
def testimonials():
    if request.method == 'POST':
        testimonial_id = request.form.get('id') or None
        try:
            name = form_text('name')
            quote = form_text('quote', MAX_TEXT_LENGTH)
            if not name or not quote:
                raise ValidationError('Name and quote are required.')
            fields = {
                'name': name,
                'title': form_text('title'),
                'company': form_text('company'),
                'avatar_url': form_url('avatar_url', label='avatar URL'),
                'quote': quote,
                'rating': form_int('rating', default=5, minimum=1, maximum=5),
                'is_active': 1 if form_flag('is_active') else 0,
            }
            if testimonial_id:
                if not update_row('testimonials', testimonial_id, fields):
                    raise NotFoundError('Testimonial not found.')
                flash('Testimonial updated successfully.', 'success')
            else:
                fields['display_order'] = next_display_order(load_ordered('testimonials', Testimonial))
                insert_row('testimonials', fields)
                flash('Testimonial added successfully.', 'success')
        except VideoPopError as exc:
            flash(exc.message, 'danger')
        return redirect(url_for('testimonials'))

    items = load_ordered('testimonials', Testimonial)
    editing = next((t for t in items if t.id == request.args.get('edit')), None)
    return render_template('dashboard/testimonials.html', testimonials=items, editing=editing)


@app.route('/dashboard/testimonials/reorder', methods=['POST'])
@admin_required
def reorder_testimonials():
    return _reorder_collection('testimonials', Testimonial, 'testimonials')


@app.route('/dashboard/testimonials/<testimonial_id>/toggle', methods=['POST'])
@admin_required
def toggle_testimonial(testimonial_id):
    try:
        _toggle_active('testimonials', testimonial_id)
    except VideoPopError as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('testimonials'))


@app.route('/dashboard/testimonials/<testimonial_id>/delete', methods=['POST'])
@admin_required
def delete_testimonial(testimonial_id):
    try:
        if not delete_row('testimonials', testimonial_id):
            raise NotFoundError('Testimonial not found.')
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('testimonials'))
    flash('Testimonial has been deleted.', 'success')
    return redirect(url_for('testimonials'))


@app.route('/dashboard/samples', methods=['GET', 'POST'])
@admin_required
def samples():
    if request.method == 'POST':
        sample_id = request.form.get('id') or None
        try:
            title = form_text('title')
            if not title:
                raise ValidationError('Sample title is required.')
            image = request.files.get('image')
            if image and image.filename:
                image_url = save_uploaded_image(image)
            else:
                image_url = form_url('image_url', label='image URL')
            if not image_url:
                raise ValidationError('Please upload an image.')
            fields = {
                'title': title,
                'image_url': image_url,
                'website_url': form_url('website_url', label='website URL'),
                'is_active': 1 if form_flag('is_active') else 0,
            }
            if sample_id:
                if not update_row('showcase_samples', sample_id, fields):
                    raise NotFoundError('Sample not found.')
                flash('Sample updated successfully.', 'success')
            else:
                fields['display_order'] = next_display_order(load_ordered('showcase_samples', ShowcaseSample))
                insert_row('showcase_samples', fields)
                flash('Sample added successfully.', 'success')
        except VideoPopError as exc:
            flash(exc.message, 'danger')
        return redirect(url_for('samples'))

    items = load_ordered('showcase_samples', ShowcaseSample)
    editing = next((s for s in items if s.id == request.args.get('edit')), None)
    return render_template('dashboard/samples.html', samples=items, editing=editing)


@app.route('/dashboard/samples/reorder', methods=['POST'])
@admin_required
def reorder_samples():
    return _reorder_collection('showcase_samples', ShowcaseSample, 'samples')


@app.route('/dashboard/samples/<sample_id>/toggle', methods=['POST'])
@admin_required
def toggle_sample(sample_id):
    try:
        _toggle_active('showcase_samples', sample_id)
    except VideoPopError as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('samples'))


@app.route('/dashboard/samples/<sample_id>/delete', methods=['POST'])
@admin_required
def delete_sample(sample_id):
    try:
        if not delete_row('showcase_samples', sample_id):
            raise NotFoundError('Sample not found.')
    except VideoPopError as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('samples'))
    flash('Sample has been deleted.', 'success')
    return redirect(url_for('samples'))


# ===== DASHBOARD: SETTINGS =====

@app.route('/dashboard/settings', methods=['GET', 'POST'])
@dashboard_required
def settings():
    """Own profile and password."""
    if request.method == 'POST':
        action = request.form.get('action', 'profile')
        try:
            if action == 'password':
                row = select_one('users', {'id': current_user.id})
                if not check_password_hash(row['password_hash'], request.form.get('current_password') or ''):
                    raise AuthError('Current password is incorrect.')
                new_password = request.form.get('new_password') or ''
                ok_password, password_msg = validate_password_strength(new_password)
                if not ok_password:
                    raise ValidationError(password_msg)
                if new_password != (request.form.get('confirm_password') or ''):
                    raise ValidationError('Passwords do not match.')
                update_row('users', current_user.id, {'password_hash': generate_password_hash(new_password)})
                flash('Password changed.', 'success')
            else:
                update_row('users', current_user.id, {'full_name': form_text('full_name')})
                flash('Profile saved.', 'success')
        except VideoPopError as exc:
            flash(exc.message, 'danger')
        return redirect(url_for('settings'))

    return render_template('dashboard/settings.html')


@app.route('/dashboard/agency-settings', methods=['GET', 'POST'])
@agency_required
def agency_settings():
    agency = current_agency()
    if request.method == 'POST':
        try:
            if not agency:
                raise NotFoundError('No agency profile is linked to your account yet.')
            notification_email = (request.form.get('notification_email') or '').strip().lower() or None
            if notification_email and not is_valid_email(notification_email):
                raise ValidationError('Enter a valid notification email address.')
            update_row('agency_settings', agency.id, {
                'logo_url': form_url('logo_url', label='logo URL'),
                'branding_text': form_text('branding_text'),
                'branding_url': form_url('branding_url', label='branding URL'),
                'notification_email': notification_email,
                'webhook_url': form_url('webhook_url', label='webhook URL'),
            })
        except VideoPopError as exc:
            flash(exc.message, 'danger')
            return redirect(url_for('agency_settings'))
        flash('Settings saved successfully', 'success')
        return redirect(url_for('agency_settings'))

    return render_template('dashboard/agency_settings.html', agency=agency)


@app.route('/dashboard/site-settings', methods=['GET', 'POST'])
@admin_required
def site_settings():
    current = get_site_settings()
    if request.method == 'POST':
        try:
            hero_title = form_text('hero_title')
            hero_subtitle = form_text('hero_subtitle', 300)
            if not hero_title or not hero_subtitle:
                raise ValidationError('Hero title and subtitle are required.')
            admin_email = (request.form.get('admin_email') or '').strip().lower() or None
            if admin_email and not is_valid_email(admin_email):
                raise ValidationError('Enter a valid admin email address.')
            smtp_from = (request.form.get('smtp_from') or '').strip() or None
            if smtp_from and not is_valid_email(smtp_from):
                raise ValidationError('Enter a valid sender address.')
            currency = (request.form.get('price_currency') or 'USD').strip().upper()
            if not re.match(r'^[A-Z]{3}$', currency):
                raise ValidationError('Currency must be a three-letter code such as USD.')
            update_row('site_settings', current.id, {
                'hero_title': hero_title,
                'hero_subtitle': hero_subtitle,
                'branding_text': form_text('branding_text') or current.branding_text,
                'branding_url': form_url('branding_url', label='branding URL') or '/',
                'logo_url': form_url('logo_url', label='logo URL'),
                'demo_video_url': form_url('demo_video_url', label='demo video URL'),
                'pricing_enabled': 1 if form_flag('pricing_enabled') else 0,
                'price_amount': form_int('price_amount', default=current.price_amount, minimum=0, maximum=100000),
                'price_currency': currency,
                'admin_email': admin_email,
                'smtp_from': smtp_from,
                'webhook_url': form_url('webhook_url', label='webhook URL'),
            })
        except VideoPopError as exc:
            flash(exc.message, 'danger')
            return redirect(url_for('site_settings'))
        flash('Site settings saved.', 'success')
        return redirect(url_for('site_settings'))

    return render_template('dashboard/site_settings.html', settings=current)


# ===== OPERATIONS =====

@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'service': 'videopop'}), 200


@app.route('/metrics')
def metrics():
    total = REQUEST_METRICS['requests_total']
    avg_latency = (REQUEST_METRICS['latency_ms_total'] / total) if total else 0.0
    return jsonify({
        'requests_total': total,
        'errors_total': REQUEST_METRICS['errors_total'],
        'avg_latency_ms': round(avg_latency, 2),
    }), 200


@app.cli.command('init-db')
def init_db_command():
    """Create tables and seed the default admin."""
    init_db()
    print('Database initialized')


# ===== ERROR HANDLERS =====


@app.errorhandler(429)
def rate_limited(error):
    reset_ts = int((datetime.now(timezone.utc) + timedelta(minutes=15)).timestamp())
    if request.path.startswith('/api/'):
        resp = jsonify({'error': 'Too many requests'})
        resp.status_code = 429
    else:
        response = render_template('errors/rate_limit.html', reset_timestamp=reset_ts, wait_minutes=15)
        resp = app.make_response((response, 429))
    resp.headers['X-RateLimit-Reset'] = str(reset_ts)
    return resp


@app.errorhandler(404)
def not_found(error):
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Not found'}), 404
    return render_template('errors/404.html'), 404


@app.errorhandler(405)
def method_not_allowed(error):
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Method not allowed'}), 405
    return render_template('errors/404.html'), 405


@app.errorhandler(500)
def internal_error(error):
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Internal server error'}), 500
    return render_template('errors/500.html'), 500


@app.errorhandler(VideoPopError)
def videopop_error(error):
    if request.path.startswith('/api/') or wants_json():
        return jsonify({'error': error.message}), error.status_code
    if isinstance(error, NotFoundError):
        return render_template('errors/404.html', message=error.message), 404
    flash(error.message, 'danger')
    if current_user.is_authenticated and can_enter_dashboard(current_user.role):
        return redirect(url_for('dashboard'))
    return redirect(url_for('marketing_home'))


@app.errorhandler(RequestEntityTooLarge)
def file_too_large(error):
    flash('Upload failed: the image exceeds the size limit. Compress it and try again.', 'danger')
    return redirect(url_for('samples')), 413

# ===== APPLICATION ENTRY POINT =====

if __name__ == '__main__':
    with app.app_context():
        init_db()
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config['DEBUG'])
