"""
SQLite persistence for VideoPop.

Small select/insert/update/delete helpers over a whitelisted set of tables.
Every helper opens its own connection, commits and closes it; failures are
raised as ``StorageError`` so routes can show a one-line message.
"""

import re
import sqlite3
import uuid
from datetime import datetime, timezone

from flask import current_app
from werkzeug.security import generate_password_hash

from services.errors import StorageError

TABLES = frozenset({
    'users',
    'clients',
    'agency_settings',
    'widgets',
    'widget_analytics',
    'leads',
    'testimonials',
    'showcase_samples',
    'site_settings',
})

# Tables whose rows carry an updated_at column
TIMESTAMPED_TABLES = TABLES - {'users', 'widget_analytics'}

_IDENTIFIER = re.compile(r'^[a-z_]+$')


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


def new_id():
    return str(uuid.uuid4())


def db_connect(path=None):
    conn = sqlite3.connect(path or current_app.config['DATABASE_PATH'])
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def _check(table, columns=()):
    if table not in TABLES:
        raise ValueError(f'Unknown table: {table}')
    for column in columns:
        if not _IDENTIFIER.match(column):
            raise ValueError(f'Invalid column name: {column}')


def _where(filters):
    if not filters:
        return '', []
    clauses = []
    params = []
    for column, value in filters.items():
        if value is None:
            clauses.append(f'{column} IS NULL')
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                clauses.append('0')
                continue
            clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        else:
            clauses.append(f'{column} = ?')
            params.append(value)
    return ' WHERE ' + ' AND '.join(clauses), params


def select_rows(table, filters=None, order_by=(), descending=False, limit=None):
    """Return rows of ``table`` matching ``filters`` (column -> value)."""
    filters = filters or {}
    order_by = (order_by,) if isinstance(order_by, str) else tuple(order_by)
    _check(table, list(filters) + list(order_by))

    where, params = _where(filters)
    sql = f'SELECT * FROM {table}{where}'
    if order_by:
        direction = 'DESC' if descending else 'ASC'
        sql += ' ORDER BY ' + ', '.join(f'{column} {direction}' for column in order_by)
    if limit is not None:
        sql += ' LIMIT ?'
        params.append(int(limit))

    conn = db_connect()
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.Error as exc:
        current_app.logger.exception('Select from %s failed', table)
        raise StorageError(f'Could not load {table.replace("_", " ")}.') from exc
    finally:
        conn.close()


def select_one(table, filters):
    rows = select_rows(table, filters, limit=1)
    return rows[0] if rows else None


def count_rows(table, filters=None):
    filters = filters or {}
    _check(table, filters)
    where, params = _where(filters)
    conn = db_connect()
    try:
        return conn.execute(f'SELECT COUNT(*) FROM {table}{where}', params).fetchone()[0]
    except sqlite3.Error as exc:
        raise StorageError(f'Could not count {table.replace("_", " ")}.') from exc
    finally:
        conn.close()


def insert_row(table, fields):
    """Insert one row and return its id. Text ids are generated when absent."""
    values = dict(fields)
    if table != 'users':
        values.setdefault('id', new_id())
    now = utc_now_iso()
    values.setdefault('created_at', now)
    if table in TIMESTAMPED_TABLES:
        values.setdefault('updated_at', now)
    _check(table, values)

    columns = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    conn = db_connect()
    try:
        cur = conn.execute(
            f'INSERT INTO {table} ({columns}) VALUES ({placeholders})',
            list(values.values()),
        )
        conn.commit()
        return values.get('id', cur.lastrowid)
    except sqlite3.Error as exc:
        current_app.logger.warning('Insert into %s failed: %s', table, exc)
        raise StorageError(f'Could not save {table.replace("_", " ")}.') from exc
    finally:
        conn.close()


def update_row(table, row_id, fields):
    """Update one row by id. Returns False when no row matched."""
    values = dict(fields)
    if table in TIMESTAMPED_TABLES:
        values.setdefault('updated_at', utc_now_iso())
    _check(table, values)

    assignments = ', '.join(f'{column} = ?' for column in values)
    conn = db_connect()
    try:
        cur = conn.execute(
            f'UPDATE {table} SET {assignments} WHERE id = ?',
            list(values.values()) + [row_id],
        )
        conn.commit()
        return cur.rowcount > 0
    except sqlite3.Error as exc:
        current_app.logger.warning('Update of %s %s failed: %s', table, row_id, exc)
        raise StorageError(f'Could not update {table.replace("_", " ")}.') from exc
    finally:
        conn.close()


def delete_row(table, row_id):
    _check(table)
    conn = db_connect()
    try:
        cur = conn.execute(f'DELETE FROM {table} WHERE id = ?', (row_id,))
        conn.commit()
        return cur.rowcount > 0
    except sqlite3.Error as exc:
        current_app.logger.warning('Delete from %s failed: %s', table, exc)
        raise StorageError(f'Could not delete from {table.replace("_", " ")}.') from exc
    finally:
        conn.close()


# ===== SCHEMA =====

def init_db():
    """Create the schema, seed the default admin and the site settings row."""
    conn = db_connect()
    c = conn.cursor()

    c.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            full_name TEXT,
            role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'agency', 'user')),
            created_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS clients (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            website TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS agency_settings (
            id TEXT PRIMARY KEY,
            user_id INTEGER UNIQUE NOT NULL,
            agency_name TEXT NOT NULL,
            logo_url TEXT,
            branding_text TEXT,
            branding_url TEXT,
            custom_domain TEXT,
            notification_email TEXT,
            webhook_url TEXT,
            widget_limit INTEGER NOT NULL DEFAULT 5,
            widgets_used INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS widgets (
            id TEXT PRIMARY KEY,
            client_id TEXT,
            agency_id TEXT,
            name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('active', 'paused', 'draft')),
            video_url TEXT NOT NULL,
            video_type TEXT NOT NULL DEFAULT 'url',
            video_orientation TEXT NOT NULL DEFAULT 'vertical',
            person_name TEXT,
            person_title TEXT,
            person_avatar TEXT,
            cta_text TEXT,
            cta_url TEXT,
            cta_color TEXT,
            position TEXT NOT NULL DEFAULT 'bottom-right',
            trigger_type TEXT NOT NULL DEFAULT 'time',
            trigger_value INTEGER DEFAULT 3,
            primary_color TEXT,
            background_color TEXT,
            text_color TEXT,
            border_radius INTEGER DEFAULT 16,
            custom_css TEXT,
            animation TEXT DEFAULT 'slide',
            analytics_token TEXT UNIQUE,
            analytics_password TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE SET NULL,
            FOREIGN KEY (agency_id) REFERENCES agency_settings(id) ON DELETE SET NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS widget_analytics (
            id TEXT PRIMARY KEY,
            widget_id TEXT NOT NULL,
            event_type TEXT NOT NULL CHECK (event_type IN ('view', 'click', 'close', 'play', 'pause')),
            visitor_id TEXT,
            page_url TEXT,
            user_agent TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (widget_id) REFERENCES widgets(id) ON DELETE CASCADE
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS leads (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            website TEXT,
            company TEXT,
            message TEXT,
            status TEXT NOT NULL DEFAULT 'new',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS testimonials (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            title TEXT,
            company TEXT,
            avatar_url TEXT,
            quote TEXT NOT NULL,
            rating INTEGER DEFAULT 5,
            is_active INTEGER NOT NULL DEFAULT 1,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS showcase_samples (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            image_url TEXT NOT NULL,
            website_url TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS site_settings (
            id TEXT PRIMARY KEY,
            hero_title TEXT NOT NULL,
            hero_subtitle TEXT NOT NULL,
            branding_text TEXT NOT NULL,
            branding_url TEXT NOT NULL,
            logo_url TEXT,
            demo_video_url TEXT,
            pricing_enabled INTEGER NOT NULL DEFAULT 1,
            price_amount INTEGER NOT NULL DEFAULT 29,
            price_currency TEXT NOT NULL DEFAULT 'USD',
            admin_email TEXT,
            smtp_from TEXT,
            webhook_url TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    ''')

    # Performance indexes
    c.execute('CREATE INDEX IF NOT EXISTS idx_analytics_widget_id ON widget_analytics(widget_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_analytics_created_at ON widget_analytics(created_at)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_widgets_agency_id ON widgets(agency_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_testimonials_order ON testimonials(display_order)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_samples_order ON showcase_samples(display_order)')

    # Default admin account
    c.execute('SELECT id FROM users WHERE email = ?', (current_app.config['ADMIN_EMAIL'],))
    if not c.fetchone():
        c.execute(
            '''INSERT INTO users (email, password_hash, full_name, role, created_at)
               VALUES (?, ?, ?, 'admin', ?)''',
            (
                current_app.config['ADMIN_EMAIL'],
                generate_password_hash(current_app.config['ADMIN_PASSWORD']),
                'Administrator',
                utc_now_iso(),
            ),
        )

    # Single site settings row
    c.execute('SELECT id FROM site_settings LIMIT 1')
    if not c.fetchone():
        now = utc_now_iso()
        c.execute(
            '''INSERT INTO site_settings
               (id, hero_title, hero_subtitle, branding_text, branding_url,
                pricing_enabled, price_amount, price_currency, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, 1, 29, 'USD', ?, ?)''',
            (
                new_id(),
                'Create Engaging Video Popups',
                'Boost conversions with personalized video widgets',
                'Powered by VideoPop',
                '/',
                now,
                now,
            ),
        )

    conn.commit()
    conn.close()
