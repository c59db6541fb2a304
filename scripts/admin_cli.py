#!/usr/bin/env python3
"""Admin maintenance CLI: roles, share links and display order."""

from __future__ import annotations

import argparse
import sqlite3
from datetime import datetime, timezone

from config import Config
from models import ROLES, ShowcaseSample, Testimonial
from services import share_gate
from services.errors import StorageError
from services.ordering import resequence

COLLECTIONS = {
    'testimonials': Testimonial,
    'showcase_samples': ShowcaseSample,
}


def db_connect(path=None):
    conn = sqlite3.connect(path or Config.DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def set_role(email: str, role: str, path=None) -> int:
    if role not in ROLES:
        raise ValueError(f'Unknown role: {role}')
    conn = db_connect(path); cur = conn.cursor()
    cur.execute('UPDATE users SET role = ? WHERE email = ?', (role, email.strip().lower()))
    conn.commit(); changed = cur.rowcount; conn.close()
    print(f"updated_rows={changed}")
    return changed


def rotate_share_link(widget_id: str, path=None):
    conn = db_connect(path)
    try:
        if not conn.execute('SELECT id FROM widgets WHERE id = ?', (widget_id,)).fetchone():
            print("widget_not_found")
            return None

        def store(target_id, token):
            conn.execute('UPDATE widgets SET analytics_token = ?, updated_at = ? WHERE id = ?',
                         (token, datetime.now(timezone.utc).isoformat(), target_id))
            conn.commit()

        token = share_gate.rotate(widget_id, store)
    finally:
        conn.close()
    print(f"/analytics/{token}")
    return token


def resequence_collection(table: str, path=None) -> int:
    """Compact ``display_order`` to 0..n-1. Returns the number of rows written."""
    model = COLLECTIONS[table]
    conn = db_connect(path)
    try:
        items = [model.from_row(row) for row in conn.execute(f'SELECT * FROM {table} ORDER BY display_order, created_at')]
        plan = resequence(items)
        for write in plan.writes:
            conn.execute(f'UPDATE {table} SET display_order = ? WHERE id = ?', (write.display_order, write.id))
        conn.commit()
    except sqlite3.Error as exc:
        raise StorageError(f'Could not resequence {table}.') from exc
    finally:
        conn.close()
    print(f"updated_rows={len(plan.writes)}")
    return len(plan.writes)


def init_database(path=None):
    from app import app
    from database import init_db

    if path:
        app.config['DATABASE_PATH'] = path
    with app.app_context():
        init_db()
    print("initialized")


def main(argv=None):
    parser = argparse.ArgumentParser(description='VideoPop admin utility')
    parser.add_argument('--db', help='SQLite file (defaults to DATABASE_PATH)')
    sub = parser.add_subparsers(dest='cmd', required=True)

    p1 = sub.add_parser('set-role')
    p1.add_argument('--email', required=True)
    p1.add_argument('--role', required=True, choices=list(ROLES))

    p2 = sub.add_parser('rotate-share-link')
    p2.add_argument('--widget', required=True)

    p3 = sub.add_parser('resequence')
    p3.add_argument('--collection', required=True, choices=sorted(COLLECTIONS))

    sub.add_parser('init-db')

    args = parser.parse_args(argv)

    if args.cmd == 'set-role':
        set_role(args.email, args.role, args.db)
    elif args.cmd == 'rotate-share-link':
        rotate_share_link(args.widget, args.db)
    elif args.cmd == 'resequence':
        resequence_collection(args.collection, args.db)
    elif args.cmd == 'init-db':
        init_database(args.db)


if __name__ == '__main__':
    main()
