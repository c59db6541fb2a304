"""
Vercel serverless entry point for VideoPop.

Serverless functions only get a writable /tmp, so set
DATABASE_PATH=/tmp/videopop.db and UPLOAD_DIR=/tmp/uploads there. Data is
lost on cold starts; use a host with a persistent disk (gunicorn, see
gunicorn.conf.py) for anything beyond a demo.
"""

import sys
import os

# Make the project root importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app
from database import init_db

# Cold starts may land on an empty /tmp
with app.app_context():
    init_db()
