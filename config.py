"""
Configuration for the VideoPop marketing site and dashboard
Loads settings from environment variables
"""

import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        raise RuntimeError("SECRET_KEY environment variable must be set")

    APP_ENV = os.environ.get('APP_ENV', 'production')
    DEBUG = os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG') == '1'

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', '1') == '1'

    # Database
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or 'videopop.db'

    # Admin credentials
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL') or 'admin@videopop.com'
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or 'changeme123'

    # Image uploads for showcase samples
    UPLOAD_DIR = os.environ.get('UPLOAD_DIR', 'uploads')
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', str(5 * 1024 * 1024)))

    # Analytics
    ANALYTICS_TIMEZONE = os.environ.get('ANALYTICS_TIMEZONE', 'UTC')
    PUBLIC_ANALYTICS_DAYS = int(os.environ.get('PUBLIC_ANALYTICS_DAYS', '14'))
    DASHBOARD_ANALYTICS_DAYS = int(os.environ.get('DASHBOARD_ANALYTICS_DAYS', '7'))

    # Embed API
    WIDGET_CACHE_SECONDS = int(os.environ.get('WIDGET_CACHE_SECONDS', '60'))

    # Agencies
    DEFAULT_AGENCY_WIDGET_LIMIT = int(os.environ.get('DEFAULT_AGENCY_WIDGET_LIMIT', '5'))

    # Mail configuration
    MAIL_ENABLED = os.environ.get('MAIL_ENABLED', '0') == '1'
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.sendgrid.net')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', '1') == '1'
    MAIL_USE_SSL = os.environ.get('MAIL_USE_SSL', '0') == '1'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'no-reply@videopop.com')

    # Lead notifications (email + webhook)
    NOTIFY_MAX_RETRIES = int(os.environ.get('NOTIFY_MAX_RETRIES', '3'))
    NOTIFY_BACKOFF_SECONDS = float(os.environ.get('NOTIFY_BACKOFF_SECONDS', '1.5'))
    WEBHOOK_TIMEOUT = float(os.environ.get('WEBHOOK_TIMEOUT', '5'))

    # Rate limiting
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

    # Monitoring / logging
    SENTRY_DSN = os.environ.get('SENTRY_DSN')
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
