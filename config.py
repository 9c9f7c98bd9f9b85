"""Application configuration module.

Configuration is read from environment variables so the same code runs on a
developer laptop and on a hosted dyno. A local ``.env`` file is loaded when
present. The database URL is normalised for SQLAlchemy (``postgres://`` is no
longer accepted as a dialect name) and falls back to a local SQLite file.

The class table deserves a note: older deployments stored class sessions in
tables with different names. ``CLASS_TABLE`` pins the name explicitly; when it
is left empty the application probes ``CLASS_TABLE_CANDIDATES`` once at
start-up (see :mod:`table_resolver`).
"""

import os
from dotenv import load_dotenv


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


class Config:
    """Base configuration class read by Flask and its extensions."""

    load_dotenv()

    # Signs the session cookie that carries the logged-in teacher.
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-in-prod')

    _db_url = os.environ.get('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = _db_url or 'sqlite:///classroom.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Empty means "probe the candidates at start-up".
    CLASS_TABLE = os.environ.get('CLASS_TABLE', '').strip() or None
    CLASS_TABLE_CANDIDATES = ('classes', 'class', 'sessions', 'lessons', 'academic_classes')

    # Calendar-day bucketing for the dashboards happens in this zone.
    APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'UTC')

    # The weekly cap check is implemented but ships switched off.
    ENFORCE_WEEKLY_QUOTA = _env_flag('ENFORCE_WEEKLY_QUOTA', False)

    GOOGLE_SERVICE_ACCOUNT_FILE = os.environ.get('GOOGLE_SERVICE_ACCOUNT_FILE')
    GOOGLE_SERVICE_ACCOUNT_JSON = os.environ.get('GOOGLE_SERVICE_ACCOUNT_JSON')
    GOOGLE_CALENDAR_ID = os.environ.get('GOOGLE_CALENDAR_ID', 'primary')
    CLASS_DURATION_MINUTES = int(os.environ.get('CLASS_DURATION_MINUTES', '60'))

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
