import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def pin_postgres_driver(url):
    """Point a PostgreSQL URL without an explicit driver at psycopg2.

    Hosting providers still hand out ``postgres://`` URLs, which SQLAlchemy
    no longer accepts, and a bare ``postgresql://`` picks whatever driver the
    installed SQLAlchemy defaults to (psycopg 3 from 2.1 on). psycopg2 is the
    driver this project installs.
    """
    for scheme in ('postgres://', 'postgresql://'):
        if url.startswith(scheme):
            return 'postgresql+psycopg2://' + url[len(scheme):]
    return url


def _database_url():
    """Read DATABASE_URL, returning None when it is empty or unset."""
    url = (os.environ.get('DATABASE_URL') or '').strip()
    if not url:
        return None
    return pin_postgres_driver(url)


class Config:
    APP_NAME = os.environ.get('APP_NAME', 'Dungeon Master AI')
    APP_VERSION = '1.0.0'

    # production turns on the startup migration runner; anything else is treated
    # as development and schema changes are applied by hand.
    ENVIRONMENT = os.environ.get('FLASK_ENV') or 'development'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Signs session cookies. Must be at least 32 characters; create_app refuses
    # to start in production with a shorter one.
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SECRET_KEY_MIN_LENGTH = 32

    # Empty means "no database": the health check reports configured=false and
    # any use of the database raises DatabaseNotConfigured.
    DATABASE_URL = _database_url()
    SQLALCHEMY_DATABASE_URI = DATABASE_URL

    # This disables a noisy tracking feature we don't need
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a PostgreSQL connect attempt may take before giving up
    DATABASE_CONNECT_TIMEOUT = int(os.environ.get('DATABASE_CONNECT_TIMEOUT', '10'))

    # Migrations live next to this file, not relative to the working directory
    MIGRATIONS_DIR = os.path.join(BASE_DIR, 'migrations')
    MIGRATION_MAX_ATTEMPTS = int(os.environ.get('MIGRATION_MAX_ATTEMPTS', '3'))
    MIGRATION_RETRY_DELAY = float(os.environ.get('MIGRATION_RETRY_DELAY', '2'))

    # Session cookie security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'

    # Maximum upload size (16 MB), matches the media size checks of the upload API
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
