import uuid
import warnings

import click
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from config import Config

# Create the database object here, but don't attach it to an app yet.
# app/database.py binds it, and only when DATABASE_URL is set.
db = SQLAlchemy()

# Versioned schema changes in migrations/versions, applied with Alembic
migrate = Migrate()

# Loads the logged-in user from the session cookie for the API layer
login_manager = LoginManager()

# Used outside production when SECRET_KEY is missing or too short
DEV_SECRET_KEY = 'dev-secret-key-not-for-production-use'


def _check_secret_key(app):
    """The session secret must be at least SECRET_KEY_MIN_LENGTH characters.
    Production refuses to start without one; development falls back to a
    fixed key and warns."""
    from app.database import ConfigurationError
    secret = app.config.get('SECRET_KEY') or ''
    minimum = app.config.get('SECRET_KEY_MIN_LENGTH', 32)
    if len(secret) >= minimum:
        return
    if app.config.get('ENVIRONMENT') == 'production':
        raise ConfigurationError(f'SECRET_KEY must be at least {minimum} characters in production')
    warnings.warn(f'SECRET_KEY not set or shorter than {minimum} characters — '
                  'using insecure default. Set SECRET_KEY env var in production!')
    app.config['SECRET_KEY'] = DEV_SECRET_KEY


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    _check_secret_key(app)

    # Register every table on db.metadata before anything inspects it
    from app import models  # noqa: F401
    from app.database import is_configured, use_database

    # Bind the database up front when it's configured, so the first request
    # doesn't pay for it. Without DATABASE_URL the app still starts.
    if is_configured(app):
        use_database(app)
    else:
        app.logger.warning('DATABASE_URL is not set — database features are disabled')

    # render_as_batch lets the same migrations ALTER tables on SQLite
    migrate.init_app(app, db, directory=app.config['MIGRATIONS_DIR'], render_as_batch=True)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from app.models import User
        try:
            user_uuid = uuid.UUID(str(user_id))
        except ValueError:
            return None
        # Raises DatabaseNotConfigured (a 503) when there is no database
        user = use_database().session.get(User, user_uuid)
        # Soft-deleted accounts can't keep using an old session cookie
        if user is None or user.is_deleted:
            return None
        return user

    # Production only: bring the schema up to date. A failure is logged and
    # the app keeps starting.
    from app.startup import migrate_on_startup
    migrate_on_startup(app)

    from app.errors import register_error_handlers
    register_error_handlers(app)

    # Register Blueprints
    from app.routes.health import health_bp
    app.register_blueprint(health_bp)

    # CLI command: flask apply-migrations
    # Same as the production startup step, but runs in any environment and
    # exits non-zero when it fails.
    @app.cli.command('apply-migrations')
    def apply_migrations():
        """Apply pending database migrations now."""
        from app.startup import run_migrations
        result = run_migrations(app, force=True)
        if not result.ok:
            raise click.ClickException(f'Migration failed: {result.error}')
        if result.applied:
            print(f'Applied {len(result.applied)} migration(s): {", ".join(result.applied)}')
        else:
            print('Database schema already up to date.')

    return app
