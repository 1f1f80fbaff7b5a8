"""
app/database.py — Process-wide access to the database

The ``db`` object created in app/__init__.py is bound to an app the first time
use_database() is called for it. Binding only happens when a connection string
is configured; without one the call raises DatabaseNotConfigured and nothing
tries to connect.

Lifecycle:
  create_app()          — calls use_database() once if DATABASE_URL is set
  use_database()        — returns the bound handle (binds on first call)
  dispose_database()    — closes pooled connections at shutdown
"""

import sqlite3
import threading

from flask import current_app
from sqlalchemy import event
from sqlalchemy.engine import Engine

from app import db
from config import pin_postgres_driver


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class DatabaseNotConfigured(ConfigurationError):
    """Raised when the database is used but DATABASE_URL is empty."""
    pass


# Guards the first bind so two threads can't create two engines for one app
_init_lock = threading.Lock()

# Set on app.extensions once the engine exists, not when init_app starts
_BOUND_KEY = 'dungeon_master_database'


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE rules unless foreign keys are switched on
    for every connection. PostgreSQL connections are left alone."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def is_configured(app=None):
    app = app or current_app
    return bool(app.config.get('SQLALCHEMY_DATABASE_URI'))


def _engine_options(uri, app):
    options = dict(app.config.get('SQLALCHEMY_ENGINE_OPTIONS') or {})
    if uri.startswith('postgresql'):
        options.setdefault('pool_pre_ping', True)
        connect_args = dict(options.get('connect_args') or {})
        connect_args.setdefault('connect_timeout', app.config.get('DATABASE_CONNECT_TIMEOUT', 10))
        options['connect_args'] = connect_args
    return options


def is_bound(app):
    return bool(app.extensions.get(_BOUND_KEY))


def _forget_partial_bind(app):
    # Flask-SQLAlchemy registers itself on the app before it builds the
    # engine, so a failed init_app leaves a half-bound app behind
    app.extensions.pop('sqlalchemy', None)
    db._app_engines.pop(app, None)


def use_database(app=None):
    """Return the shared ``db`` handle for ``app`` (default: current_app).

    The first call binds the engine and marks the app as bound; every later
    call returns the handle without reconnecting. A bind that fails leaves the
    app unbound, so the next call tries again.
    """
    if app is None:
        app = current_app._get_current_object()

    if is_bound(app):
        return db

    with _init_lock:
        if not is_bound(app):
            uri = app.config.get('SQLALCHEMY_DATABASE_URI')
            if not uri:
                raise DatabaseNotConfigured('DATABASE_URL is not configured')
            uri = pin_postgres_driver(uri)
            app.config['SQLALCHEMY_DATABASE_URI'] = uri
            app.config['SQLALCHEMY_ENGINE_OPTIONS'] = _engine_options(uri, app)
            try:
                db.init_app(app)
            except Exception:
                _forget_partial_bind(app)
                raise
            app.extensions[_BOUND_KEY] = True
            app.logger.info('Database bound (%s)', uri.split(':', 1)[0])
    return db


def dispose_database(app):
    """Close every pooled connection held for ``app``. Safe to call when the
    database was never bound."""
    if not is_bound(app):
        return
    with app.app_context():
        db.engine.dispose()
    app.logger.info('Database connections closed')
