"""
app/startup.py — Apply pending schema migrations when the app boots

Production only. In development the schema is changed by hand with
`flask db upgrade` (or `flask apply-migrations`), so run_migrations() returns
a skipped result without touching the database.

A failed migration does not stop the app from starting. The failure is
returned as a MigrationResult and create_app() logs it at ERROR level; the
app then runs against whatever schema the database has until someone fixes
it. Alert on the "Database migration failed" log line.
"""

import time
from dataclasses import dataclass, field

from alembic import command
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from app.database import DatabaseNotConfigured, use_database


@dataclass
class MigrationResult:
    ok: bool
    skipped: bool = False
    applied: list = field(default_factory=list)   # revision ids, oldest first
    attempts: int = 0
    error: str = None


def is_production(app):
    return app.config.get('ENVIRONMENT') == 'production'


def _alembic_config(app):
    migrate = app.extensions['migrate'].migrate
    return migrate.get_config(app.config['MIGRATIONS_DIR'])


def _current_heads(db):
    with db.engine.connect() as connection:
        return set(MigrationContext.configure(connection).get_current_heads())


def pending_revisions(app):
    """Revision ids not yet applied to the database, oldest first."""
    db = use_database(app)
    with app.app_context():
        script = ScriptDirectory.from_config(_alembic_config(app))
        applied = set()
        for head in _current_heads(db):
            applied.update(rev.revision for rev in script.iterate_revisions(head, 'base'))
        ordered = [rev.revision for rev in script.walk_revisions('base', 'heads')]
        return [rev for rev in reversed(ordered) if rev not in applied]


def _upgrade(app):
    """Run one upgrade to head and return the revisions it applied."""
    pending = pending_revisions(app)
    with app.app_context():
        command.upgrade(_alembic_config(app), 'head')
    return pending


def run_migrations(app, force=False, sleep=time.sleep):
    """Bring the database schema up to date.

    Tries up to MIGRATION_MAX_ATTEMPTS times, waiting MIGRATION_RETRY_DELAY
    seconds times the attempt number in between. Never raises for a
    migration problem; the outcome is in the returned MigrationResult.
    """
    if not force and not is_production(app):
        app.logger.info('Skipping migrations (development mode, run `flask db upgrade` manually)')
        return MigrationResult(ok=True, skipped=True)

    try:
        use_database(app)
    except DatabaseNotConfigured as e:
        return MigrationResult(ok=False, error=str(e))

    max_attempts = max(1, int(app.config.get('MIGRATION_MAX_ATTEMPTS', 3)))
    delay = float(app.config.get('MIGRATION_RETRY_DELAY', 2))

    app.logger.info('Running database migrations...')
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            applied = _upgrade(app)
        except Exception as e:
            last_error = e
            app.logger.warning(f'Migration attempt {attempt}/{max_attempts} failed: {e}')
            if attempt < max_attempts:
                sleep(delay * attempt)
            continue

        if applied:
            app.logger.info(f'Database migrations completed: applied {", ".join(applied)}')
        else:
            app.logger.info('Database schema already up to date')
        return MigrationResult(ok=True, applied=applied, attempts=attempt)

    return MigrationResult(ok=False, attempts=max_attempts, error=str(last_error))


def migrate_on_startup(app):
    """Startup hook used by create_app(): run, log a failure, carry on."""
    result = run_migrations(app)
    if not result.ok:
        app.logger.error(f'Database migration failed: {result.error}. '
                         'The app is starting anyway; the schema may be out of date.')
    return result

