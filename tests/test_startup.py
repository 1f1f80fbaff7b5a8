import logging

import pytest
from sqlalchemy import inspect, text

from app import create_app, db
from app.startup import pending_revisions, run_migrations
from tests.conftest import NoDatabaseConfig, file_config

REVISIONS = ['3f9a1c2b7d10', '8c4e2d6a1b93']

TABLES = {'users', 'campaigns', 'campaign_members', 'characters', 'sessions', 'messages',
          'world_elements', 'dice_rolls', 'media', 'audit_logs'}


class ProductionWithoutDatabase(NoDatabaseConfig):
    ENVIRONMENT = 'production'


def _table_names(app):
    with app.app_context():
        return set(inspect(db.engine).get_table_names())


def _versions(app):
    with app.app_context():
        return db.session.execute(text('SELECT version_num FROM alembic_version')).scalars().all()


@pytest.fixture
def failing_upgrade(monkeypatch):
    calls = []

    def upgrade(config, revision):
        calls.append(revision)
        raise RuntimeError('connection refused')

    monkeypatch.setattr('app.startup.command.upgrade', upgrade)
    return calls


def test_skipped_outside_production(tmp_path):
    for environment in ('development', 'testing'):
        app = create_app(file_config(tmp_path / f'{environment}.db', environment))
        result = run_migrations(app)
        assert result.ok and result.skipped
        assert result.attempts == 0
        assert not _table_names(app)


def test_forced_run_applies_then_is_a_no_op(tmp_path):
    app = create_app(file_config(tmp_path / 'dm.db'))
    assert pending_revisions(app) == REVISIONS

    first = run_migrations(app, force=True)
    assert first.ok and not first.skipped
    assert first.applied == REVISIONS
    assert first.attempts == 1

    second = run_migrations(app, force=True)
    assert second.ok
    assert second.applied == []
    assert pending_revisions(app) == []

    assert _versions(app) == [REVISIONS[-1]]
    assert TABLES <= _table_names(app)


def test_production_app_migrates_on_startup(tmp_path):
    app = create_app(file_config(tmp_path / 'prod.db', 'production'))
    assert TABLES <= _table_names(app)
    assert _versions(app) == [REVISIONS[-1]]


def test_startup_migration_leaves_root_logger_without_new_handlers(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        app = create_app(file_config(tmp_path / 'logs.db', 'production'))
        assert _versions(app) == [REVISIONS[-1]]
        assert [h for h in root.handlers if h not in before] == []
        assert not logging.getLogger('alembic').propagate
    finally:
        for handler in before:
            if handler not in root.handlers:
                root.addHandler(handler)


def test_migrated_schema_accepts_rows(tmp_path):
    from app.models import Campaign, User

    app = create_app(file_config(tmp_path / 'rows.db', 'production'))
    with app.app_context():
        user = User(username='gm', email='gm@example.com', password_hash='x')
        db.session.add(user)
        db.session.flush()
        db.session.add(Campaign(owner_id=user.id, name='Out of the Abyss'))
        db.session.commit()
        assert Campaign.active().count() == 1


def test_retries_with_growing_delay(tmp_path, failing_upgrade):
    config = file_config(tmp_path / 'dm.db')
    config.MIGRATION_RETRY_DELAY = 1.5
    app = create_app(config)

    sleeps = []
    result = run_migrations(app, force=True, sleep=sleeps.append)

    assert not result.ok
    assert result.attempts == 3
    assert 'connection refused' in result.error
    assert failing_upgrade == ['head'] * 3
    assert sleeps == [1.5, 3.0]


def test_max_attempts_is_configurable(tmp_path, failing_upgrade):
    config = file_config(tmp_path / 'dm.db')
    config.MIGRATION_MAX_ATTEMPTS = 1
    app = create_app(config)

    sleeps = []
    result = run_migrations(app, force=True, sleep=sleeps.append)
    assert result.attempts == 1
    assert sleeps == []


def test_failed_startup_migration_does_not_stop_the_app(tmp_path, failing_upgrade):
    app = create_app(file_config(tmp_path / 'prod.db', 'production'))
    assert len(failing_upgrade) == 3
    assert app.test_client().get('/api/health').status_code == 200


def test_production_without_database_reports_failure():
    app = create_app(ProductionWithoutDatabase)
    result = run_migrations(app)
    assert not result.ok
    assert 'DATABASE_URL' in result.error
    assert app.test_client().get('/api/health').status_code == 200


# ── flask apply-migrations ───────────────────────────────────────────────────

def test_apply_migrations_command(tmp_path):
    app = create_app(file_config(tmp_path / 'cli.db', 'development'))
    runner = app.test_cli_runner()

    result = runner.invoke(args=['apply-migrations'])
    assert result.exit_code == 0
    assert 'Applied 2 migration(s)' in result.output

    result = runner.invoke(args=['apply-migrations'])
    assert result.exit_code == 0
    assert 'already up to date' in result.output


def test_apply_migrations_command_fails_without_database():
    runner = create_app(NoDatabaseConfig).test_cli_runner()
    result = runner.invoke(args=['apply-migrations'])
    assert result.exit_code != 0
    assert 'DATABASE_URL is not configured' in result.output
