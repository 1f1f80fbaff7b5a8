"""Pytest setup: app factory configs and small model factories."""
import pytest

from app import create_app, db
from app.models import Campaign, User
from config import Config

TEST_SECRET = 'test-secret-key-that-is-at-least-32-chars'


class TestConfig(Config):
    __test__ = False

    TESTING = True
    ENVIRONMENT = 'testing'
    SECRET_KEY = TEST_SECRET
    DATABASE_URL = 'sqlite://'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    MIGRATION_RETRY_DELAY = 0


class NoDatabaseConfig(TestConfig):
    DATABASE_URL = None
    SQLALCHEMY_DATABASE_URI = None


def file_config(path, environment='testing'):
    """Config for a SQLite file database, used where Alembic needs a real file."""
    url = f'sqlite:///{path}'

    class FileConfig(TestConfig):
        ENVIRONMENT = environment
        DATABASE_URL = url
        SQLALCHEMY_DATABASE_URI = url

    return FileConfig


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(username=None, email=None, password='correct horse battery'):
        counter['n'] += 1
        username = username or f'player{counter["n"]}'
        user = User(username=username, email=email or f'{username}@example.com')
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def owner(make_user):
    return make_user(username='dungeonmaster')


@pytest.fixture
def make_campaign(owner):

    def _make(name='Curse of Strahd', **kwargs):
        kwargs.setdefault('owner_id', owner.id)
        campaign = Campaign(name=name, **kwargs)
        db.session.add(campaign)
        db.session.commit()
        return campaign

    return _make


@pytest.fixture
def campaign(make_campaign):
    return make_campaign()
