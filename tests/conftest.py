import pytest

from app import create_app
from auth import SessionResolver
from models import db
from mood_service import MoodAnalyzer
from pipeline import EntryPipeline, TimelineCache
from store import EntryStore, IdentityStore, RetryPolicy

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "ENVIRONMENT": "testing",
    "OPENAI_API_KEY": None,
    "STORE_RETRY_BASE_DELAY": 0,
    "SESSION_COOKIE_SECURE": False,
    "ALLOW_DEBUG": True,
    "ALLOW_INIT_DB": True,
    "AUTO_MIGRATE": True,
}


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    return RetryPolicy(attempts=3, base_delay=0.5, sleep=sleeps.append)


@pytest.fixture
def users(app, retry):
    return IdentityStore(db, retry)


@pytest.fixture
def entries(app, retry):
    return EntryStore(db, retry)


@pytest.fixture
def sessions(users):
    return SessionResolver(users)


@pytest.fixture
def cache():
    return TimelineCache()


@pytest.fixture
def pipeline(sessions, entries, cache):
    return EntryPipeline(sessions, MoodAnalyzer(), entries, cache=cache)


@pytest.fixture
def alice(users):
    return users.create_user("Alice")


@pytest.fixture
def bob(users):
    return users.create_user("Bob")
