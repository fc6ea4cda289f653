import os
import tempfile

import pytest

# Settings are read at import time, so point them at a scratch folder first
_SCRATCH = tempfile.mkdtemp(prefix="bookfinder-tests-")
os.environ["LIBRARY_DB_FILE"] = os.path.join(_SCRATCH, "library.db")
os.environ["SESSION_FILE"] = os.path.join(_SCRATCH, "session.json")
os.environ.pop("REDIS_URL", None)

from bookfinder.config import settings  # noqa: E402
from bookfinder.library import LibraryStore  # noqa: E402
from bookfinder.notifications import NotificationChannel  # noqa: E402
from bookfinder.session import SessionManager, UserStore  # noqa: E402


class FakeClock:
    """Manually advanced clock for notification expiry."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def session_file(tmp_path):
    return str(tmp_path / "session.json")


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, db_file, session_file):
    """Entry points that read settings directly use the per-test files."""
    monkeypatch.setattr(settings, "database_file", db_file)
    monkeypatch.setattr(settings, "session_file", session_file)


@pytest.fixture
def users(db_file):
    return UserStore(db_file)


@pytest.fixture
def session(users, session_file):
    manager = SessionManager(users, session_file)
    manager.init()
    yield manager
    manager.teardown()


@pytest.fixture
def library(session, db_file):
    return LibraryStore(session, db_file)


@pytest.fixture
def alice(session):
    """A registered and logged-in user."""
    return session.register("Alice", "alice@example.com", "wonderland")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel(clock):
    return NotificationChannel(duration=3, clock=clock)
