import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ALLOWED_EMAIL_DOMAIN", "@empresa.com")
os.environ.setdefault("EVENTS_BACKEND", "log")
# Empty URL keeps tests on the in-process revocation store
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from staffauth.config import Settings  # noqa: E402
from staffauth.service.auth import SessionManager  # noqa: E402
from staffauth.service.notifier import Notifier  # noqa: E402
from staffauth.service.passwords import PasswordService  # noqa: E402
from staffauth.service.registration import RegistrationService  # noqa: E402
from staffauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from staffauth.service.tokens import TokenIssuer  # noqa: E402
from staffauth.storage.memory import MemoryRevocationStore, MemoryStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class RecordingTransport:
    """Event transport that keeps every published event in memory."""

    def __init__(self):
        self.sent = []

    async def send(self, channel, event_type, payload):
        self.sent.append((channel, event_type, payload))

    def of_type(self, event_type):
        return [payload for _, kind, payload in self.sent if kind == event_type]


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        jwt_secret=TEST_SECRET,
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24,
        allowed_email_domain="@empresa.com",
        events_backend="log",
        notification_timeout_seconds=0.5,
    )


@pytest.fixture
def passwords():
    """Cheap argon2 parameters so tests stay fast."""
    return PasswordService(time_cost=1, memory_cost=8 * 1024, parallelism=1)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def revocations():
    return MemoryRevocationStore()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier(transport, settings):
    return Notifier(
        transport,
        user_stream=settings.user_events_stream,
        email_stream=settings.email_events_stream,
        timeout_seconds=settings.notification_timeout_seconds,
    )


@pytest.fixture
def tokens(settings):
    return TokenIssuer(settings)


@pytest.fixture
def registration(memory_store, passwords, notifier, settings):
    return RegistrationService(memory_store, passwords, notifier, settings)


@pytest.fixture
def session_manager(memory_store, revocations, tokens, passwords, notifier, settings):
    return SessionManager(memory_store, revocations, tokens, passwords, notifier, settings)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
