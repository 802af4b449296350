import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WORKER_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "test-admin-token"

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from relay.config import Settings  # noqa: E402
from relay.database import init_db  # noqa: E402
from relay.services.adapters.base import AIQueryAdapter, AIReply, OutboundChannel  # noqa: E402
from relay.services.config_store import ConfigStore  # noqa: E402
from relay.services.job_queue import JobQueue  # noqa: E402
from relay.services.result import Result  # noqa: E402
from relay.services.retry_policy import RetryPolicy  # noqa: E402


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeAI(AIQueryAdapter):
    def __init__(self, reply: str = "Hi! How can I help?"):
        self.reply = reply
        self.error: Exception | None = None
        self.reply_conversation_id: str | None = None
        self.on_query = None
        self.calls: list[dict] = []

    async def query(self, content, conversation_id, user_id, history=None):
        self.calls.append(
            {
                "content": content,
                "conversation_id": conversation_id,
                "user_id": user_id,
                "history": list(history or []),
            }
        )
        if self.on_query:
            self.on_query(user_id)
        if self.error:
            raise self.error
        return AIReply(text=self.reply, conversation_id=self.reply_conversation_id or conversation_id)

    async def resolve_conversation_id(self, user_id):
        return f"wa_{user_id}_1700000000000"


class FakeOutbound(OutboundChannel):
    def __init__(self):
        self.result: Result[str] = Result.success("wamid.test")
        self.sent: list[tuple[str, str]] = []

    async def send_text(self, to, text):
        self.sent.append((to, text))
        return self.result


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_config(session_factory):
    """Build a ConfigStore whose settings fallbacks are the given values."""

    def _make(**values) -> ConfigStore:
        values.setdefault("debounce_ms", 3000)
        settings = Settings(_env_file=None, database_url="sqlite://", **values)
        return ConfigStore(session_factory, ttl_seconds=0, settings=settings)

    return _make


@pytest.fixture
def config_store(make_config):
    return make_config()


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def fake_outbound():
    return FakeOutbound()


@pytest.fixture
def queue(fake_ai, fake_outbound, config_store, clock):
    return JobQueue(
        fake_ai,
        fake_outbound,
        config_store,
        retry_policy=RetryPolicy(base_delay_seconds=5.0, multiplier=2.0, max_attempts=3),
        batch_size=10,
        now=clock,
        send_alerts=False,
    )


@pytest.fixture
def fake_sender():
    sender = AsyncMock()
    sender.mark_as_read.return_value = True
    return sender
