import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio


def _configure_path() -> None:
    tests_path = Path(__file__).resolve().parent
    sys.path.insert(0, str(tests_path))
    src_path = tests_path.parent / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewardflow_api.app import create_app  # noqa: E402
from rewardflow_api.core.settings import Settings  # noqa: E402
from rewardflow_api.db.base import Base  # noqa: E402
from rewardflow_api.db.session import build_engine, build_session_factory  # noqa: E402
from rewardflow_api.observability.conditions import get_condition_store  # noqa: E402
from rewardflow_api.services.conditions import build_condition_engine  # noqa: E402
from rewardflow_api.services.notifications import RewardNotifier  # noqa: E402

from support import WebhookRecorder  # noqa: E402


@pytest.fixture(autouse=True)
def reset_condition_store():
    get_condition_store().reset()
    yield
    get_condition_store().reset()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        internal_api_key="",
        brand_display_name="RewardFlow",
        operator_alert_email_recipients=["ops@example.com"],
    )


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent tasks get their own connections."""

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewardflow.db'}")
    await _create_schema(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def notifier(test_settings):
    reward_notifier = RewardNotifier(settings=test_settings)
    reward_notifier.use_in_memory_backends()
    return reward_notifier


@pytest.fixture
def webhook():
    return WebhookRecorder()


@pytest_asyncio.fixture
async def http_client(webhook):
    async with httpx.AsyncClient(transport=httpx.MockTransport(webhook)) as client:
        yield client


@pytest.fixture
def engine_factory(test_settings, notifier, http_client):
    def _build(factory, **overrides):
        options = {"settings": test_settings, "notifier": notifier, "http_client": http_client}
        options.update(overrides)
        return build_condition_engine(factory, **options)

    return _build


@pytest.fixture
def condition_engine(session_factory, engine_factory):
    return engine_factory(session_factory)


@pytest_asyncio.fixture
async def app_with_db(session_factory, condition_engine):
    app = create_app(session_factory=session_factory, condition_engine=condition_engine)
    yield app, session_factory


@pytest_asyncio.fixture
async def api_client(app_with_db):
    app, _ = app_with_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
