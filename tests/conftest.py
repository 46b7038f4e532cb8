"""Global pytest fixtures for the Challenge Engine.

Provides:
- An in-memory store and in-process collaborators (ledger, notifier)
- A fully wired engine container and its services
- An HTTP client bound to the FastAPI app
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from challenge_engine.config import EngineSettings
from challenge_engine.dependencies import EngineContainer, build_container
from challenge_engine.repositories.memory import InMemoryChallengeStore
from challenge_engine.shared.clients.ledger_client import LoggingRewardLedger
from challenge_engine.shared.clients.link_resolver import NullLinkResolver
from challenge_engine.shared.clients.notification_client import LoggingNotificationDispatcher


# ===========================================
# SETTINGS
# ===========================================


@pytest.fixture
def settings() -> EngineSettings:
    """Settings with the background scheduler disabled."""
    return EngineSettings(
        scheduler_enabled=False,
        log_json=False,
        review_required_types="comprehensive,industry",
    )


# ===========================================
# COLLABORATORS
# ===========================================


@pytest.fixture
def store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore()


@pytest.fixture
def ledger() -> LoggingRewardLedger:
    return LoggingRewardLedger()


@pytest.fixture
def notifier() -> LoggingNotificationDispatcher:
    return LoggingNotificationDispatcher()


@pytest.fixture
def container(
    settings: EngineSettings,
    store: InMemoryChallengeStore,
    ledger: LoggingRewardLedger,
    notifier: LoggingNotificationDispatcher,
) -> EngineContainer:
    """Engine wired against in-memory collaborators."""
    return build_container(
        settings,
        store=store,
        ledger=ledger,
        notifier=notifier,
        link_resolver=NullLinkResolver(),
    )


@pytest.fixture
def service(container: EngineContainer):
    return container.challenges


@pytest.fixture
def jobs(container: EngineContainer):
    return container.jobs


# ===========================================
# HTTP CLIENT
# ===========================================


@pytest_asyncio.fixture
async def client(
    settings: EngineSettings,
    container: EngineContainer,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, without running its lifespan."""
    from challenge_engine.main import create_app

    app = create_app(settings=settings, container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: HTTP-level tests")
