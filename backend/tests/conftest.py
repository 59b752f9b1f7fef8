import pytest
import pytest_asyncio

from newsdesk.config import Settings
from newsdesk.core.container import ServiceContainer
from helpers import Seeder


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway SQLite file, no waits between retries."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'newsdesk_test.db'}",
        DB_RETRY_BACKOFF_SECONDS=0,
        DB_RETRY_BACKOFF_CAP_SECONDS=0,
        DB_STARTUP_ATTEMPTS=1,
        DB_STARTUP_RETRY_DELAY_SECONDS=0,
        CLEANUP_SCHEDULER_ENABLED=False,
        SESSION_SECRET="test-secret",
        ENVIRONMENT="test",
    )


@pytest_asyncio.fixture
async def services(test_settings):
    container = ServiceContainer.build(test_settings)
    await container.connections.create_tables()
    yield container
    await container.scheduler.shutdown()
    await container.connections.close_all()


@pytest.fixture
def seeder(services):
    return Seeder(services.connections)
