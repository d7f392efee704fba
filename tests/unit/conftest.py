from pathlib import Path
from typing import Any
from typing import Generator
from unittest.mock import AsyncMock
from unittest.mock import MagicMock

import dotenv
import pytest


@pytest.fixture(scope="session", autouse=True)
def _load_test_env() -> Generator[None, None, None]:
    """Load test environment variables from base + local env files."""
    project_root = Path(__file__).parents[2]
    dotenv.load_dotenv(project_root / ".env.defaults", override=True)
    dotenv.load_dotenv(project_root / ".env.test-local", override=True)
    yield


class FakeSessionFactory:
    """Stands in for an ``async_sessionmaker``; every call yields the same mock session."""

    def __init__(self) -> None:
        self.session = MagicMock()
        self.session.commit = AsyncMock()
        self.session.rollback = AsyncMock()
        self.opened = 0

    def __call__(self) -> "FakeSessionFactory":
        self.opened += 1
        return self

    async def __aenter__(self) -> MagicMock:
        return self.session

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return False


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()
