import pytest

from media_intake.orm.session import get_session_factory
from media_intake.orm.session import to_async_url


@pytest.mark.parametrize(
    "url,expected",
    [
        ("postgres://u:p@db:5432/intake", "postgresql+asyncpg://u:p@db:5432/intake"),
        ("postgresql://u:p@db/intake?sslmode=disable", "postgresql+asyncpg://u:p@db/intake"),
        ("postgresql+asyncpg://u:p@db/intake", "postgresql+asyncpg://u:p@db/intake"),
    ],
)
def test_to_async_url(url: str, expected: str) -> None:
    assert to_async_url(url) == expected


def test_session_factory_requires_engine() -> None:
    with pytest.raises(RuntimeError, match="initialize_engine"):
        get_session_factory()
