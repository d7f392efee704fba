import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)


@asynccontextmanager
async def transactional(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on clean exit, roll back and re-raise otherwise.

    A failing rollback is logged so the original error is the one that surfaces.
    """
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.debug(f"Rolling back upload transaction after {type(e).__name__}")
        try:
            await session.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")
        raise
