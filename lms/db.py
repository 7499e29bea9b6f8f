"""MongoDB connection, Beanie document registration and transactions."""
import logging
from typing import Any, Awaitable, Callable

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from lms.config import settings
from lms.models import DOCUMENT_MODELS

logger = logging.getLogger(__name__)

_client = None


async def init_db():
    """Connect to MongoDB and initialize Beanie ODM."""
    global _client
    _client = AsyncIOMotorClient(settings.mongodb_url)
    await init_beanie(
        database=_client[settings.mongodb_db_name],
        document_models=DOCUMENT_MODELS,
    )
    logger.info("Connected to MongoDB database %s", settings.mongodb_db_name)


async def db_shutdown():
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        _client = None


async def run_in_transaction(callback: Callable[[Any], Awaitable[Any]]) -> Any:
    """Run ``callback(session)`` inside a multi-document transaction.

    The driver's ``with_transaction`` retries the whole callback on transient
    errors and on unknown commit results. Any exception raised by the
    callback aborts the transaction and is re-raised to the caller.
    """
    if _client is None:
        raise RuntimeError("Database is not initialised")
    async with await _client.start_session() as session:
        return await session.with_transaction(callback)
