"""
Database start-up and shutdown.
"""
import logging
from unittest.mock import AsyncMock, MagicMock, patch

from lms import db
from lms.config import settings
from lms.models import DOCUMENT_MODELS


class TestInitDb:
    async def test_registers_documents_and_logs(self, caplog):
        client = MagicMock()
        with patch("lms.db.AsyncIOMotorClient", return_value=client) as motor, patch(
            "lms.db.init_beanie", new_callable=AsyncMock
        ) as beanie, caplog.at_level(logging.INFO, logger="lms.db"):
            await db.init_db()

        motor.assert_called_once_with(settings.mongodb_url)
        assert beanie.await_args.kwargs["document_models"] == DOCUMENT_MODELS
        client.__getitem__.assert_called_once_with(settings.mongodb_db_name)
        assert f"Connected to MongoDB database {settings.mongodb_db_name}" in caplog.text

        await db.db_shutdown()
        client.close.assert_called_once()
        assert db._client is None
