"""Shared Supabase client.

The Supabase SDK is synchronous, so queries are built inside a callable and
executed on a worker thread to keep the event loop free.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from supabase import Client, create_client

from scribe_crm.core.config import get_settings
from scribe_crm.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Process-wide Supabase client built from the service role key."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Return the client, creating it on first use.

        Raises:
            ConfigurationError: If the project URL or service key is missing,
                or the SDK rejects them.
        """
        if cls._client is not None:
            return cls._client

        settings = get_settings()
        service_key = settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
        if not settings.SUPABASE_URL or not service_key:
            raise ConfigurationError("Supabase credentials store is not configured")
        try:
            cls._client = create_client(settings.SUPABASE_URL, service_key)
        except Exception as e:
            logger.exception("Could not create Supabase client")
            raise ConfigurationError(f"Could not connect to Supabase: {e}") from e
        logger.info("Supabase client ready", extra={"url": settings.SUPABASE_URL})
        return cls._client

    @classmethod
    async def run(cls, query: Callable[[Client], Any]) -> Any:
        """Execute ``query(client)`` on a worker thread and return its response."""
        return await asyncio.to_thread(lambda: query(cls.get_client()))

    @classmethod
    def reset_client(cls) -> None:
        cls._client = None
