"""Shared httpx helpers for external service clients."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_client(
    client: httpx.AsyncClient | None,
    timeout: float,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as new_client:
        yield new_client


def decode_body(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to raw text (or None when empty)."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def truncate_body(body: Any, limit: int = 500) -> str:
    """Render a response body for log lines."""
    text = body if isinstance(body, str) else repr(body)
    return text[:limit]
