"""Google Gemini client for text generation.

Calls the ``generateContent`` REST endpoint directly so a 429's structured
``RetryInfo`` detail is available to the caller.
"""

import logging
import math
import re
from typing import Any

import httpx

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.core.exceptions import (
    AIServiceError,
    ConfigurationError,
    RateLimitedError,
    TransportError,
)
from scribe_crm.integrations.http import decode_body, open_client, truncate_body

logger = logging.getLogger(__name__)

SERVICE_NAME = "gemini"
RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"

# protobuf Duration JSON: seconds with optional fraction, e.g. "32s", "1.5s"
_RETRY_DELAY = re.compile(r"^(\d+(?:\.\d+)?)s$")


def parse_retry_delay_seconds(body: Any) -> int | None:
    """Extract ``RetryInfo.retryDelay`` (e.g. ``"32s"``) from a 429 body.

    Args:
        body: Decoded error body.

    Returns:
        Delay in whole seconds, rounded up, or None when the body carries no hint.
    """
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None

    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
            delay = detail.get("retryDelay")
            if not isinstance(delay, str):
                return None
            match = _RETRY_DELAY.match(delay.strip())
            return math.ceil(float(match.group(1))) if match else None
    return None


class GeminiClient:
    """Thin async wrapper over ``models/<model>:generateContent``."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http_client = http_client

    @property
    def model(self) -> str:
        return self._settings.GEMINI_MODEL

    async def generate_text(self, prompt: str) -> str:
        """Generate text for a single-turn prompt.

        Args:
            prompt: Full prompt text.

        Returns:
            Text of the first candidate.

        Raises:
            ConfigurationError: If no API key is configured.
            RateLimitedError: On 429, with ``retry_after`` from RetryInfo when present.
            AIServiceError: On any other error status or a response without text.
            TransportError: If the service cannot be reached.
        """
        if not self._settings.gemini_configured:
            raise ConfigurationError("Gemini API key is missing - set GEMINI_API_KEY")

        url = f"{self._settings.GEMINI_API_BASE_URL}/{self.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        headers = {
            "x-goog-api-key": self._settings.GEMINI_API_KEY.get_secret_value(),
            "Content-Type": "application/json",
        }

        try:
            async with open_client(
                self._http_client, self._settings.HTTP_TIMEOUT_SECONDS
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Gemini request failed: %s", exc, extra={"model": self.model})
            raise TransportError(SERVICE_NAME, f"Gemini unreachable: {exc}") from exc

        body = decode_body(response)

        if response.status_code == 429:
            retry_after = parse_retry_delay_seconds(body)
            logger.warning(
                "Gemini rate limited",
                extra={"model": self.model, "retry_after": retry_after},
            )
            raise RateLimitedError(SERVICE_NAME, retry_after=retry_after, body=body)

        if response.status_code != 200:
            logger.error(
                "Gemini API error: %s - %s",
                response.status_code,
                truncate_body(body),
                extra={"model": self.model},
            )
            raise AIServiceError(
                SERVICE_NAME,
                f"Gemini returned {response.status_code}",
                status=response.status_code,
                body=body,
            )

        text = _first_candidate_text(body)
        if text is None:
            logger.error("No text content in Gemini response", extra={"model": self.model})
            raise AIServiceError(
                SERVICE_NAME,
                "No text content found in Gemini response",
                status=response.status_code,
                body=body,
            )
        return text


def _first_candidate_text(body: Any) -> str | None:
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


_gemini_client: GeminiClient | None = None


def get_gemini_client() -> GeminiClient:
    """Get or create the shared GeminiClient."""
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = GeminiClient()
    return _gemini_client
