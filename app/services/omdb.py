"""HTTP client for the OMDb-compatible rating provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import (
    ProviderError,
    RateLimited,
    RatingClientError,
    RatingTimeout,
    TransportError,
    Unauthorized,
)
from ..utils import is_valid_external_id
from .credentials import CredentialRecord

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("request limit", "limit reached", "too many requests")


class RatingClient:
    """Issue single rating lookups with bounded retries and backoff."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        timeout: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._timeout = timeout if timeout is not None else settings.rating_request_timeout
        self._max_attempts = max(
            1, max_attempts if max_attempts is not None else settings.rating_max_attempts
        )
        self._base_delay = (
            base_delay if base_delay is not None else settings.rating_retry_base_delay
        )

    async def fetch(self, external_id: str, credential: CredentialRecord) -> dict[str, Any]:
        """Return the raw payload for ``external_id`` using ``credential``.

        Authorization failures and non rate-limit client errors are raised
        immediately. Timeouts, server errors and rate-limit signals are retried
        with exponential backoff before the last failure is surfaced.
        """

        if not is_valid_external_id(external_id):
            raise ProviderError(f"Invalid external ID format: {external_id!r}")

        params = {"i": external_id, "apikey": credential.secret}
        last_error: RatingClientError = TransportError(
            f"No attempt was made for {external_id}"
        )

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._attempt(params, external_id, credential)
            except (Unauthorized, ProviderError):
                raise
            except (RateLimited, TransportError) as exc:
                last_error = exc
                if attempt >= self._max_attempts:
                    break
                delay = self._base_delay * (2 ** (attempt - 1))
                logger.info(
                    "Attempt %s for %s with key %s failed (%s). Retrying in %.1fs",
                    attempt,
                    external_id,
                    credential.masked,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

        logger.warning(
            "Rating lookup for %s with key %s failed after %s attempts: %s",
            external_id,
            credential.masked,
            self._max_attempts,
            last_error,
        )
        raise last_error

    async def _attempt(
        self,
        params: dict[str, str],
        external_id: str,
        credential: CredentialRecord,
    ) -> dict[str, Any]:
        try:
            response = await asyncio.wait_for(
                self._client.get("/", params=params), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise RatingTimeout(
                f"Request for {external_id} timed out after {self._timeout:.1f}s"
            ) from exc
        except httpx.TimeoutException as exc:
            raise RatingTimeout(f"Request for {external_id} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Request for {external_id} failed: {exc.__class__.__name__}"
            ) from exc

        status = response.status_code
        logger.debug(
            "Rating lookup for %s with key %s returned %s",
            external_id,
            credential.masked,
            status,
        )
        if status == 401:
            message = self._error_message(response)
            if self._is_rate_limit_message(message):
                raise RateLimited(message or "Request limit reached", status_code=status)
            raise Unauthorized(message or "Credential rejected", status_code=status)
        if status == 429:
            raise RateLimited(self._error_message(response) or "Rate limited", status_code=status)
        if status >= 500:
            raise TransportError(f"Provider returned {status}", status_code=status)
        if status >= 400:
            raise ProviderError(
                self._error_message(response) or f"Provider returned {status}",
                status_code=status,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Provider returned a non-JSON body for {external_id}", status_code=status
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"Unexpected payload shape for {external_id}", status_code=status)

        if str(payload.get("Response", "True")).lower() == "false":
            message = str(payload.get("Error") or "Unknown provider error")
            if self._is_rate_limit_message(message):
                raise RateLimited(message, status_code=status)
            if "invalid api key" in message.lower():
                raise Unauthorized(message, status_code=status)
            raise ProviderError(message, status_code=status)
        return payload

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            error = payload.get("Error") or payload.get("error")
            if error:
                return str(error)
        return None

    @staticmethod
    def _is_rate_limit_message(message: str | None) -> bool:
        if not message:
            return False
        lowered = message.lower()
        return any(marker in lowered for marker in RATE_LIMIT_MARKERS)
