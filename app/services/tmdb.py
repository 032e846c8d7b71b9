"""Client for the catalog metadata provider (The Movie Database)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import CatalogProviderError
from ..models import MediaType, NativeRating

logger = logging.getLogger(__name__)

TMDB_MEDIA_SEGMENTS: dict[str, str] = {"movie": "movie", "series": "tv"}


class TMDBClient:
    """Resolve external identifiers and native ratings from TMDB."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not (settings.tmdb_access_token or settings.tmdb_api_key):
            raise ValueError("A TMDB access token or API key is required")
        self._settings = settings
        self._client = http_client

    async def get_external_id(
        self, catalog_id: str, media_type: MediaType
    ) -> str | None:
        """Return the IMDb identifier for a title, or ``None`` if it has none.

        A ``404`` means TMDB does not know the title, which is a definitive
        negative answer rather than a failure.
        """

        endpoint = f"/{self._segment(media_type)}/{catalog_id}/external_ids"
        response = await self._get(endpoint)
        if response.status_code == 404:
            logger.info("TMDB has no %s with ID %s", media_type, catalog_id)
            return None
        payload = self._parse(response, endpoint)
        imdb_id = payload.get("imdb_id")
        if isinstance(imdb_id, str) and imdb_id.strip():
            return imdb_id.strip()
        return None

    async def get_native_rating(
        self, catalog_id: str, media_type: MediaType
    ) -> NativeRating:
        """Return TMDB's own vote average for a title."""

        endpoint = f"/{self._segment(media_type)}/{catalog_id}"
        response = await self._get(endpoint, params={"append_to_response": "external_ids"})
        payload = self._parse(response, endpoint)
        external = payload.get("external_ids") or {}
        imdb_id = payload.get("imdb_id") or (
            external.get("imdb_id") if isinstance(external, dict) else None
        )
        return NativeRating(
            catalog_id=catalog_id,
            media_type=media_type,
            title=payload.get("title") or payload.get("name"),
            vote_average=self._as_float(payload.get("vote_average")),
            vote_count=self._as_int(payload.get("vote_count")),
            overview=payload.get("overview") or None,
            external_id=imdb_id or None,
        )

    async def _get(
        self, endpoint: str, *, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        query = dict(params or {})
        headers = {"Accept": "application/json"}
        if self._settings.tmdb_access_token:
            headers["Authorization"] = f"Bearer {self._settings.tmdb_access_token}"
        elif self._settings.tmdb_api_key:
            query["api_key"] = self._settings.tmdb_api_key
        try:
            return await self._client.get(endpoint, params=query, headers=headers)
        except httpx.HTTPError as exc:
            raise CatalogProviderError(
                f"TMDB request to {endpoint} failed: {exc.__class__.__name__}"
            ) from exc

    @staticmethod
    def _parse(response: httpx.Response, endpoint: str) -> dict[str, Any]:
        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s failed with %s", endpoint, response.status_code
            )
            raise CatalogProviderError(
                f"TMDB returned {response.status_code} for {endpoint}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogProviderError(f"TMDB returned invalid JSON for {endpoint}") from exc
        if not isinstance(payload, dict):
            raise CatalogProviderError(f"Unexpected TMDB payload for {endpoint}")
        return payload

    @staticmethod
    def _segment(media_type: MediaType) -> str:
        try:
            return TMDB_MEDIA_SEGMENTS[media_type]
        except KeyError:
            raise ValueError(f"Unsupported media type: {media_type!r}") from None

    @staticmethod
    def _as_float(value: Any) -> float | None:
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _as_int(value: Any) -> int | None:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None
