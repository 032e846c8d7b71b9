"""Application configuration models."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated, Any, Iterable, Literal, Mapping

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

NUMBERED_KEY_PREFIX = "OMDB_KEY_"


def collect_numbered_keys(
    environ: Mapping[str, str], prefix: str = NUMBERED_KEY_PREFIX
) -> tuple[str, ...]:
    """Return ``PREFIX1``, ``PREFIX2``, ... values until the sequence has a gap."""

    values: list[str] = []
    index = 1
    while f"{prefix}{index}" in environ:
        values.append(environ[f"{prefix}{index}"])
        index += 1
    return tuple(values)


class NumberedKeySettingsSource(PydanticBaseSettingsSource):
    """Supply ``OMDB_API_KEYS`` from numbered ``OMDB_KEY_n`` variables.

    Values come from the process environment and the dotenv file, with the
    process environment taking precedence for the same name.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        dotenv_settings: PydanticBaseSettingsSource,
    ) -> None:
        super().__init__(settings_cls)
        self._dotenv_settings = dotenv_settings

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        environ: dict[str, str] = {}
        if isinstance(self._dotenv_settings, DotEnvSettingsSource):
            environ.update(
                (name.upper(), value)
                for name, value in self._dotenv_settings.env_vars.items()
                if value is not None
            )
        environ.update(os.environ)
        keys = collect_numbered_keys(environ)
        return {"OMDB_API_KEYS": keys} if keys else {}


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelRatings", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_access_token: str | None = Field(
        default=None,
        alias="TMDB_ACCESS_TOKEN",
        validation_alias=AliasChoices("TMDB_ACCESS_TOKEN", "TMDB_READ_TOKEN"),
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")

    rating_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="RATING_API_URL"
    )
    omdb_api_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="OMDB_API_KEYS"
    )
    rating_daily_quota: int = Field(
        default=1_000, alias="RATING_DAILY_QUOTA", ge=1, le=1_000_000
    )
    rating_request_timeout: float = Field(
        default=10.0, alias="RATING_REQUEST_TIMEOUT", gt=0, le=120
    )
    rating_max_attempts: int = Field(
        default=3, alias="RATING_MAX_ATTEMPTS", ge=1, le=10
    )
    rating_retry_base_delay: float = Field(
        default=1.0, alias="RATING_RETRY_BASE_DELAY", ge=0, le=60
    )
    rating_cache_ttl_seconds: int = Field(
        default=86_400, alias="RATING_CACHE_TTL_SECONDS", ge=60
    )
    rating_batch_concurrency: int = Field(
        default=8, alias="RATING_BATCH_CONCURRENCY", ge=1, le=100
    )
    rating_coalesce_requests: bool = Field(
        default=False, alias="RATING_COALESCE_REQUESTS"
    )

    id_mapping_ttl_seconds: int = Field(
        default=7 * 86_400, alias="ID_MAPPING_TTL_SECONDS", ge=60
    )
    id_mapping_capacity: int = Field(
        default=1_000, alias="ID_MAPPING_CAPACITY", ge=1, le=1_000_000
    )
    resolver_max_attempts: int = Field(
        default=3, alias="RESOLVER_MAX_ATTEMPTS", ge=1, le=10
    )
    resolver_retry_delay: float = Field(
        default=1.0, alias="RESOLVER_RETRY_DELAY", ge=0, le=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelratings.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("omdb_api_keys", mode="before")
    @classmethod
    def _parse_api_keys(cls, value: object) -> tuple[str, ...]:
        """Accept comma separated strings as well as sequences."""

        if value is None:
            return ()
        if isinstance(value, str):
            raw_values = value.split(",")
        elif isinstance(value, Iterable):
            raw_values = [str(part) for part in value]
        else:
            raise TypeError("OMDB_API_KEYS must be a string or iterable of strings")
        return tuple(part.strip() for part in raw_values if part.strip())

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # An explicit OMDB_API_KEYS list outranks the numbered variables.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            NumberedKeySettingsSource(settings_cls, dotenv_settings),
            file_secret_settings,
        )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
