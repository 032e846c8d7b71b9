"""Exception hierarchy shared by the rating pipeline."""

from __future__ import annotations


class RatingPipelineError(Exception):
    """Base class for every failure raised inside the rating pipeline."""


class ResolutionError(RatingPipelineError):
    """The catalog provider could not be reached to resolve an external ID."""


class PoolExhausted(RatingPipelineError):
    """No rating credential is currently usable."""


class CatalogProviderError(RatingPipelineError):
    """The catalog metadata provider returned an error or was unreachable."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RatingClientError(RatingPipelineError):
    """Base class for failures surfaced by the rating client."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Unauthorized(RatingClientError):
    """The provider rejected the credential outright."""


class RateLimited(RatingClientError):
    """The provider signalled that the credential is being throttled."""


class ProviderError(RatingClientError):
    """The provider answered, but not with a usable rating payload."""


class TransportError(RatingClientError):
    """The request failed at the network level or with a server error."""


class RatingTimeout(TransportError):
    """The request did not complete within the configured timeout."""


class CacheWriteError(RatingPipelineError):
    """Writing to the durable rating cache failed."""


class DocumentStoreError(RatingPipelineError):
    """The document store could not complete a read or write."""
