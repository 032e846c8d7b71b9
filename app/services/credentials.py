"""Rotating pool of rate-limited rating API credentials."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from ..errors import PoolExhausted
from ..models import CredentialUsage, PoolStats
from ..utils import ensure_utc, is_placeholder, mask_key, next_utc_midnight, utcnow

logger = logging.getLogger(__name__)

DEFAULT_DAILY_QUOTA = 1_000


@dataclass(slots=True)
class CredentialRecord:
    """Mutable usage state for one rating API credential."""

    id: str
    secret: str = field(repr=False)
    daily_quota: int = DEFAULT_DAILY_QUOTA
    daily_usage: int = 0
    active: bool = True
    quota_exceeded: bool = False
    deactivated_until: datetime | None = None
    in_flight: int = 0

    @property
    def masked(self) -> str:
        return mask_key(self.secret)


class CredentialPool:
    """Round-robin selection over credentials with quota and health tracking.

    Selecting a credential reserves one unit of its daily quota. The caller
    either commits the reservation with ``record_success`` or hands it back
    with ``release``, so concurrent requests can never overdraw a key.

    All state lives behind a single lock. The lock only ever guards counter,
    flag and cursor updates; callers perform their network I/O outside of it.
    """

    def __init__(
        self,
        raw_keys: Iterable[str] = (),
        *,
        daily_quota: int = DEFAULT_DAILY_QUOTA,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if daily_quota < 1:
            raise ValueError("daily_quota must be positive")
        self._raw_keys = tuple(raw_keys)
        self._daily_quota = daily_quota
        self._clock = clock
        self._lock = threading.Lock()
        self._records: list[CredentialRecord] = []
        self._cursor = 0

    @property
    def size(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[CredentialRecord, ...]:
        return tuple(self._records)

    def discover(self) -> list[CredentialRecord]:
        """Load the configured credentials, discarding unusable entries."""

        accepted: list[CredentialRecord] = []
        seen: set[str] = set()
        for position, raw in enumerate(self._raw_keys, start=1):
            candidate = (raw or "").strip()
            if not candidate:
                logger.warning("Ignoring empty rating API key at position %s", position)
                continue
            if is_placeholder(candidate):
                logger.warning(
                    "Ignoring placeholder rating API key at position %s", position
                )
                continue
            if any(char.isspace() or not char.isprintable() for char in candidate):
                logger.warning(
                    "Ignoring malformed rating API key at position %s", position
                )
                continue
            if candidate in seen:
                logger.warning(
                    "Ignoring duplicate rating API key %s at position %s",
                    mask_key(candidate),
                    position,
                )
                continue
            seen.add(candidate)
            accepted.append(
                CredentialRecord(
                    id=f"key-{position}",
                    secret=candidate,
                    daily_quota=self._daily_quota,
                )
            )

        with self._lock:
            self._records = accepted
            self._cursor = 0

        logger.info(
            "Discovered %s rating API keys: [%s]",
            len(accepted),
            ", ".join(record.masked for record in accepted),
        )
        return list(accepted)

    def next(self) -> CredentialRecord:
        """Reserve and return the next usable credential in round-robin order."""

        with self._lock:
            total = len(self._records)
            if total == 0:
                raise PoolExhausted("No rating API keys configured")
            now = self._clock()
            for _ in range(total):
                candidate = self._records[self._cursor % total]
                self._cursor = (self._cursor + 1) % total
                self._lift_expired_deactivation(candidate, now)
                if self._is_usable(candidate) and self._has_capacity(candidate):
                    candidate.in_flight += 1
                    return candidate
        raise PoolExhausted(
            "All rating API keys have exhausted their quota or are deactivated"
        )

    def record_success(self, credential: CredentialRecord) -> None:
        """Commit the reservation taken by ``next`` as one used request."""

        with self._lock:
            record = self._find(credential)
            if record is None:
                return
            if record.in_flight <= 0:
                logger.warning(
                    "Ignoring success for rating API key %s without a reservation",
                    record.id,
                )
                return
            record.in_flight -= 1
            record.daily_usage += 1
            if record.daily_usage >= record.daily_quota and not record.quota_exceeded:
                record.quota_exceeded = True
                record.active = False
                logger.info("Rating API key %s reached its daily quota", record.id)

    def release(self, credential: CredentialRecord) -> None:
        """Return an unused reservation taken by ``next``."""

        with self._lock:
            record = self._find(credential)
            if record is not None and record.in_flight > 0:
                record.in_flight -= 1

    def record_auth_failure(self, credential: CredentialRecord) -> None:
        """Deactivate a rejected credential until the next UTC midnight."""

        with self._lock:
            record = self._find(credential)
            if record is None:
                return
            record.active = False
            record.deactivated_until = next_utc_midnight(self._clock())
            until = record.deactivated_until
        logger.warning(
            "Rating API key %s (%s) rejected by provider; deactivated until %s",
            record.id,
            record.masked,
            until.isoformat(),
        )

    def reset_daily(self) -> None:
        """Clear quota counters and reactivate every credential."""

        with self._lock:
            for record in self._records:
                record.daily_usage = 0
                record.quota_exceeded = False
                record.active = True
        logger.info("Daily usage reset for %s rating API keys", len(self._records))

    def usage_stats(self) -> PoolStats:
        with self._lock:
            now = self._clock()
            entries: list[CredentialUsage] = []
            active = 0
            used = 0
            for record in self._records:
                self._lift_expired_deactivation(record, now)
                if self._is_usable(record):
                    active += 1
                used += record.daily_usage
                entries.append(
                    CredentialUsage(
                        id=record.id,
                        masked_key=record.masked,
                        daily_usage=record.daily_usage,
                        daily_quota=record.daily_quota,
                        in_flight=record.in_flight,
                        active=self._is_usable(record),
                        quota_exceeded=record.quota_exceeded,
                        deactivated_until=record.deactivated_until,
                    )
                )
            total_quota = sum(record.daily_quota for record in self._records)
        return PoolStats(
            total_keys=len(entries),
            active_keys=active,
            total_daily_quota=total_quota,
            used_quota=used,
            remaining_quota=max(total_quota - used, 0),
            credentials=entries,
        )

    def _find(self, credential: CredentialRecord) -> CredentialRecord | None:
        for record in self._records:
            if record is credential or record.id == credential.id:
                return record
        return None

    @staticmethod
    def _is_usable(record: CredentialRecord) -> bool:
        return (
            record.active
            and not record.quota_exceeded
            and record.deactivated_until is None
        )

    @staticmethod
    def _has_capacity(record: CredentialRecord) -> bool:
        return record.daily_usage + record.in_flight < record.daily_quota

    @staticmethod
    def _lift_expired_deactivation(record: CredentialRecord, now: datetime) -> None:
        if record.deactivated_until is None:
            return
        if ensure_utc(now) >= record.deactivated_until:
            record.deactivated_until = None
            record.active = not record.quota_exceeded
            logger.info("Rating API key %s reactivated after deactivation window", record.id)
