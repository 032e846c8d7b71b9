"""Tests for the rotating rating credential pool."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.errors import PoolExhausted
from app.services.credentials import CredentialPool
from app.utils import mask_key


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def build_pool(keys: list[str], **kwargs) -> CredentialPool:
    pool = CredentialPool(keys, **kwargs)
    pool.discover()
    return pool


def test_next_rotates_fairly_across_active_keys() -> None:
    """2N calls over N healthy keys should return each key exactly twice in order."""

    pool = build_pool(["alpha-0001", "bravo-0002", "charlie-03"])

    selected = [pool.next().id for _ in range(6)]

    assert selected == ["key-1", "key-2", "key-3", "key-1", "key-2", "key-3"]


def test_quota_is_never_exceeded_and_blocks_selection_until_reset() -> None:
    pool = build_pool(["alpha-0001", "bravo-0002"], daily_quota=2)
    first, second = pool.records

    for _ in range(4):
        pool.record_success(pool.next())
    # A success without a reservation is not counted against the quota.
    pool.record_success(first)

    assert first.daily_usage == 2
    assert second.daily_usage == 2
    assert first.quota_exceeded is True
    assert first.active is False
    with pytest.raises(PoolExhausted):
        pool.next()

    pool.reset_daily()

    assert first.daily_usage == 0
    assert {pool.next().id for _ in range(2)} == {"key-1", "key-2"}


def test_selection_reserves_quota_until_committed_or_released() -> None:
    pool = build_pool(["alpha-0001"], daily_quota=1)

    credential = pool.next()

    assert credential.in_flight == 1
    with pytest.raises(PoolExhausted):
        pool.next()

    pool.release(credential)

    assert credential.in_flight == 0
    assert credential.daily_usage == 0
    again = pool.next()
    pool.record_success(again)

    assert again.in_flight == 0
    assert again.daily_usage == 1
    assert pool.usage_stats().credentials[0].in_flight == 0
    with pytest.raises(PoolExhausted):
        pool.next()


def test_auth_failure_deactivates_until_next_utc_midnight() -> None:
    clock = FakeClock(datetime(2024, 5, 1, 15, 30, tzinfo=timezone.utc))
    pool = build_pool(["alpha-0001", "bravo-0002"], clock=clock)
    first = pool.records[0]

    pool.record_auth_failure(first)

    assert first.active is False
    assert first.daily_usage == 0
    assert first.deactivated_until == datetime(2024, 5, 2, tzinfo=timezone.utc)
    assert [pool.next().id for _ in range(4)] == ["key-2"] * 4

    # The daily reset clears quota state but not an authorization deactivation.
    pool.reset_daily()
    assert [pool.next().id for _ in range(2)] == ["key-2"] * 2

    clock.now = datetime(2024, 5, 2, 0, 0, tzinfo=timezone.utc)

    assert {pool.next().id for _ in range(2)} == {"key-1", "key-2"}
    assert first.deactivated_until is None
    assert first.active is True


def test_next_raises_when_pool_is_empty_or_exhausted() -> None:
    with pytest.raises(PoolExhausted):
        build_pool([]).next()

    pool = build_pool(["alpha-0001"], daily_quota=1)
    credential = pool.next()
    pool.record_success(credential)

    with pytest.raises(PoolExhausted):
        pool.next()


def test_discover_skips_empty_placeholder_malformed_and_duplicate_keys() -> None:
    pool = CredentialPool(
        [
            "good-key-1",
            "",
            "YOUR_API_KEY",
            "<omdb key>",
            "bad key",
            "good-key-1",
            "changeme",
            "good-key-2",
        ]
    )

    discovered = pool.discover()

    assert [record.id for record in discovered] == ["key-1", "key-8"]
    assert [record.secret for record in discovered] == ["good-key-1", "good-key-2"]
    assert pool.size == 2


def test_secrets_are_masked_in_repr_and_stats() -> None:
    pool = build_pool(["abcdef123456"], daily_quota=10)
    record = pool.next()
    pool.record_success(record)

    stats = pool.usage_stats()

    assert "abcdef123456" not in repr(record)
    assert record.masked == "ab...56"
    assert stats.total_keys == 1
    assert stats.active_keys == 1
    assert stats.used_quota == 1
    assert stats.remaining_quota == 9
    assert stats.credentials[0].masked_key == "ab...56"


def test_mask_key_hides_short_secrets_entirely() -> None:
    assert mask_key("abcd") == "****"
    assert mask_key("abcde") == "ab...de"
