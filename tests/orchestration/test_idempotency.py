from __future__ import annotations

import asyncio
from datetime import timedelta
from itertools import count

import pytest

from CollectIQ_core.orchestration.idempotency import (
    IdempotencyGuard,
    InMemoryIdempotencyStore,
    hash_request,
)
from CollectIQ_core.utils.errors import DuplicateKeyConflict
from tests.conftest import NOW


class _Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self):
        return self.now


@pytest.fixture()
def guard_clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def guard(guard_clock) -> IdempotencyGuard:
    ids = count(1)
    return IdempotencyGuard(
        InMemoryIdempotencyStore(),
        ttl_seconds=600,
        clock=guard_clock,
        id_factory=lambda: f"exec-{next(ids)}",
    )


def test_hash_request_ignores_key_order() -> None:
    assert hash_request({"a": 1, "b": [1, 2]}) == hash_request({"b": [1, 2], "a": 1})
    assert hash_request({"a": 1}) != hash_request({"a": 2})


@pytest.mark.asyncio
async def test_duplicate_submission_resolves_to_first_execution(guard) -> None:
    first = await guard.admit("key-1", "hash-a")
    second = await guard.admit("key-1", "hash-a")
    assert first.admitted is True
    assert second.admitted is False
    assert second.execution_id == first.execution_id


@pytest.mark.asyncio
async def test_concurrent_admissions_create_one_execution(guard) -> None:
    admissions = await asyncio.gather(*(guard.admit("key-1", "hash-a") for _ in range(10)))
    assert sum(admission.admitted for admission in admissions) == 1
    assert len({admission.execution_id for admission in admissions}) == 1


@pytest.mark.asyncio
async def test_reused_key_with_different_payload_conflicts(guard) -> None:
    first = await guard.admit("key-1", "hash-a")
    with pytest.raises(DuplicateKeyConflict) as excinfo:
        await guard.admit("key-1", "hash-b")
    assert excinfo.value.execution_id == first.execution_id
    assert excinfo.value.problem.status == 409


@pytest.mark.asyncio
async def test_expired_key_admits_a_new_execution(guard, guard_clock) -> None:
    first = await guard.admit("key-1", "hash-a")
    guard_clock.now = NOW + timedelta(seconds=600)
    second = await guard.admit("key-1", "hash-b")
    assert second.admitted is True
    assert second.execution_id != first.execution_id


@pytest.mark.asyncio
async def test_expired_keys_are_evicted_on_next_admission(guard_clock) -> None:
    store = InMemoryIdempotencyStore()
    guard = IdempotencyGuard(store, ttl_seconds=600, clock=guard_clock)
    for index in range(50):
        await guard.admit(f"key-{index}", "hash-a")
    assert len(store) == 50
    guard_clock.now = NOW + timedelta(days=1)
    await guard.admit("key-late", "hash-a")
    assert len(store) == 1


@pytest.mark.asyncio
async def test_readmitted_key_survives_its_stale_expiry(guard_clock) -> None:
    store = InMemoryIdempotencyStore()
    guard = IdempotencyGuard(store, ttl_seconds=600, clock=guard_clock)
    await guard.admit("key-1", "hash-a")
    guard_clock.now = NOW + timedelta(seconds=600)
    renewed = await guard.admit("key-1", "hash-a")
    guard_clock.now = NOW + timedelta(seconds=900)
    again = await guard.admit("key-1", "hash-a")
    assert again.admitted is False
    assert again.execution_id == renewed.execution_id


@pytest.mark.asyncio
async def test_new_key_can_bind_an_existing_execution(guard) -> None:
    bound = await guard.admit("key-2", "hash-b", execution_id="exec-running")
    assert bound.admitted is True
    assert bound.execution_id == "exec-running"
    assert (await guard.admit("key-2", "hash-b")).execution_id == "exec-running"
