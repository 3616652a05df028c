from __future__ import annotations

import httpx
import pytest

from CollectIQ_core.config.settings import RetrySettings
from CollectIQ_core.orchestration.retry import RetryPolicy, classify_error, to_step_failure
from CollectIQ_core.utils.errors import ErrorKind, StepFailure

FAST = RetryPolicy(max_attempts=3, initial_backoff_seconds=0.0, max_backoff_seconds=0.0, jitter_seconds=0.0)


class _Flaky:
    def __init__(self, errors: list[BaseException], result: str = "ok") -> None:
        self._errors = list(errors)
        self._result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._result


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://source.test/comparables")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (StepFailure("x", kind=ErrorKind.PERMANENT), ErrorKind.PERMANENT),
        (TimeoutError(), ErrorKind.TRANSIENT),
        (ConnectionError(), ErrorKind.TRANSIENT),
        (_status_error(503), ErrorKind.TRANSIENT),
        (_status_error(429), ErrorKind.TRANSIENT),
        (_status_error(404), ErrorKind.PERMANENT),
        (KeyError("x"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_error(exc, kind) -> None:
    assert classify_error(exc) is kind


def test_to_step_failure_wraps_foreign_exceptions() -> None:
    failure = to_step_failure(RuntimeError("boom"), step="aggregation")
    assert failure.kind is ErrorKind.UNKNOWN
    assert failure.step == "aggregation"
    assert failure.error_type == "RuntimeError"
    existing = StepFailure("x", kind=ErrorKind.TRANSIENT)
    assert to_step_failure(existing, step="pricing") is existing


@pytest.mark.asyncio
async def test_transient_errors_retry_until_success() -> None:
    operation = _Flaky([StepFailure("busy", kind=ErrorKind.TRANSIENT)] * 2)
    attempts: list[int] = []
    result = await FAST.run(operation, step="pricing", on_attempt=attempts.append)
    assert result == "ok"
    assert operation.calls == 3
    assert attempts == [1, 2, 3]


@pytest.mark.asyncio
async def test_transient_errors_exhaust_budget() -> None:
    operation = _Flaky([StepFailure("busy", kind=ErrorKind.TRANSIENT)] * 5)
    with pytest.raises(StepFailure) as excinfo:
        await FAST.run(operation, step="pricing")
    assert excinfo.value.kind is ErrorKind.TRANSIENT
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried() -> None:
    operation = _Flaky([StepFailure("bad image", kind=ErrorKind.PERMANENT)])
    with pytest.raises(StepFailure):
        await FAST.run(operation, step="extraction")
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_unknown_errors_get_one_retry() -> None:
    operation = _Flaky([RuntimeError("odd"), RuntimeError("odd again"), RuntimeError("never")])
    with pytest.raises(StepFailure) as excinfo:
        await FAST.run(operation, step="aggregation")
    assert operation.calls == 2
    assert excinfo.value.kind is ErrorKind.UNKNOWN
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_max_attempts_override() -> None:
    operation = _Flaky([StepFailure("busy", kind=ErrorKind.TRANSIENT)] * 5)
    with pytest.raises(StepFailure):
        await FAST.run(operation, step="authenticity.reasoning", max_attempts=2)
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_unknown_retry_budget_comes_from_settings() -> None:
    policy = RetryPolicy.from_settings(
        RetrySettings(
            max_attempts=5,
            initial_backoff_seconds=0.0,
            max_backoff_seconds=0.0,
            jitter_seconds=0.0,
            unknown_retries=3,
        )
    )
    assert policy.unknown_retries == 3
    operation = _Flaky([RuntimeError("odd")] * 5)
    with pytest.raises(StepFailure):
        await policy.run(operation, step="aggregation")
    assert operation.calls == 4
