"""In-memory adapters for tests and local runs.

Each double records how often it was called and can be scripted to fail a
number of times, fail forever, or stall past a caller's timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from CollectIQ_core.models import CardIdentity, Comparable, FeatureEnvelope


@dataclass
class FailureScript:
    """Exceptions raised on successive calls before the double succeeds.

    ``repeat_last`` keeps raising the final exception forever.
    """

    errors: list[BaseException] = field(default_factory=list)
    repeat_last: bool = False

    def next_error(self) -> BaseException | None:
        if not self.errors:
            return None
        if self.repeat_last and len(self.errors) == 1:
            return self.errors[0]
        return self.errors.pop(0)


class StaticComparablesSource:
    """Source that always answers with the same sales."""

    def __init__(
        self,
        name: str,
        comparables: Iterable[Comparable] = (),
        *,
        failures: FailureScript | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.name = name
        self._comparables = list(comparables)
        self._failures = failures or FailureScript()
        self._delay = delay_seconds
        self.calls = 0

    async def fetch_comparables(self, identity: CardIdentity) -> Sequence[Comparable]:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        error = self._failures.next_error()
        if error is not None:
            raise error
        return list(self._comparables)


class StaticVisionExtractor:
    """Vision double returning a prepared envelope for any image reference."""

    def __init__(
        self,
        envelope: FeatureEnvelope,
        *,
        failures: FailureScript | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self._envelope = envelope
        self._failures = failures or FailureScript()
        self._delay = delay_seconds
        self.calls = 0

    async def extract(self, image_ref: str) -> FeatureEnvelope:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        error = self._failures.next_error()
        if error is not None:
            raise error
        return self._envelope.model_copy(update={"image_ref": image_ref})


class ScriptedReasoningService:
    """Reasoning double replying with a fixed answer and keeping every prompt."""

    def __init__(
        self,
        reply: str = "Consistent with genuine print characteristics.",
        *,
        failures: FailureScript | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self._reply = reply
        self._failures = failures or FailureScript()
        self._delay = delay_seconds
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def infer(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._delay:
            await asyncio.sleep(self._delay)
        error = self._failures.next_error()
        if error is not None:
            raise error
        return self._reply


__all__ = [
    "FailureScript",
    "ScriptedReasoningService",
    "StaticComparablesSource",
    "StaticVisionExtractor",
]
