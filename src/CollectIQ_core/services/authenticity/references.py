"""Reference characteristics of genuine cards."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from CollectIQ_core.models import CardIdentity, ReferenceSignals

from .signals import is_expected_holographic


class ReferenceProvider(Protocol):
    async def reference_for(self, identity: CardIdentity) -> ReferenceSignals:
        ...


class StaticReferenceProvider:
    """Derives references from the identity plus optional known hash scores.

    ``hash_confidences`` maps a card fingerprint to the similarity of the
    reference artwork; unknown cards get no hash reference and score neutral.
    """

    def __init__(self, hash_confidences: Mapping[str, float] | None = None, *, version: int = 1) -> None:
        self._hash_confidences = dict(hash_confidences or {})
        self.version = version

    def update(self, fingerprint: str, confidence: float) -> None:
        self._hash_confidences[fingerprint] = confidence
        self.version += 1

    async def reference_for(self, identity: CardIdentity) -> ReferenceSignals:
        return ReferenceSignals(
            expected_name=identity.name,
            expected_holo=is_expected_holographic(identity.rarity),
            reference_hash_confidence=self._hash_confidences.get(identity.fingerprint()),
            version=self.version,
        )


__all__ = ["ReferenceProvider", "StaticReferenceProvider"]
