"""Capability contracts for the external services the workflow depends on.

Key Components:
    - ComparablesSource: recent sold listings for a card identity
    - VisionExtractor: feature envelope for an image reference
    - ReasoningService: free-text inference for summaries and rationales

Responsibilities:
    - Keep orchestration code independent from any concrete marketplace, vision
      model or language model
    - Fix the failure contract: implementations raise
      :class:`~CollectIQ_core.utils.errors.AdapterError` with an explicit
      :class:`~CollectIQ_core.utils.errors.ErrorKind` when they can tell a
      transient failure from a permanent one

Side Effects:
    - None: pure interface definitions
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from CollectIQ_core.models import CardIdentity, Comparable, FeatureEnvelope

# ==============================================================================
# CAPABILITY PROTOCOLS
# ==============================================================================


@runtime_checkable
class ComparablesSource(Protocol):
    """Source of recent comparable sales."""

    name: str

    async def fetch_comparables(self, identity: CardIdentity) -> Sequence[Comparable]:
        ...


@runtime_checkable
class VisionExtractor(Protocol):
    """Produces a feature envelope from an image reference."""

    async def extract(self, image_ref: str) -> FeatureEnvelope:
        ...


@runtime_checkable
class ReasoningService(Protocol):
    """Answers a free-text prompt."""

    async def infer(self, prompt: str) -> str:
        ...


__all__ = ["ComparablesSource", "ReasoningService", "VisionExtractor"]
