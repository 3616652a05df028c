"""Parallel analysis branches: pricing and authenticity."""

from __future__ import annotations

from .authenticity import AuthenticityAgent
from .pricing import PricingAgent

__all__ = ["AuthenticityAgent", "PricingAgent"]
