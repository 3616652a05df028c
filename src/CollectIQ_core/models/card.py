"""Card identity, condition buckets and the submit request contract."""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from CollectIQ_core.utils.identifiers import build_fingerprint, normalize_identifier

from .base import CoreModel


class StandardCondition(str, Enum):
    """Condition buckets that comparable sales are normalised into."""

    MINT = "Mint"
    NEAR_MINT = "Near Mint"
    EXCELLENT = "Excellent"
    GOOD = "Good"
    POOR = "Poor"
    UNKNOWN = "Unknown"


_CONDITION_ALIASES: dict[str, StandardCondition] = {
    "mint": StandardCondition.MINT,
    "m": StandardCondition.MINT,
    "gem mint": StandardCondition.MINT,
    "near mint": StandardCondition.NEAR_MINT,
    "nm": StandardCondition.NEAR_MINT,
    "nm-m": StandardCondition.NEAR_MINT,
    "nm/m": StandardCondition.NEAR_MINT,
    "excellent": StandardCondition.EXCELLENT,
    "ex": StandardCondition.EXCELLENT,
    "lightly played": StandardCondition.EXCELLENT,
    "lp": StandardCondition.EXCELLENT,
    "good": StandardCondition.GOOD,
    "gd": StandardCondition.GOOD,
    "moderately played": StandardCondition.GOOD,
    "mp": StandardCondition.GOOD,
    "played": StandardCondition.GOOD,
    "poor": StandardCondition.POOR,
    "heavily played": StandardCondition.POOR,
    "hp": StandardCondition.POOR,
    "damaged": StandardCondition.POOR,
    "dmg": StandardCondition.POOR,
}


def normalize_condition(raw: str | None) -> StandardCondition:
    """Map a marketplace condition label onto a :class:`StandardCondition`."""
    key = normalize_identifier(raw)
    if not key:
        return StandardCondition.UNKNOWN
    if key in _CONDITION_ALIASES:
        return _CONDITION_ALIASES[key]
    for alias, condition in sorted(_CONDITION_ALIASES.items(), key=lambda item: -len(item[0])):
        if len(alias) > 2 and alias in key:
            return condition
    return StandardCondition.UNKNOWN


class CardIdentity(CoreModel):
    """What the card is, as far as pricing and authenticity care."""

    name: str | None = None
    set_name: str | None = None
    number: str | None = None
    rarity: str | None = None
    condition: str | None = None

    @property
    def condition_bucket(self) -> StandardCondition:
        return normalize_condition(self.condition)

    @property
    def is_known(self) -> bool:
        return bool(self.name)

    def fingerprint(self) -> str:
        """Stable cache key; equal identities always hash equally."""
        return build_fingerprint(
            [self.name, self.set_name, self.number, self.rarity, self.condition_bucket.value]
        )

    def merged_with(self, other: CardIdentity | None) -> CardIdentity:
        """Fill unset fields from ``other`` without overriding populated ones."""
        if other is None:
            return self
        updates = {
            field: getattr(other, field)
            for field in type(self).model_fields
            if getattr(self, field) is None and getattr(other, field) is not None
        }
        return self.model_copy(update=updates) if updates else self


class CardSubmission(CoreModel):
    """Client request to create or revalue a card record."""

    idempotency_key: str = Field(min_length=1, max_length=256)
    card_id: str = Field(min_length=1, max_length=128)
    image_ref: str = Field(min_length=1)
    force_refresh: bool = False
    identity: CardIdentity | None = None

    @field_validator("idempotency_key", "card_id", "image_ref")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    def request_fingerprint(self) -> dict[str, object]:
        """Payload the idempotency hash is computed from, key excluded."""
        return self.model_dump(mode="json", exclude={"idempotency_key"})


__all__ = ["CardIdentity", "CardSubmission", "StandardCondition", "normalize_condition"]
