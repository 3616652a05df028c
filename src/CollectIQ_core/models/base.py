"""Shared pydantic base for wire and domain models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CoreModel(BaseModel):
    """Base model that enforces strict, immutable validation.

    Fields accept both their Python name and the camelCase alias used on the
    wire; ``model_dump(by_alias=True)`` produces the wire shape.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


__all__ = ["CoreModel"]
