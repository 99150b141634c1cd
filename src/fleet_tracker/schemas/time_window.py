"""Typed structure of the ``time_window`` document stored on each load."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class TimeWindowSection(_CamelModel):
    """Planned and actual times for one leg of a load."""

    planned_arrival: str = ""
    planned_departure: str = ""
    actual_arrival: str = ""
    actual_departure: str = ""
    arrival_note: str = ""
    departure_note: str = ""

    @field_validator(
        "planned_arrival",
        "planned_departure",
        "actual_arrival",
        "actual_departure",
        "arrival_note",
        "departure_note",
        mode="before",
    )
    @classmethod
    def _blank_if_missing(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)


class BackloadQuantities(_CamelModel):
    bins: int = 0
    crates: int = 0
    pallets: int = 0


class ThirdPartyInfo(_CamelModel):
    customer_id: Optional[str] = None
    cargo_description: Optional[str] = None
    linked_load_number: Optional[str] = None
    reference_number: Optional[str] = None


class BackloadInfo(_CamelModel):
    """Return-trip sub-shipment carried inside a load's time window."""

    enabled: bool = False
    is_third_party: Optional[bool] = None
    destination: str = ""
    cargo_type: str = ""
    offloading_date: Optional[str] = None
    loading_date: Optional[str] = None
    quantities: Optional[BackloadQuantities] = None
    notes: Optional[str] = None
    third_party: Optional[ThirdPartyInfo] = None


class TimeWindowRecord(_CamelModel):
    """Planned vs. actual event times per leg, plus optional backload data.

    Unknown keys are kept so that fields written by other flows survive a
    parse/merge/dump cycle.
    """

    origin: TimeWindowSection = Field(default_factory=TimeWindowSection)
    destination: TimeWindowSection = Field(default_factory=TimeWindowSection)
    backload: Optional[BackloadInfo] = None
    third_party: Optional[ThirdPartyInfo] = None
    variance_reason: Optional[str] = None

    @field_validator("origin", "destination", mode="before")
    @classmethod
    def _section_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, TimeWindowSection)) else {}

    @field_validator("backload", "third_party", mode="before")
    @classmethod
    def _object_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, BaseModel)) else None

    def to_document(self) -> dict[str, Any]:
        """Serialise back to the stored camelCase JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)
