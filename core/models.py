"""
Pydantic models shared across the radar intake core.

Wire payloads use camelCase (``scheduleDescription``, ``isRecommended``);
Python attributes are snake_case. Every interpretation field is optional so
the same models validate both partial and final stream snapshots.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Cadence(str, Enum):
    """How often a radar is polled for updates."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


#: Human-readable schedule shown when the interpretation has none of its own.
CADENCE_LABELS: dict[str, str] = {
    Cadence.HOURLY.value: "Every hour",
    Cadence.DAILY.value: "Every day",
    Cadence.WEEKLY.value: "Every week on Monday at 10:00am",
    Cadence.MONTHLY.value: "Every month on the 1st",
}


def cadence_label(cadence: str) -> str:
    """Return the display label for *cadence*, or the raw value if unknown."""
    return CADENCE_LABELS.get(cadence, cadence)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Interpretation ─────────────────────────────────────────────────────────


class WhatSection(_WireModel):
    """What the radar tracks."""

    topic: Optional[str] = None
    description: Optional[str] = None
    is_valid: Optional[bool] = None
    confidence: Optional[float] = None


class CadenceOption(_WireModel):
    """One of the contextual notification choices offered by the model."""

    label: str = ""
    value: str = ""
    is_recommended: bool = False


class WhenSection(_WireModel):
    """When the user should be notified."""

    frequency: Optional[str] = None
    schedule_description: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("scheduleDescription", "schedule_description", "schedule"),
    )
    notify_condition: Optional[str] = None
    options: list[CadenceOption] = Field(default_factory=list)


class WhySection(_WireModel):
    """Why the topic is worth tracking."""

    intent: Optional[str] = None
    insights: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("insights", "suggestedInsights", "suggested_insights"),
    )


class Interpretation(_WireModel):
    """Structured reading of the user's free-text input.

    Partial snapshots leave sections or fields unset; a final interpretation
    has every field listed in ``REQUIRED_FIELDS`` populated.
    """

    what: WhatSection = Field(default_factory=WhatSection)
    when: WhenSection = Field(default_factory=WhenSection)
    why: WhySection = Field(default_factory=WhySection)

    #: Dotted paths that must be non-empty for a final interpretation.
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "what.topic",
        "what.description",
        "when.frequency",
        "why.intent",
    )

    def missing_fields(self) -> list[str]:
        """Return the required fields that are still empty."""
        missing: list[str] = []
        for path in self.REQUIRED_FIELDS:
            section, name = path.split(".")
            if not getattr(getattr(self, section), name):
                missing.append(path)
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def recommended_cadence(self) -> str:
        """Pick the default cadence: recommended option, first option, frequency."""
        options = [o for o in self.when.options if o.value]
        for option in options:
            if option.is_recommended:
                return option.value
        if options:
            return options[0].value
        return self.when.frequency or ""

    def merge(self, update: Interpretation) -> Interpretation:
        """Field-wise union of ``self`` and *update*.

        Values from *update* win when they are non-empty; empty or missing
        values never overwrite populated ones. Lists merge element by element
        so a shorter list in *update* cannot drop trailing items.
        """
        merged = _merge_values(
            self.model_dump(exclude_none=True),
            update.model_dump(exclude_none=True),
        )
        return Interpretation.model_validate(merged)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _merge_values(old: Any, new: Any) -> Any:
    if _is_empty(new):
        return old
    if isinstance(old, dict) and isinstance(new, dict):
        merged = dict(old)
        for key, value in new.items():
            merged[key] = _merge_values(old.get(key), value)
        return merged
    if isinstance(old, list) and isinstance(new, list):
        merged_list = [
            _merge_values(old[i], new[i]) if i < len(new) else old[i]
            for i in range(len(old))
        ]
        merged_list.extend(new[len(old):])
        return merged_list
    return new


# ── Requests and drafts ────────────────────────────────────────────────────


class InterpretationRequest(BaseModel):
    """Immutable snapshot of the text sent for interpretation."""

    model_config = ConfigDict(frozen=True)

    text: str
    request_id: str


class RadarDraft(BaseModel):
    """Finalized review fields handed to the creation adapter."""

    topic: str
    description: Optional[str] = None
    cadence: str


class CreatedRadar(BaseModel):
    """A radar persisted by the storage service."""

    id: int
    topic: str
    description: Optional[str] = None
    cadence: str
    created_at: datetime
