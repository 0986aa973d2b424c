# hidoc/schemas/interpretation.py
"""Interpretation contracts.

Two layers live here. The ``Raw*`` models mirror what the language model is
asked to emit and are deliberately lenient (optional sub-objects, optional
vital type) so that structurally incomplete output can still be accepted and
then downgraded by the normalizer. The domain models below them form a proper
sum type: each ``Entry`` case enforces its own required fields, and only the
domain ``Interpretation`` ever leaves the pipeline.
"""
from __future__ import annotations

import math
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PARAM_CODE_PATTERN = r"^[A-Z0-9_]{2,}$"

Category = Literal["HEALTH_PARAMS", "ACTIVITY", "FOOD", "MEDICATION", "SYMPTOMS", "OTHER"]
VitalType = Literal["glucose", "weight", "bloodPressure", "temperature", "heartRate", "steps", "hba1c"]
EntryType = Literal["vital", "medication", "labResult", "note", "param", "activity"]
Intensity = Literal["Low", "Moderate", "High"]

DEFAULT_CATEGORY = "HEALTH_PARAMS"
NOTE_MAX_CHARS = 500


# ---------------- Wire contract (model output) ----------------
class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawVital(_Lenient):
    vitalType: Optional[VitalType] = None
    value: Optional[float] = None
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    unit: Optional[str] = None


class RawParam(_Lenient):
    param_code: str = Field(..., pattern=PARAM_CODE_PATTERN)
    value: Optional[float] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


class RawMedication(_Lenient):
    name: str
    dose: Optional[float] = None
    doseUnit: Optional[str] = None
    frequencyPerDay: Optional[float] = None
    durationDays: Optional[float] = None


class RawActivity(_Lenient):
    name: str
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None
    intensity: Optional[Intensity] = None
    calories_burned: Optional[float] = None
    notes: Optional[str] = None


class RawEntry(_Lenient):
    type: Optional[EntryType] = None
    category: Optional[Category] = None
    timestamp: Optional[int] = None
    vital: Optional[RawVital] = None
    param: Optional[RawParam] = None
    medication: Optional[RawMedication] = None
    activity: Optional[RawActivity] = None
    labResult: Optional[Dict[str, Any]] = None
    note: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        # Unresolved placeholders and date strings are treated as "not given";
        # the normalizer fills in the current time.
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return int(v) if math.isfinite(v) and v > 0 else None
        if isinstance(v, str):
            s = v.strip()
            return int(s) if s.isdigit() else None
        return None


class RawInterpretation(_Lenient):
    parsed: bool
    reply: Optional[str] = None
    entry: Optional[RawEntry] = None
    reasoning: Optional[str] = None


# ---------------- Domain contract (pipeline output) ----------------
class VitalReading(BaseModel):
    vitalType: VitalType
    value: Optional[float] = None
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    unit: Optional[str] = None

    @model_validator(mode="after")
    def _require_measurement(self) -> "VitalReading":
        if self.vitalType == "bloodPressure":
            if self.systolic is None or self.diastolic is None:
                raise ValueError("bloodPressure requires systolic and diastolic")
        elif self.value is None:
            raise ValueError(f"{self.vitalType} requires value")
        return self


class ParamReading(BaseModel):
    param_code: str = Field(..., pattern=PARAM_CODE_PATTERN)
    value: Optional[float] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


class MedicationCourse(BaseModel):
    name: str = Field(..., min_length=1)
    dose: Optional[float] = None
    doseUnit: Optional[str] = None
    frequencyPerDay: Optional[float] = None
    durationDays: Optional[float] = None


class ActivitySession(BaseModel):
    name: str = Field(..., min_length=1)
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None
    intensity: Optional[Intensity] = None
    calories_burned: Optional[float] = None
    notes: Optional[str] = None


class _EntryBase(BaseModel):
    category: Category = DEFAULT_CATEGORY
    timestamp: int = Field(..., gt=0, description="Epoch milliseconds.")


class VitalEntry(_EntryBase):
    type: Literal["vital"] = "vital"
    vital: VitalReading


class ParamEntry(_EntryBase):
    type: Literal["param"] = "param"
    param: ParamReading


class MedicationEntry(_EntryBase):
    type: Literal["medication"] = "medication"
    medication: MedicationCourse


class LabResultEntry(_EntryBase):
    """Lab result kept as an opaque document until its schema is settled."""

    type: Literal["labResult"] = "labResult"
    labResult: Dict[str, Any] = Field(default_factory=dict)


class ActivityEntry(_EntryBase):
    type: Literal["activity"] = "activity"
    activity: ActivitySession


class NoteEntry(_EntryBase):
    type: Literal["note"] = "note"
    note: str


Entry = Annotated[
    Union[VitalEntry, ParamEntry, MedicationEntry, LabResultEntry, ActivityEntry, NoteEntry],
    Field(discriminator="type"),
]


class Interpretation(BaseModel):
    parsed: bool
    reply: Optional[str] = None
    entry: Optional[Entry] = None
    reasoning: Optional[str] = None

    @model_validator(mode="after")
    def _parsed_needs_entry(self) -> "Interpretation":
        if self.parsed and self.entry is None:
            raise ValueError("parsed interpretation requires an entry")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def note_entry(text: str, timestamp: int, category: str = DEFAULT_CATEGORY) -> NoteEntry:
    return NoteEntry(note=(text or "")[:NOTE_MAX_CHARS], timestamp=timestamp, category=category)


__all__ = [
    "PARAM_CODE_PATTERN",
    "NOTE_MAX_CHARS",
    "RawInterpretation",
    "RawEntry",
    "Interpretation",
    "Entry",
    "VitalEntry",
    "ParamEntry",
    "MedicationEntry",
    "LabResultEntry",
    "ActivityEntry",
    "NoteEntry",
    "VitalReading",
    "ParamReading",
    "MedicationCourse",
    "ActivitySession",
    "note_entry",
]
