"""Map validated entries onto storage rows.

``map_entry`` is pure: it builds the row that would be written without touching
the database. Each entry type has its own required fields; a missing one raises
``PersistenceContractViolation`` instead of being downgraded, because by the
time an entry reaches this point the pipeline has already promised it is
storable.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from hidoc.schemas.interpretation import DEFAULT_CATEGORY
from hidoc.utils.exceptions import PersistenceContractViolation

HEALTH_DATA = "health_data"
MEDICATIONS = "medications"
ACTIVITIES = "activities"

DEFAULT_UNITS = {
    "steps": "steps",
    "weight": "kg",
    "glucose": "mg/dL",
    "heartRate": "bpm",
    "temperature": "°C",
    "hba1c": "%",
    "bloodPressure": "mmHg",
}


@dataclass
class StorageRow:
    table: str
    id: str
    type: str
    category: str
    timestamp: int
    value: Optional[str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None
    columns: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        out = {
            "table": self.table,
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "value": self.value,
            "unit": self.unit,
            "notes": self.notes,
            "timestamp": self.timestamp,
        }
        for key, val in self.columns.items():
            out.setdefault(key, val)
        return out


def format_number(value: Any) -> str:
    num = float(value)
    return str(int(num)) if num.is_integer() else str(num)


def _health_row(row_id, user_id, conversation_id, kind, category, ts, value=None, unit=None, notes=None) -> StorageRow:
    columns = {
        "id": row_id,
        "user_id": user_id,
        "conversation_id": conversation_id,
        "type": kind,
        "category": category,
        "value": value,
        "unit": unit,
        "timestamp": ts,
        "notes": notes,
    }
    return StorageRow(HEALTH_DATA, row_id, kind, category, ts, value, unit, notes, columns)


def _map_vital(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    vital = getattr(entry, "vital", None)
    vital_type = getattr(vital, "vitalType", None)
    if vital is None or not vital_type:
        raise PersistenceContractViolation("vital.vitalType missing", entry_type="vital")
    unit = vital.unit or DEFAULT_UNITS.get(vital_type)
    if vital_type == "bloodPressure":
        if vital.systolic is None or vital.diastolic is None:
            raise PersistenceContractViolation("bloodPressure requires systolic and diastolic", entry_type="vital")
        value = f"{format_number(vital.systolic)}/{format_number(vital.diastolic)}"
    else:
        if vital.value is None:
            raise PersistenceContractViolation(f"{vital_type} requires value", entry_type="vital")
        value = format_number(vital.value)
    return _health_row(row_id, user_id, conversation_id, vital_type, category, ts, value, unit)


def _map_param(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    param = getattr(entry, "param", None)
    if param is None or not param.param_code:
        raise PersistenceContractViolation("param.param_code missing", entry_type="param")
    value = format_number(param.value) if param.value is not None else None
    return _health_row(
        row_id, user_id, conversation_id, param.param_code, category, ts,
        value, param.unit or None, param.notes or None,
    )


def _map_note(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    return _health_row(row_id, user_id, conversation_id, "note", category, ts, notes=entry.note or "")


def _map_lab_result(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    # Lab results have no structured columns yet; the whole entry is kept as JSON.
    serialized = json.dumps(entry.model_dump(exclude_none=True), ensure_ascii=False)
    return _health_row(row_id, user_id, conversation_id, "labResult", category, ts, notes=serialized)


def _map_medication(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    med = getattr(entry, "medication", None)
    name = (getattr(med, "name", None) or "").strip()
    if med is None or not name:
        raise PersistenceContractViolation("medication.name missing", entry_type="medication")
    parts = []
    if med.dose is not None:
        parts.append(format_number(med.dose))
    if med.doseUnit:
        parts.append(med.doseUnit)
    dosage = " ".join(parts) or None
    schedule = f"{format_number(med.frequencyPerDay)}x/day" if med.frequencyPerDay else None
    duration = int(med.durationDays) if med.durationDays is not None else None
    columns = {
        "id": row_id,
        "user_id": user_id,
        "conversation_id": conversation_id,
        "name": name,
        "dosage": dosage,
        "schedule": schedule,
        "duration_days": duration,
        "is_forever": 0,
        "start_date": ts,
    }
    return StorageRow(MEDICATIONS, row_id, "medication", category, ts, dosage, med.doseUnit, None, columns)


def _map_activity(entry, row_id, user_id, conversation_id, category, ts) -> StorageRow:
    act = getattr(entry, "activity", None)
    name = (getattr(act, "name", None) or "").strip()
    if act is None or not name:
        raise PersistenceContractViolation("activity.name missing", entry_type="activity")
    columns = {
        "id": row_id,
        "user_id": user_id,
        "conversation_id": conversation_id,
        "name": name,
        "duration_minutes": act.duration_minutes,
        "distance_km": act.distance_km,
        "intensity": act.intensity,
        "calories_burned": act.calories_burned,
        "timestamp": ts,
        "notes": act.notes,
    }
    if act.distance_km is not None:
        value, unit = format_number(act.distance_km), "km"
    elif act.duration_minutes is not None:
        value, unit = format_number(act.duration_minutes), "min"
    else:
        value, unit = None, None
    return StorageRow(ACTIVITIES, row_id, "activity", category, ts, value, unit, act.notes, columns)


_MAPPERS = {
    "vital": _map_vital,
    "param": _map_param,
    "note": _map_note,
    "labResult": _map_lab_result,
    "medication": _map_medication,
    "activity": _map_activity,
}


def map_entry(
    entry: Any,
    user_id: str,
    conversation_id: Optional[str] = None,
    row_id: Optional[str] = None,
) -> StorageRow:
    kind = getattr(entry, "type", None)
    mapper = _MAPPERS.get(kind)
    if mapper is None:
        raise PersistenceContractViolation(f"Unsupported entry type: {kind}", entry_type=kind)
    ts = getattr(entry, "timestamp", None)
    if not isinstance(ts, int) or ts <= 0:
        raise PersistenceContractViolation("entry.timestamp missing", entry_type=kind)
    category = getattr(entry, "category", None) or DEFAULT_CATEGORY
    return mapper(entry, row_id or str(uuid.uuid4()), user_id, conversation_id, category, ts)


def _parse_number(text: str) -> Union[float, str]:
    try:
        return float(text)
    except ValueError:
        return text


def read_back(row: Union[StorageRow, Dict[str, Any]]) -> Tuple[Any, Optional[str]]:
    """Recover the (value, unit) pair from a stored row.

    Blood pressure comes back as a ``(systolic, diastolic)`` tuple; other
    numeric values come back as floats.
    """
    data = row.as_dict() if isinstance(row, StorageRow) else dict(row)
    value = data.get("value")
    unit = data.get("unit")
    if data.get("table") == MEDICATIONS:
        dosage = data.get("dosage") or value
        if not dosage:
            return None, None
        head, _, tail = str(dosage).partition(" ")
        parsed = _parse_number(head)
        if isinstance(parsed, float):
            return parsed, tail or None
        return dosage, None
    if value is None:
        return None, unit
    text = str(value)
    if data.get("type") == "bloodPressure" and "/" in text:
        sys_text, _, dia_text = text.partition("/")
        return (float(sys_text), float(dia_text)), unit
    return _parse_number(text), unit
