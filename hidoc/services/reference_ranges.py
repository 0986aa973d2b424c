"""Compare recorded values against param target ranges."""
from __future__ import annotations

from typing import Any, Dict, Optional

_UNIT_ALIASES = {
    "mg/dl": "mg/dl",
    "mgdl": "mg/dl",
    "mmol/l": "mmol/l",
    "mmhg": "mmhg",
    "bpm": "bpm",
    "beats/min": "bpm",
    "%": "%",
    "percent": "%",
    "x10^3/ul": "x10^9/l",
    "10^3/ul": "x10^9/l",
    "x10^9/l": "x10^9/l",
    "10^9/l": "x10^9/l",
    "°c": "c",
    "c": "c",
    "celsius": "c",
    "kg/m²": "kg/m2",
    "kg/m2": "kg/m2",
}


def normalize_unit(unit: Optional[str]) -> str:
    cleaned = (unit or "").strip().lower().replace(" ", "")
    return _UNIT_ALIASES.get(cleaned, cleaned)


def compare_to_range(value: float, reference: Dict[str, Any]) -> Optional[str]:
    kind = reference.get("kind") if reference else None
    if not kind:
        return None
    if kind == "lte":
        return "high" if value > reference["v"] else "normal"
    if kind == "gte":
        return "low" if value < reference["v"] else "normal"
    if kind == "between":
        lo, hi = reference["lo"], reference["hi"]
        if value < lo:
            return "low"
        if value > hi:
            return "high"
        return "normal"
    return None


def target_reference(target_min: Optional[float], target_max: Optional[float]) -> Optional[Dict[str, Any]]:
    # 0..0 marks qualitative markers (positive/negative) that have no numeric range.
    if target_min is None and target_max is None:
        return None
    if not target_min and not target_max:
        return None
    if target_min is None:
        return {"kind": "lte", "v": float(target_max)}
    if target_max is None:
        return {"kind": "gte", "v": float(target_min)}
    return {"kind": "between", "lo": float(target_min), "hi": float(target_max)}


def assess(
    value: Optional[float],
    target_min: Optional[float],
    target_max: Optional[float],
    unit: Optional[str] = None,
    preferred_unit: Optional[str] = None,
) -> Optional[str]:
    """Return low / normal / high, or None when the value can't be compared."""
    if value is None:
        return None
    if unit and preferred_unit and normalize_unit(unit) != normalize_unit(preferred_unit):
        return None
    reference = target_reference(target_min, target_max)
    if reference is None:
        return None
    return compare_to_range(float(value), reference)


def assess_entry(entry: Any, target: Optional[Dict[str, Any]]) -> Optional[str]:
    """Range status for a param entry against its corpus row."""
    if target is None or getattr(entry, "type", None) != "param":
        return None
    param = entry.param
    return assess(
        param.value,
        target.get("target_min"),
        target.get("target_max"),
        unit=param.unit,
        preferred_unit=target.get("preferred_unit"),
    )
