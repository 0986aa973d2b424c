"""Regex salvage for common readings when every model attempt has failed.

Best effort only: it recognizes a handful of phrasings and the first pattern
that matches wins. Order matters; HbA1c and step counts are checked before the
looser blood pressure and glucose patterns.
"""
from __future__ import annotations

import re
from typing import Callable, List, Optional

from hidoc.schemas.interpretation import (
    Interpretation,
    ParamEntry,
    ParamReading,
    VitalEntry,
    VitalReading,
)

SALVAGE_TAG = "heuristic-salvage"

HBA1C_PATTERNS = [
    re.compile(r"\b(?:hba1c|a1c)\b[:\s]*(?:is|was|of|=)?\s*(\d{1,2}(?:\.\d)?)"),
    re.compile(r"\b(\d{1,2}(?:\.\d)?)\s*%?\s*(?:hba1c|a1c)\b"),
]
STEPS_PATTERNS = [
    re.compile(r"\b(\d{1,3}(?:,\d{3})+|\d{2,6})\s*steps?\b"),
    re.compile(r"\bwalk(?:ed|ing)?\s+(\d{1,3}(?:,\d{3})+|\d{2,6})\b"),
]
BP_PATTERN = re.compile(r"\b(\d{2,3})\s*(?:/|\s)\s*(\d{2,3})\b")
GLUCOSE_WORDS = {"glucose", "sugar", "bg", "glu", "mg/dl"}
GLUCOSE_WINDOW = 4
GLUCOSE_RANGE = (50, 500)

_WORD_OR_NUMBER = re.compile(r"[a-z][a-z0-9/]*|\d+(?:\.\d+)?")


def _param(code: str, value: float, unit: str, now_ms: int, reply: str, notes: Optional[str] = None) -> Interpretation:
    entry = ParamEntry(
        category="HEALTH_PARAMS",
        timestamp=now_ms,
        param=ParamReading(param_code=code, value=value, unit=unit, notes=notes),
    )
    return Interpretation(parsed=True, reply=reply, entry=entry, reasoning=SALVAGE_TAG)


def _hba1c(lower: str, now_ms: int) -> Optional[Interpretation]:
    for pattern in HBA1C_PATTERNS:
        m = pattern.search(lower)
        if m:
            val = float(m.group(1))
            return _param("HBA1C", val, "%", now_ms, f"Recorded HBA1C {val:g}%")
    return None


def _steps(lower: str, now_ms: int) -> Optional[Interpretation]:
    for pattern in STEPS_PATTERNS:
        m = pattern.search(lower)
        if m:
            val = int(m.group(1).replace(",", ""))
            entry = VitalEntry(
                category="ACTIVITY",
                timestamp=now_ms,
                vital=VitalReading(vitalType="steps", value=val, unit="steps"),
            )
            return Interpretation(parsed=True, reply=f"Recorded {val} steps", entry=entry, reasoning=SALVAGE_TAG)
    return None


def _plausible_bp(sys_v: int, dia_v: int) -> bool:
    return 70 <= sys_v <= 250 and 40 <= dia_v <= 150 and sys_v > dia_v


def _blood_pressure(lower: str, now_ms: int) -> Optional[Interpretation]:
    for m in BP_PATTERN.finditer(lower):
        sys_v, dia_v = int(m.group(1)), int(m.group(2))
        if _plausible_bp(sys_v, dia_v):
            return _param(
                "BP_SYS", sys_v, "mmHg", now_ms,
                f"Recorded blood pressure {sys_v}/{dia_v}",
                notes=f"DIA={dia_v}",
            )
    return None


def _glucose(lower: str, now_ms: int) -> Optional[Interpretation]:
    tokens = _WORD_OR_NUMBER.findall(lower)
    vocab_positions = [i for i, t in enumerate(tokens) if t in GLUCOSE_WORDS]
    if not vocab_positions:
        return None
    lo, hi = GLUCOSE_RANGE
    for i, tok in enumerate(tokens):
        if not (tok.isdigit() and 2 <= len(tok) <= 3):
            continue
        if min(abs(i - j) for j in vocab_positions) > GLUCOSE_WINDOW:
            continue
        val = int(tok)
        if lo <= val <= hi:
            return _param("GLU_FAST", val, "mg/dL", now_ms, f"Recorded GLU_FAST {val} mg/dL")
    return None


RULES: List[Callable[[str, int], Optional[Interpretation]]] = [_hba1c, _steps, _blood_pressure, _glucose]


def salvage(message: str, now_ms: int) -> Optional[Interpretation]:
    lower = (message or "").strip().lower()
    if not lower:
        return None
    for rule in RULES:
        result = rule(lower, now_ms)
        if result is not None:
            return result
    return None
