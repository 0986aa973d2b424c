"""Timestamp disambiguation and structural downgrade of interpreted entries.

Both passes are idempotent: running the normalizer on its own output with the
same clock gives the same result.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from pydantic import ValidationError

from hidoc.schemas.interpretation import (
    DEFAULT_CATEGORY,
    ActivityEntry,
    ActivitySession,
    Entry,
    Interpretation,
    LabResultEntry,
    MedicationCourse,
    MedicationEntry,
    NOTE_MAX_CHARS,
    ParamEntry,
    ParamReading,
    RawEntry,
    RawInterpretation,
    VitalEntry,
    VitalReading,
    note_entry,
)

logger = logging.getLogger("hidoc.ai")

SECONDS_EPOCH_THRESHOLD = 1_000_000_000_000
MAX_RELATIVE_DRIFT_MS = 3 * 24 * 60 * 60 * 1000
FUTURE_TOLERANCE_MS = 5 * 1000


@dataclass(frozen=True)
class RelativePhrase:
    phrase: str
    day_offset: int
    anchor: Optional[Tuple[int, int]]  # (hour, minute); None keeps the current time


# Checked in this order; the first phrase found wins.
RELATIVE_PHRASES = (
    RelativePhrase("yesterday", -1, None),
    RelativePhrase("last night", -1, (22, 0)),
    RelativePhrase("today", 0, None),
    RelativePhrase("tonight", 0, (19, 0)),
    RelativePhrase("this morning", 0, (8, 0)),
    RelativePhrase("this evening", 0, (19, 0)),
    RelativePhrase("morning", 0, (8, 0)),
    RelativePhrase("evening", 0, (19, 0)),
)
_PHRASE_RES = [(p, re.compile(r"\b" + re.escape(p.phrase) + r"\b")) for p in RELATIVE_PHRASES]

_YEAR_RE = re.compile(
    r"\b(?:19|20)\d{2}\b(?!\s*(?:steps?|kcal|cal|calories|ml|mg|g|kg|km|m|units?|iu|mins?|minutes?)\b)"
)
# A bare D/M followed by a dose or portion word is a fraction ("1/2 tablet").
_DAY_MONTH_RE = re.compile(
    r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4})\b|\b(?!\s*(?:of\b|tabs?|tablets?|pills?|caps?|capsules?|"
    r"doses?|cups?|glass(?:es)?|spoons?|tsp|tbsp|mg|ml|units?|iu)\b))"
)


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def has_absolute_date(lower: str) -> bool:
    if _YEAR_RE.search(lower):
        return True
    for m in _DAY_MONTH_RE.finditer(lower):
        day, month = int(m.group(1)), int(m.group(2))
        if 1 <= day <= 31 and 1 <= month <= 12:
            return True
    return False


def detect_relative_phrase(lower: str) -> Optional[RelativePhrase]:
    for phrase, pattern in _PHRASE_RES:
        if pattern.search(lower):
            return phrase
    return None


def anchored_timestamp(phrase: RelativePhrase, now: datetime) -> int:
    target = now + timedelta(days=phrase.day_offset)
    if phrase.anchor is not None:
        hour, minute = phrase.anchor
        target = target.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return min(to_ms(target), to_ms(now))


def normalize_timestamp(ts: Optional[int], message: str, now: datetime) -> int:
    """Resolve the entry timestamp (epoch ms) against the message wording."""
    now_ms = to_ms(now)
    if not ts or ts <= 0:
        ts = now_ms
    if ts < SECONDS_EPOCH_THRESHOLD:
        ts = ts * 1000
    lower = (message or "").lower()
    if has_absolute_date(lower):
        return int(ts)
    phrase = detect_relative_phrase(lower)
    if phrase is not None:
        if abs(ts - now_ms) > MAX_RELATIVE_DRIFT_MS:
            logger.debug({"function": "normalize_timestamp", "discarded": ts, "phrase": phrase.phrase})
            ts = now_ms
        ts = anchored_timestamp(phrase, now)
    if ts > now_ms + FUTURE_TOLERANCE_MS:
        ts = now_ms
    return int(ts)


def _infer_type(raw: RawEntry) -> Optional[str]:
    if raw.type:
        return raw.type
    present = [k for k in ("vital", "param", "medication", "activity", "labResult") if getattr(raw, k) is not None]
    if len(present) == 1:
        return present[0]
    if raw.note:
        return "note"
    return None


def _downgrade(message: str, ts: int, category: str, reason: str) -> Entry:
    logger.warning({"function": "normalize", "downgrade": reason})
    return note_entry(message, ts, category)


def coerce_entry(raw: RawEntry, message: str, ts: int) -> Entry:
    """Turn a lenient model entry into one case of the Entry sum type.

    Anything that cannot satisfy its case becomes a note holding the original
    message; no exception escapes.
    """
    category = raw.category or DEFAULT_CATEGORY
    kind = _infer_type(raw)
    try:
        if kind == "vital":
            if raw.vital is None or raw.vital.vitalType is None:
                return _downgrade(message, ts, category, "vital missing vitalType")
            vital = VitalReading(**raw.vital.model_dump())
            return VitalEntry(category=category, timestamp=ts, vital=vital)
        if kind == "param":
            if raw.param is None or not raw.param.param_code:
                return _downgrade(message, ts, category, "param missing param_code")
            return ParamEntry(category=category, timestamp=ts, param=ParamReading(**raw.param.model_dump()))
        if kind == "medication":
            if raw.medication is None:
                return _downgrade(message, ts, category, "medication missing")
            course = MedicationCourse(**raw.medication.model_dump())
            return MedicationEntry(category=category, timestamp=ts, medication=course)
        if kind == "activity":
            if raw.activity is None:
                return _downgrade(message, ts, category, "activity missing")
            session = ActivitySession(**raw.activity.model_dump())
            return ActivityEntry(category=category, timestamp=ts, activity=session)
        if kind == "labResult":
            data = raw.labResult or {"text": (message or "")[:NOTE_MAX_CHARS]}
            return LabResultEntry(category=category, timestamp=ts, labResult=data)
        if kind == "note":
            return note_entry(raw.note or message, ts, category)
    except ValidationError as e:
        return _downgrade(message, ts, category, f"{kind} invalid: {e.error_count()} error(s)")
    return _downgrade(message, ts, category, "entry type unknown")


def normalize_interpretation(
    message: str,
    interpretation: Union[RawInterpretation, Interpretation],
    now: datetime,
) -> Interpretation:
    if isinstance(interpretation, Interpretation):
        interpretation = RawInterpretation.model_validate(interpretation.model_dump())
    if not interpretation.parsed:
        return Interpretation(parsed=False, reply=interpretation.reply, reasoning=interpretation.reasoning)

    raw = interpretation.entry
    ts = normalize_timestamp(raw.timestamp if raw is not None else None, message, now)
    if raw is None:
        entry = _downgrade(message, ts, DEFAULT_CATEGORY, "parsed without entry")
    else:
        entry = coerce_entry(raw, message, ts)
    return Interpretation(
        parsed=True,
        reply=interpretation.reply,
        entry=entry,
        reasoning=interpretation.reasoning,
    )
