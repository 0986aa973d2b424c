from datetime import datetime, timedelta

import pytest

from hidoc.schemas.interpretation import RawEntry, RawInterpretation
from hidoc.services.normalizer import (
    coerce_entry,
    has_absolute_date,
    normalize_interpretation,
    normalize_timestamp,
    to_ms,
)


def test_seconds_epoch_is_scaled(now, now_ms):
    seconds = now_ms // 1000 - 60
    assert normalize_timestamp(seconds, "weight 70 kg", now) == seconds * 1000


def test_missing_timestamp_defaults_to_now(now, now_ms):
    assert normalize_timestamp(None, "weight 70 kg", now) == now_ms


def test_future_timestamp_is_clamped(now, now_ms):
    assert normalize_timestamp(now_ms + 86_400_000, "weight 70 kg", now) == now_ms


def test_absolute_date_keeps_model_timestamp(now):
    ts = to_ms(datetime(2024, 5, 1, 9, 0))
    assert normalize_timestamp(ts, "on 2024-05-01 I weighed 70 kg yesterday", now) == ts


@pytest.mark.parametrize(
    "message,expected",
    [
        ("last night glucose 140", lambda n: n.replace(hour=22, minute=0) - timedelta(days=1)),
        ("fasting sugar this morning 92", lambda n: n.replace(hour=8, minute=0)),
        ("weight yesterday 70kg", lambda n: n - timedelta(days=1)),
        ("steps today 4000", lambda n: n),
        # first phrase wins: "yesterday" is checked before "evening"
        ("yesterday evening bp 120/80", lambda n: n - timedelta(days=1)),
        # a unit after the number means it is not a year
        ("2000 steps this morning", lambda n: n.replace(hour=8, minute=0)),
        # "1/2" is a dose fraction, not a date
        ("took 1/2 tablet of metformin yesterday", lambda n: n - timedelta(days=1)),
    ],
)
def test_relative_phrases(now, now_ms, message, expected):
    assert normalize_timestamp(now_ms, message, now) == to_ms(expected(now))


def test_anchor_later_than_now_is_clamped(now, now_ms):
    # 19:00 tonight has not happened yet at noon
    assert normalize_timestamp(now_ms, "tonight I will log 7000 steps", now) == now_ms


def test_stale_model_timestamp_is_discarded_for_relative_phrase(now):
    stale = to_ms(now - timedelta(days=10))
    assert normalize_timestamp(stale, "this morning hr 70", now) == to_ms(now.replace(hour=8, minute=0))


def test_timestamp_normalization_is_idempotent(now, now_ms):
    message = "last night bp 130/85"
    once = normalize_timestamp(now_ms, message, now)
    assert normalize_timestamp(once, message, now) == once


@pytest.mark.parametrize(
    "text,expected",
    [
        ("checked on 12/03 at the clinic", True),
        ("lab on 5/11/2024", True),
        ("bp 138/88", False),
        ("walked 2000 steps", False),
        ("back in 1998 i had surgery", True),
        ("pain 45/99", False),
        # fractions of a dose are not dates
        ("took 1/2 tablet of metformin", False),
        ("1/2 of a pill", False),
        ("on 1/2 i took 2 tablets", True),
    ],
)
def test_has_absolute_date(text, expected):
    assert has_absolute_date(text) is expected


def _raw(**entry):
    return RawInterpretation.model_validate({"parsed": True, "reply": "ok", "entry": entry})


def test_vital_without_type_becomes_note(now):
    result = normalize_interpretation("120 this arvo", _raw(type="vital", vital={"value": 120}), now)
    assert result.entry.type == "note"
    assert result.entry.note == "120 this arvo"


def test_param_without_object_becomes_note(now):
    result = normalize_interpretation("hdl 55", _raw(type="param"), now)
    assert result.entry.type == "note"


def test_blood_pressure_missing_diastolic_becomes_note(now):
    raw = _raw(type="vital", vital={"vitalType": "bloodPressure", "systolic": 130})
    assert normalize_interpretation("bp 130", raw, now).entry.type == "note"


def test_type_is_inferred_from_single_sub_object(now):
    raw = _raw(medication={"name": "Metformin", "dose": 500, "doseUnit": "mg"})
    result = normalize_interpretation("metformin 500 mg", raw, now)
    assert result.entry.type == "medication"
    assert result.entry.medication.name == "Metformin"


def test_blank_medication_name_becomes_note(now, now_ms):
    raw = RawEntry.model_validate({"type": "medication", "medication": {"name": ""}})
    entry = coerce_entry(raw, "took something", now_ms)
    assert entry.type == "note"
    assert entry.note == "took something"


def test_lab_result_without_payload_keeps_text(now_ms):
    entry = coerce_entry(RawEntry(type="labResult"), "cbc normal", now_ms)
    assert entry.type == "labResult"
    assert entry.labResult == {"text": "cbc normal"}


def test_unparsed_interpretation_drops_entry(now):
    raw = RawInterpretation(parsed=False, reply="Ask your doctor.")
    result = normalize_interpretation("should I worry?", raw, now)
    assert result.parsed is False
    assert result.entry is None
    assert result.reply == "Ask your doctor."


def test_normalizing_twice_gives_same_result(now):
    raw = _raw(type="vital", timestamp=to_ms(now) - 1000, vital={"vitalType": "steps", "value": 5000})
    once = normalize_interpretation("walked 5000 steps this morning", raw, now)
    twice = normalize_interpretation("walked 5000 steps this morning", once, now)
    assert twice == once
