import json
from types import SimpleNamespace

import pytest

from hidoc.models.health_data import HealthData, Medication
from hidoc.schemas.interpretation import (
    ActivityEntry,
    ActivitySession,
    LabResultEntry,
    MedicationCourse,
    MedicationEntry,
    ParamEntry,
    ParamReading,
    VitalEntry,
    VitalReading,
    note_entry,
)
from hidoc.services.entry_store import store_entry
from hidoc.services.persistence import map_entry, read_back
from hidoc.utils.exceptions import PersistenceContractViolation

TS = 1_750_000_000_000


def vital(**kwargs):
    return VitalEntry(timestamp=TS, vital=VitalReading(**kwargs))


def test_blood_pressure_round_trip():
    row = map_entry(vital(vitalType="bloodPressure", systolic=138, diastolic=88), "u1", row_id="r1")
    assert row.table == "health_data"
    assert row.id == "r1"
    assert row.type == "bloodPressure"
    assert row.value == "138/88"
    assert row.unit == "mmHg"
    assert read_back(row) == ((138.0, 88.0), "mmHg")


@pytest.mark.parametrize(
    "vital_type,unit",
    [("steps", "steps"), ("weight", "kg"), ("glucose", "mg/dL"), ("heartRate", "bpm"),
     ("temperature", "°C"), ("hba1c", "%")],
)
def test_default_units(vital_type, unit):
    row = map_entry(vital(vitalType=vital_type, value=7), "u1")
    assert row.unit == unit
    assert row.value == "7"


def test_model_unit_wins_over_default():
    row = map_entry(vital(vitalType="glucose", value=5.6, unit="mmol/L"), "u1")
    assert read_back(row) == (5.6, "mmol/L")


def test_param_row_uses_code_as_type():
    entry = ParamEntry(timestamp=TS, param=ParamReading(param_code="GLU_FAST", value=105, unit="mg/dL", notes="after breakfast"))
    row = map_entry(entry, "u1", "c1")
    assert row.as_dict() == {
        "table": "health_data",
        "id": row.id,
        "type": "GLU_FAST",
        "category": "HEALTH_PARAMS",
        "value": "105",
        "unit": "mg/dL",
        "notes": "after breakfast",
        "timestamp": TS,
        "user_id": "u1",
        "conversation_id": "c1",
    }


def test_note_row():
    row = map_entry(note_entry("felt dizzy", TS), "u1")
    assert (row.type, row.value, row.unit, row.notes) == ("note", None, None, "felt dizzy")


def test_lab_result_is_stored_as_json():
    entry = LabResultEntry(timestamp=TS, labResult={"ldl": 130, "unit": "mg/dL"})
    row = map_entry(entry, "u1")
    assert row.type == "labResult"
    assert json.loads(row.notes)["labResult"] == {"ldl": 130, "unit": "mg/dL"}


def test_medication_row():
    course = MedicationCourse(name="Metformin", dose=500, doseUnit="mg", frequencyPerDay=2, durationDays=30)
    row = map_entry(MedicationEntry(timestamp=TS, category="MEDICATION", medication=course), "u1")
    assert row.table == "medications"
    assert row.columns["dosage"] == "500 mg"
    assert row.columns["schedule"] == "2x/day"
    assert row.columns["duration_days"] == 30
    assert row.columns["is_forever"] == 0
    assert row.columns["start_date"] == TS
    assert read_back(row) == (500.0, "mg")


def test_activity_row():
    session = ActivitySession(name="Running", distance_km=5, duration_minutes=30, intensity="Moderate")
    row = map_entry(ActivityEntry(timestamp=TS, category="ACTIVITY", activity=session), "u1")
    assert row.table == "activities"
    assert row.columns["name"] == "Running"
    assert read_back(row) == (5.0, "km")


def test_blood_pressure_without_diastolic_raises():
    reading = VitalReading.model_construct(vitalType="bloodPressure", systolic=120)
    entry = VitalEntry.model_construct(timestamp=TS, vital=reading)
    with pytest.raises(PersistenceContractViolation, match="systolic and diastolic"):
        map_entry(entry, "u1")


def test_medication_without_name_raises():
    entry = MedicationEntry.model_construct(timestamp=TS, medication=MedicationCourse.model_construct(name="  "))
    with pytest.raises(PersistenceContractViolation) as exc:
        map_entry(entry, "u1")
    assert exc.value.entry_type == "medication"


def test_unknown_entry_type_raises():
    with pytest.raises(PersistenceContractViolation):
        map_entry(SimpleNamespace(type="symptom", timestamp=TS), "u1")


def test_store_entry_writes_rows(db):
    row = store_entry(db, vital(vitalType="bloodPressure", systolic=121, diastolic=79), "store-user")
    stored = db.get(HealthData, row.id)
    assert stored.value == "121/79"
    assert stored.conversation_id == "default-conversation"

    course = MedicationCourse(name="Aspirin", dose=75, doseUnit="mg")
    med_row = store_entry(db, MedicationEntry(timestamp=TS, medication=course), "store-user", "c9")
    med = db.get(Medication, med_row.id)
    assert med.dosage == "75 mg"
    assert med.schedule is None
    assert med.conversation_id == "c9"


def test_store_entry_writes_nothing_on_violation(db):
    before = db.query(HealthData).count()
    with pytest.raises(PersistenceContractViolation):
        store_entry(db, SimpleNamespace(type="vital", timestamp=TS, vital=None), "u1")
    assert db.query(HealthData).count() == before
