"""ICU ward domain: mutation rules, derived fields and aggregate metrics.

Two collections exist: ``patients`` and ``equipment`` (each device is
attached to a patient through its ``patient`` field). Numeric ranges are
the clamped physiological/operational bounds of each field.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from wardsync.state.rules import CollectionRules, NumericRule, ScheduleRule, StatusRule

PATIENTS = "patients"
EQUIPMENT = "equipment"

PATIENT_STATUSES: tuple[str, ...] = ("stable", "critical", "recovering", "observation")
PATIENT_STATUS_WEIGHTS: tuple[float, ...] = (0.6, 0.1, 0.2, 0.1)

EQUIPMENT_STATUSES: tuple[str, ...] = ("active", "maintenance")
EQUIPMENT_STATUS_WEIGHTS: tuple[float, ...] = (0.8, 0.2)


def mean_arterial_pressure(systolic: float, diastolic: float) -> int:
    return round((systolic + 2 * diastolic) / 3)


def derive_patient(patient: dict[str, Any]) -> None:
    """Recompute fields derived from others (BMI, MAP, GCS total)."""
    height = patient.get("height")
    weight = patient.get("weight")
    if isinstance(height, int | float) and isinstance(weight, int | float) and height > 0:
        meters = height / 100
        patient["bmi"] = round(weight / (meters * meters), 1)

    vitals = patient.get("vitals")
    if not isinstance(vitals, dict):
        return
    pressure = vitals.get("bloodPressure")
    if isinstance(pressure, dict) and "systolic" in pressure and "diastolic" in pressure:
        pressure["meanArterialPressure"] = mean_arterial_pressure(pressure["systolic"], pressure["diastolic"])
    gcs = vitals.get("glasgowComaScale")
    if isinstance(gcs, dict):
        gcs["total"] = sum(int(gcs.get(part, 0)) for part in ("eye", "verbal", "motor"))


PATIENT_RULES = CollectionRules(
    numeric=(
        NumericRule("vitals.heartRate", 60, 100, 5, probability=0.7),
        NumericRule("vitals.spo2", 95, 100, 2, probability=0.5),
        NumericRule("vitals.temperature", 36.0, 37.5, 0.3, probability=0.3),
        NumericRule("vitals.respiratoryRate", 12, 20, 2, probability=0.4),
        NumericRule("vitals.bloodPressure.systolic", 90, 140, 5, probability=0.6, group="bp"),
        NumericRule("vitals.bloodPressure.diastolic", 60, 90, 3, probability=0.6, group="bp"),
    ),
    status=(StatusRule("status", PATIENT_STATUSES, PATIENT_STATUS_WEIGHTS, probability=0.05),),
    schedules=(
        ScheduleRule(
            "medications",
            probability=0.3,
            item_probability=0.5,
            last_field="lastGiven",
            next_field="nextDue",
            next_after=(timedelta(hours=4), timedelta(hours=10)),
        ),
    ),
    derive=derive_patient,
    volatile={
        "status": None,
        "vitals": None,
        "medications": ("id", "name", "dosage", "lastGiven", "nextDue"),
    },
)

EQUIPMENT_RULES = CollectionRules(
    status=(
        StatusRule(
            "status",
            EQUIPMENT_STATUSES,
            EQUIPMENT_STATUS_WEIGHTS,
            probability=0.1,
            companions=(NumericRule("batteryLevel", 0, 100, 10, probability=1.0),),
        ),
    ),
    volatile={"type": None, "status": None, "patient": None, "batteryLevel": None},
)

WARD_RULES: dict[str, CollectionRules] = {
    PATIENTS: PATIENT_RULES,
    EQUIPMENT: EQUIPMENT_RULES,
}


def ward_metrics(collections: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> dict[str, int]:
    """Aggregate counts shipped alongside every snapshot."""
    patients = collections.get(PATIENTS, {})
    equipment = collections.get(EQUIPMENT, {})
    return {
        "totalPatients": len(patients),
        "criticalPatients": sum(1 for p in patients.values() if p.get("status") == "critical"),
        "activeEquipment": sum(1 for e in equipment.values() if e.get("status") == "active"),
    }
