"""Initial ward content.

The store treats a generator as opaque: anything producing
``collection -> entity id -> value tree`` satisfies :class:`EntityGenerator`.
:class:`WardGenerator` produces a deliberately heavy ICU ward (labs, notes,
orders, ...) so that full snapshots are substantially larger than the
volatile fields that actually change.
"""

from __future__ import annotations

import random
import string
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from wardsync.models._base import utc_timestamp
from wardsync.state.ward import (
    EQUIPMENT,
    PATIENT_STATUS_WEIGHTS,
    PATIENT_STATUSES,
    PATIENTS,
    derive_patient,
)

Collections = dict[str, dict[str, dict[str, Any]]]

EQUIPMENT_TYPES = ("ventilator", "monitor", "pump", "dialysis", "defibrillator")
BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
BLOOD_TYPE_WEIGHTS = (0.28, 0.06, 0.20, 0.05, 0.05, 0.01, 0.32, 0.03)

DRUG_NAMES = (
    "Morphine", "Midazolam", "Propofol", "Fentanyl", "Norepinephrine", "Dopamine",
    "Furosemide", "Heparin", "Insulin", "Vancomycin", "Piperacillin", "Metoprolol",
    "Lisinopril", "Simvastatin", "Omeprazole", "Acetaminophen", "Ibuprofen", "Aspirin",
    "Warfarin", "Clopidogrel", "Atorvastatin", "Amlodipine", "Losartan", "Hydrochlorothiazide",
)  # fmt: skip
INDICATIONS = (
    "Pain management", "Infection control", "Blood pressure control",
    "Cardiac support", "Sedation", "Fluid management",
)  # fmt: skip
SIDE_EFFECTS = ("Drowsiness", "Nausea", "Dizziness", "Hypotension", "Respiratory depression", "Allergic reaction")
CONTRAINDICATIONS = (
    "Allergy to drug", "Renal impairment", "Hepatic impairment",
    "Pregnancy", "Elderly patients", "Children under 18",
)  # fmt: skip

ALLERGENS = ("Penicillin", "Sulfa", "Latex", "Shellfish", "Peanuts", "Contrast dye", "Morphine", "Codeine")
ALLERGY_SEVERITIES = ("mild", "moderate", "severe", "life-threatening")
ALLERGY_REACTIONS = ("rash", "hives", "swelling", "difficulty breathing", "anaphylaxis", "nausea", "vomiting")

DIAGNOSES = (
    "Acute myocardial infarction", "Sepsis", "Pneumonia", "Heart failure", "COPD exacerbation",
    "Acute kidney injury", "Stroke", "Respiratory failure", "Shock", "Multi-organ failure",
    "Post-operative complications", "Trauma", "Burns", "Drug overdose", "Diabetic ketoacidosis",
)  # fmt: skip

NURSING_NOTES = (
    "Patient stable, vitals within normal limits",
    "Administered medications as ordered",
    "Patient complained of pain, given analgesic",
    "Repositioned patient to prevent pressure sores",
    "Encouraged deep breathing and coughing",
    "Patient ambulated in hallway with assistance",
    "Diet advanced as tolerated",
    "Wound dressing changed, no signs of infection",
    "Patient education provided on discharge planning",
    "Family conference held to discuss treatment plan",
)
ORDER_TYPES = (
    "Medication order", "Lab order", "Imaging order", "Diet order", "Activity order",
    "Monitoring order", "Consultation order", "Procedure order", "Discharge order",
)  # fmt: skip
RELATIONSHIPS = ("spouse", "parent", "child", "sibling", "friend", "guardian")
INSURANCE_TYPES = ("National Health Insurance", "Medical Aid", "Private Insurance", "Workers Compensation")


class EntityGenerator(Protocol):
    """Produces the complete initial content of every collection."""

    def generate(self, now: datetime) -> Collections: ...


def _ago(now: datetime, seconds: float) -> str:
    return utc_timestamp(now - timedelta(seconds=seconds))


class WardGenerator:
    """Random ICU ward with ``patient_count`` patients and one device each.

    Patient ids are ``P001``, ``P002``, ...; the device attached to patient
    *n* is ``EQ`` with the same number. A seeded ``random.Random`` yields
    identical content (including record uuids) for identical ``now``.
    """

    def __init__(self, patient_count: int = 30, *, rng: random.Random | None = None) -> None:
        self.patient_count = patient_count
        self._rng = rng if rng is not None else random.Random()

    def generate(self, now: datetime | None = None) -> Collections:
        now = now if now is not None else datetime.now(UTC)
        patients: dict[str, dict[str, Any]] = {}
        equipment: dict[str, dict[str, Any]] = {}
        for number in range(1, self.patient_count + 1):
            patient_id = f"P{number:03d}"
            patients[patient_id] = self.patient(number, now)
            equipment[f"EQ{number:03d}"] = self.device(patient_id, now)
        return {PATIENTS: patients, EQUIPMENT: equipment}

    # ------------------------------------------------------------------
    # Draw helpers
    # ------------------------------------------------------------------

    def _range(self, low: float, high: float) -> float:
        return round(self._rng.uniform(low, high), 1)

    def _pick(self, options: tuple[str, ...]) -> str:
        return self._rng.choice(options)

    def _uuid(self) -> str:
        return str(uuid.UUID(int=self._rng.getrandbits(128), version=4))

    def _initials(self) -> str:
        return "".join(self._rng.choice(string.ascii_uppercase) for _ in range(2))

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def patient(self, number: int, now: datetime) -> dict[str, Any]:
        rng = self._rng
        patient: dict[str, Any] = {
            "name": f"Patient {number}",
            "age": rng.randint(20, 79),
            "gender": "M" if rng.random() > 0.5 else "F",
            "height": self._range(150, 190),
            "weight": self._range(45, 120),
            "bmi": None,
            "bloodType": rng.choices(BLOOD_TYPES, weights=BLOOD_TYPE_WEIGHTS, k=1)[0],
            "vitals": self.vitals(),
            "medications": self.medications(now),
            "labResults": self.lab_results(now),
            "allergies": self.allergies(now),
            "diagnoses": self.diagnoses(now),
            "nursingNotes": self.nursing_notes(now),
            "orders": self.orders(now),
            "status": rng.choices(PATIENT_STATUSES, weights=PATIENT_STATUS_WEIGHTS, k=1)[0],
            "room": f"{rng.randint(1, 10)}{rng.choice('ABCDEF')}",
            "admissionDate": _ago(now, rng.uniform(0, 30 * 86400)),
            "emergencyContact": {
                "name": f"Guardian {number}",
                "relationship": self._pick(RELATIONSHIPS),
                "phone": f"010-{rng.randint(1000, 9999)}-{rng.randint(1000, 9999)}",
            },
            "insurance": {
                "type": self._pick(INSURANCE_TYPES),
                "policyNumber": f"INS{rng.randrange(100_000_000):08d}",
                "copay": rng.randrange(50) * 100,
            },
        }
        derive_patient(patient)
        return patient

    def vitals(self) -> dict[str, Any]:
        rng = self._rng
        return {
            "heartRate": self._range(60, 100),
            "bloodPressure": {
                "systolic": self._range(90, 140),
                "diastolic": self._range(60, 90),
                "meanArterialPressure": None,
            },
            "spo2": self._range(95, 100),
            "temperature": self._range(36.0, 37.5),
            "respiratoryRate": self._range(12, 20),
            "centralVenousPressure": self._range(2, 8),
            "pulmonaryArterialPressure": {
                "systolic": self._range(15, 30),
                "diastolic": self._range(5, 15),
            },
            "cardiacOutput": self._range(4.0, 8.0),
            "intracranialPressure": self._range(5, 15),
            "bloodGlucose": self._range(70, 200),
            "urineOutput": self._range(0.5, 3.0),
            "painScore": rng.randint(0, 10),
            "glasgowComaScale": {
                "eye": rng.randint(1, 4),
                "verbal": rng.randint(1, 5),
                "motor": rng.randint(1, 6),
                "total": None,
            },
        }

    def medications(self, now: datetime, minimum: int = 3, maximum: int = 8) -> list[dict[str, Any]]:
        rng = self._rng
        return [
            {
                "id": self._uuid(),
                "name": self._pick(DRUG_NAMES),
                "dosage": f"{rng.randint(5, 204)}{'mg' if rng.random() > 0.5 else 'mcg'}",
                "route": rng.choice(("IV", "PO", "SQ")),
                "frequency": f"{rng.randint(1, 4)}x/day",
                "lastGiven": _ago(now, rng.uniform(0, 7200)),
                "nextDue": _ago(now, -rng.uniform(0, 7200)),
                "prescribedBy": f"Dr. {self._initials()}",
                "indication": self._pick(INDICATIONS),
                "sideEffects": self._pick(SIDE_EFFECTS),
                "contraindications": self._pick(CONTRAINDICATIONS),
            }
            for _ in range(rng.randint(minimum, maximum))
        ]

    def lab_results(self, now: datetime) -> dict[str, Any]:
        r = self._range
        return {
            "bloodWork": {
                "hemoglobin": r(12.0, 17.0),
                "hematocrit": r(36, 52),
                "whiteBloodCells": r(4.0, 11.0),
                "platelets": r(150, 450),
                "sodium": r(135, 145),
                "potassium": r(3.5, 5.0),
                "chloride": r(98, 107),
                "co2": r(22, 29),
                "bun": r(7, 20),
                "creatinine": r(0.6, 1.3),
                "glucose": r(70, 100),
                "totalProtein": r(6.0, 8.3),
                "albumin": r(3.4, 5.4),
                "totalBilirubin": r(0.2, 1.2),
                "alt": r(7, 56),
                "ast": r(10, 40),
                "alkalinePhosphatase": r(44, 147),
            },
            "arterialBloodGas": {
                "ph": round(self._rng.uniform(7.35, 7.45), 2),
                "pco2": r(35, 45),
                "po2": r(80, 100),
                "hco3": r(22, 26),
                "baseExcess": r(-2, 2),
                "lactate": r(0.5, 2.2),
            },
            "lastUpdated": _ago(now, self._rng.uniform(0, 6 * 3600)),
        }

    def allergies(self, now: datetime) -> list[dict[str, Any]]:
        rng = self._rng
        return [
            {
                "id": self._uuid(),
                "allergen": self._pick(ALLERGENS),
                "severity": self._pick(ALLERGY_SEVERITIES),
                "reaction": self._pick(ALLERGY_REACTIONS),
                "dateIdentified": _ago(now, rng.uniform(0, 365 * 86400)),
            }
            for _ in range(rng.randint(0, 3))
        ]

    def diagnoses(self, now: datetime) -> list[dict[str, Any]]:
        rng = self._rng
        return [
            {
                "id": self._uuid(),
                "code": f"{rng.choice(string.ascii_uppercase)}{rng.randrange(99):02d}.{rng.randrange(9)}",
                "description": self._pick(DIAGNOSES),
                "type": "primary" if index == 0 else "secondary",
                "dateOfOnset": _ago(now, rng.uniform(0, 14 * 86400)),
                "status": "resolved" if rng.random() > 0.8 else "active",
            }
            for index in range(rng.randint(1, 3))
        ]

    def nursing_notes(self, now: datetime, count: int = 10) -> list[dict[str, Any]]:
        rng = self._rng
        notes = []
        for index in range(count):
            roll = rng.random()
            notes.append(
                {
                    "id": self._uuid(),
                    "timestamp": _ago(now, index * 3600 + rng.uniform(0, 3600)),
                    "note": self._pick(NURSING_NOTES),
                    "nurse": f"Nurse {self._initials()}",
                    "type": "assessment" if roll > 0.7 else "intervention" if roll > 0.35 else "observation",
                }
            )
        notes.sort(key=lambda note: note["timestamp"], reverse=True)
        return notes

    def orders(self, now: datetime) -> list[dict[str, Any]]:
        rng = self._rng
        orders = []
        for index in range(rng.randint(2, 9)):
            status_roll, priority_roll = rng.random(), rng.random()
            orders.append(
                {
                    "id": self._uuid(),
                    "type": self._pick(ORDER_TYPES),
                    "description": f"Order {index + 1} - {self._pick(ORDER_TYPES)}",
                    "orderedBy": f"Dr. {self._initials()}",
                    "orderTime": _ago(now, rng.uniform(0, 86400)),
                    "status": "completed" if status_roll > 0.3 else "pending" if status_roll > 0.15 else "in-progress",
                    "priority": "STAT" if priority_roll > 0.8 else "urgent" if priority_roll > 0.6 else "routine",
                }
            )
        orders.sort(key=lambda order: order["orderTime"], reverse=True)
        return orders

    def device(self, patient_id: str, now: datetime) -> dict[str, Any]:
        rng = self._rng
        return {
            "type": self._pick(EQUIPMENT_TYPES),
            "status": "active" if rng.random() > 0.1 else "maintenance",
            "patient": patient_id,
            "lastMaintenance": _ago(now, rng.uniform(0, 7 * 86400)),
            "batteryLevel": rng.randrange(100),
        }
