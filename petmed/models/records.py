from enum import Enum
from typing import Optional
from pydantic import BaseModel


class RecordKind(str, Enum):
    """Record kinds, valued by their backend path segment."""
    VACCINATIONS = "vaccinations"
    APPOINTMENTS = "appointments"
    TREATMENTS = "treatments"
    MEDICATIONS = "medications"
    WEIGHT_RECORDS = "weight-records"
    ALLERGIES = "allergies"


class SyncState(str, Enum):
    SYNCED = "synced"
    UNSYNCED = "unsynced"


class WeightUnit:
    KG = "kg"
    LB = "lb"

    ALL = [KG, LB]


class AllergySeverity:
    MILD = "Mild"
    MODERATE = "Moderate"
    SEVERE = "Severe"

    ALL = [MILD, MODERATE, SEVERE]


class MedicalRecord(BaseModel):
    id: str
    sync_state: SyncState = SyncState.SYNCED

    @property
    def is_synced(self) -> bool:
        return self.sync_state == SyncState.SYNCED


class Vaccination(MedicalRecord):
    name: str
    date: str  # YYYY-MM-DD
    veterinarian: str = ""


class Appointment(MedicalRecord):
    date_time: str  # ISO instant, e.g. 2024-05-10T09:00:00
    reason: str
    veterinarian: str = ""
    notes: str = ""


class Treatment(MedicalRecord):
    type: str
    description: str = ""
    date_time: str
    veterinarian: str = ""


class Medication(MedicalRecord):
    name: str
    dosage: str = ""
    frequency: str = ""
    start_date: str
    end_date: Optional[str] = None
    prescribed_by: str = ""
    notes: str = ""


class WeightRecord(MedicalRecord):
    weight: float
    unit: str = WeightUnit.KG
    date: str
    notes: str = ""


class Allergy(MedicalRecord):
    allergen: str
    reaction: str = ""
    severity: str = ""
    notes: str = ""
