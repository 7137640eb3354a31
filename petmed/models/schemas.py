"""
Per-kind record descriptors: form fields, required-field validation,
wire (de)serialization and the display partition.

Temporal fields are only ever filled from the constrained-choice pickers,
so no date/time format validation happens here.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from ..core.errors import ValidationError
from .records import (
    Allergy,
    Appointment,
    MedicalRecord,
    Medication,
    RecordKind,
    SyncState,
    Treatment,
    Vaccination,
    WeightRecord,
    WeightUnit,
)

FormValues = Dict[str, Any]
Sections = Dict[str, List[MedicalRecord]]


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    required: bool = False
    picker: Optional[str] = None  # picker key, None for free text


@dataclass
class ValidationResult:
    ok: bool
    message: Optional[str] = None
    field: Optional[str] = None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(payload: Mapping, *names: str, default: Any = None) -> Any:
    """Return the first present, non-null value among several wire names."""
    for name in names:
        value = payload.get(name)
        if value is not None:
            return value
    return default


def _day(value: Any) -> str:
    """Trim a backend date or datetime down to YYYY-MM-DD."""
    return _text(value)[:10]


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO instant into a naive local datetime, None if unparseable."""
    raw = _text(value)
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _normalize_instant(value: Any) -> str:
    parsed = parse_instant(value)
    if parsed is None:
        return _text(value)
    return parsed.isoformat(timespec="seconds")


def combine_date_time(day: str, time: str) -> str:
    """Join picker outputs into an ISO instant: YYYY-MM-DDTHH:MM:00."""
    return f"{day}T{time}:00"


def _split_instant(value: str) -> Tuple[str, str]:
    return value[:10], value[11:16]


class RecordSchema:
    """Descriptor for one record kind. Subclasses supply the kind-specific parts."""

    kind: RecordKind
    title: str
    record_type: Type[MedicalRecord]
    fields: List[FormField] = []
    sections: Dict[str, str] = {"records": "Records"}

    # -- validation ---------------------------------------------------------

    def validate(self, form: Mapping) -> ValidationResult:
        for form_field in self.fields:
            if form_field.required and not _text(form.get(form_field.name)):
                return ValidationResult(
                    ok=False,
                    message=f"{form_field.label} is required",
                    field=form_field.name,
                )
        return self._validate_domain(form)

    def _validate_domain(self, form: Mapping) -> ValidationResult:
        return ValidationResult(ok=True)

    def ensure_valid(self, form: Mapping) -> None:
        result = self.validate(form)
        if not result.ok:
            raise ValidationError(result.message, field=result.field)

    # -- conversion ---------------------------------------------------------

    def blank_form(self, today: date) -> FormValues:
        return {f.name: "" for f in self.fields}

    def to_wire(self, form: Mapping) -> Dict[str, Any]:
        raise NotImplementedError

    def from_wire(self, payload: Mapping) -> MedicalRecord:
        raise NotImplementedError

    def to_record(self, record_id: str, form: Mapping,
                  sync_state: SyncState = SyncState.SYNCED) -> MedicalRecord:
        raise NotImplementedError

    def to_form(self, record: MedicalRecord) -> FormValues:
        raise NotImplementedError

    # -- display ------------------------------------------------------------

    def partition(self, records: List[MedicalRecord], now: datetime) -> Sections:
        return {"records": list(records)}

    def card_title(self, record: MedicalRecord) -> str:
        raise NotImplementedError

    def card_details(self, record: MedicalRecord) -> List[Tuple[str, str]]:
        return []


class VaccinationSchema(RecordSchema):
    kind = RecordKind.VACCINATIONS
    title = "Vaccinations"
    record_type = Vaccination
    fields = [
        FormField("name", "Vaccine name", required=True),
        FormField("date", "Vaccination date", required=True, picker="vaccination_date"),
        FormField("veterinarian", "Veterinarian", required=True),
    ]

    def to_wire(self, form):
        return {
            "vaccineName": _text(form.get("name")),
            "vaccinationDate": _text(form.get("date")),
            "veterinarian": _text(form.get("veterinarian")),
        }

    def from_wire(self, payload):
        return Vaccination(
            id=str(payload["id"]),
            name=_text(_first(payload, "vaccineName", "name")),
            date=_day(_first(payload, "vaccinationDate", "date")),
            veterinarian=_text(payload.get("veterinarian")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        wire = self.to_wire(form)
        return Vaccination(
            id=record_id,
            sync_state=sync_state,
            name=wire["vaccineName"],
            date=wire["vaccinationDate"],
            veterinarian=wire["veterinarian"],
        )

    def to_form(self, record):
        return {"name": record.name, "date": record.date, "veterinarian": record.veterinarian}

    def partition(self, records, now):
        return {"records": sorted(records, key=lambda r: r.date, reverse=True)}

    def card_title(self, record):
        return record.name

    def card_details(self, record):
        return [("Date", record.date), ("Veterinarian", record.veterinarian)]


class _ScheduledSchema(RecordSchema):
    """Shared shape of appointments and treatments: a date_time split upcoming/past."""

    sections = {"upcoming": "Upcoming", "past": "Past"}

    def _date_time(self, form: Mapping) -> str:
        return combine_date_time(_text(form.get("date")), _text(form.get("time")))

    def partition(self, records, now):
        upcoming, past = [], []
        for record in records:
            when = parse_instant(record.date_time)
            if when is not None and when >= now:
                upcoming.append(record)
            else:
                past.append(record)
        upcoming.sort(key=lambda r: r.date_time)
        past.sort(key=lambda r: r.date_time, reverse=True)
        return {"upcoming": upcoming, "past": past}


class AppointmentSchema(_ScheduledSchema):
    kind = RecordKind.APPOINTMENTS
    title = "Appointments"
    record_type = Appointment
    fields = [
        FormField("reason", "Reason", required=True),
        FormField("date", "Appointment date", required=True, picker="appointment_date"),
        FormField("time", "Appointment time", required=True, picker="appointment_time"),
        FormField("veterinarian", "Veterinarian", required=True),
        FormField("notes", "Notes"),
    ]

    def to_wire(self, form):
        return {
            "appointmentDate": self._date_time(form),
            "reason": _text(form.get("reason")),
            "veterinarian": _text(form.get("veterinarian")),
            "notes": _text(form.get("notes")),
        }

    def from_wire(self, payload):
        return Appointment(
            id=str(payload["id"]),
            date_time=_normalize_instant(_first(payload, "appointmentDate", "dateTime", "date")),
            reason=_text(payload.get("reason")),
            veterinarian=_text(payload.get("veterinarian")),
            notes=_text(payload.get("notes")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        wire = self.to_wire(form)
        return Appointment(
            id=record_id,
            sync_state=sync_state,
            date_time=wire["appointmentDate"],
            reason=wire["reason"],
            veterinarian=wire["veterinarian"],
            notes=wire["notes"],
        )

    def to_form(self, record):
        day, time = _split_instant(record.date_time)
        return {
            "reason": record.reason,
            "date": day,
            "time": time,
            "veterinarian": record.veterinarian,
            "notes": record.notes,
        }

    def card_title(self, record):
        return record.reason

    def card_details(self, record):
        day, time = _split_instant(record.date_time)
        return [("When", f"{day} {time}"), ("Veterinarian", record.veterinarian), ("Notes", record.notes)]


class TreatmentSchema(_ScheduledSchema):
    kind = RecordKind.TREATMENTS
    title = "Treatments"
    record_type = Treatment
    fields = [
        FormField("type", "Treatment type", required=True),
        FormField("description", "Description", required=True),
        FormField("date", "Treatment date", required=True, picker="schedule_date"),
        FormField("time", "Treatment time", required=True, picker="treatment_time"),
        FormField("veterinarian", "Veterinarian", required=True),
    ]

    def to_wire(self, form):
        return {
            "treatmentType": _text(form.get("type")),
            "description": _text(form.get("description")),
            "treatmentDate": self._date_time(form),
            "veterinarian": _text(form.get("veterinarian")),
        }

    def from_wire(self, payload):
        return Treatment(
            id=str(payload["id"]),
            type=_text(_first(payload, "treatmentType", "type")),
            description=_text(payload.get("description")),
            date_time=_normalize_instant(_first(payload, "treatmentDate", "dateTime", "date")),
            veterinarian=_text(payload.get("veterinarian")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        wire = self.to_wire(form)
        return Treatment(
            id=record_id,
            sync_state=sync_state,
            type=wire["treatmentType"],
            description=wire["description"],
            date_time=wire["treatmentDate"],
            veterinarian=wire["veterinarian"],
        )

    def to_form(self, record):
        day, time = _split_instant(record.date_time)
        return {
            "type": record.type,
            "description": record.description,
            "date": day,
            "time": time,
            "veterinarian": record.veterinarian,
        }

    def card_title(self, record):
        return record.type

    def card_details(self, record):
        day, time = _split_instant(record.date_time)
        return [("When", f"{day} {time}"), ("Description", record.description),
                ("Veterinarian", record.veterinarian)]


class MedicationSchema(RecordSchema):
    kind = RecordKind.MEDICATIONS
    title = "Medications"
    record_type = Medication
    sections = {"current": "Current", "past": "Past"}
    # end_date is not checked against start_date
    fields = [
        FormField("name", "Medication name", required=True),
        FormField("dosage", "Dosage", required=True),
        FormField("frequency", "Frequency", required=True),
        FormField("start_date", "Start date", required=True, picker="schedule_date"),
        FormField("end_date", "End date", picker="medication_end_date"),
        FormField("prescribed_by", "Prescribed by", required=True),
        FormField("notes", "Notes"),
    ]

    def to_wire(self, form):
        return {
            "medicationName": _text(form.get("name")),
            "dosage": _text(form.get("dosage")),
            "frequency": _text(form.get("frequency")),
            "startDate": _text(form.get("start_date")),
            "endDate": _text(form.get("end_date")) or None,
            "prescribedBy": _text(form.get("prescribed_by")),
            "notes": _text(form.get("notes")),
        }

    def from_wire(self, payload):
        end_date = _day(_first(payload, "endDate", "end_date"))
        return Medication(
            id=str(payload["id"]),
            name=_text(_first(payload, "medicationName", "name")),
            dosage=_text(payload.get("dosage")),
            frequency=_text(payload.get("frequency")),
            start_date=_day(_first(payload, "startDate", "start_date")),
            end_date=end_date or None,
            prescribed_by=_text(_first(payload, "prescribedBy", "prescribed_by")),
            notes=_text(payload.get("notes")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        wire = self.to_wire(form)
        return Medication(
            id=record_id,
            sync_state=sync_state,
            name=wire["medicationName"],
            dosage=wire["dosage"],
            frequency=wire["frequency"],
            start_date=wire["startDate"],
            end_date=wire["endDate"],
            prescribed_by=wire["prescribedBy"],
            notes=wire["notes"],
        )

    def to_form(self, record):
        return {
            "name": record.name,
            "dosage": record.dosage,
            "frequency": record.frequency,
            "start_date": record.start_date,
            "end_date": record.end_date or "",
            "prescribed_by": record.prescribed_by,
            "notes": record.notes,
        }

    def partition(self, records, now):
        today = now.date()
        current, past = [], []
        for record in records:
            ended = parse_instant(record.end_date)
            if ended is None or ended.date() >= today:
                current.append(record)
            else:
                past.append(record)
        return {"current": current, "past": past}

    def card_title(self, record):
        return record.name

    def card_details(self, record):
        period = f"{record.start_date} - {record.end_date or 'ongoing'}"
        return [("Dosage", record.dosage), ("Frequency", record.frequency), ("Period", period),
                ("Prescribed by", record.prescribed_by), ("Notes", record.notes)]


class WeightRecordSchema(RecordSchema):
    kind = RecordKind.WEIGHT_RECORDS
    title = "Weight records"
    record_type = WeightRecord
    sections = {"history": "History"}
    fields = [
        FormField("weight", "Weight", required=True),
        FormField("unit", "Unit", picker="weight_unit"),
        FormField("date", "Date", required=True, picker="schedule_date"),
        FormField("notes", "Notes"),
    ]

    def blank_form(self, today):
        form = super().blank_form(today)
        form["unit"] = WeightUnit.KG
        form["date"] = today.isoformat()
        return form

    def _validate_domain(self, form):
        try:
            weight = float(_text(form.get("weight")))
        except ValueError:
            weight = float("nan")
        if not math.isfinite(weight) or weight <= 0:
            return ValidationResult(ok=False, message="Weight must be a number greater than zero",
                                    field="weight")
        return ValidationResult(ok=True)

    def to_wire(self, form):
        return {
            "weight": float(_text(form.get("weight"))),
            "unit": (_text(form.get("unit")) or WeightUnit.KG).upper(),
            "recordDate": _text(form.get("date")),
            "notes": _text(form.get("notes")),
        }

    def from_wire(self, payload):
        return WeightRecord(
            id=str(payload["id"]),
            weight=float(payload["weight"]),
            unit=(_text(payload.get("unit")) or WeightUnit.KG).lower(),
            date=_day(_first(payload, "recordDate", "date")),
            notes=_text(payload.get("notes")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        wire = self.to_wire(form)
        return WeightRecord(
            id=record_id,
            sync_state=sync_state,
            weight=wire["weight"],
            unit=wire["unit"].lower(),
            date=wire["recordDate"],
            notes=wire["notes"],
        )

    def to_form(self, record):
        return {"weight": record.weight, "unit": record.unit, "date": record.date, "notes": record.notes}

    def partition(self, records, now):
        return {"history": sorted(records, key=lambda r: r.date, reverse=True)}

    def chart_series(self, records: List[WeightRecord]) -> List[WeightRecord]:
        return sorted(records, key=lambda r: r.date)

    def card_title(self, record):
        return f"{record.weight:g} {record.unit}"

    def card_details(self, record):
        return [("Date", record.date), ("Notes", record.notes)]


class AllergySchema(RecordSchema):
    kind = RecordKind.ALLERGIES
    title = "Allergies"
    record_type = Allergy
    fields = [
        FormField("allergen", "Allergen", required=True),
        FormField("reaction", "Reaction", required=True),
        FormField("severity", "Severity", required=True, picker="allergy_severity"),
        FormField("notes", "Notes"),
    ]

    def to_wire(self, form):
        return {
            "allergen": _text(form.get("allergen")),
            "reaction": _text(form.get("reaction")),
            "severity": _text(form.get("severity")),
            "notes": _text(form.get("notes")),
        }

    def from_wire(self, payload):
        return Allergy(
            id=str(payload["id"]),
            allergen=_text(payload.get("allergen")),
            reaction=_text(payload.get("reaction")),
            severity=_text(payload.get("severity")),
            notes=_text(payload.get("notes")),
        )

    def to_record(self, record_id, form, sync_state=SyncState.SYNCED):
        return Allergy(id=record_id, sync_state=sync_state, **self.to_wire(form))

    def to_form(self, record):
        return {"allergen": record.allergen, "reaction": record.reaction,
                "severity": record.severity, "notes": record.notes}

    def card_title(self, record):
        return record.allergen

    def card_details(self, record):
        return [("Severity", record.severity), ("Reaction", record.reaction), ("Notes", record.notes)]


SCHEMAS: Dict[RecordKind, RecordSchema] = {
    schema.kind: schema
    for schema in (
        VaccinationSchema(),
        AppointmentSchema(),
        TreatmentSchema(),
        MedicationSchema(),
        WeightRecordSchema(),
        AllergySchema(),
    )
}


def get_schema(kind) -> RecordSchema:
    """Look up a descriptor by RecordKind or its path segment. Raises KeyError."""
    try:
        return SCHEMAS[RecordKind(kind)]
    except ValueError:
        raise KeyError(kind) from None
