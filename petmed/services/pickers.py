"""
Constrained-choice pickers.
Every temporal or unit field is filled from a finite, pre-enumerated candidate
set, so the emitted values are canonical by construction:
dates are YYYY-MM-DD, times are HH:MM, units and severities are fixed values.
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import settings
from ..models.records import AllergySeverity, WeightUnit


@dataclass(frozen=True)
class PickerOption:
    value: Optional[str]
    label: str


class ChoicePicker:
    """Modal single-column list. Selecting an option closes it immediately."""

    requires_confirm = False

    def __init__(self, options: List[PickerOption]):
        self._options = options
        self.is_open = False
        self.selected: Optional[str] = None

    @property
    def options(self) -> List[PickerOption]:
        return list(self._options)

    @property
    def values(self) -> List[Optional[str]]:
        return [option.value for option in self._options]

    def open(self, current: Optional[str] = None) -> List[PickerOption]:
        self.selected = current or None
        self.is_open = True
        return self.options

    def cancel(self) -> None:
        self.is_open = False

    def select(self, value: Optional[str]) -> Optional[str]:
        if value not in self.values:
            raise ValueError(f"{value!r} is not one of the available choices")
        self.selected = value
        self.is_open = False
        return value

    def describe(self) -> Dict:
        return {
            "open": self.is_open,
            "requires_confirm": self.requires_confirm,
            "selected": self.selected,
            "options": [{"value": o.value, "label": o.label} for o in self._options],
        }


class DateWindowPicker(ChoicePicker):
    """Every day from today - days_back to today + days_forward."""

    def __init__(self, today: date, days_back: int, days_forward: int, allow_clear: bool = False):
        options = [PickerOption(None, "Clear date")] if allow_clear else []
        for offset in range(-days_back, days_forward + 1):
            day = today + timedelta(days=offset)
            options.append(PickerOption(day.isoformat(), day.strftime("%A, %d %B %Y")))
        super().__init__(options)


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class TimeSlotPicker(ChoicePicker):
    """Fixed-step time slots across a bounded daily range, both ends included."""

    def __init__(self, start: str, end: str, step_minutes: int = 30):
        options = []
        for total in range(_minutes(start), _minutes(end) + 1, step_minutes):
            slot = f"{total // 60:02d}:{total % 60:02d}"
            options.append(PickerOption(slot, slot))
        super().__init__(options)


class EnumPicker(ChoicePicker):
    def __init__(self, choices: List[Tuple[str, str]]):
        super().__init__([PickerOption(value, label) for value, label in choices])


class DayMonthYearPicker:
    """
    Three-column date picker (day / month / year).
    Column changes are staged; the value is only emitted on confirm(),
    with the day clamped to the length of the chosen month.
    """

    requires_confirm = True
    MONTHS = [(f"{i:02d}", calendar.month_name[i]) for i in range(1, 13)]

    def __init__(self, today: date, years_back: int, years_forward: int):
        self.today = today
        self.columns: Dict[str, List[PickerOption]] = {
            "day": [PickerOption(f"{d:02d}", f"{d:02d}") for d in range(1, 32)],
            "month": [PickerOption(v, label) for v, label in self.MONTHS],
            "year": [
                PickerOption(str(y), str(y))
                for y in range(today.year - years_back, today.year + years_forward + 1)
            ],
        }
        self.is_open = False
        self.selected: Optional[str] = None
        self.staged: Dict[str, str] = {}

    def open(self, current: Optional[str] = None) -> Dict[str, List[PickerOption]]:
        start = current or self.today.isoformat()
        self.staged = {"year": start[:4], "month": start[5:7], "day": start[8:10]}
        if self.staged["year"] not in self._values("year"):
            self.staged["year"] = str(self.today.year)
        self.selected = current or None
        self.is_open = True
        return self.columns

    def _values(self, column: str) -> List[str]:
        return [option.value for option in self.columns[column]]

    def _require_open(self) -> None:
        if not self.is_open:
            raise ValueError("Picker is not open")

    def set_column(self, column: str, value: str) -> None:
        self._require_open()
        if column not in self.columns:
            raise ValueError(f"Unknown column {column!r}")
        if value not in self._values(column):
            raise ValueError(f"{value!r} is not one of the available {column} choices")
        self.staged[column] = value

    def confirm(self) -> str:
        self._require_open()
        year, month = int(self.staged["year"]), int(self.staged["month"])
        day = min(int(self.staged["day"]), calendar.monthrange(year, month)[1])
        self.selected = date(year, month, day).isoformat()
        self.is_open = False
        return self.selected

    def cancel(self) -> None:
        self.is_open = False

    def describe(self) -> Dict:
        return {
            "open": self.is_open,
            "requires_confirm": self.requires_confirm,
            "selected": self.selected,
            "staged": dict(self.staged),
            "columns": {
                name: [{"value": o.value, "label": o.label} for o in options]
                for name, options in self.columns.items()
            },
        }


PICKER_FACTORIES: Dict[str, Callable[[date], object]] = {
    "appointment_date": lambda today: DateWindowPicker(
        today, settings.APPOINTMENT_DAYS_BACK, settings.APPOINTMENT_DAYS_FORWARD),
    "schedule_date": lambda today: DateWindowPicker(
        today, settings.SCHEDULE_DAYS_BACK, settings.SCHEDULE_DAYS_FORWARD),
    "medication_end_date": lambda today: DateWindowPicker(
        today, settings.MEDICATION_END_DAYS_BACK, settings.MEDICATION_END_DAYS_FORWARD,
        allow_clear=True),
    "vaccination_date": lambda today: DayMonthYearPicker(
        today, settings.VACCINATION_YEARS_BACK, settings.VACCINATION_YEARS_FORWARD),
    "appointment_time": lambda today: TimeSlotPicker(
        settings.APPOINTMENT_SLOT_START, settings.APPOINTMENT_SLOT_END, settings.SLOT_STEP_MINUTES),
    "treatment_time": lambda today: TimeSlotPicker(
        settings.TREATMENT_SLOT_START, settings.TREATMENT_SLOT_END, settings.SLOT_STEP_MINUTES),
    "weight_unit": lambda today: EnumPicker(
        [(WeightUnit.KG, "Kilogram (kg)"), (WeightUnit.LB, "Pound (lb)")]),
    "allergy_severity": lambda today: EnumPicker(
        [(severity, severity) for severity in AllergySeverity.ALL]),
}


def build_picker(key: str, today: date):
    """Instantiate the picker registered under key. Raises KeyError for unknown keys."""
    return PICKER_FACTORIES[key](today)
