"""
Panel view: render-only composition over a RecordCollectionSync.
Holds the add/edit form, its pickers and the delete prompt; every mutation
is delegated to the synchronizer.
"""
import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
from pydantic import BaseModel

from ..core.errors import ValidationError
from ..models.records import MedicalRecord, RecordKind, WeightUnit
from ..models.schemas import FormField, RecordSchema, ValidationResult, WeightRecordSchema, get_schema
from .medical_record_client import medical_record_client
from .pickers import build_picker
from .record_sync import DeletePrompt, PanelState, RecordCollectionSync

logger = logging.getLogger(__name__)

LB_TO_KG = 0.45359237


class FieldView(BaseModel):
    name: str
    label: str
    required: bool
    picker: Optional[str] = None


class FormView(BaseModel):
    mode: str  # "add" | "edit"
    record_id: Optional[str] = None
    values: Dict[str, Any]
    fields: List[FieldView]
    pickers: Dict[str, Dict[str, Any]] = {}
    error: Optional[str] = None
    submitting: bool = False
    save_enabled: bool = False


class CardView(BaseModel):
    id: str
    title: str
    details: List[Dict[str, str]]
    synced: bool
    actions: List[str] = ["edit", "delete"]


class SectionView(BaseModel):
    key: str
    label: str
    cards: List[CardView]


class ChartPoint(BaseModel):
    date: str
    weight: float
    unit: str


class DeletePromptView(BaseModel):
    record_id: str
    title: str
    message: str
    options: List[str]


class PanelRender(BaseModel):
    pet_id: str
    kind: str
    title: str
    status: str  # "loading" | "empty" | "list"
    state: str
    banner: Optional[str] = None
    pending: int = 0
    sections: List[SectionView] = []
    chart: Optional[List[ChartPoint]] = None
    weight_trend_kg_per_day: Optional[float] = None
    form: Optional[FormView] = None
    delete_prompt: Optional[DeletePromptView] = None


def weight_trend(records: List[MedicalRecord]) -> Optional[float]:
    """Least-squares slope of weight over time in kg/day; None with fewer than two dates."""
    points = []
    for record in records:
        try:
            day = date.fromisoformat(record.date)
        except ValueError:
            continue
        points.append((day, record.weight * (LB_TO_KG if record.unit == WeightUnit.LB else 1.0)))
    if len({day for day, _ in points}) < 2:
        return None
    origin = min(day for day, _ in points)
    x = [(day - origin).days for day, _ in points]
    y = [kg for _, kg in points]
    slope = np.polyfit(x, y, 1)[0]
    return round(float(slope), 4)


class RecordForm:
    """Add/edit form state. Picker-backed fields only change through their picker."""

    def __init__(self, schema: RecordSchema, values: Mapping, today: date,
                 editing_id: Optional[str] = None):
        self.schema = schema
        self.values: Dict[str, Any] = dict(values)
        self.today = today
        self.editing_id = editing_id
        self.submitting = False
        self.error: Optional[str] = None
        self._pickers: Dict[str, Any] = {}

    def _field(self, name: str) -> FormField:
        for form_field in self.schema.fields:
            if form_field.name == name:
                return form_field
        raise KeyError(name)

    @property
    def validation(self) -> ValidationResult:
        return self.schema.validate(self.values)

    @property
    def save_enabled(self) -> bool:
        return not self.submitting and self.validation.ok

    def set_values(self, changes: Mapping) -> None:
        for name, value in changes.items():
            if self._field(name).picker:
                raise ValueError(f"{name} can only be set from its picker")
            self.values[name] = value
        self.error = None

    def picker(self, name: str):
        form_field = self._field(name)
        if not form_field.picker:
            raise KeyError(name)
        if name not in self._pickers:
            self._pickers[name] = build_picker(form_field.picker, self.today)
        return self._pickers[name]

    def open_picker(self, name: str) -> Dict[str, Any]:
        picker = self.picker(name)
        picker.open(self.values.get(name) or None)
        return picker.describe()

    def choose(self, name: str, value: Optional[str] = None, column: Optional[str] = None,
               confirm: bool = False) -> Dict[str, Any]:
        """Single-column pickers commit on selection; multi-column ones on confirm."""
        picker = self.picker(name)
        if picker.requires_confirm:
            if column is not None:
                picker.set_column(column, value)
            if confirm:
                self.values[name] = picker.confirm()
        else:
            selected = picker.select(value)
            self.values[name] = selected or ""
        self.error = None
        return picker.describe()

    def cancel_picker(self, name: str) -> None:
        self.picker(name).cancel()

    def view(self) -> FormView:
        return FormView(
            mode="edit" if self.editing_id else "add",
            record_id=self.editing_id,
            values=dict(self.values),
            fields=[FieldView(name=f.name, label=f.label, required=f.required, picker=f.picker)
                    for f in self.schema.fields],
            pickers={name: picker.describe() for name, picker in self._pickers.items() if picker.is_open},
            error=self.error,
            submitting=self.submitting,
            save_enabled=self.save_enabled,
        )


class MedicalRecordPanel:
    def __init__(self, sync: RecordCollectionSync):
        self.sync = sync
        self.schema = sync.schema
        self.form: Optional[RecordForm] = None
        self.delete_prompt: Optional[DeletePrompt] = None

    async def mount(self) -> None:
        await self.sync.fetch_all()

    def unmount(self) -> None:
        self.sync.close()
        self.form = None
        self.delete_prompt = None

    async def refresh(self) -> bool:
        return await self.sync.fetch_all()

    # -- form -------------------------------------------------------------------

    def open_add(self) -> RecordForm:
        today = self.sync.now().date()
        self.form = RecordForm(self.schema, self.schema.blank_form(today), today)
        return self.form

    def open_edit(self, record_id: str) -> RecordForm:
        record = self.sync.get(record_id)
        self.form = RecordForm(self.schema, self.schema.to_form(record), self.sync.now().date(),
                               editing_id=record_id)
        return self.form

    def close_form(self) -> None:
        self.form = None

    async def save(self) -> Optional[MedicalRecord]:
        """
        Submit the open form. Repeat saves while a submit is outstanding are ignored.
        Raises ValidationError (the form stays open with the message inline).
        """
        form = self.form
        if form is None or form.submitting:
            return None
        form.submitting = True
        try:
            if form.editing_id is None:
                record = await self.sync.submit_create(form.values)
            else:
                record = await self.sync.submit_update(form.editing_id, form.values)
        except ValidationError as exc:
            form.error = exc.message
            raise
        finally:
            form.submitting = False
        if self.form is form:
            self.form = None
        return record

    # -- delete -----------------------------------------------------------------

    def request_delete(self, record_id: str) -> DeletePrompt:
        self.delete_prompt = self.sync.request_delete(record_id)
        return self.delete_prompt

    def cancel_delete(self) -> None:
        self.delete_prompt = None

    async def confirm_delete(self, record_id: Optional[str] = None) -> bool:
        prompt = self.delete_prompt
        target = record_id or (prompt.record_id if prompt else None)
        if target is None:
            raise ValueError("No delete is awaiting confirmation")
        self.delete_prompt = None
        return await self.sync.confirm_delete(target)

    # -- render -----------------------------------------------------------------

    def _card(self, record: MedicalRecord) -> CardView:
        return CardView(
            id=record.id,
            title=self.schema.card_title(record),
            details=[{"label": label, "value": value}
                     for label, value in self.schema.card_details(record) if value],
            synced=record.is_synced,
        )

    def render(self) -> PanelRender:
        sync = self.sync
        state = sync.state
        render = PanelRender(
            pet_id=sync.pet_id,
            kind=self.schema.kind.value,
            title=self.schema.title,
            status="list",
            state=state.value,
            banner=sync.banner,
            pending=sync.pending_count(),
            form=self.form.view() if self.form else None,
            delete_prompt=DeletePromptView(**asdict(self.delete_prompt)) if self.delete_prompt else None,
        )
        records = sync.records
        if state == PanelState.LOADING:
            render.status = "loading"
            return render
        if not records:
            render.status = "empty"
            return render

        partition = sync.partition()
        render.sections = [
            SectionView(key=key, label=label, cards=[self._card(r) for r in partition.get(key, [])])
            for key, label in self.schema.sections.items()
        ]
        if isinstance(self.schema, WeightRecordSchema):
            render.chart = [ChartPoint(date=r.date, weight=r.weight, unit=r.unit)
                            for r in self.schema.chart_series(records)]
            render.weight_trend_kg_per_day = weight_trend(records)
        return render


GatewayFactory = Callable[[RecordSchema], Any]


def _default_gateway(schema: RecordSchema):
    return medical_record_client.gateway(schema)


class PanelRegistry:
    """Mounted panels, one per (pet, record kind)."""

    def __init__(self, gateway_factory: GatewayFactory = _default_gateway,
                 clock: Optional[Callable[[], datetime]] = None):
        self.gateway_factory = gateway_factory
        self.clock = clock
        self._panels: Dict[Tuple[str, RecordKind], MedicalRecordPanel] = {}

    async def mount(self, pet_id: str, kind) -> MedicalRecordPanel:
        schema = get_schema(kind)
        key = (pet_id, schema.kind)
        panel = self._panels.get(key)
        if panel is None:
            sync = RecordCollectionSync(schema, self.gateway_factory(schema), pet_id, clock=self.clock)
            panel = MedicalRecordPanel(sync)
            self._panels[key] = panel
            logger.debug("Mounted %s panel for pet %s", schema.kind.value, pet_id)
            await panel.mount()
        return panel

    def get(self, pet_id: str, kind) -> MedicalRecordPanel:
        """Raises KeyError when the kind is unknown or the panel is not mounted."""
        return self._panels[(pet_id, get_schema(kind).kind)]

    def unmount(self, pet_id: str, kind) -> None:
        panel = self._panels.pop((pet_id, get_schema(kind).kind), None)
        if panel is not None:
            panel.unmount()


panel_registry = PanelRegistry()
