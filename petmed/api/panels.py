"""Medical-record panels API: one panel per (pet, record kind)."""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Any, Dict, Optional
from pydantic import BaseModel
import logging

from ..core.errors import RecordNotFound, ValidationError
from ..models.records import RecordKind
from ..services.panel_view import MedicalRecordPanel, PanelRegistry, PanelRender, panel_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pets/{pet_id}/panels/{kind}", tags=["panels"])


class FormValuesUpdate(BaseModel):
    values: Dict[str, Any]


class PickerChoice(BaseModel):
    value: Optional[str] = None
    column: Optional[str] = None  # multi-column pickers only
    confirm: bool = False


def get_registry() -> PanelRegistry:
    return panel_registry


def _check_kind(kind: str) -> None:
    if kind not in {k.value for k in RecordKind}:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown record kind. Choose from: {[k.value for k in RecordKind]}",
        )


async def mounted_panel(
    pet_id: str,
    kind: str,
    registry: PanelRegistry = Depends(get_registry),
) -> MedicalRecordPanel:
    _check_kind(kind)
    return await registry.mount(pet_id, kind)


def _open_form(panel: MedicalRecordPanel):
    if panel.form is None:
        raise HTTPException(status_code=409, detail="No form is open")
    return panel.form


@router.get("", response_model=PanelRender)
async def get_panel(panel: MedicalRecordPanel = Depends(mounted_panel)):
    """Render the panel, mounting it (and running the initial fetch) on first access."""
    return panel.render()


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def unmount_panel(pet_id: str, kind: str, registry: PanelRegistry = Depends(get_registry)):
    _check_kind(kind)
    registry.unmount(pet_id, kind)


@router.post("/refresh", response_model=PanelRender)
async def refresh_panel(panel: MedicalRecordPanel = Depends(mounted_panel)):
    await panel.refresh()
    return panel.render()


@router.post("/sync")
async def push_pending(panel: MedicalRecordPanel = Depends(mounted_panel)):
    """Retry every record that only exists locally or has unsaved local edits."""
    results = await panel.sync.push_pending()
    return {"results": results, "panel": panel.render()}


@router.delete("/banner", response_model=PanelRender)
def dismiss_banner(panel: MedicalRecordPanel = Depends(mounted_panel)):
    panel.sync.dismiss_banner()
    return panel.render()


# -- add/edit form -------------------------------------------------------------

@router.post("/form", response_model=PanelRender)
def open_add_form(panel: MedicalRecordPanel = Depends(mounted_panel)):
    panel.open_add()
    return panel.render()


@router.post("/form/save", response_model=PanelRender)
async def save_form(panel: MedicalRecordPanel = Depends(mounted_panel)):
    _open_form(panel)
    try:
        await panel.save()
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.message)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return panel.render()


@router.post("/form/{record_id}", response_model=PanelRender)
def open_edit_form(record_id: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    try:
        panel.open_edit(record_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return panel.render()


@router.patch("/form", response_model=PanelRender)
def update_form(body: FormValuesUpdate, panel: MedicalRecordPanel = Depends(mounted_panel)):
    form = _open_form(panel)
    try:
        form.set_values(body.values)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown field {exc.args[0]!r}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return panel.render()


@router.delete("/form", response_model=PanelRender)
def close_form(panel: MedicalRecordPanel = Depends(mounted_panel)):
    panel.close_form()
    return panel.render()


@router.post("/form/pickers/{field}")
def open_picker(field: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    form = _open_form(panel)
    try:
        return form.open_picker(field)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Field {field!r} has no picker")


@router.post("/form/pickers/{field}/select", response_model=PanelRender)
def select_picker_value(field: str, choice: PickerChoice,
                        panel: MedicalRecordPanel = Depends(mounted_panel)):
    form = _open_form(panel)
    try:
        form.choose(field, choice.value, column=choice.column, confirm=choice.confirm)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Field {field!r} has no picker")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return panel.render()


@router.delete("/form/pickers/{field}", response_model=PanelRender)
def cancel_picker(field: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    form = _open_form(panel)
    try:
        form.cancel_picker(field)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Field {field!r} has no picker")
    return panel.render()


# -- delete --------------------------------------------------------------------

@router.post("/records/{record_id}/delete", response_model=PanelRender)
def request_delete(record_id: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    try:
        panel.request_delete(record_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return panel.render()


@router.post("/records/{record_id}/delete/cancel", response_model=PanelRender)
def cancel_delete(record_id: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    panel.cancel_delete()
    return panel.render()


@router.post("/records/{record_id}/delete/confirm", response_model=PanelRender)
async def confirm_delete(record_id: str, panel: MedicalRecordPanel = Depends(mounted_panel)):
    try:
        deleted = await panel.confirm_delete(record_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if not deleted:
        logger.info("Delete of %s %s failed, record kept", panel.schema.kind.value, record_id)
    return panel.render()
