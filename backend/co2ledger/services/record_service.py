# Overview: Generic record actions (view, edit, delete, approve) over a closed set of record kinds.

"""
Record actions.

Every generic action takes a RecordKind, never a raw table name, and is
dispatched to one explicit handler per kind. Edits apply only the fields
that actually differ from the stored row and leave an ApprovalLog(edit).

EDIT RULES per kind:
- cylinder: registry fields (next_test_due is derived)
- filling: weight (moves the linked tank consumption), operator, observations
- transfer: driver, customer, operator, date, observations; locations and
  statuses only change through reversal
- tank_movement: operator, supplier, observations; quantities only change
  through reversal
- adjustment: immutable

Reversed rows are frozen.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from co2ledger.errors import AlreadyReversedError, NotFoundError, ValidationError
from co2ledger.extensions import db
from co2ledger.models import Cylinder, Filling, InventoryAdjustment, RecordKind, TankMovement, Transfer
from co2ledger.models.audit import ACTION_EDIT
from co2ledger.quantities import to_kg
from co2ledger.services import cylinder_service, filling_service
from co2ledger.services.audit_service import append_approval_log
from co2ledger.services.concurrency import lock_for_update, run_in_transaction
from co2ledger.signals import tank_level_changed
from co2ledger.validation import ModelValidationPolicy, require_text, validate_payload


@dataclass(frozen=True)
class KindHandler:
    model: type
    editable: frozenset
    deletable: bool = False
    approvable: bool = False


HANDLERS = {
    RecordKind.CYLINDER: KindHandler(
        model=Cylinder,
        editable=frozenset(cylinder_service.CYLINDER_POLICY.writable_fields),
        deletable=True,
    ),
    RecordKind.FILLING: KindHandler(
        model=Filling,
        editable=frozenset({"weight_filled", "operator_name", "observations"}),
        approvable=True,
    ),
    RecordKind.TRANSFER: KindHandler(
        model=Transfer,
        editable=frozenset({"operator_name", "driver_name", "customer_name", "transfer_date", "observations"}),
    ),
    RecordKind.TANK_MOVEMENT: KindHandler(
        model=TankMovement,
        editable=frozenset({"operator_name", "supplier", "observations"}),
    ),
    RecordKind.ADJUSTMENT: KindHandler(model=InventoryAdjustment, editable=frozenset()),
}


def _handler(kind) -> tuple[RecordKind, KindHandler]:
    record_kind = RecordKind.parse(kind)
    return record_kind, HANDLERS[record_kind]


def _get(handler: KindHandler, record_kind: RecordKind, record_id: int, *, lock: bool = False):
    query = db.session.query(handler.model).filter_by(id=record_id)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if not row:
        raise NotFoundError(f"{record_kind.value} {record_id} not found")
    return row


def load_snapshot(kind, record_id: int) -> dict:
    """Current state of one record as a plain dict."""
    record_kind, handler = _handler(kind)
    return _get(handler, record_kind, record_id).to_dict()


def diff_snapshot(row, patch: dict) -> dict:
    """Keep only the patch entries that differ from the stored values."""
    changed = {}
    for key, value in patch.items():
        current = getattr(row, key)
        if isinstance(current, Decimal) and value is not None:
            if Decimal(current) == Decimal(value):
                continue
        elif current == value:
            continue
        changed[key] = value
    return changed


def submit_draft(kind, record_id: int, draft: dict, *, performed_by: str, comments: str) -> dict:
    """
    Apply an edited draft of a record.

    Returns:
        The record snapshot after the edit (unchanged snapshot when the draft
        matches the stored row).

    Raises:
        ValidationError: immutable kind, non-editable field, empty comment
        NotFoundError: record does not exist
        AlreadyReversedError: record was reversed
    """
    record_kind, handler = _handler(kind)
    comment = require_text(comments, "Audit comment")
    actor = require_text(performed_by, "performed_by")
    if not handler.editable:
        raise ValidationError(f"Records of kind '{record_kind.value}' cannot be edited")
    if not isinstance(draft, dict):
        raise ValidationError("Invalid JSON payload")

    policy = ModelValidationPolicy(writable_fields=set(handler.editable))
    patch = validate_payload(model=handler.model, payload=draft, policy=policy, partial=True)

    if record_kind is RecordKind.CYLINDER:
        cylinder = cylinder_service.get_cylinder(record_id)
        changes = {k: draft[k] for k in diff_snapshot(cylinder, patch)}
        if not changes:
            return cylinder.to_dict()
        return cylinder_service.edit_cylinder(record_id, changes, comment, performed_by=actor).to_dict()

    if "weight_filled" in patch:
        patch["weight_filled"] = to_kg(patch["weight_filled"], field="weight_filled")
    for key in ("operator_name",):
        if key in patch:
            patch[key] = require_text(patch[key], key)

    def _op():
        row = _get(handler, record_kind, record_id, lock=True)
        if getattr(row, "is_reversed", False):
            raise AlreadyReversedError(f"{record_kind.value} {record_id} was reversed and cannot be edited")
        changes = diff_snapshot(row, patch)
        if not changes:
            return row, None, False

        previous = row.to_dict()
        tank = None
        if "weight_filled" in changes:
            tank = filling_service.change_weight(row, changes.pop("weight_filled"))
        for key, value in changes.items():
            setattr(row, key, value)
        db.session.flush()

        append_approval_log(
            table_name=record_kind.table_name,
            record_id=row.id,
            action=ACTION_EDIT,
            previous_data=previous,
            new_data=row.to_dict(),
            performed_by=actor,
            comments=comment,
        )
        return row, tank, True

    row, tank, edited = run_in_transaction(_op)
    if edited:
        current_app.logger.info("Edited %s %s by %s", record_kind.value, record_id, actor)
    if tank is not None:
        tank_level_changed.send(current_app._get_current_object(), tank=tank, movement=None)
    return row.to_dict()


def delete_record(kind, record_id: int, *, performed_by: str, comments: str) -> dict:
    """Soft-delete a cylinder. Ledger rows are undone by reversal, not deleted."""
    record_kind, handler = _handler(kind)
    if not handler.deletable:
        raise ValidationError(
            f"Records of kind '{record_kind.value}' cannot be deleted; reverse them instead"
        )
    return cylinder_service.soft_delete_cylinder(record_id, comments, performed_by=performed_by).to_dict()


def _set_approval(kind, record_id: int, flag: bool, performed_by: str, comments: str | None) -> dict:
    record_kind, handler = _handler(kind)
    if not handler.approvable:
        raise ValidationError(f"Records of kind '{record_kind.value}' do not carry an approval")
    actor = require_text(performed_by, "performed_by")

    def _op():
        filling = _get(handler, record_kind, record_id, lock=True)
        if filling.is_reversed:
            raise AlreadyReversedError(f"Filling {record_id} was reversed")
        filling_service.set_approval(filling, flag, actor=actor, comments=comments)
        return filling

    filling = run_in_transaction(_op)
    current_app.logger.info("Filling %s %s by %s", record_id, "approved" if flag else "rejected", actor)
    return filling.to_dict()


def approve_record(kind, record_id: int, *, performed_by: str, comments: str | None = None) -> dict:
    return _set_approval(kind, record_id, True, performed_by, comments)


def reject_record(kind, record_id: int, *, performed_by: str, comments: str | None = None) -> dict:
    return _set_approval(kind, record_id, False, performed_by, comments)
