# Overview: Reversal Engine; undoes a filling, transfer or tank movement exactly once.

"""
Reversal Engine.

STATE MACHINE (per ledger row):
    Active --reverse()--> Reversed   (terminal)

RULES (NON-NEGOTIABLE):
1. A row is reversed at most once; a second attempt raises
   AlreadyReversedError and changes nothing.
2. Reversal never deletes: it stamps is_reversed, reversed_at,
   reversed_by, reversal_reason and applies the inverse state change in the
   same transaction.
3. Tank-level inverses go through the same 0 <= level <= capacity guard as
   forward movements.
4. Every reversal appends an ApprovalLog(action=reverse).
"""
from __future__ import annotations

from flask import current_app

from co2ledger.errors import AlreadyReversedError, NotFoundError, StaleSelectionError, ValidationError
from co2ledger.extensions import db
from co2ledger.models import Cylinder, Filling, RecordKind, TankMovement, Transfer
from co2ledger.models.audit import ACTION_REVERSE
from co2ledger.models.cylinders import STATUS_EMPTY, STATUS_FULL
from co2ledger.models.kinds import REVERSIBLE_KINDS
from co2ledger.services import tank_service
from co2ledger.services.audit_service import append_approval_log
from co2ledger.services.concurrency import lock_for_update, run_in_transaction
from co2ledger.signals import cylinders_changed, record_reversed, tank_level_changed
from co2ledger.time_utils import utcnow
from co2ledger.validation import require_text


def _load_for_reversal(model, record_id: int, label: str):
    row = lock_for_update(db.session.query(model).filter_by(id=record_id)).first()
    if not row:
        raise NotFoundError(f"{label} {record_id} not found")
    if row.is_reversed:
        raise AlreadyReversedError(f"{label} {record_id} was already reversed")
    return row


def _stamp(row, actor: str, reason: str | None) -> None:
    row.is_reversed = True
    row.reversed_at = utcnow()
    row.reversed_by = actor
    row.reversal_reason = reason


def _lock_cylinder(cylinder_id: int) -> Cylinder:
    cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=cylinder_id)).first()
    if not cylinder:
        raise NotFoundError(f"Cylinder {cylinder_id} not found")
    return cylinder


def _log(kind: RecordKind, row, previous: dict, actor: str, reason: str | None) -> None:
    append_approval_log(
        table_name=kind.table_name,
        record_id=row.id,
        action=ACTION_REVERSE,
        previous_data=previous,
        new_data=row.to_dict(),
        performed_by=actor,
        comments=reason,
    )


def _reverse_filling(filling_id: int, actor: str, reason: str | None):
    filling = _load_for_reversal(Filling, filling_id, "Filling")
    previous = filling.to_dict()
    tank = None

    cylinder = _lock_cylinder(filling.cylinder_id)
    later = (
        db.session.query(Filling.id)
        .filter(
            Filling.cylinder_id == filling.cylinder_id,
            Filling.id > filling.id,
            Filling.is_reversed.is_(False),
        )
        .first()
    )
    if later is not None or cylinder.current_status != STATUS_FULL:
        raise StaleSelectionError(
            f"Cylinder {cylinder.serial_number} is no longer in the state filling {filling.id} left it in "
            f"(status {cylinder.current_status}); reverse the later movements first"
        )

    consumption = (
        db.session.query(TankMovement)
        .filter(TankMovement.reference_filling_id == filling.id, TankMovement.is_reversed.is_(False))
        .first()
    )
    if consumption is not None:
        tank = tank_service.get_tank(lock=True)
        # Give the consumed CO2 back to the tank
        tank_service.apply_level_delta(tank, -consumption.signed_delta)
        _stamp(consumption, actor, reason or f"Filling {filling.id} reversed")

    cylinder.current_status = STATUS_EMPTY

    _stamp(filling, actor, reason)
    db.session.flush()
    _log(RecordKind.FILLING, filling, previous, actor, reason)
    return filling, [cylinder.id], tank


def _reverse_transfer(transfer_id: int, actor: str, reason: str | None):
    transfer = _load_for_reversal(Transfer, transfer_id, "Transfer")
    previous = transfer.to_dict()

    cylinder = _lock_cylinder(transfer.cylinder_id)
    if cylinder.current_location != transfer.to_location:
        raise StaleSelectionError(
            f"Cylinder {cylinder.serial_number} has moved to {cylinder.current_location} "
            f"since transfer {transfer.id}; reverse the later transfer first"
        )

    cylinder.current_location = transfer.from_location
    # Undo a forced status only if nothing changed it since
    if (
        transfer.previous_status
        and transfer.new_status != transfer.previous_status
        and cylinder.current_status == transfer.new_status
    ):
        cylinder.current_status = transfer.previous_status

    _stamp(transfer, actor, reason)
    db.session.flush()
    _log(RecordKind.TRANSFER, transfer, previous, actor, reason)
    return transfer, [cylinder.id], None


def _reverse_tank_movement(movement_id: int, actor: str, reason: str | None):
    movement = _load_for_reversal(TankMovement, movement_id, "Tank movement")
    if movement.reference_filling_id is not None:
        raise ValidationError(
            f"Tank movement {movement.id} is the consumption of filling "
            f"{movement.reference_filling_id}; reverse the filling instead"
        )
    previous = movement.to_dict()

    tank = tank_service.get_tank(lock=True)
    tank_service.apply_level_delta(tank, -movement.signed_delta)

    _stamp(movement, actor, reason)
    db.session.flush()
    _log(RecordKind.TANK_MOVEMENT, movement, previous, actor, reason)
    return movement, [], tank


_HANDLERS = {
    RecordKind.FILLING: _reverse_filling,
    RecordKind.TRANSFER: _reverse_transfer,
    RecordKind.TANK_MOVEMENT: _reverse_tank_movement,
}


def reverse_record(kind, record_id: int, *, reversed_by: str, reason: str | None = None):
    """
    Undo a ledger row's effect and mark it reversed.

    Args:
        kind: "filling", "transfer" or "tank_movement" (or RecordKind)
        record_id: row id
        reversed_by: actor identity (required)
        reason: optional free text

    Returns:
        The reversed row.

    Raises:
        ValidationError: unknown/non-reversible kind, missing actor,
            consumption movement reversed directly
        NotFoundError: row does not exist
        AlreadyReversedError: row already reversed
        StaleSelectionError: the cylinder has moved on or been refilled since
        InsufficientInventoryError / OverCapacityError: tank guard
    """
    record_kind = RecordKind.parse(kind)
    if record_kind not in REVERSIBLE_KINDS:
        raise ValidationError(f"Records of kind '{record_kind.value}' cannot be reversed")
    actor = require_text(reversed_by, "reversed_by")
    note = (reason or "").strip() or None
    handler = _HANDLERS[record_kind]

    try:
        row, cylinder_ids, tank = run_in_transaction(lambda: handler(record_id, actor, note))
    except AlreadyReversedError:
        current_app.logger.warning("Rejected second reversal of %s %s", record_kind.value, record_id)
        raise

    current_app.logger.info("Reversed %s %s by %s", record_kind.value, record_id, actor)
    app = current_app._get_current_object()
    record_reversed.send(app, kind=record_kind, record=row)
    if cylinder_ids:
        cylinders_changed.send(app, cylinder_ids=cylinder_ids, reason="reversal")
    if tank is not None:
        tank_level_changed.send(app, tank=tank, movement=None)
    return row


def reverse_filling(filling_id: int, *, reversed_by: str, reason: str | None = None) -> Filling:
    return reverse_record(RecordKind.FILLING, filling_id, reversed_by=reversed_by, reason=reason)


def reverse_transfer(transfer_id: int, *, reversed_by: str, reason: str | None = None) -> Transfer:
    return reverse_record(RecordKind.TRANSFER, transfer_id, reversed_by=reversed_by, reason=reason)


def reverse_tank_movement(movement_id: int, *, reversed_by: str, reason: str | None = None) -> TankMovement:
    return reverse_record(RecordKind.TANK_MOVEMENT, movement_id, reversed_by=reversed_by, reason=reason)
