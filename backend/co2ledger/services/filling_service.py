# Overview: Movement Engine, filling side; batch cylinder fillings with shrinkage.

"""
Filling batches.

WHY: Filling turns empty cylinders into full ones and consumes CO2 from the
bulk tank. A batch is one atomic unit: every Filling row is inserted and
every cylinder marked full, or nothing is.

RULES:
1. Approval gates the write: a batch with is_approved=False is rejected
   with ApprovalRequiredError before anything is touched.
2. Every weight must be > 0; shrinkage_amount = weight * 1%.
3. Every cylinder must be active and currently empty (StaleSelectionError
   otherwise; the caller re-fetches the empty pool and retries).
4. When FILLING_DEBITS_TANK is on, each filling also writes a tank exit
   row for weight + shrinkage, so the whole batch fails if the tank cannot
   cover it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from flask import current_app

from co2ledger.errors import (
    AlreadyReversedError,
    ApprovalRequiredError,
    NotFoundError,
    StaleSelectionError,
    ValidationError,
)
from co2ledger.extensions import db
from co2ledger.models import Filling, RecordKind, TankMovement
from co2ledger.models.audit import ACTION_APPROVE, ACTION_EDIT, ACTION_REJECT
from co2ledger.models.cylinders import STATUS_EMPTY, STATUS_FULL
from co2ledger.quantities import FILLING_SHRINKAGE_PERCENTAGE, ZERO, compute_shrinkage, to_kg
from co2ledger.services import cylinder_service, tank_service
from co2ledger.services.audit_service import append_approval_log
from co2ledger.services.concurrency import lock_for_update, run_in_transaction
from co2ledger.signals import cylinders_changed, fillings_recorded, tank_level_changed
from co2ledger.time_utils import parse_iso_datetime, utcnow
from co2ledger.validation import require_text


TABLE_NAME = RecordKind.FILLING.table_name


@dataclass(frozen=True)
class FillingItem:
    cylinder_id: int
    weight_filled: object


@dataclass
class FillingBatchResult:
    """What the caller shows after a batch: counts and the persisted sums."""
    batch_number: str | None
    fillings: list[Filling] = field(default_factory=list)
    total_weight: Decimal = ZERO
    total_shrinkage: Decimal = ZERO

    @property
    def count(self) -> int:
        return len(self.fillings)

    def to_dict(self) -> dict:
        return {
            "batch_number": self.batch_number,
            "count": self.count,
            "total_weight": float(self.total_weight),
            "total_shrinkage": float(self.total_shrinkage),
            "fillings": [f.to_dict() for f in self.fillings],
        }


def _coerce_items(items: Iterable) -> list[FillingItem]:
    coerced = []
    for item in items:
        if isinstance(item, FillingItem):
            coerced.append(item)
        elif isinstance(item, dict):
            if "cylinder_id" not in item:
                raise ValidationError("Each filling needs a cylinder_id")
            coerced.append(FillingItem(
                cylinder_service.coerce_cylinder_id(item["cylinder_id"]), item.get("weight_filled"),
            ))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            cylinder_id, weight = item
            coerced.append(FillingItem(cylinder_service.coerce_cylinder_id(cylinder_id), weight))
        else:
            raise ValidationError("Each filling must be {cylinder_id, weight_filled} or a (cylinder_id, weight) pair")
    if not coerced:
        raise ValidationError("At least one cylinder must be selected")
    return coerced


def _coerce_datetime(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("filling_datetime must be an ISO-8601 datetime")
    return parsed or utcnow()


def _sum_batch(fillings: list[Filling]) -> tuple[Decimal, Decimal]:
    total_weight = sum((Decimal(f.weight_filled) for f in fillings), ZERO)
    total_shrinkage = sum((Decimal(f.shrinkage_amount) for f in fillings), ZERO)
    return total_weight, total_shrinkage


def record_filling_batch(
    items: Iterable,
    *,
    operator_name: str,
    is_approved: bool,
    approved_by: str | None = None,
    batch_number: str | None = None,
    filling_datetime=None,
    observations: str | None = None,
) -> FillingBatchResult:
    """
    Fill a batch of empty cylinders.

    Args:
        items: (cylinder_id, weight_filled) pairs, FillingItem, or dicts
        operator_name: who ran the filling station
        is_approved: must be True
        approved_by: approver identity (required with approval)
        batch_number: shared batch identifier, None for a one-off

    Returns:
        FillingBatchResult with the inserted rows and their persisted sums

    Raises:
        ApprovalRequiredError: is_approved is not True
        ValidationError: invalid weight, missing operator/approver
        NotFoundError: unknown or inactive cylinder
        StaleSelectionError: a cylinder is no longer empty
        InsufficientInventoryError: tank cannot cover the batch
    """
    if is_approved is not True:
        raise ApprovalRequiredError("Filling batch must be approved before cylinders can be marked full")
    operator = require_text(operator_name, "operator_name")
    approver = require_text(approved_by, "approved_by")
    batch = (batch_number or "").strip() or None
    filled_at = _coerce_datetime(filling_datetime)

    weights = {}
    for item in _coerce_items(items):
        if item.cylinder_id in weights:
            raise ValidationError(f"Cylinder {item.cylinder_id} appears twice in the batch")
        weights[item.cylinder_id] = to_kg(item.weight_filled, field="weight_filled")

    debit_tank = current_app.config.get("FILLING_DEBITS_TANK", True)

    def _op():
        cylinders = cylinder_service.lock_active_cylinders(weights.keys())
        not_empty = [c.serial_number for c in cylinders if c.current_status != STATUS_EMPTY]
        if not_empty:
            raise StaleSelectionError(
                f"Cylinders are no longer empty: {', '.join(not_empty)}. Refresh the selection and retry."
            )

        tank = tank_service.get_tank(lock=True)
        fillings = []
        for cylinder in cylinders:
            weight = weights[cylinder.id]
            notes = observations
            if cylinder.customer_owned and cylinder.customer_info:
                notes = f"Cliente: {cylinder.customer_info}. {observations or ''}".strip()
            filling = Filling(
                cylinder_id=cylinder.id,
                tank_id=tank.id,
                weight_filled=weight,
                operator_name=operator,
                batch_number=batch,
                filling_datetime=filled_at,
                is_approved=True,
                approved_by=approver,
                shrinkage_percentage=FILLING_SHRINKAGE_PERCENTAGE,
                shrinkage_amount=compute_shrinkage(weight, FILLING_SHRINKAGE_PERCENTAGE),
                observations=notes,
                is_reversed=False,
            )
            db.session.add(filling)
            db.session.flush()
            if debit_tank:
                tank_service.record_filling_consumption(tank, filling)
            fillings.append(filling)

        # All rows are flushed before the registry moves
        cylinder_service.set_state(cylinders, status=STATUS_FULL)

        total_weight, total_shrinkage = _sum_batch(fillings)
        return FillingBatchResult(
            batch_number=batch,
            fillings=fillings,
            total_weight=total_weight,
            total_shrinkage=total_shrinkage,
        ), tank

    result, tank = run_in_transaction(_op)
    current_app.logger.info(
        "Filling batch %s: %s cylinders, %s kg, %s kg shrinkage",
        batch or "-", result.count, result.total_weight, result.total_shrinkage,
    )
    app = current_app._get_current_object()
    fillings_recorded.send(app, fillings=result.fillings, batch_number=batch)
    cylinders_changed.send(app, cylinder_ids=[f.cylinder_id for f in result.fillings], reason="filling")
    if debit_tank:
        tank_level_changed.send(app, tank=tank, movement=None)
    return result


def get_filling(filling_id: int) -> Filling:
    filling = db.session.get(Filling, filling_id)
    if not filling:
        raise NotFoundError(f"Filling {filling_id} not found")
    return filling


def get_batch(batch_number: str, *, include_reversed: bool = True) -> list[Filling]:
    query = db.session.query(Filling).filter(Filling.batch_number == batch_number)
    if not include_reversed:
        query = query.filter(Filling.is_reversed.is_(False))
    fillings = query.order_by(Filling.id).all()
    if not fillings:
        raise NotFoundError(f"Filling batch {batch_number} not found")
    return fillings


def batch_summary(batch_number: str) -> dict:
    fillings = get_batch(batch_number)
    active = [f for f in fillings if not f.is_reversed]
    total_weight, total_shrinkage = _sum_batch(active)
    return {
        "batch_number": batch_number,
        "count": len(fillings),
        "active_count": len(active),
        "total_weight": float(total_weight),
        "total_shrinkage": float(total_shrinkage),
        "is_approved": all(f.is_approved for f in fillings),
        "fillings": [f.to_dict() for f in fillings],
    }


def list_fillings(
    *,
    batch_number: str | None = None,
    is_approved: bool | None = None,
    is_reversed: bool | None = None,
    cylinder_id: int | None = None,
    limit: int = 200,
) -> list[Filling]:
    query = db.session.query(Filling)
    if batch_number:
        query = query.filter(Filling.batch_number == batch_number)
    if is_approved is not None:
        query = query.filter(Filling.is_approved.is_(is_approved))
    if is_reversed is not None:
        query = query.filter(Filling.is_reversed.is_(is_reversed))
    if cylinder_id is not None:
        query = query.filter(Filling.cylinder_id == cylinder_id)
    return query.order_by(Filling.id.desc()).limit(limit).all()


def _consumption_for(filling: Filling) -> TankMovement | None:
    return (
        db.session.query(TankMovement)
        .filter(TankMovement.reference_filling_id == filling.id, TankMovement.is_reversed.is_(False))
        .first()
    )


def change_weight(filling: Filling, weight: Decimal, tank=None):
    """
    Set a filling's weight, re-derive shrinkage and move the linked tank
    consumption by the difference. Flush only.

    Returns the locked tank when one was touched (else the tank passed in).
    """
    filling.weight_filled = weight
    filling.shrinkage_amount = compute_shrinkage(weight, Decimal(filling.shrinkage_percentage))

    consumption = _consumption_for(filling)
    if consumption is not None:
        if tank is None:
            tank = tank_service.get_tank(lock=True)
        old_total = consumption.total_amount
        consumption.quantity = weight
        consumption.shrinkage_amount = filling.shrinkage_amount
        # More CO2 consumed means a lower tank level
        tank_service.apply_level_delta(tank, old_total - consumption.total_amount)
    db.session.flush()
    return tank


def update_batch_weights(
    batch_number: str,
    weights: dict,
    *,
    performed_by: str,
    comments: str | None = None,
) -> FillingBatchResult:
    """
    Bulk-edit weights of fillings in one batch, each independently.

    Shrinkage is re-derived, the linked tank consumption row and the tank
    level follow the weight delta, and every changed filling gets an
    ApprovalLog(action=edit). All-or-nothing.
    """
    actor = require_text(performed_by, "performed_by")
    if not isinstance(weights, dict) or not weights:
        raise ValidationError("No weights submitted")
    new_weights = {}
    for fid, w in weights.items():
        try:
            new_weights[int(fid)] = to_kg(w, field="weight_filled")
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid filling id: {fid}") from None

    def _op():
        fillings = lock_for_update(
            db.session.query(Filling).filter(Filling.batch_number == batch_number).order_by(Filling.id)
        ).all()
        if not fillings:
            raise NotFoundError(f"Filling batch {batch_number} not found")
        by_id = {f.id: f for f in fillings}
        foreign = [fid for fid in new_weights if fid not in by_id]
        if foreign:
            raise ValidationError(
                f"Fillings not in batch {batch_number}: {', '.join(str(f) for f in foreign)}"
            )

        tank = None
        changed = []
        for fid, weight in sorted(new_weights.items()):
            filling = by_id[fid]
            if filling.is_reversed:
                raise AlreadyReversedError(f"Filling {fid} was reversed and cannot be edited")
            if Decimal(filling.weight_filled) == weight:
                continue

            previous = filling.to_dict()
            tank = change_weight(filling, weight, tank)

            append_approval_log(
                table_name=TABLE_NAME,
                record_id=filling.id,
                action=ACTION_EDIT,
                previous_data=previous,
                new_data=filling.to_dict(),
                performed_by=actor,
                comments=comments,
            )
            changed.append(filling)

        active = [f for f in fillings if not f.is_reversed]
        total_weight, total_shrinkage = _sum_batch(active)
        return FillingBatchResult(
            batch_number=batch_number,
            fillings=active,
            total_weight=total_weight,
            total_shrinkage=total_shrinkage,
        ), changed, tank

    result, changed, tank = run_in_transaction(_op)
    current_app.logger.info(
        "Batch %s weights edited by %s: %s fillings changed", batch_number, actor, len(changed)
    )
    if tank is not None:
        tank_level_changed.send(current_app._get_current_object(), tank=tank, movement=None)
    return result


def set_batch_approval(
    batch_number: str,
    is_approved: bool,
    *,
    approved_by: str,
    comments: str | None = None,
) -> list[Filling]:
    """
    Set approval identically on every filling sharing batch_number.

    Writes ApprovalLog(approve|reject) per filling. Revoking approval does
    not touch cylinder status; reversal is the only undo of a fill.
    """
    actor = require_text(approved_by, "approved_by")
    flag = bool(is_approved)

    def _op():
        fillings = lock_for_update(
            db.session.query(Filling).filter(Filling.batch_number == batch_number).order_by(Filling.id)
        ).all()
        if not fillings:
            raise NotFoundError(f"Filling batch {batch_number} not found")
        for filling in fillings:
            set_approval(filling, flag, actor=actor, comments=comments)
        return fillings

    fillings = run_in_transaction(_op)
    current_app.logger.info(
        "Batch %s %s by %s (%s fillings)",
        batch_number, "approved" if flag else "rejected", actor, len(fillings),
    )
    return fillings


def set_approval(filling: Filling, flag: bool, *, actor: str, comments: str | None) -> None:
    """Flip one filling's approval and log it. Flush only."""
    previous = filling.to_dict()
    filling.is_approved = flag
    filling.approved_by = actor if flag else None
    db.session.flush()
    append_approval_log(
        table_name=TABLE_NAME,
        record_id=filling.id,
        action=ACTION_APPROVE if flag else ACTION_REJECT,
        previous_data=previous,
        new_data=filling.to_dict(),
        performed_by=actor,
        comments=comments,
    )
