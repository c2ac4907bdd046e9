# Overview: Tank Ledger; bulk CO2 tank level maintained through signed movements.

"""
Tank Ledger.

WHY: The bulk tank is the one globally shared resource with a hard
invariant (0 <= current_level <= capacity). Every change to the level goes
through apply_level_delta(), which runs on a locked tank row inside the
caller's transaction, so a concurrent writer either waits on the lock or
fails the version_id check. Nothing is clamped: an operation that would
break the invariant is rejected.

SHRINKAGE (3% for tank movements):
- entrance: level += quantity + shrinkage (supplier overfill compensation)
- exit:     level -= quantity + shrinkage
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app

from co2ledger.errors import (
    InsufficientInventoryError,
    NotFoundError,
    OverCapacityError,
    ValidationError,
)
from co2ledger.extensions import db
from co2ledger.models import Co2Tank, Filling, TankMovement
from co2ledger.models.tank import MOVEMENT_ENTRANCE, MOVEMENT_EXIT, MOVEMENT_TYPES
from co2ledger.quantities import (
    TANK_SHRINKAGE_PERCENTAGE,
    ZERO,
    compute_shrinkage,
    quantize_kg,
    to_kg,
)
from co2ledger.services.concurrency import lock_for_update, run_in_transaction
from co2ledger.signals import tank_level_changed
from co2ledger.time_utils import utcnow
from co2ledger.validation import require_choice, require_text


# Status tiers reported by current_level()
LEVEL_CRITICAL = "critical"
LEVEL_LOW = "low"
LEVEL_NORMAL = "normal"

CRITICAL_PERCENTAGE = Decimal("5")


def get_tank(*, lock: bool = False) -> Co2Tank:
    """Return the singleton tank row (optionally locked for update)."""
    query = db.session.query(Co2Tank).order_by(Co2Tank.id)
    if lock:
        query = lock_for_update(query)
    tank = query.first()
    if not tank:
        raise NotFoundError("CO2 tank is not configured")
    return tank


def create_tank(
    *,
    capacity,
    current_level=0,
    minimum_threshold=20,
    name: str = "Main tank",
) -> Co2Tank:
    """Configure the singleton tank. Fails if one already exists."""
    capacity_kg = to_kg(capacity, field="capacity", label="invalid capacity")
    try:
        level = Decimal(str(current_level))
        threshold = Decimal(str(minimum_threshold))
    except (ArithmeticError, ValueError):
        raise ValidationError("current_level and minimum_threshold must be numbers")
    if not (level.is_finite() and threshold.is_finite()):
        raise ValidationError("current_level and minimum_threshold must be finite numbers")
    level = quantize_kg(level)
    if level < ZERO or level > capacity_kg:
        raise ValidationError("current_level must be between 0 and capacity")
    if threshold < ZERO or threshold > 100:
        raise ValidationError("minimum_threshold must be a percentage between 0 and 100")

    def _op():
        if db.session.query(Co2Tank).first():
            raise ValidationError("CO2 tank is already configured")
        tank = Co2Tank(
            name=name,
            capacity=capacity_kg,
            current_level=level,
            minimum_threshold=threshold,
        )
        db.session.add(tank)
        db.session.flush()
        return tank

    return run_in_transaction(_op)


def apply_level_delta(tank: Co2Tank, delta: Decimal) -> tuple[Decimal, Decimal]:
    """
    Move the (already locked) tank level by delta. Flush only.

    Returns:
        (level_before, level_after)

    Raises:
        InsufficientInventoryError: level would go below zero
        OverCapacityError: level would exceed capacity
    """
    before = Decimal(tank.current_level)
    after = quantize_kg(before + delta)
    if after < ZERO:
        raise InsufficientInventoryError(
            f"Insufficient CO2 in tank. Available: {before} kg, required: {-delta} kg"
        )
    if after > Decimal(tank.capacity):
        raise OverCapacityError(
            f"Tank capacity exceeded. Capacity: {tank.capacity} kg, level would be {after} kg"
        )
    tank.current_level = after
    db.session.flush()
    return before, after


def _add_movement(
    tank: Co2Tank,
    *,
    movement_type: str,
    quantity: Decimal,
    shrinkage_percentage: Decimal,
    shrinkage_amount: Decimal,
    operator_name: str,
    supplier: str | None = None,
    observations: str | None = None,
    reference_filling_id: int | None = None,
) -> TankMovement:
    movement = TankMovement(
        tank_id=tank.id,
        movement_type=movement_type,
        quantity=quantity,
        shrinkage_percentage=shrinkage_percentage,
        shrinkage_amount=shrinkage_amount,
        operator_name=operator_name,
        supplier=supplier,
        observations=observations,
        reference_filling_id=reference_filling_id,
        is_reversed=False,
    )
    before, after = apply_level_delta(tank, movement.signed_delta)
    movement.level_before = before
    movement.level_after = after
    db.session.add(movement)
    db.session.flush()
    return movement


def record_entrance(
    quantity,
    operator_name: str,
    *,
    supplier: str | None = None,
    observations: str | None = None,
) -> TankMovement:
    """
    Record a refill: level += quantity + 3% shrinkage.

    Raises:
        ValidationError: quantity <= 0 or missing operator
        OverCapacityError: the refill does not fit
    """
    amount = to_kg(quantity, field="quantity", label="invalid quantity")
    operator = require_text(operator_name, "operator_name")
    shrinkage = compute_shrinkage(amount, TANK_SHRINKAGE_PERCENTAGE)

    def _op():
        tank = get_tank(lock=True)
        movement = _add_movement(
            tank,
            movement_type=MOVEMENT_ENTRANCE,
            quantity=amount,
            shrinkage_percentage=TANK_SHRINKAGE_PERCENTAGE,
            shrinkage_amount=shrinkage,
            operator_name=operator,
            supplier=supplier,
            observations=observations,
        )
        tank.last_refill_at = utcnow()
        return tank, movement

    tank, movement = run_in_transaction(_op)
    current_app.logger.info(
        "Tank entrance %s: %s kg + %s kg shrinkage, level now %s kg",
        movement.id, amount, shrinkage, tank.current_level,
    )
    tank_level_changed.send(current_app._get_current_object(), tank=tank, movement=movement)
    return movement


def record_exit(
    quantity,
    operator_name: str,
    *,
    observations: str | None = None,
) -> TankMovement:
    """
    Record a draw: level -= quantity + 3% shrinkage.

    Raises:
        ValidationError: quantity <= 0 or missing operator
        InsufficientInventoryError: quantity + shrinkage exceeds the level
    """
    amount = to_kg(quantity, field="quantity", label="invalid quantity")
    operator = require_text(operator_name, "operator_name")
    shrinkage = compute_shrinkage(amount, TANK_SHRINKAGE_PERCENTAGE)

    def _op():
        tank = get_tank(lock=True)
        movement = _add_movement(
            tank,
            movement_type=MOVEMENT_EXIT,
            quantity=amount,
            shrinkage_percentage=TANK_SHRINKAGE_PERCENTAGE,
            shrinkage_amount=shrinkage,
            operator_name=operator,
            observations=observations,
        )
        return tank, movement

    try:
        tank, movement = run_in_transaction(_op)
    except InsufficientInventoryError as exc:
        current_app.logger.warning("Tank exit rejected: %s", exc.message)
        raise
    current_app.logger.info(
        "Tank exit %s: %s kg + %s kg shrinkage, level now %s kg",
        movement.id, amount, shrinkage, tank.current_level,
    )
    tank_level_changed.send(current_app._get_current_object(), tank=tank, movement=movement)
    return movement


def record_filling_consumption(tank: Co2Tank, filling: Filling) -> TankMovement:
    """
    Debit a filling's weight + shrinkage from the (locked) tank. Flush only.

    The movement reuses the filling's 1% shrinkage so both ledgers agree.
    """
    return _add_movement(
        tank,
        movement_type=MOVEMENT_EXIT,
        quantity=Decimal(filling.weight_filled),
        shrinkage_percentage=Decimal(filling.shrinkage_percentage),
        shrinkage_amount=Decimal(filling.shrinkage_amount),
        operator_name=filling.operator_name,
        observations=f"Filling {filling.id} (cylinder {filling.cylinder_id})",
        reference_filling_id=filling.id,
    )


def level_status(percentage: Decimal, minimum_threshold: Decimal) -> str:
    if percentage <= CRITICAL_PERCENTAGE:
        return LEVEL_CRITICAL
    if percentage <= minimum_threshold:
        return LEVEL_LOW
    return LEVEL_NORMAL


def current_level() -> dict:
    """Level, capacity, percentage of capacity, and status tier."""
    tank = get_tank()
    level = Decimal(tank.current_level)
    capacity = Decimal(tank.capacity)
    percentage = (level / capacity * 100) if capacity > 0 else ZERO
    return {
        "tank_id": tank.id,
        "level": float(level),
        "capacity": float(capacity),
        "percentage": float(round(percentage, 2)),
        "minimum_threshold": float(tank.minimum_threshold),
        "status": level_status(percentage, Decimal(tank.minimum_threshold)),
        "last_refill_at": tank.to_dict()["last_refill_at"],
    }


def list_movements(
    *,
    movement_type: str | None = None,
    include_reversed: bool = True,
    include_consumption: bool = True,
    limit: int = 200,
) -> list[TankMovement]:
    query = db.session.query(TankMovement)
    if movement_type is not None:
        require_choice(movement_type, MOVEMENT_TYPES, "movement_type")
        query = query.filter(TankMovement.movement_type == movement_type)
    if not include_reversed:
        query = query.filter(TankMovement.is_reversed.is_(False))
    if not include_consumption:
        query = query.filter(TankMovement.reference_filling_id.is_(None))
    return query.order_by(TankMovement.id.desc()).limit(limit).all()


def recompute_level(*, initial_level=0, apply: bool = False) -> dict:
    """
    Rebuild the level from non-reversed movements and report drift.

    initial_level is the level the tank held before its first recorded
    movement. With apply=True the materialized level is overwritten
    (still subject to 0 <= level <= capacity).
    """
    start = quantize_kg(Decimal(str(initial_level)))

    def _op():
        tank = get_tank(lock=True)
        movements = (
            db.session.query(TankMovement)
            .filter(TankMovement.tank_id == tank.id, TankMovement.is_reversed.is_(False))
            .all()
        )
        computed = quantize_kg(start + sum((m.signed_delta for m in movements), ZERO))
        materialized = Decimal(tank.current_level)
        result = {
            "tank_id": tank.id,
            "materialized_level": float(materialized),
            "computed_level": float(computed),
            "drift": float(materialized - computed),
            "movement_count": len(movements),
            "applied": False,
        }
        if apply and computed != materialized:
            apply_level_delta(tank, computed - materialized)
            result["applied"] = True
        return result

    return run_in_transaction(_op)
