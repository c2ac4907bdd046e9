# Overview: Read-only dashboard aggregates over the registry and the ledgers.

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from co2ledger.errors import NotFoundError, ValidationError
from co2ledger.extensions import db
from co2ledger.models import Cylinder, Filling, TankMovement, Transfer
from co2ledger.models.cylinders import (
    CYLINDER_CAPACITIES,
    CYLINDER_LOCATIONS,
    CYLINDER_STATUSES,
    LOCATION_CUSTOMERS,
)
from co2ledger.models.tank import MOVEMENT_ENTRANCE, MOVEMENT_EXIT
from co2ledger.services import tank_service
from co2ledger.services.concurrency import run_read_with_retry
from co2ledger.time_utils import to_iso_date, to_utc_z, today, utcnow


def _positive_days(value, default_key: str) -> int:
    if value is None:
        value = current_app.config[default_key]
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError("days must be an integer")
    if days < 0:
        raise ValidationError("days cannot be negative")
    return days


def inventory_summary() -> dict:
    """Active cylinder counts by location, by status, and by capacity x status."""

    def _query():
        rows = (
            db.session.query(
                Cylinder.current_location,
                Cylinder.current_status,
                Cylinder.capacity,
                func.count(Cylinder.id),
            )
            .filter(Cylinder.is_active.is_(True))
            .group_by(Cylinder.current_location, Cylinder.current_status, Cylinder.capacity)
            .all()
        )
        return rows

    rows = run_read_with_retry(_query)

    by_location = {loc: 0 for loc in CYLINDER_LOCATIONS}
    by_status = {status: 0 for status in CYLINDER_STATUSES}
    by_capacity = {cap: {status: 0 for status in CYLINDER_STATUSES} for cap in CYLINDER_CAPACITIES}
    total = 0
    for location, status, capacity, count in rows:
        by_location[location] = by_location.get(location, 0) + count
        by_status[status] = by_status.get(status, 0) + count
        by_capacity.setdefault(capacity, {}).setdefault(status, 0)
        by_capacity[capacity][status] += count
        total += count

    return {
        "total_active": total,
        "by_location": by_location,
        "by_status": by_status,
        "by_capacity": by_capacity,
    }


def tank_status() -> dict:
    """Tank level and tier, or configured=False when no tank exists yet."""
    try:
        status = tank_service.current_level()
    except NotFoundError:
        return {"configured": False}
    status["configured"] = True
    return status


def test_due_alerts(within_days: int | None = None) -> dict:
    """Active cylinders whose hydrostatic test is due on or before today + N days."""
    days = _positive_days(within_days, "TEST_DUE_WARNING_DAYS")
    current = today()
    horizon = current + timedelta(days=days)

    cylinders = run_read_with_retry(
        lambda: db.session.query(Cylinder)
        .filter(Cylinder.is_active.is_(True), Cylinder.next_test_due <= horizon)
        .order_by(Cylinder.next_test_due, Cylinder.serial_number)
        .all()
    )

    items = []
    for cylinder in cylinders:
        items.append({
            "cylinder_id": cylinder.id,
            "serial_number": cylinder.serial_number,
            "capacity": cylinder.capacity,
            "current_location": cylinder.current_location,
            "next_test_due": to_iso_date(cylinder.next_test_due),
            "days_remaining": (cylinder.next_test_due - current).days,
            "overdue": cylinder.next_test_due < current,
        })

    return {
        "as_of": to_iso_date(current),
        "within_days": days,
        "overdue_count": sum(1 for i in items if i["overdue"]),
        "count": len(items),
        "cylinders": items,
    }


def shrinkage_summary(days: int | None = None) -> dict:
    """
    Shrinkage booked over the last N days, non-reversed rows only.

    Filling consumption rows on the tank ledger are excluded from the tank
    totals; their shrinkage is the filling shrinkage already counted.
    """
    window = _positive_days(days, "SHRINKAGE_WINDOW_DAYS")
    since = utcnow() - timedelta(days=window)

    def _query():
        filling_row = (
            db.session.query(
                func.count(Filling.id),
                func.coalesce(func.sum(Filling.weight_filled), 0),
                func.coalesce(func.sum(Filling.shrinkage_amount), 0),
            )
            .filter(Filling.is_reversed.is_(False), Filling.filling_datetime >= since)
            .one()
        )
        tank_rows = (
            db.session.query(
                TankMovement.movement_type,
                func.count(TankMovement.id),
                func.coalesce(func.sum(TankMovement.quantity), 0),
                func.coalesce(func.sum(TankMovement.shrinkage_amount), 0),
            )
            .filter(
                TankMovement.is_reversed.is_(False),
                TankMovement.reference_filling_id.is_(None),
                TankMovement.created_at >= since,
            )
            .group_by(TankMovement.movement_type)
            .all()
        )
        return filling_row, tank_rows

    filling_row, tank_rows = run_read_with_retry(_query)

    tank = {
        MOVEMENT_ENTRANCE: {"count": 0, "quantity": 0.0, "shrinkage": 0.0},
        MOVEMENT_EXIT: {"count": 0, "quantity": 0.0, "shrinkage": 0.0},
    }
    for movement_type, count, quantity, shrinkage in tank_rows:
        tank[movement_type] = {
            "count": count,
            "quantity": round(float(quantity), 3),
            "shrinkage": round(float(shrinkage), 3),
        }

    count, weight, shrinkage = filling_row
    filling_shrinkage = round(float(shrinkage), 3)
    tank_shrinkage = round(sum(v["shrinkage"] for v in tank.values()), 3)
    return {
        "since": to_utc_z(since),
        "days": window,
        "fillings": {
            "count": count,
            "weight": round(float(weight), 3),
            "shrinkage": filling_shrinkage,
        },
        "tank": tank,
        "total_shrinkage": round(filling_shrinkage + tank_shrinkage, 3),
    }


def cylinders_by_customer() -> list[dict]:
    """
    Active cylinders grouped by customer.

    Customer-owned cylinders group by customer_info; company cylinders at a
    customer group by the customer on their latest non-reversed transfer.
    """
    def _query():
        owned = (
            db.session.query(Cylinder)
            .filter(Cylinder.is_active.is_(True), Cylinder.customer_owned.is_(True))
            .order_by(Cylinder.serial_number)
            .all()
        )
        at_customers = (
            db.session.query(Cylinder)
            .filter(
                Cylinder.is_active.is_(True),
                Cylinder.customer_owned.is_(False),
                Cylinder.current_location == LOCATION_CUSTOMERS,
            )
            .order_by(Cylinder.serial_number)
            .all()
        )
        latest = {}
        if at_customers:
            transfers = (
                db.session.query(Transfer)
                .filter(
                    Transfer.cylinder_id.in_([c.id for c in at_customers]),
                    Transfer.to_location == LOCATION_CUSTOMERS,
                    Transfer.is_reversed.is_(False),
                )
                .order_by(Transfer.id)
                .all()
            )
            for transfer in transfers:
                latest[transfer.cylinder_id] = transfer.customer_name
        return owned, at_customers, latest

    owned, at_customers, latest = run_read_with_retry(_query)

    groups: dict[str, dict] = {}

    def _add(customer: str, cylinder: Cylinder, owned_flag: bool) -> None:
        group = groups.setdefault(customer, {"customer": customer, "owned": [], "on_loan": []})
        group["owned" if owned_flag else "on_loan"].append({
            "cylinder_id": cylinder.id,
            "serial_number": cylinder.serial_number,
            "capacity": cylinder.capacity,
            "current_status": cylinder.current_status,
            "current_location": cylinder.current_location,
        })

    for cylinder in owned:
        _add(cylinder.customer_info or "(unknown)", cylinder, True)
    for cylinder in at_customers:
        _add(latest.get(cylinder.id) or "(unknown)", cylinder, False)

    result = []
    for customer in sorted(groups):
        group = groups[customer]
        group["count"] = len(group["owned"]) + len(group["on_loan"])
        result.append(group)
    return result
