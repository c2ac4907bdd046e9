# backend/co2ledger/services/transfer_service.py
"""
Cylinder transfer service.

WHY: Track every cylinder as it moves between the fixed locations
(dispatch, filling station, routes, customers, returns, maintenance).
One Transfer row per cylinder; a batch shares a reference number
(transfer_number, nota_envio_number or delivery_order_number).

RULES:
1. from_location != to_location.
2. Every selected cylinder must currently be at from_location
   (stale-selection guard), else the whole batch is rejected.
3. dispatch -> filling_station forces current_status = empty; the prior
   status is kept on the row so a reversal restores it.
4. trip_closure marks every transfer sharing the batch reference as
   closed, removing the batch from the open-batch pool downstream stages
   pick from (routes -> customers, customers -> customer_return, ...).
"""
from __future__ import annotations
from co2ledger.extensions import db
from co2ledger.errors import NotFoundError, StaleSelectionError, ValidationError
from co2ledger.models import Transfer
from co2ledger.models.cylinders import (
    CYLINDER_LOCATIONS,
    LOCATION_CUSTOMER_RETURN,
    LOCATION_CUSTOMERS,
    LOCATION_DISPATCH,
    LOCATION_FILLING_STATION,
    STATUS_EMPTY,
)
from co2ledger.services import cylinder_service
from co2ledger.services.concurrency import lock_for_update, run_in_transaction
from co2ledger.signals import cylinders_changed, transfers_recorded
from co2ledger.time_utils import parse_iso_date
from co2ledger.validation import require_choice, require_text
from datetime import date
from flask import current_app
from sqlalchemy import or_


# Legs that move cylinders to or back from a customer need the customer's name
CUSTOMER_LEGS = {
    (LOCATION_DISPATCH, LOCATION_CUSTOMERS),
    (LOCATION_CUSTOMERS, LOCATION_CUSTOMER_RETURN),
}

# (from, to) -> status forced on arrival
FORCED_STATUS = {
    (LOCATION_DISPATCH, LOCATION_FILLING_STATION): STATUS_EMPTY,
}


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _reference_filter(reference: str):
    return or_(
        Transfer.transfer_number == reference,
        Transfer.nota_envio_number == reference,
        Transfer.delivery_order_number == reference,
    )


def create_transfer_batch(
    cylinder_ids,
    *,
    from_location: str,
    to_location: str,
    operator_name: str,
    transfer_number: str | None = None,
    nota_envio_number: str | None = None,
    delivery_order_number: str | None = None,
    trip_closure: bool = False,
    driver_name: str | None = None,
    customer_name: str | None = None,
    transfer_date=None,
    observations: str | None = None,
) -> list[Transfer]:
    """
    Move a batch of cylinders from one location to another.

    Args:
        cylinder_ids: cylinders to move (all must be at from_location)
        from_location: where the cylinders are now
        to_location: where they go
        operator_name: who registered the move
        transfer_number / nota_envio_number / delivery_order_number:
            optional batch reference numbers
        trip_closure: close every transfer sharing the batch reference

    Returns:
        list[Transfer]: one row per cylinder

    Raises:
        ValidationError: bad locations, same location, missing operator,
            missing customer on a customer leg, trip closure without reference
        NotFoundError: unknown or inactive cylinder
        StaleSelectionError: a cylinder is no longer at from_location
    """
    require_choice(from_location, CYLINDER_LOCATIONS, "from_location")
    require_choice(to_location, CYLINDER_LOCATIONS, "to_location")
    if from_location == to_location:
        raise ValidationError("Cannot transfer to the same location")
    operator = require_text(operator_name, "operator_name")

    leg = (from_location, to_location)
    customer = _clean(customer_name)
    if leg in CUSTOMER_LEGS and not customer:
        raise ValidationError("customer_name is required for customer deliveries and returns")

    refs = {
        "transfer_number": _clean(transfer_number),
        "nota_envio_number": _clean(nota_envio_number),
        "delivery_order_number": _clean(delivery_order_number),
    }
    reference = refs["transfer_number"] or refs["nota_envio_number"] or refs["delivery_order_number"]
    if trip_closure and not reference:
        raise ValidationError("Trip closure requires a batch reference number")

    if transfer_date is None or isinstance(transfer_date, date):
        moved_on = transfer_date
    else:
        try:
            moved_on = parse_iso_date(str(transfer_date))
        except ValueError:
            raise ValidationError("transfer_date must be a valid date (YYYY-MM-DD)")

    ids = list(cylinder_ids)
    forced_status = FORCED_STATUS.get(leg)

    def _op():
        cylinders = cylinder_service.lock_active_cylinders(ids)
        stale = [c.serial_number for c in cylinders if c.current_location != from_location]
        if stale:
            raise StaleSelectionError(
                f"Cylinders are no longer at {from_location}: {', '.join(stale)}. "
                f"Refresh the selection and retry."
            )

        transfers = []
        for cylinder in cylinders:
            transfer = Transfer(
                cylinder_id=cylinder.id,
                from_location=from_location,
                to_location=to_location,
                previous_status=cylinder.current_status,
                new_status=forced_status or cylinder.current_status,
                operator_name=operator,
                driver_name=_clean(driver_name),
                customer_name=customer,
                trip_closure=bool(trip_closure),
                transfer_date=moved_on,
                observations=_clean(observations),
                is_reversed=False,
                **refs,
            )
            db.session.add(transfer)
            transfers.append(transfer)
        db.session.flush()

        cylinder_service.set_state(cylinders, location=to_location, status=forced_status)

        if trip_closure:
            _close_reference(reference)

        return transfers

    transfers = run_in_transaction(_op)
    current_app.logger.info(
        "Transfer batch %s: %s cylinders %s -> %s",
        reference or "-", len(transfers), from_location, to_location,
    )
    app = current_app._get_current_object()
    transfers_recorded.send(app, transfers=transfers, reference=reference)
    cylinders_changed.send(app, cylinder_ids=[t.cylinder_id for t in transfers], reason="transfer")
    return transfers


def _close_reference(reference: str) -> int:
    rows = lock_for_update(db.session.query(Transfer).filter(_reference_filter(reference))).all()
    for row in rows:
        row.trip_closure = True
    db.session.flush()
    return len(rows)


def close_trip(reference: str, *, closed_by: str) -> int:
    """
    Mark every transfer sharing the reference number as trip_closure=True.

    Returns:
        int: number of transfer rows closed

    Raises:
        NotFoundError: no transfer carries that reference
    """
    ref = _clean(reference)
    if not ref:
        raise ValidationError("Reference number is required")
    actor = require_text(closed_by, "closed_by")

    def _op():
        closed = _close_reference(ref)
        if closed == 0:
            raise NotFoundError(f"No transfers found for reference {ref}")
        return closed

    closed = run_in_transaction(_op)
    current_app.logger.info("Trip %s closed by %s (%s transfers)", ref, actor, closed)
    return closed


def list_open_batches(location: str) -> list[dict]:
    """
    Open (not trip-closed, not reversed) transfer batches that delivered
    cylinders to `location`, grouped by reference number.

    Only cylinders still at `location` are offered, so the next stage
    picks from a pool that passes its own stale-selection guard.
    """
    require_choice(location, CYLINDER_LOCATIONS, "location")
    rows = (
        db.session.query(Transfer)
        .filter(
            Transfer.to_location == location,
            Transfer.trip_closure.is_(False),
            Transfer.is_reversed.is_(False),
        )
        .order_by(Transfer.id)
        .all()
    )

    batches: dict[str, dict] = {}
    for row in rows:
        reference = row.reference_number
        if not reference:
            continue
        cylinder = row.cylinder
        if not cylinder.is_active or cylinder.current_location != location:
            continue
        batch = batches.setdefault(reference, {
            "reference_number": reference,
            "from_location": row.from_location,
            "to_location": row.to_location,
            "customer_name": row.customer_name,
            "driver_name": row.driver_name,
            "transfer_ids": [],
            "cylinder_ids": [],
        })
        if row.cylinder_id not in batch["cylinder_ids"]:
            batch["transfer_ids"].append(row.id)
            batch["cylinder_ids"].append(row.cylinder_id)

    return list(batches.values())


def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id)
    if not transfer:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    *,
    location: str | None = None,
    reference: str | None = None,
    cylinder_id: int | None = None,
    trip_closure: bool | None = None,
    is_reversed: bool | None = None,
    limit: int = 200,
) -> list[Transfer]:
    """Transfers touching `location` (as origin or destination) and other filters."""
    query = db.session.query(Transfer)
    if location:
        require_choice(location, CYLINDER_LOCATIONS, "location")
        query = query.filter(or_(Transfer.from_location == location, Transfer.to_location == location))
    if reference:
        query = query.filter(_reference_filter(reference))
    if cylinder_id is not None:
        query = query.filter(Transfer.cylinder_id == cylinder_id)
    if trip_closure is not None:
        query = query.filter(Transfer.trip_closure.is_(trip_closure))
    if is_reversed is not None:
        query = query.filter(Transfer.is_reversed.is_(is_reversed))
    return query.order_by(Transfer.id.desc()).limit(limit).all()
