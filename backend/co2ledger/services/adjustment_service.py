# backend/co2ledger/services/adjustment_service.py
"""
Physical count (toma fisica) adjustments.

WHY: A physical count at a location can disagree with the registry. The
operator corrects the registry directly, one InventoryAdjustment row per
cylinder, and the row itself is the audit trail.

RULES:
1. reason is mandatory.
2. status_change needs new_status; location_change needs new_location;
   correction records the count without touching the registry.
3. Every selected cylinder must be active and at `location`, else the
   whole batch is rejected (StaleSelectionError).
"""
from __future__ import annotations
from co2ledger.extensions import db
from co2ledger.errors import StaleSelectionError, ValidationError
from co2ledger.models import InventoryAdjustment
from co2ledger.models.cylinders import CYLINDER_LOCATIONS, CYLINDER_STATUSES
from co2ledger.models.ledger import (
    ADJUSTMENT_CORRECTION,
    ADJUSTMENT_LOCATION_CHANGE,
    ADJUSTMENT_STATUS_CHANGE,
    ADJUSTMENT_TYPES,
)
from co2ledger.services import cylinder_service
from co2ledger.services.concurrency import run_in_transaction
from co2ledger.signals import adjustments_recorded, cylinders_changed
from co2ledger.validation import require_choice, require_text
from flask import current_app


def apply_adjustments(
    location: str,
    cylinder_ids,
    adjustment_type: str,
    reason: str,
    performed_by: str,
    *,
    new_status: str | None = None,
    new_location: str | None = None,
) -> list[InventoryAdjustment]:
    """
    Record one adjustment per cylinder counted at `location`.

    Returns:
        list[InventoryAdjustment]: the inserted rows

    Raises:
        ValidationError: bad type/enum, missing reason or target value
        NotFoundError: unknown or inactive cylinder
        StaleSelectionError: a cylinder is no longer at `location`
    """
    require_choice(location, CYLINDER_LOCATIONS, "location")
    require_choice(adjustment_type, ADJUSTMENT_TYPES, "adjustment_type")
    note = require_text(reason, "reason")
    actor = require_text(performed_by, "performed_by")

    if adjustment_type == ADJUSTMENT_STATUS_CHANGE:
        if not new_status:
            raise ValidationError("new_status is required for a status change")
        require_choice(new_status, CYLINDER_STATUSES, "new_status")
    elif adjustment_type == ADJUSTMENT_LOCATION_CHANGE:
        if not new_location:
            raise ValidationError("new_location is required for a location change")
        require_choice(new_location, CYLINDER_LOCATIONS, "new_location")

    ids = list(cylinder_ids)

    def _op():
        cylinders = cylinder_service.lock_active_cylinders(ids)
        stale = [c.serial_number for c in cylinders if c.current_location != location]
        if stale:
            raise StaleSelectionError(
                f"Cylinders are no longer at {location}: {', '.join(stale)}. Refresh the count and retry."
            )

        adjustments = []
        for cylinder in cylinders:
            adjustment = InventoryAdjustment(
                location=location,
                cylinder_id=cylinder.id,
                adjustment_type=adjustment_type,
                reason=note,
                performed_by=actor,
            )
            if adjustment_type == ADJUSTMENT_STATUS_CHANGE:
                adjustment.previous_status = cylinder.current_status
                adjustment.new_status = new_status
            elif adjustment_type == ADJUSTMENT_LOCATION_CHANGE:
                adjustment.previous_location = cylinder.current_location
                adjustment.new_location = new_location
            db.session.add(adjustment)
            adjustments.append(adjustment)
        db.session.flush()

        if adjustment_type == ADJUSTMENT_STATUS_CHANGE:
            cylinder_service.set_state(cylinders, status=new_status)
        elif adjustment_type == ADJUSTMENT_LOCATION_CHANGE:
            cylinder_service.set_state(cylinders, location=new_location)
        return adjustments

    adjustments = run_in_transaction(_op)
    current_app.logger.info(
        "Adjustment (%s) at %s: %s cylinders by %s", adjustment_type, location, len(adjustments), actor
    )
    app = current_app._get_current_object()
    adjustments_recorded.send(app, adjustments=adjustments)
    if adjustment_type != ADJUSTMENT_CORRECTION:
        cylinders_changed.send(app, cylinder_ids=[a.cylinder_id for a in adjustments], reason="adjustment")
    return adjustments


def list_adjustments(
    *,
    location: str | None = None,
    cylinder_id: int | None = None,
    adjustment_type: str | None = None,
    limit: int = 200,
) -> list[InventoryAdjustment]:
    query = db.session.query(InventoryAdjustment)
    if location:
        require_choice(location, CYLINDER_LOCATIONS, "location")
        query = query.filter(InventoryAdjustment.location == location)
    if cylinder_id is not None:
        query = query.filter(InventoryAdjustment.cylinder_id == cylinder_id)
    if adjustment_type:
        require_choice(adjustment_type, ADJUSTMENT_TYPES, "adjustment_type")
        query = query.filter(InventoryAdjustment.adjustment_type == adjustment_type)
    return query.order_by(InventoryAdjustment.id.desc()).limit(limit).all()
