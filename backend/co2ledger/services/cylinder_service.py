# Overview: Cylinder Registry; authoritative current state of every cylinder.

"""
Cylinder Registry.

WHY: Every other component (fillings, transfers, adjustments, reversals)
mutates the same (current_status, current_location) pair. This module owns
that state: registration, audited manual edits, soft delete, filtered
candidate pools, and the all-or-nothing batch status/location update.

RULES:
1. next_test_due is always last_hydrostatic_test + 5 years; it is never
   writable directly.
2. is_active=False hides a cylinder from every active pool; rows are never
   hard-deleted.
3. Manual edits and deletes need a non-empty audit comment and leave an
   ApprovalLog row with before/after snapshots.
"""
from __future__ import annotations

from typing import Iterable

from flask import current_app

from co2ledger.errors import NotFoundError, ValidationError
from co2ledger.extensions import db
from co2ledger.models import Cylinder, RecordKind
from co2ledger.models.audit import ACTION_DELETE, ACTION_EDIT
from co2ledger.models.cylinders import (
    CYLINDER_CAPACITIES,
    CYLINDER_LOCATIONS,
    CYLINDER_STATUSES,
    HYDROSTATIC_TEST_INTERVAL_YEARS,
    LOCATION_DISPATCH,
    STATUS_EMPTY,
)
from co2ledger.services.audit_service import append_approval_log
from co2ledger.services.concurrency import lock_for_update, run_in_transaction, run_read_with_retry
from co2ledger.signals import cylinders_changed
from co2ledger.time_utils import add_years
from co2ledger.validation import (
    ModelValidationPolicy,
    enforce_rules_cylinder,
    require_choice,
    require_text,
    validate_payload,
)


TABLE_NAME = RecordKind.CYLINDER.table_name

CYLINDER_POLICY = ModelValidationPolicy(
    writable_fields={
        "serial_number",
        "capacity",
        "valve_type",
        "manufacturing_date",
        "last_hydrostatic_test",
        "current_status",
        "current_location",
        "customer_owned",
        "customer_info",
        "observations",
    },
    required_on_create={
        "serial_number",
        "capacity",
        "manufacturing_date",
        "last_hydrostatic_test",
    },
)


def compute_next_test_due(cylinder: Cylinder) -> None:
    cylinder.next_test_due = add_years(cylinder.last_hydrostatic_test, HYDROSTATIC_TEST_INTERVAL_YEARS)


def list_active(
    *,
    location: str | None = None,
    status: str | None = None,
    capacity: str | None = None,
    customer_owned: bool | None = None,
) -> list[Cylinder]:
    """Active cylinders matching every given filter, ordered by serial number."""
    if location is not None:
        require_choice(location, CYLINDER_LOCATIONS, "location")
    if status is not None:
        require_choice(status, CYLINDER_STATUSES, "status")
    if capacity is not None:
        require_choice(capacity, CYLINDER_CAPACITIES, "capacity")

    def _query():
        query = db.session.query(Cylinder).filter(Cylinder.is_active.is_(True))
        if location is not None:
            query = query.filter(Cylinder.current_location == location)
        if status is not None:
            query = query.filter(Cylinder.current_status == status)
        if capacity is not None:
            query = query.filter(Cylinder.capacity == capacity)
        if customer_owned is not None:
            query = query.filter(Cylinder.customer_owned.is_(customer_owned))
        return query.order_by(Cylinder.serial_number).all()

    return run_read_with_retry(_query)


def get_cylinder(cylinder_id: int, *, active_only: bool = True) -> Cylinder:
    cylinder = db.session.get(Cylinder, cylinder_id)
    if not cylinder or (active_only and not cylinder.is_active):
        raise NotFoundError(f"Cylinder {cylinder_id} not found")
    return cylinder


def coerce_cylinder_id(value) -> int:
    """JSON ids may arrive as strings; booleans and non-integers are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid cylinder id: {value}")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid cylinder id: {value}") from None


def lock_active_cylinders(cylinder_ids: Iterable) -> list[Cylinder]:
    """
    Lock every requested cylinder (ascending id order) for a batch operation.

    Raises:
        ValidationError: empty selection, duplicate or malformed ids
        NotFoundError: any id unknown or inactive
    """
    ids = [coerce_cylinder_id(i) for i in cylinder_ids]
    if not ids:
        raise ValidationError("At least one cylinder must be selected")
    if len(set(ids)) != len(ids):
        raise ValidationError("Duplicate cylinders in selection")

    rows = lock_for_update(
        db.session.query(Cylinder).filter(Cylinder.id.in_(ids)).order_by(Cylinder.id)
    ).all()
    found = {c.id: c for c in rows if c.is_active}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"Cylinders not found or inactive: {', '.join(str(i) for i in missing)}")
    return [found[i] for i in sorted(ids)]


def register_cylinder(payload: dict) -> Cylinder:
    """
    Register a new cylinder.

    Defaults: status=empty, location=dispatch. next_test_due is derived.

    Raises:
        ValidationError: missing required fields, bad dates or enums,
            duplicate serial number, customer_owned without customer_info
    """
    patch = validate_payload(model=Cylinder, payload=payload, policy=CYLINDER_POLICY, partial=False)
    patch.setdefault("current_status", STATUS_EMPTY)
    patch.setdefault("current_location", LOCATION_DISPATCH)
    enforce_rules_cylinder(
        patch,
        customer_owned=bool(patch.get("customer_owned")),
        customer_info=patch.get("customer_info"),
    )

    def _op():
        existing = db.session.query(Cylinder).filter_by(serial_number=patch["serial_number"]).first()
        if existing:
            raise ValidationError(f"Serial number {patch['serial_number']} is already registered")

        cylinder = Cylinder(**patch)
        compute_next_test_due(cylinder)
        db.session.add(cylinder)
        db.session.flush()
        return cylinder

    cylinder = run_in_transaction(_op)
    current_app.logger.info("Registered cylinder %s (%s)", cylinder.id, cylinder.serial_number)
    cylinders_changed.send(current_app._get_current_object(), cylinder_ids=[cylinder.id], reason="register")
    return cylinder


def edit_cylinder(
    cylinder_id: int,
    changes: dict,
    audit_comment: str,
    *,
    performed_by: str = "system",
) -> Cylinder:
    """
    Apply a manual edit with a mandatory audit comment.

    Recomputes next_test_due when last_hydrostatic_test changes and appends
    an ApprovalLog(action=edit) with before/after snapshots.
    """
    comment = require_text(audit_comment, "Audit comment")
    actor = require_text(performed_by, "performed_by")
    patch = validate_payload(model=Cylinder, payload=changes, policy=CYLINDER_POLICY, partial=True)
    if not patch:
        raise ValidationError("No changes submitted")

    def _op():
        cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=cylinder_id)).first()
        if not cylinder or not cylinder.is_active:
            raise NotFoundError(f"Cylinder {cylinder_id} not found")

        customer_owned = patch.get("customer_owned", cylinder.customer_owned)
        customer_info = patch["customer_info"] if "customer_info" in patch else cylinder.customer_info
        rules_patch = dict(patch)
        rules_patch.setdefault("manufacturing_date", cylinder.manufacturing_date)
        rules_patch.setdefault("last_hydrostatic_test", cylinder.last_hydrostatic_test)
        enforce_rules_cylinder(rules_patch, customer_owned=customer_owned, customer_info=customer_info)

        if "serial_number" in patch and patch["serial_number"] != cylinder.serial_number:
            clash = db.session.query(Cylinder).filter(
                Cylinder.serial_number == patch["serial_number"],
                Cylinder.id != cylinder.id,
            ).first()
            if clash:
                raise ValidationError(f"Serial number {patch['serial_number']} is already registered")

        previous = cylinder.to_dict()
        for key, value in patch.items():
            setattr(cylinder, key, value)
        if "last_hydrostatic_test" in patch:
            compute_next_test_due(cylinder)
        db.session.flush()

        append_approval_log(
            table_name=TABLE_NAME,
            record_id=cylinder.id,
            action=ACTION_EDIT,
            previous_data=previous,
            new_data=cylinder.to_dict(),
            performed_by=actor,
            comments=comment,
        )
        return cylinder

    cylinder = run_in_transaction(_op)
    current_app.logger.info("Edited cylinder %s by %s", cylinder.id, actor)
    cylinders_changed.send(current_app._get_current_object(), cylinder_ids=[cylinder.id], reason="edit")
    return cylinder


def soft_delete_cylinder(
    cylinder_id: int,
    audit_comment: str,
    *,
    performed_by: str = "system",
) -> Cylinder:
    """Deactivate a cylinder; the pre-delete snapshot goes to the approval log."""
    comment = require_text(audit_comment, "Audit comment")
    actor = require_text(performed_by, "performed_by")

    def _op():
        cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=cylinder_id)).first()
        if not cylinder or not cylinder.is_active:
            raise NotFoundError(f"Cylinder {cylinder_id} not found")

        append_approval_log(
            table_name=TABLE_NAME,
            record_id=cylinder.id,
            action=ACTION_DELETE,
            previous_data=cylinder.to_dict(),
            new_data=None,
            performed_by=actor,
            comments=comment,
        )
        cylinder.is_active = False
        db.session.flush()
        return cylinder

    cylinder = run_in_transaction(_op)
    current_app.logger.info("Deactivated cylinder %s by %s", cylinder.id, actor)
    cylinders_changed.send(current_app._get_current_object(), cylinder_ids=[cylinder.id], reason="delete")
    return cylinder


def set_state(cylinders: Iterable[Cylinder], *, status: str | None = None, location: str | None = None) -> None:
    """Flush-only batch mutation used inside other services' transactions."""
    if status is not None:
        require_choice(status, CYLINDER_STATUSES, "status")
    if location is not None:
        require_choice(location, CYLINDER_LOCATIONS, "location")
    for cylinder in cylinders:
        if status is not None:
            cylinder.current_status = status
        if location is not None:
            cylinder.current_location = location
    db.session.flush()


def apply_status_and_location(
    cylinder_ids: Iterable[int],
    *,
    status: str | None = None,
    location: str | None = None,
) -> list[Cylinder]:
    """
    Batch update of status and/or location, all-or-nothing.

    Raises:
        ValidationError: nothing to change, bad enum, empty/duplicate selection
        NotFoundError: any id unknown or inactive (nothing is updated)
    """
    if status is None and location is None:
        raise ValidationError("Nothing to update: give a status or a location")
    ids = list(cylinder_ids)

    def _op():
        cylinders = lock_active_cylinders(ids)
        set_state(cylinders, status=status, location=location)
        return cylinders

    cylinders = run_in_transaction(_op)
    cylinders_changed.send(
        current_app._get_current_object(),
        cylinder_ids=[c.id for c in cylinders],
        reason="batch_update",
    )
    return cylinders
