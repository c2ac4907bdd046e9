"""
Generic record action tests: snapshot, draft submit, delete, approve/reject.
"""

from decimal import Decimal

import pytest
from co2ledger.errors import AlreadyReversedError, ValidationError
from co2ledger.models import ApprovalLog, Cylinder, RecordKind
from co2ledger.services import (
    adjustment_service,
    filling_service,
    record_service,
    reversal_service,
    tank_service,
    transfer_service,
)


def _fill(cylinder, weight=10):
    return filling_service.record_filling_batch(
        [(cylinder.id, weight)], operator_name="op", is_approved=True, approved_by="sup",
    ).fillings[0]


def test_load_snapshot_by_kind(db_session, make_cylinder):
    cylinder = make_cylinder(serial_number="SNAP-1")

    assert record_service.load_snapshot("cylinder", cylinder.id)["serial_number"] == "SNAP-1"
    assert record_service.load_snapshot(RecordKind.CYLINDER, cylinder.id)["id"] == cylinder.id
    with pytest.raises(ValidationError):
        record_service.load_snapshot("warehouse", 1)


def test_submit_draft_applies_only_the_diff(db_session, make_cylinder):
    cylinder = make_cylinder(valve_type="CGA-320")
    draft = record_service.load_snapshot("cylinder", cylinder.id)

    unchanged = record_service.submit_draft(
        "cylinder", cylinder.id, {"valve_type": draft["valve_type"]}, performed_by="ana", comments="no-op",
    )
    assert unchanged["valve_type"] == "CGA-320"
    assert db_session.query(ApprovalLog).count() == 0

    record_service.submit_draft(
        "cylinder", cylinder.id,
        {"valve_type": "CGA-320", "observations": "dented"},
        performed_by="ana", comments="inspection",
    )
    log = db_session.query(ApprovalLog).one()
    assert log.previous_data["observations"] is None
    assert log.new_data["observations"] == "dented"


def test_filling_weight_edit_through_draft(db_session, tank, make_cylinder):
    filling = _fill(make_cylinder(current_location="filling_station"))

    record = record_service.submit_draft(
        "filling", filling.id, {"weight_filled": 12}, performed_by="sup", comments="reweighed",
    )

    assert record["weight_filled"] == 12.0
    assert record["shrinkage_amount"] == 0.12
    db_session.expire_all()
    assert tank_service.get_tank().current_level == Decimal("487.880")


def test_transfer_locations_not_editable(db_session, make_cylinder):
    cylinder = make_cylinder()
    transfer = transfer_service.create_transfer_batch(
        [cylinder.id], from_location="dispatch", to_location="routes", operator_name="op",
    )[0]

    with pytest.raises(ValidationError):
        record_service.submit_draft(
            "transfer", transfer.id, {"to_location": "customers"}, performed_by="a", comments="c",
        )
    record = record_service.submit_draft(
        "transfer", transfer.id, {"driver_name": "Pedro"}, performed_by="a", comments="driver swap",
    )
    assert record["driver_name"] == "Pedro"


def test_reversed_rows_are_frozen(db_session, make_cylinder):
    cylinder = make_cylinder()
    transfer = transfer_service.create_transfer_batch(
        [cylinder.id], from_location="dispatch", to_location="routes", operator_name="op",
    )[0]
    reversal_service.reverse_transfer(transfer.id, reversed_by="s")

    with pytest.raises(AlreadyReversedError):
        record_service.submit_draft("transfer", transfer.id, {"driver_name": "X"}, performed_by="a", comments="c")


def test_adjustments_are_immutable(db_session, make_cylinder):
    cylinder = make_cylinder()
    row = adjustment_service.apply_adjustments("dispatch", [cylinder.id], "correction", "ok", "a")[0]

    with pytest.raises(ValidationError):
        record_service.submit_draft("adjustment", row.id, {"reason": "changed"}, performed_by="a", comments="c")
    with pytest.raises(ValidationError):
        record_service.delete_record("adjustment", row.id, performed_by="a", comments="c")


def test_delete_only_soft_deletes_cylinders(db_session, tank, make_cylinder):
    cylinder = make_cylinder()
    filling = _fill(make_cylinder(current_location="filling_station"))

    with pytest.raises(ValidationError):
        record_service.delete_record("filling", filling.id, performed_by="a", comments="c")

    record = record_service.delete_record("cylinder", cylinder.id, performed_by="a", comments="scrapped")
    assert record["is_active"] is False
    assert db_session.get(Cylinder, cylinder.id) is not None


def test_approve_and_reject_fillings_only(db_session, tank, make_cylinder):
    cylinder = make_cylinder(current_location="filling_station")
    filling = _fill(cylinder)

    rejected = record_service.reject_record("filling", filling.id, performed_by="manager", comments="recheck")
    assert rejected["is_approved"] is False
    approved = record_service.approve_record("filling", filling.id, performed_by="manager")
    assert approved["is_approved"] is True
    assert approved["approved_by"] == "manager"

    with pytest.raises(ValidationError):
        record_service.approve_record("cylinder", cylinder.id, performed_by="manager")
