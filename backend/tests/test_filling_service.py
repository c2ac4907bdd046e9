"""
Filling batch tests.

Approval gates the write, weights must be positive, cylinders must be
empty, and the batch is atomic together with its tank consumption.
"""

from decimal import Decimal

import pytest
from co2ledger.errors import (
    AlreadyReversedError,
    ApprovalRequiredError,
    InsufficientInventoryError,
    StaleSelectionError,
    ValidationError,
)
from co2ledger.models import ApprovalLog, Cylinder, Filling, TankMovement
from co2ledger.services import filling_service, reversal_service, tank_service


def _fill(cylinders, weights, **kwargs):
    kwargs.setdefault("operator_name", "op")
    kwargs.setdefault("is_approved", True)
    kwargs.setdefault("approved_by", "supervisor")
    return filling_service.record_filling_batch(
        [(c.id, w) for c, w in zip(cylinders, weights)],
        **kwargs,
    )


def test_scenario_c_three_cylinder_batch(db_session, tank, empty_cylinders):
    result = _fill(empty_cylinders, [10, 12, 8], batch_number="B-001")

    assert result.count == 3
    fillings = db_session.query(Filling).order_by(Filling.id).all()
    assert [f.shrinkage_amount for f in fillings] == [Decimal("0.100"), Decimal("0.120"), Decimal("0.080")]
    assert all(f.shrinkage_percentage == Decimal("1.00") for f in fillings)
    assert all(f.batch_number == "B-001" for f in fillings)
    for cylinder in empty_cylinders:
        assert db_session.get(Cylinder, cylinder.id).current_status == "full"


def test_reported_totals_match_persisted_rows(db_session, tank, empty_cylinders):
    result = _fill(empty_cylinders, ["10.555", 12.1, "7.333"], batch_number="B-SUM")

    rows = db_session.query(Filling).filter_by(batch_number="B-SUM").all()
    assert result.total_weight == sum(Decimal(r.weight_filled) for r in rows)
    assert result.total_shrinkage == sum(Decimal(r.shrinkage_amount) for r in rows)
    assert result.to_dict()["total_weight"] == pytest.approx(29.988)


def test_scenario_d_unapproved_batch_writes_nothing(db_session, tank, empty_cylinders):
    with pytest.raises(ApprovalRequiredError):
        _fill(empty_cylinders, [10, 12, 8], is_approved=False)

    assert db_session.query(Filling).count() == 0
    assert db_session.query(TankMovement).count() == 0
    assert all(db_session.get(Cylinder, c.id).current_status == "empty" for c in empty_cylinders)


@pytest.mark.parametrize("weight", [0, -1, "abc", None, "0.0004", "NaN"])
def test_invalid_weight_rejected(db_session, tank, empty_cylinders, weight):
    with pytest.raises(ValidationError, match="invalid weight"):
        _fill(empty_cylinders[:1], [weight])
    assert db_session.query(Filling).count() == 0
    db_session.expire_all()
    assert db_session.get(Cylinder, empty_cylinders[0].id).current_status == "empty"


def test_one_gram_is_the_smallest_weight(db_session, tank, empty_cylinders):
    result = _fill(empty_cylinders[:1], ["0.0005"])

    assert result.fillings[0].weight_filled == Decimal("0.001")


def test_string_cylinder_ids_are_accepted(db_session, tank, empty_cylinders):
    cylinder = empty_cylinders[0]

    result = filling_service.record_filling_batch(
        [{"cylinder_id": str(cylinder.id), "weight_filled": 10}],
        operator_name="op", is_approved=True, approved_by="sup",
    )

    assert result.fillings[0].cylinder_id == cylinder.id


@pytest.mark.parametrize("item", [7, "abc", (1, 2, 3), {"cylinder_id": "x", "weight_filled": 5}, {"cylinder_id": True}])
def test_malformed_items_rejected(db_session, tank, empty_cylinders, item):
    with pytest.raises(ValidationError):
        filling_service.record_filling_batch(
            [item], operator_name="op", is_approved=True, approved_by="sup",
        )
    assert db_session.query(Filling).count() == 0


def test_non_empty_cylinder_fails_whole_batch(db_session, tank, make_cylinder, empty_cylinders):
    full = make_cylinder(current_location="filling_station", current_status="full")

    with pytest.raises(StaleSelectionError):
        _fill(empty_cylinders + [full], [10, 10, 10, 10])

    db_session.expire_all()
    assert db_session.query(Filling).count() == 0
    assert all(db_session.get(Cylinder, c.id).current_status == "empty" for c in empty_cylinders)
    assert db_session.get(Cylinder, full.id).current_status == "full"


def test_batch_debits_tank(db_session, tank, empty_cylinders):
    _fill(empty_cylinders, [10, 12, 8])

    # 30 kg + 0.3 kg shrinkage
    assert tank_service.get_tank().current_level == Decimal("469.700")
    consumption = db_session.query(TankMovement).filter(TankMovement.reference_filling_id.isnot(None)).all()
    assert len(consumption) == 3
    assert all(m.movement_type == "exit" for m in consumption)


def test_batch_exceeding_tank_rolls_back(db_session, empty_cylinders):
    tank_service.create_tank(capacity=100, current_level=15)

    with pytest.raises(InsufficientInventoryError):
        _fill(empty_cylinders, [10, 10, 10])

    db_session.expire_all()
    assert db_session.query(Filling).count() == 0
    assert tank_service.get_tank().current_level == Decimal("15.000")
    assert all(db_session.get(Cylinder, c.id).current_status == "empty" for c in empty_cylinders)


def test_customer_owned_filling_notes_customer(db_session, tank, make_cylinder):
    cylinder = make_cylinder(customer_owned=True, customer_info="Bar Sol", current_location="filling_station")

    result = _fill([cylinder], [9], observations="own valve")

    assert result.fillings[0].observations == "Cliente: Bar Sol. own valve"


def test_update_batch_weights_moves_tank_and_logs(db_session, tank, empty_cylinders):
    result = _fill(empty_cylinders, [10, 12, 8], batch_number="B-EDIT")
    first = result.fillings[0]

    filling_service.update_batch_weights("B-EDIT", {first.id: 11}, performed_by="supervisor", comments="scale fix")

    db_session.expire_all()
    edited = db_session.get(Filling, first.id)
    assert edited.weight_filled == Decimal("11.000")
    assert edited.shrinkage_amount == Decimal("0.110")
    # One more kg and 0.01 kg shrinkage consumed
    assert tank_service.get_tank().current_level == Decimal("468.690")
    assert db_session.query(ApprovalLog).filter_by(record_id=first.id, action="edit").count() == 1


def test_update_batch_weights_rejects_foreign_and_reversed(db_session, tank, empty_cylinders):
    result = _fill(empty_cylinders[:2], [10, 12], batch_number="B-X")
    other = _fill(empty_cylinders[2:], [8], batch_number="B-Y")

    with pytest.raises(ValidationError):
        filling_service.update_batch_weights("B-X", {other.fillings[0].id: 9}, performed_by="s")

    reversal_service.reverse_filling(result.fillings[0].id, reversed_by="s")
    with pytest.raises(AlreadyReversedError):
        filling_service.update_batch_weights("B-X", {result.fillings[0].id: 9}, performed_by="s")


def test_batch_approval_toggle_applies_to_every_filling(db_session, tank, empty_cylinders):
    _fill(empty_cylinders, [10, 12, 8], batch_number="B-APP")

    fillings = filling_service.set_batch_approval("B-APP", False, approved_by="manager", comments="recount")

    assert all(f.is_approved is False for f in fillings)
    assert db_session.query(ApprovalLog).filter_by(action="reject").count() == 3
    # Revoking approval does not undo the fill
    assert all(db_session.get(Cylinder, c.id).current_status == "full" for c in empty_cylinders)

    filling_service.set_batch_approval("B-APP", True, approved_by="manager")
    assert db_session.query(ApprovalLog).filter_by(action="approve").count() == 3


def test_filling_without_tank_debit(app, db_session, tank, empty_cylinders):
    app.config["FILLING_DEBITS_TANK"] = False
    try:
        _fill(empty_cylinders, [10, 12, 8])
    finally:
        app.config["FILLING_DEBITS_TANK"] = True

    assert tank_service.get_tank().current_level == Decimal("500.000")
    assert db_session.query(TankMovement).count() == 0
