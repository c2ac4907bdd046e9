"""
Reversal engine tests.

Each ledger row reverses exactly once, its inverse effect is applied in the
same transaction, and nothing is deleted.
"""

from decimal import Decimal

import pytest
from co2ledger.errors import AlreadyReversedError, StaleSelectionError, ValidationError
from co2ledger.models import ApprovalLog, Cylinder, Filling, TankMovement, Transfer
from co2ledger.services import filling_service, reversal_service, tank_service, transfer_service
from co2ledger.signals import record_reversed


def _transfer(cylinder, from_location, to_location):
    return transfer_service.create_transfer_batch(
        [cylinder.id], from_location=from_location, to_location=to_location, operator_name="op",
    )[0]


def test_scenario_f_transfer_round_trip(db_session, make_cylinder):
    cylinder = make_cylinder(current_status="full")
    transfer = _transfer(cylinder, "dispatch", "filling_station")

    reversal_service.reverse_transfer(transfer.id, reversed_by="supervisor", reason="wrong truck")

    db_session.expire_all()
    restored = db_session.get(Cylinder, cylinder.id)
    assert restored.current_location == "dispatch"
    assert restored.current_status == "full"
    row = db_session.get(Transfer, transfer.id)
    assert row.is_reversed is True
    assert row.reversed_by == "supervisor"
    assert row.reversal_reason == "wrong truck"
    assert row.reversed_at is not None


def test_second_reversal_fails_without_mutating(db_session, make_cylinder):
    cylinder = make_cylinder(current_status="full")
    transfer = _transfer(cylinder, "dispatch", "routes")
    reversal_service.reverse_transfer(transfer.id, reversed_by="a")

    with pytest.raises(AlreadyReversedError):
        reversal_service.reverse_transfer(transfer.id, reversed_by="b")

    db_session.expire_all()
    assert db_session.get(Transfer, transfer.id).reversed_by == "a"
    assert db_session.get(Cylinder, cylinder.id).current_location == "dispatch"
    assert db_session.query(ApprovalLog).filter_by(action="reverse").count() == 1


def test_transfer_reversal_requires_cylinder_still_at_destination(db_session, make_cylinder):
    cylinder = make_cylinder(current_status="full")
    first = _transfer(cylinder, "dispatch", "routes")
    _transfer(cylinder, "routes", "route_closure")

    with pytest.raises(StaleSelectionError):
        reversal_service.reverse_transfer(first.id, reversed_by="s")

    db_session.expire_all()
    assert db_session.get(Transfer, first.id).is_reversed is False


def test_reversal_requires_actor(db_session, make_cylinder):
    cylinder = make_cylinder()
    transfer = _transfer(cylinder, "dispatch", "routes")
    with pytest.raises(ValidationError):
        reversal_service.reverse_transfer(transfer.id, reversed_by="  ")


def test_unknown_or_non_reversible_kind(db_session, make_cylinder):
    cylinder = make_cylinder()
    with pytest.raises(ValidationError):
        reversal_service.reverse_record("pallet", 1, reversed_by="s")
    with pytest.raises(ValidationError):
        reversal_service.reverse_record("cylinder", cylinder.id, reversed_by="s")


def test_filling_reversal_empties_cylinder_and_credits_tank(db_session, tank, make_cylinder):
    cylinder = make_cylinder(current_location="filling_station")
    result = filling_service.record_filling_batch(
        [(cylinder.id, 20)], operator_name="op", is_approved=True, approved_by="sup",
    )
    filling_id = result.fillings[0].id
    assert tank_service.get_tank().current_level == Decimal("479.800")

    reversal_service.reverse_filling(filling_id, reversed_by="sup", reason="leaking valve")

    db_session.expire_all()
    assert db_session.get(Cylinder, cylinder.id).current_status == "empty"
    assert db_session.get(Filling, filling_id).is_reversed is True
    assert tank_service.get_tank().current_level == Decimal("500.000")
    consumption = db_session.query(TankMovement).filter_by(reference_filling_id=filling_id).one()
    assert consumption.is_reversed is True


def test_consumption_movement_cannot_be_reversed_alone(db_session, tank, make_cylinder):
    cylinder = make_cylinder(current_location="filling_station")
    result = filling_service.record_filling_batch(
        [(cylinder.id, 20)], operator_name="op", is_approved=True, approved_by="sup",
    )
    consumption = db_session.query(TankMovement).filter_by(reference_filling_id=result.fillings[0].id).one()

    with pytest.raises(ValidationError):
        reversal_service.reverse_tank_movement(consumption.id, reversed_by="sup")


def test_tank_movement_reversal(db_session, tank):
    entrance = tank_service.record_entrance(100, "op")

    reversal_service.reverse_record("tank_movement", entrance.id, reversed_by="sup")

    db_session.expire_all()
    assert tank_service.get_tank().current_level == Decimal("500.000")
    assert tank_service.recompute_level(initial_level=500)["drift"] == 0.0


def test_reversal_signal_sent_after_commit(app, db_session, make_cylinder):
    cylinder = make_cylinder()
    transfer = _transfer(cylinder, "dispatch", "routes")
    received = []

    def _on_reversed(sender, kind, record, **extra):
        received.append((kind.value, record.id))

    with record_reversed.connected_to(_on_reversed, app):
        reversal_service.reverse_transfer(transfer.id, reversed_by="s")
        with pytest.raises(AlreadyReversedError):
            reversal_service.reverse_transfer(transfer.id, reversed_by="s")

    assert received == [("transfer", transfer.id)]


def test_reversing_an_older_filling_after_a_refill_is_stale(db_session, tank, make_cylinder):
    cylinder = make_cylinder(current_location="filling_station")
    first = filling_service.record_filling_batch(
        [(cylinder.id, 10)], operator_name="op", is_approved=True, approved_by="sup",
    ).fillings[0]
    _transfer(cylinder, "filling_station", "dispatch")
    _transfer(cylinder, "dispatch", "filling_station")
    second = filling_service.record_filling_batch(
        [(cylinder.id, 12)], operator_name="op", is_approved=True, approved_by="sup",
    ).fillings[0]

    with pytest.raises(StaleSelectionError):
        reversal_service.reverse_filling(first.id, reversed_by="sup")

    db_session.expire_all()
    assert db_session.get(Cylinder, cylinder.id).current_status == "full"
    assert db_session.get(Filling, first.id).is_reversed is False
    assert db_session.get(Filling, second.id).is_reversed is False

    # Latest first, then the older one is still blocked because the cylinder is empty
    reversal_service.reverse_filling(second.id, reversed_by="sup")
    with pytest.raises(StaleSelectionError):
        reversal_service.reverse_filling(first.id, reversed_by="sup")


def test_filling_reversal_refused_once_cylinder_was_emptied(db_session, tank, make_cylinder):
    cylinder = make_cylinder(current_location="filling_station")
    filling = filling_service.record_filling_batch(
        [(cylinder.id, 10)], operator_name="op", is_approved=True, approved_by="sup",
    ).fillings[0]
    _transfer(cylinder, "filling_station", "dispatch")
    _transfer(cylinder, "dispatch", "filling_station")

    with pytest.raises(StaleSelectionError):
        reversal_service.reverse_filling(filling.id, reversed_by="sup")

    db_session.expire_all()
    assert tank_service.get_tank().current_level == Decimal("489.900")
