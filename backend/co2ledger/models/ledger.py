from __future__ import annotations

from ..extensions import db
from co2ledger.quantities import to_float
from co2ledger.time_utils import to_iso_date, to_utc_z


# Adjustment types (exactly one kind of change per row)
ADJUSTMENT_STATUS_CHANGE = "status_change"
ADJUSTMENT_LOCATION_CHANGE = "location_change"
ADJUSTMENT_CORRECTION = "correction"

ADJUSTMENT_TYPES = (ADJUSTMENT_STATUS_CHANGE, ADJUSTMENT_LOCATION_CHANGE, ADJUSTMENT_CORRECTION)


class ReversibleMixin:
    """
    Reversal bookkeeping shared by every reversible ledger row.

    STATE MACHINE: Active --reverse()--> Reversed (terminal).
    Reversal never deletes the row; it only stamps these fields.
    """
    is_reversed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by = db.Column(db.String(120), nullable=True)
    reversal_reason = db.Column(db.Text, nullable=True)

    def _reversal_dict(self) -> dict:
        return {
            "is_reversed": self.is_reversed,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversed_by": self.reversed_by,
            "reversal_reason": self.reversal_reason,
        }


class Filling(ReversibleMixin, db.Model):
    """
    One cylinder's fill event.

    Created in batches sharing batch_number (null for a one-off).
    Mutated only to change weight, flip approval, or reverse.
    """
    __tablename__ = "fillings"
    __table_args__ = (
        db.Index("ix_fillings_batch_reversed", "batch_number", "is_reversed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("co2_tank.id"), nullable=False, index=True)

    weight_filled = db.Column(db.Numeric(12, 3), nullable=False)
    operator_name = db.Column(db.String(120), nullable=False)
    batch_number = db.Column(db.String(64), nullable=True, index=True)
    filling_datetime = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    approved_by = db.Column(db.String(120), nullable=True)

    shrinkage_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=1.0)
    shrinkage_amount = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    observations = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    cylinder = db.relationship("Cylinder", backref=db.backref("fillings", lazy=True))
    tank = db.relationship("Co2Tank")

    def __repr__(self) -> str:
        return f"<Filling id={self.id} cylinder_id={self.cylinder_id} batch={self.batch_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "serial_number": self.cylinder.serial_number if self.cylinder else None,
            "tank_id": self.tank_id,
            "weight_filled": to_float(self.weight_filled),
            "operator_name": self.operator_name,
            "batch_number": self.batch_number,
            "filling_datetime": to_utc_z(self.filling_datetime),
            "is_approved": self.is_approved,
            "approved_by": self.approved_by,
            "shrinkage_percentage": to_float(self.shrinkage_percentage),
            "shrinkage_amount": to_float(self.shrinkage_amount),
            "observations": self.observations,
            **self._reversal_dict(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Transfer(ReversibleMixin, db.Model):
    """
    One cylinder's location change.

    Batches are identified by whichever reference number the caller used
    (transfer_number, nota_envio_number or delivery_order_number).
    previous_status records the status before a forced change
    (dispatch -> filling_station empties the cylinder) so reversal can
    restore it exactly.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_to_location_closure", "to_location", "trip_closure", "is_reversed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    from_location = db.Column(db.String(32), nullable=False)
    to_location = db.Column(db.String(32), nullable=False)

    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=True)

    operator_name = db.Column(db.String(120), nullable=False)
    driver_name = db.Column(db.String(120), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    transfer_number = db.Column(db.String(64), nullable=True, index=True)
    nota_envio_number = db.Column(db.String(64), nullable=True, index=True)
    delivery_order_number = db.Column(db.String(64), nullable=True, index=True)

    trip_closure = db.Column(db.Boolean, nullable=False, default=False)
    transfer_date = db.Column(db.Date, nullable=True)

    observations = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship("Cylinder", backref=db.backref("transfers", lazy=True))

    @property
    def reference_number(self) -> str | None:
        return self.transfer_number or self.nota_envio_number or self.delivery_order_number

    def __repr__(self) -> str:
        return (
            f"<Transfer id={self.id} cylinder_id={self.cylinder_id} "
            f"{self.from_location}->{self.to_location}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "serial_number": self.cylinder.serial_number if self.cylinder else None,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "operator_name": self.operator_name,
            "driver_name": self.driver_name,
            "customer_name": self.customer_name,
            "transfer_number": self.transfer_number,
            "nota_envio_number": self.nota_envio_number,
            "delivery_order_number": self.delivery_order_number,
            "reference_number": self.reference_number,
            "trip_closure": self.trip_closure,
            "transfer_date": to_iso_date(self.transfer_date),
            "observations": self.observations,
            **self._reversal_dict(),
            "created_at": to_utc_z(self.created_at),
        }


class InventoryAdjustment(db.Model):
    """
    Manual correction from a physical count (toma fisica).

    The row is itself the correction: never edited, never reversed.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    location = db.Column(db.String(32), nullable=False, index=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    adjustment_type = db.Column(db.String(32), nullable=False)

    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=True)
    previous_location = db.Column(db.String(32), nullable=True)
    new_location = db.Column(db.String(32), nullable=True)

    reason = db.Column(db.Text, nullable=False)
    performed_by = db.Column(db.String(120), nullable=False)
    adjustment_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship("Cylinder", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location": self.location,
            "cylinder_id": self.cylinder_id,
            "serial_number": self.cylinder.serial_number if self.cylinder else None,
            "adjustment_type": self.adjustment_type,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "previous_location": self.previous_location,
            "new_location": self.new_location,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "adjustment_date": to_utc_z(self.adjustment_date),
        }
