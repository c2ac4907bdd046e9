from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from co2ledger.models.ledger import ReversibleMixin
from co2ledger.quantities import to_float
from co2ledger.time_utils import to_utc_z


MOVEMENT_ENTRANCE = "entrance"
MOVEMENT_EXIT = "exit"

MOVEMENT_TYPES = (MOVEMENT_ENTRANCE, MOVEMENT_EXIT)


class Co2Tank(db.Model):
    """
    Bulk CO2 storage tank (singleton row).

    current_level is a materialized running total of non-reversed
    tank_movements (entrance: +quantity+shrinkage, exit: -quantity-shrinkage).

    INVARIANT: 0 <= current_level <= capacity. Writers take a locking read
    and version_id guards against lost updates where FOR UPDATE is ignored.
    """
    __tablename__ = "co2_tank"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="Main tank")

    current_level = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    capacity = db.Column(db.Numeric(12, 3), nullable=False)
    # Percent of capacity under which the tank is reported "low"
    minimum_threshold = db.Column(db.Numeric(5, 2), nullable=False, default=20)

    last_refill_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Co2Tank id={self.id} level={self.current_level} capacity={self.capacity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_level": to_float(self.current_level),
            "capacity": to_float(self.capacity),
            "minimum_threshold": to_float(self.minimum_threshold),
            "last_refill_at": to_utc_z(self.last_refill_at) if self.last_refill_at else None,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class TankMovement(ReversibleMixin, db.Model):
    """
    One entrance or exit against the tank.

    Rows with reference_filling_id are the automatic consumption written
    for a filling; they are reversed together with that filling.
    """
    __tablename__ = "tank_movements"
    __table_args__ = (
        db.Index("ix_tank_movements_type_created", "movement_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("co2_tank.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    shrinkage_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=3.0)
    shrinkage_amount = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    operator_name = db.Column(db.String(120), nullable=False)
    supplier = db.Column(db.String(255), nullable=True)
    reference_filling_id = db.Column(db.Integer, db.ForeignKey("fillings.id"), nullable=True, index=True)

    # Level before/after this movement was applied
    level_before = db.Column(db.Numeric(12, 3), nullable=True)
    level_after = db.Column(db.Numeric(12, 3), nullable=True)

    observations = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tank = db.relationship("Co2Tank", backref=db.backref("movements", lazy=True))
    reference_filling = db.relationship(
        "Filling",
        backref=db.backref("consumption_movements", lazy=True),
    )

    @property
    def total_amount(self) -> Decimal:
        return Decimal(self.quantity) + Decimal(self.shrinkage_amount)

    @property
    def signed_delta(self) -> Decimal:
        """Effect of this row on the tank level."""
        if self.movement_type == MOVEMENT_ENTRANCE:
            return self.total_amount
        return -self.total_amount

    def __repr__(self) -> str:
        return f"<TankMovement id={self.id} type={self.movement_type} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tank_id": self.tank_id,
            "movement_type": self.movement_type,
            "quantity": to_float(self.quantity),
            "shrinkage_percentage": to_float(self.shrinkage_percentage),
            "shrinkage_amount": to_float(self.shrinkage_amount),
            "total_amount": to_float(self.total_amount),
            "operator_name": self.operator_name,
            "supplier": self.supplier,
            "reference_filling_id": self.reference_filling_id,
            "level_before": to_float(self.level_before),
            "level_after": to_float(self.level_after),
            "observations": self.observations,
            **self._reversal_dict(),
            "created_at": to_utc_z(self.created_at),
        }
