from __future__ import annotations

from ..extensions import db
from co2ledger.time_utils import to_iso_date, to_utc_z


# Cylinder status values
STATUS_EMPTY = "empty"
STATUS_FULL = "full"
STATUS_BEING_FILLED = "being_filled"
STATUS_MAINTENANCE = "maintenance"

CYLINDER_STATUSES = (STATUS_EMPTY, STATUS_FULL, STATUS_BEING_FILLED, STATUS_MAINTENANCE)

# Physical locations a cylinder can be at
LOCATION_DISPATCH = "dispatch"
LOCATION_FILLING_STATION = "filling_station"
LOCATION_ROUTES = "routes"
LOCATION_CUSTOMERS = "customers"
LOCATION_CUSTOMER_RETURN = "customer_return"
LOCATION_ROUTE_CLOSURE = "route_closure"
LOCATION_MAINTENANCE = "maintenance"
LOCATION_OUT_OF_SERVICE = "out_of_service"

CYLINDER_LOCATIONS = (
    LOCATION_DISPATCH,
    LOCATION_FILLING_STATION,
    LOCATION_ROUTES,
    LOCATION_CUSTOMERS,
    LOCATION_CUSTOMER_RETURN,
    LOCATION_ROUTE_CLOSURE,
    LOCATION_MAINTENANCE,
    LOCATION_OUT_OF_SERVICE,
)

CYLINDER_CAPACITIES = ("9kg", "22kg", "25kg")

# Hydrostatic test interval
HYDROSTATIC_TEST_INTERVAL_YEARS = 5


class Cylinder(db.Model):
    """
    A physical CO2 cylinder.

    The (current_status, current_location) pair is the registry state that
    fillings, transfers, adjustments and reversals mutate. Rows are never
    hard-deleted: is_active=False removes a cylinder from every active pool
    while its ledger history stays.

    INVARIANT: next_test_due == last_hydrostatic_test + 5 years.
    """
    __tablename__ = "cylinders"
    __table_args__ = (
        db.Index("ix_cylinders_active_location_status", "is_active", "current_location", "current_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    serial_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    capacity = db.Column(db.String(8), nullable=False)
    valve_type = db.Column(db.String(64), nullable=True)

    manufacturing_date = db.Column(db.Date, nullable=False)
    last_hydrostatic_test = db.Column(db.Date, nullable=False)
    next_test_due = db.Column(db.Date, nullable=False, index=True)

    current_status = db.Column(db.String(16), nullable=False, default=STATUS_EMPTY, index=True)
    current_location = db.Column(db.String(32), nullable=False, default=LOCATION_DISPATCH, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    customer_owned = db.Column(db.Boolean, nullable=False, default=False)
    customer_info = db.Column(db.Text, nullable=True)

    observations = db.Column(db.Text, nullable=True)

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
        return (
            f"<Cylinder id={self.id} serial={self.serial_number!r} "
            f"status={self.current_status} location={self.current_location}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "capacity": self.capacity,
            "valve_type": self.valve_type,
            "manufacturing_date": to_iso_date(self.manufacturing_date),
            "last_hydrostatic_test": to_iso_date(self.last_hydrostatic_test),
            "next_test_due": to_iso_date(self.next_test_due),
            "current_status": self.current_status,
            "current_location": self.current_location,
            "is_active": self.is_active,
            "customer_owned": self.customer_owned,
            "customer_info": self.customer_info,
            "observations": self.observations,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
