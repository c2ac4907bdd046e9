from __future__ import annotations

from enum import Enum

from co2ledger.errors import ValidationError


class RecordKind(str, Enum):
    """Closed set of record kinds the generic actions and reversals accept."""

    CYLINDER = "cylinder"
    FILLING = "filling"
    TRANSFER = "transfer"
    TANK_MOVEMENT = "tank_movement"
    ADJUSTMENT = "adjustment"

    @property
    def table_name(self) -> str:
        return _TABLE_NAMES[self]

    @classmethod
    def parse(cls, value) -> "RecordKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid record kind '{value}'. Must be one of: {', '.join(k.value for k in cls)}"
            )


_TABLE_NAMES = {
    RecordKind.CYLINDER: "cylinders",
    RecordKind.FILLING: "fillings",
    RecordKind.TRANSFER: "transfers",
    RecordKind.TANK_MOVEMENT: "tank_movements",
    RecordKind.ADJUSTMENT: "inventory_adjustments",
}

# Kinds whose rows carry the reversal state machine
REVERSIBLE_KINDS = (RecordKind.FILLING, RecordKind.TRANSFER, RecordKind.TANK_MOVEMENT)
