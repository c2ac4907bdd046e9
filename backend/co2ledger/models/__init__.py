from .cylinders import Cylinder
from .ledger import Filling, Transfer, InventoryAdjustment
from .tank import Co2Tank, TankMovement
from .audit import ApprovalLog
from .kinds import RecordKind

__all__ = [
    'Cylinder',
    'Filling', 'Transfer', 'InventoryAdjustment',
    'Co2Tank', 'TankMovement',
    'ApprovalLog',
    'RecordKind',
]
