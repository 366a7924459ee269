from .base import new_id, is_canonical_id
from .branches import Branch, Employee, NETWORK_STATUSES
from .catalog import Product, BranchProductPricing
from .inventory import BranchInventory, StockMovement, MOVEMENT_KINDS, OUTBOUND_KINDS
from .customers import Customer
from .transactions import Transaction, TransactionItem, TRANSACTION_STATUSES
from .sync import (
    SyncLog,
    PushWatermark,
    SYNC_TYPES,
    SYNC_DIRECTIONS,
    SYNC_STATUSES,
    ACTIVE_SYNC_STATUSES,
    TERMINAL_SYNC_STATUSES,
)
from .schema import SchemaVersion, SCHEMA_VERSION

__all__ = [
    'new_id', 'is_canonical_id',
    'Branch', 'Employee', 'NETWORK_STATUSES',
    'Product', 'BranchProductPricing',
    'BranchInventory', 'StockMovement', 'MOVEMENT_KINDS', 'OUTBOUND_KINDS',
    'Customer',
    'Transaction', 'TransactionItem', 'TRANSACTION_STATUSES',
    'SyncLog', 'PushWatermark', 'SYNC_TYPES', 'SYNC_DIRECTIONS', 'SYNC_STATUSES',
    'ACTIVE_SYNC_STATUSES', 'TERMINAL_SYNC_STATUSES',
    'SchemaVersion', 'SCHEMA_VERSION',
]
