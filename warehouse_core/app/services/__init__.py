"""
Services package initialization.
Business logic layer for warehouse documents, manufacturing and stock.
"""

from .inventory_service import (
    InventoryAdjustmentService,
    StockAdjustmentService,
    StockMoveQueryService,
    InventoryError,
    InsufficientStockError,
    InvalidOperationError,
    InconsistentInputError,
    PersistenceConflictError,
    get_next_sequence,
    resync_sequence,
    round_money,
)
from .workflow import (
    GuardResult,
    check_receipt_transition,
    check_delivery_transition,
    check_manufacturing_transition,
    check_operation_transition,
    document_total,
)
from .document_service import (
    TransitionOutcome,
    ReceiptService,
    DeliveryService,
)
from .manufacturing_service import ManufacturingService

__all__ = [
    'InventoryAdjustmentService',
    'StockAdjustmentService',
    'StockMoveQueryService',
    'InventoryError',
    'InsufficientStockError',
    'InvalidOperationError',
    'InconsistentInputError',
    'PersistenceConflictError',
    'get_next_sequence',
    'resync_sequence',
    'round_money',
    'GuardResult',
    'check_receipt_transition',
    'check_delivery_transition',
    'check_manufacturing_transition',
    'check_operation_transition',
    'document_total',
    'TransitionOutcome',
    'ReceiptService',
    'DeliveryService',
    'ManufacturingService',
]
