"""
Document status lifecycle: transition tables, guards and totals for
receipts, delivery orders and manufacturing orders.

Everything here is pure: guards read a document's header fields and line
items (ORM objects or anything with the same attributes) and return a
GuardResult instead of raising.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Tuple

from ..models import ReceiptStatus, DeliveryStatus, ManufacturingStatus, OperationStatus
from .inventory_service import round_money, to_decimal


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = GuardResult(True)


def deny(reason: str) -> GuardResult:
    return GuardResult(False, reason)


# =============================================================================
# TRANSITION TABLES
# =============================================================================

RECEIPT_FLOW: Sequence[ReceiptStatus] = (
    ReceiptStatus.DRAFT, ReceiptStatus.READY, ReceiptStatus.DONE,
)

# Draft <-> Ready -> Done -> Ready. Draft is not reachable from Done directly.
RECEIPT_TRANSITIONS: Dict[ReceiptStatus, FrozenSet[ReceiptStatus]] = {
    ReceiptStatus.DRAFT: frozenset({ReceiptStatus.READY}),
    ReceiptStatus.READY: frozenset({ReceiptStatus.DRAFT, ReceiptStatus.DONE}),
    ReceiptStatus.DONE: frozenset({ReceiptStatus.READY}),
}

DELIVERY_FLOW: Sequence[DeliveryStatus] = (
    DeliveryStatus.PICKED, DeliveryStatus.PACKED, DeliveryStatus.VALIDATED,
)

# Strictly forward
DELIVERY_TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.PICKED: frozenset({DeliveryStatus.PACKED}),
    DeliveryStatus.PACKED: frozenset({DeliveryStatus.VALIDATED}),
    DeliveryStatus.VALIDATED: frozenset(),
}

MANUFACTURING_FLOW: Sequence[ManufacturingStatus] = (
    ManufacturingStatus.DRAFT, ManufacturingStatus.READY,
    ManufacturingStatus.IN_PROGRESS, ManufacturingStatus.DONE,
)

# Ready may drop back to Draft; once started, only forward
MANUFACTURING_TRANSITIONS: Dict[ManufacturingStatus, FrozenSet[ManufacturingStatus]] = {
    ManufacturingStatus.DRAFT: frozenset({ManufacturingStatus.READY}),
    ManufacturingStatus.READY: frozenset({ManufacturingStatus.DRAFT, ManufacturingStatus.IN_PROGRESS}),
    ManufacturingStatus.IN_PROGRESS: frozenset({ManufacturingStatus.DONE}),
    ManufacturingStatus.DONE: frozenset(),
}

# Start, pause, resume, finish
OPERATION_TRANSITIONS: Dict[OperationStatus, FrozenSet[OperationStatus]] = {
    OperationStatus.PENDING: frozenset({OperationStatus.IN_PROGRESS}),
    OperationStatus.IN_PROGRESS: frozenset({OperationStatus.PAUSED, OperationStatus.DONE}),
    OperationStatus.PAUSED: frozenset({OperationStatus.IN_PROGRESS}),
    OperationStatus.DONE: frozenset(),
}

RECEIPT_TERMINAL = ReceiptStatus.DONE
DELIVERY_TERMINAL = DeliveryStatus.VALIDATED


def _is_regression(flow: Sequence, current, target) -> bool:
    return flow.index(target) < flow.index(current)


def allowed_receipt_targets(status) -> FrozenSet[ReceiptStatus]:
    return RECEIPT_TRANSITIONS[ReceiptStatus(status)]


def allowed_delivery_targets(status) -> FrozenSet[DeliveryStatus]:
    return DELIVERY_TRANSITIONS[DeliveryStatus(status)]


def allowed_manufacturing_targets(status) -> FrozenSet[ManufacturingStatus]:
    return MANUFACTURING_TRANSITIONS[ManufacturingStatus(status)]


# =============================================================================
# LINE PREDICATES
# =============================================================================

def receipt_line_is_complete(line) -> bool:
    return bool(line.product_id) and (line.quantity_received or 0) > 0


def delivery_line_is_picked(line) -> bool:
    return bool(line.product_id) and (line.quantity_picked or 0) > 0


def delivery_line_is_packed(line) -> bool:
    picked = line.quantity_picked or 0
    packed = line.quantity_packed or 0
    return delivery_line_is_picked(line) and 0 < packed <= picked


# =============================================================================
# GUARDS
# =============================================================================

def check_receipt_transition(receipt, target) -> GuardResult:
    """
    Decide whether `receipt` may move to `target`.

    Draft -> Ready needs supplier and warehouse (and valid lines, if any).
    Ready -> Done additionally needs at least one line, every line with a
    product and a positive received quantity. Regressions are unconditional.
    """
    current = ReceiptStatus(receipt.status)
    target = ReceiptStatus(target)

    if target == current:
        return ALLOWED

    if target not in RECEIPT_TRANSITIONS[current]:
        return deny(f"Cannot move receipt from {current.value} to {target.value}")

    if _is_regression(RECEIPT_FLOW, current, target):
        return ALLOWED

    if not receipt.supplier_id:
        return deny("Please select a supplier")

    if not receipt.warehouse_id:
        return deny("Please select a warehouse")

    lines = list(receipt.line_items or [])

    if target == ReceiptStatus.DONE and not lines:
        return deny("Please add at least one product")

    if not all(receipt_line_is_complete(line) for line in lines):
        return deny("Please ensure all items have a product and quantity received")

    return ALLOWED


def check_delivery_transition(delivery, target) -> GuardResult:
    """Decide whether `delivery` may move to `target` (forward only)."""
    current = DeliveryStatus(delivery.status)
    target = DeliveryStatus(target)

    if target == current:
        return ALLOWED

    if target not in DELIVERY_TRANSITIONS[current]:
        return deny(f"Cannot move delivery from {current.value} to {target.value}")

    if not delivery.customer_id:
        return deny("Please select a customer")

    lines = list(delivery.line_items or [])
    if not lines:
        return deny("Please add at least one product")

    if target == DeliveryStatus.PACKED:
        if not all(delivery_line_is_picked(line) for line in lines):
            return deny("Please ensure all items have quantities picked")

    if target == DeliveryStatus.VALIDATED:
        if not all(delivery_line_is_packed(line) for line in lines):
            return deny("Please ensure all items are picked and packed")

    return ALLOWED


def check_manufacturing_transition(order, target) -> GuardResult:
    """
    Decide whether a manufacturing order may move to `target`.

    Leaving Draft needs a product and a quantity to produce.
    Starting needs every component in stock; finishing needs every
    operation Done.
    """
    current = ManufacturingStatus(order.status)
    target = ManufacturingStatus(target)

    if target == current:
        return ALLOWED

    if target not in MANUFACTURING_TRANSITIONS[current]:
        return deny(f"Cannot move manufacturing order from {current.value} to {target.value}")

    if _is_regression(MANUFACTURING_FLOW, current, target):
        return ALLOWED

    if not order.product_id:
        return deny("Please select a product to manufacture")

    if not (order.quantity or 0) > 0:
        return deny("Please enter a quantity to produce")

    if target == ManufacturingStatus.IN_PROGRESS:
        short = [c.component_name for c in order.components or [] if c.available < (c.required_quantity or 0)]
        if short:
            return deny(f"Not enough components: {', '.join(short)}")

    if target == ManufacturingStatus.DONE:
        if any(OperationStatus(op.status) != OperationStatus.DONE for op in order.operations or []):
            return deny("Please complete all operations")

    return ALLOWED


def check_operation_transition(operation, target, order_status) -> GuardResult:
    """Operations are worked only while their order is In Progress."""
    current = OperationStatus(operation.status)
    target = OperationStatus(target)

    if target == current:
        return ALLOWED

    if target not in OPERATION_TRANSITIONS[current]:
        return deny(f"Cannot move operation from {current.value} to {target.value}")

    if ManufacturingStatus(order_status) != ManufacturingStatus.IN_PROGRESS:
        return deny("Manufacturing order must be In Progress")

    return ALLOWED


# =============================================================================
# TOTALS
# =============================================================================

def line_total(quantity, price_per_unit) -> Decimal:
    return round_money(to_decimal(quantity or 0) * to_decimal(price_per_unit))


def document_total(pairs: Iterable[Tuple[int, Decimal]]) -> Decimal:
    """Sum quantity * price over (quantity, price) pairs, rounded once at the end"""
    total = sum(
        (to_decimal(quantity or 0) * to_decimal(price) for quantity, price in pairs),
        Decimal('0'),
    )
    return round_money(total)


def receipt_total(receipt) -> Decimal:
    return document_total(
        (line.quantity_received, line.price_per_unit) for line in receipt.line_items
    )


def delivery_total(delivery) -> Decimal:
    # Valued at packed quantity
    return document_total(
        (line.quantity_packed, line.price_per_unit) for line in delivery.line_items
    )
