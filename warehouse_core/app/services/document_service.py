"""
Receipt & Delivery Document Services
====================================
Create documents, edit their line items and run status transitions.

A transition is one database transaction:
1. Lock the document row
2. Run the guard for the requested target status
3. On entering the terminal status, post stock for every line (once)
4. Persist the new status

If any step fails the whole transaction is rolled back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import (
    Contact, Warehouse, Product, StockMove, MoveType,
    Receipt, ReceiptLineItem, ReceiptStatus,
    DeliveryOrder, DeliveryLineItem, DeliveryStatus,
)
from .inventory_service import (
    InventoryAdjustmentService, InventoryError, InvalidOperationError,
    InconsistentInputError, PersistenceConflictError,
    get_next_sequence, resync_sequence, round_money,
)
from .workflow import (
    GuardResult, check_receipt_transition, check_delivery_transition,
    receipt_total, delivery_total,
)

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 3


@dataclass
class TransitionOutcome:
    """Result of attempt_transition: the document, or the guard failure"""
    document: Any
    changed: bool = False
    failure: Optional[GuardResult] = None
    movements: List[StockMove] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None


def insert_numbered(
    db: Session,
    build: Callable[[], Any],
    model,
    number_attr: str,
    sequence_name: str,
    prefix: str,
    label: str
):
    """
    Insert a freshly built row under the next ``PREFIX/YYYY/NNNN`` number.

    The number comes from the locked sequence row; if the unique constraint
    still trips (stale sequence, concurrent bootstrap) the sequence is
    resynchronised and the row rebuilt and retried.
    """
    number_column = getattr(model, number_attr)

    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        try:
            document = build()
            setattr(document, number_attr, get_next_sequence(db, sequence_name, prefix, number_column))
            db.add(document)
            db.flush()
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "%s number collision (attempt %d/%d), resynchronising sequence",
                label, attempt, MAX_NUMBER_ATTEMPTS
            )
            resync_sequence(db, sequence_name, prefix, number_column)
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(document)
        return document

    raise PersistenceConflictError(
        f"Could not allocate a unique {label.lower()} number after {MAX_NUMBER_ATTEMPTS} attempts"
    )


class DocumentService:
    """
    Shared workflow for status-driven stock documents.
    Subclasses bind the model, numbering and stock direction.
    """

    model = None
    number_attr: str = ""
    sequence_name: str = ""
    prefix: str = ""
    document_type: str = ""
    label: str = "Document"
    status_enum = None
    initial_status = None
    terminal_status = None
    guard: Callable[[Any, Any], GuardResult] = None
    total: Callable[[Any], Any] = None

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @classmethod
    def get_document(cls, db: Session, document_id: int, lock: bool = False):
        query = db.query(cls.model).filter(cls.model.id == document_id)
        if lock:
            # Overwrite any copy already in the identity map with the locked row
            query = query.with_for_update().populate_existing()
        document = query.first()
        if not document:
            raise HTTPException(status_code=404, detail=f"{cls.label} not found")
        return document

    @classmethod
    def number_of(cls, document) -> str:
        return getattr(document, cls.number_attr)

    @classmethod
    def is_locked(cls, document) -> bool:
        """Terminal or already-posted documents cannot be edited"""
        return document.status == cls.terminal_status or bool(document.stock_posted)

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    @classmethod
    def validate_header(cls, db: Session, header: Dict[str, Any]) -> None:
        raise NotImplementedError

    @classmethod
    def make_line(cls, item: Dict[str, Any], position: int, price) -> Any:
        raise NotImplementedError

    @classmethod
    def stock_delta(cls, line) -> int:
        raise NotImplementedError

    @classmethod
    def move_locations(cls, document, line) -> tuple:
        raise NotImplementedError

    move_type: MoveType = None

    # -------------------------------------------------------------------------
    # Create / edit
    # -------------------------------------------------------------------------

    @classmethod
    def build_lines(cls, db: Session, items: List[Dict[str, Any]]) -> list:
        """
        Turn raw line dicts into line models.

        Unknown products raise 404. A missing price defaults to the
        product's catalog price.
        """
        product_ids = {item.get("product_id") for item in items if item.get("product_id")}
        products = {}
        if product_ids:
            products = {
                p.id: p for p in db.query(Product).filter(Product.id.in_(product_ids)).all()
            }
        missing = sorted(product_ids - set(products))
        if missing:
            raise HTTPException(
                status_code=404,
                detail=f"Product(s) not found: {', '.join(str(m) for m in missing)}"
            )

        lines = []
        for position, item in enumerate(items):
            price = item.get("price_per_unit")
            if price is None:
                product = products.get(item.get("product_id"))
                price = product.price_per_unit if product else 0
            if round_money(price) < 0:
                raise InconsistentInputError(f"Line {position + 1}: price per unit cannot be negative")
            lines.append(cls.make_line(item, position, round_money(price)))
        return lines

    @classmethod
    def create_document(
        cls,
        db: Session,
        header: Dict[str, Any],
        user_id: Optional[int] = None,
        items: Optional[List[Dict[str, Any]]] = None
    ):
        """Create a document in its initial status with a generated number"""
        header = {k: v for k, v in header.items() if v is not None}
        cls.validate_header(db, header)
        items = items or []

        def build():
            document = cls.model(
                status=cls.initial_status,
                created_by=user_id,
                **header
            )
            document.line_items = cls.build_lines(db, items)
            return document

        document = insert_numbered(
            db, build, cls.model, cls.number_attr, cls.sequence_name, cls.prefix, cls.label
        )
        logger.info("%s %s created by user %s", cls.label, cls.number_of(document), user_id)
        return document

    @classmethod
    def update_header(cls, db: Session, document_id: int, changes: Dict[str, Any]):
        document = cls.get_document(db, document_id, lock=True)
        try:
            if cls.is_locked(document):
                raise InvalidOperationError(
                    f"{cls.label} {cls.number_of(document)} is {document.status.value} and can no longer be edited"
                )
            cls.validate_header(db, changes)
            for key, value in changes.items():
                setattr(document, key, value)
            document.updated_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(document)
        return document

    @classmethod
    def update_line_items(cls, db: Session, document_id: int, items: List[Dict[str, Any]]):
        """Replace the whole line item set of a non-terminal, unposted document"""
        document = cls.get_document(db, document_id, lock=True)
        try:
            if cls.is_locked(document):
                raise InvalidOperationError(
                    f"{cls.label} {cls.number_of(document)} is {document.status.value} and can no longer be edited"
                )
            document.line_items = cls.build_lines(db, items)
            document.updated_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(document)
        logger.info("%s %s line items replaced (%d lines)", cls.label, cls.number_of(document), len(items))
        return document

    @classmethod
    def delete_document(cls, db: Session, document_id: int) -> None:
        document = cls.get_document(db, document_id, lock=True)
        if document.stock_posted:
            db.rollback()
            raise InvalidOperationError(
                f"{cls.label} {cls.number_of(document)} has posted stock and cannot be deleted"
            )
        number = cls.number_of(document)
        db.delete(document)
        db.commit()
        logger.info("%s %s deleted", cls.label, number)

    # -------------------------------------------------------------------------
    # Transition executor
    # -------------------------------------------------------------------------

    @classmethod
    def post_stock(cls, db: Session, document, user_id: Optional[int]) -> List[StockMove]:
        movements = []
        for line in document.line_items:
            from_location, to_location = cls.move_locations(document, line)
            movements.append(InventoryAdjustmentService.adjust_inventory(
                db=db,
                product_id=line.product_id,
                delta=cls.stock_delta(line),
                move_type=cls.move_type,
                user_id=user_id,
                document_type=cls.document_type,
                document_id=document.id,
                document_number=cls.number_of(document),
                from_location=from_location,
                to_location=to_location,
            ))
        return movements

    @classmethod
    def attempt_transition(
        cls,
        db: Session,
        document_id: int,
        target_status,
        user_id: Optional[int] = None
    ) -> TransitionOutcome:
        """
        Move a document to `target_status`.

        Returns an outcome carrying either the updated document or the guard
        failure. Asking for the current status is a no-op. Stock is posted
        when the terminal status is entered for the first time.

        Raises:
            InsufficientStockError: a delivery would take stock below reserved
            HTTPException(404): document or product missing
        """
        target = cls.status_enum(target_status)

        try:
            document = cls.get_document(db, document_id, lock=True)
            current = cls.status_enum(document.status)

            if target == current:
                db.rollback()
                logger.info("%s %s already %s, nothing to do", cls.label, cls.number_of(document), target.value)
                return TransitionOutcome(document=document, changed=False)

            verdict = cls.guard(document, target)
            if not verdict:
                db.rollback()
                logger.info(
                    "%s %s %s -> %s rejected: %s",
                    cls.label, cls.number_of(document), current.value, target.value, verdict.reason
                )
                return TransitionOutcome(document=document, failure=verdict)

            movements = []
            if target == cls.terminal_status and not document.stock_posted:
                movements = cls.post_stock(db, document, user_id)
                document.stock_posted = True
                document.posted_at = datetime.utcnow()

            document.status = target
            document.updated_at = datetime.utcnow()
            db.commit()

        except (InventoryError, HTTPException):
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("%s %s transition to %s failed", cls.label, document_id, target.value)
            raise

        db.refresh(document)
        logger.info(
            "%s %s %s -> %s (%d stock moves)",
            cls.label, cls.number_of(document), current.value, target.value, len(movements)
        )
        return TransitionOutcome(document=document, changed=True, movements=movements)


# =============================================================================
# RECEIPTS
# =============================================================================

class ReceiptService(DocumentService):
    """Incoming goods: Draft -> Ready -> Done, stock increased on Done"""

    model = Receipt
    number_attr = "receipt_number"
    sequence_name = "receipt"
    prefix = "REC"
    document_type = "receipt"
    label = "Receipt"
    status_enum = ReceiptStatus
    initial_status = ReceiptStatus.DRAFT
    terminal_status = ReceiptStatus.DONE
    move_type = MoveType.RECEIPT
    guard = staticmethod(check_receipt_transition)
    total = staticmethod(receipt_total)

    @classmethod
    def validate_header(cls, db: Session, header: Dict[str, Any]) -> None:
        supplier_id = header.get("supplier_id")
        if supplier_id:
            supplier = db.query(Contact).filter(Contact.id == supplier_id).first()
            if not supplier:
                raise HTTPException(status_code=404, detail="Supplier not found")
            if not supplier.is_vendor:
                raise InvalidOperationError(f"Contact {supplier.name} is not a vendor")

        warehouse_id = header.get("warehouse_id")
        if warehouse_id:
            warehouse = db.query(Warehouse).filter(Warehouse.id == warehouse_id).first()
            if not warehouse:
                raise HTTPException(status_code=404, detail="Warehouse not found")

    @classmethod
    def make_line(cls, item, position, price) -> ReceiptLineItem:
        quantity = item.get("quantity_received") or 0
        if quantity < 0:
            raise InconsistentInputError(f"Line {position + 1}: quantity received cannot be negative")
        return ReceiptLineItem(
            product_id=item.get("product_id"),
            quantity_received=quantity,
            price_per_unit=price,
            position=position,
        )

    @classmethod
    def stock_delta(cls, line) -> int:
        return line.quantity_received

    @classmethod
    def move_locations(cls, document, line) -> tuple:
        source = document.supplier.name if document.supplier else "Vendors"
        destination = document.warehouse.shortcode if document.warehouse else None
        return source, destination

    @classmethod
    def create_receipt(cls, db: Session, header: Dict[str, Any], user_id: Optional[int] = None, items=None) -> Receipt:
        return cls.create_document(db, header, user_id=user_id, items=items)


# =============================================================================
# DELIVERIES
# =============================================================================

class DeliveryService(DocumentService):
    """Outgoing goods: Picked -> Packed -> Validated, stock decreased on Validated"""

    model = DeliveryOrder
    number_attr = "delivery_number"
    sequence_name = "delivery"
    prefix = "DO"
    document_type = "delivery"
    label = "Delivery order"
    status_enum = DeliveryStatus
    initial_status = DeliveryStatus.PICKED
    terminal_status = DeliveryStatus.VALIDATED
    move_type = MoveType.DELIVERY
    guard = staticmethod(check_delivery_transition)
    total = staticmethod(delivery_total)

    @classmethod
    def validate_header(cls, db: Session, header: Dict[str, Any]) -> None:
        customer_id = header.get("customer_id")
        if customer_id:
            customer = db.query(Contact).filter(Contact.id == customer_id).first()
            if not customer:
                raise HTTPException(status_code=404, detail="Customer not found")
            if not customer.is_customer:
                raise InvalidOperationError(f"Contact {customer.name} is not a customer")

    @classmethod
    def make_line(cls, item, position, price) -> DeliveryLineItem:
        picked = item.get("quantity_picked") or 0
        packed = item.get("quantity_packed") or 0
        if picked < 0 or packed < 0:
            raise InconsistentInputError(f"Line {position + 1}: quantities cannot be negative")
        if packed > picked:
            raise InconsistentInputError(
                f"Line {position + 1}: quantity packed ({packed}) exceeds quantity picked ({picked})"
            )
        return DeliveryLineItem(
            product_id=item.get("product_id"),
            quantity_picked=picked,
            quantity_packed=packed,
            price_per_unit=price,
            position=position,
        )

    @classmethod
    def stock_delta(cls, line) -> int:
        return -line.quantity_packed

    @classmethod
    def move_locations(cls, document, line) -> tuple:
        product = line.product
        source = product.location.shortcode if product and product.location else "Stock"
        destination = document.customer.name if document.customer else "Customers"
        return source, destination

    @classmethod
    def create_delivery(cls, db: Session, header: Dict[str, Any], user_id: Optional[int] = None, items=None) -> DeliveryOrder:
        return cls.create_document(db, header, user_id=user_id, items=items)
