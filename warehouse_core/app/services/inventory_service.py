"""
Warehouse Inventory Service
===========================
Low-level inventory operations shared by the document workflows:
- Domain exceptions
- Money helpers (Decimal, 2 places)
- Year-scoped document number sequences
- Atomic on-hand adjustments with a stock ledger row
- Manual stock corrections
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import NumberSequence, Product, StockMove, MoveType

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base exception for inventory operations"""
    pass


class InsufficientStockError(InventoryError):
    """Raised when a decrease would take on-hand below the reserved quantity"""
    pass


class InvalidOperationError(InventoryError):
    """Raised when operation is not allowed in current state"""
    pass


class InconsistentInputError(InventoryError):
    """Raised when submitted data violates a document invariant (e.g. packed > picked)"""
    pass


class PersistenceConflictError(InventoryError):
    """Raised when a unique value could not be allocated after retrying"""
    pass


# =============================================================================
# MONEY UTILITIES
# =============================================================================

MONEY_PLACES = Decimal('0.01')


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal without float artefacts"""
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """Round a currency amount to 2 decimal places (half up)"""
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


# =============================================================================
# NUMBER SEQUENCE GENERATOR
# =============================================================================

def parse_sequence_suffix(number: str, prefix: str, year: int) -> Optional[int]:
    """
    Return the numeric suffix of `PREFIX/YEAR/NNNN`, or None when the number
    belongs to another prefix/year or its suffix is not numeric.
    """
    year_prefix = f"{prefix}/{year}/"
    if not number or not number.startswith(year_prefix):
        return None
    suffix = number[len(year_prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def highest_sequence_number(numbers: Iterable[str], prefix: str, year: int) -> int:
    """Largest parsed suffix among `numbers` for the given prefix and year (0 if none)"""
    parsed = [parse_sequence_suffix(n, prefix, year) for n in numbers]
    return max((n for n in parsed if n is not None), default=0)


def format_sequence_number(prefix: str, year: Optional[int], number: int, padding: int = 4) -> str:
    number_str = str(number).zfill(padding)
    if year is not None:
        return f"{prefix}/{year}/{number_str}"
    return f"{prefix}/{number_str}"


def _highest_stored_number(db: Session, number_column, prefix: str, year: int) -> int:
    rows = db.query(number_column).filter(number_column.like(f"{prefix}/{year}/%")).all()
    return highest_sequence_number((row[0] for row in rows), prefix, year)


def get_next_sequence(
    db: Session,
    sequence_name: str,
    prefix: str,
    number_column=None,
    year_wise: bool = True,
    padding: int = 4
) -> str:
    """
    Allocate the next document number, e.g. ``REC/2024/0007``.

    Uses SELECT FOR UPDATE on the sequence row so concurrent callers are
    serialised by the database. When the row is created (or the year rolls
    over) the counter is seeded from numbers already stored in
    `number_column`, ignoring malformed ones.
    """
    current_year = datetime.utcnow().year if year_wise else None

    # Lock the row for update
    seq = db.query(NumberSequence).filter(
        NumberSequence.sequence_name == sequence_name
    ).with_for_update().first()

    seed = False
    if not seq:
        seq = NumberSequence(
            sequence_name=sequence_name,
            prefix=prefix,
            current_number=0,
            year=current_year,
            padding=padding
        )
        db.add(seq)
        seed = True

    # Check if year changed (reset sequence)
    if year_wise and seq.year != current_year:
        seq.current_number = 0
        seq.year = current_year
        seed = True

    if seed and number_column is not None and year_wise:
        seq.current_number = _highest_stored_number(db, number_column, seq.prefix or prefix, current_year)

    seq.current_number += 1
    db.flush()

    return format_sequence_number(seq.prefix or prefix, current_year, seq.current_number, seq.padding or padding)


def resync_sequence(db: Session, sequence_name: str, prefix: str, number_column) -> int:
    """
    Realign a sequence with the numbers actually stored.

    Called after a unique-constraint collision so the next attempt allocates
    past the highest existing number.
    """
    current_year = datetime.utcnow().year
    seq = db.query(NumberSequence).filter(
        NumberSequence.sequence_name == sequence_name
    ).with_for_update().first()

    highest = _highest_stored_number(db, number_column, prefix, current_year)
    if not seq:
        seq = NumberSequence(sequence_name=sequence_name, prefix=prefix, year=current_year, padding=4)
        db.add(seq)
    seq.year = current_year
    seq.current_number = highest
    db.commit()

    logger.warning("Resynchronised sequence %s to %s/%s/%04d", sequence_name, prefix, current_year, highest)
    return highest


# =============================================================================
# INVENTORY ADJUSTMENT
# =============================================================================

class InventoryAdjustmentService:
    """Atomic on-hand changes. Called by the document workflows and manual adjustments."""

    @staticmethod
    def adjust_inventory(
        db: Session,
        product_id: int,
        delta: int,
        move_type: MoveType,
        user_id: Optional[int] = None,
        document_type: Optional[str] = None,
        document_id: Optional[int] = None,
        document_number: Optional[str] = None,
        from_location: Optional[str] = None,
        to_location: Optional[str] = None,
        note: Optional[str] = None
    ) -> StockMove:
        """
        Add `delta` (signed) to a product's on-hand quantity.

        The change is a single UPDATE relative to the stored value; the
        WHERE clause refuses to go below the reserved quantity. Does not
        commit: the caller owns the transaction.

        Raises:
            HTTPException(404): product does not exist
            InsufficientStockError: decrease exceeds free stock
            InvalidOperationError: delta is zero
        """
        if not delta:
            raise InvalidOperationError("No quantity change specified")

        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.on_hand_quantity + delta >= Product.reserved_quantity,
            )
            .values(
                on_hand_quantity=Product.on_hand_quantity + delta,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)

        # Reload so the identity map reflects the database value
        product = db.get(Product, product_id, populate_existing=True)

        if result.rowcount == 0:
            if product is None:
                raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
            raise InsufficientStockError(
                f"Insufficient stock for {product.sku}. "
                f"Free to use: {product.free_to_use_quantity}, Requested: {-delta}"
            )

        quantity_after = product.on_hand_quantity
        movement = StockMove(
            reference=get_next_sequence(db, "stock_move", "MOV", StockMove.reference),
            product_id=product_id,
            move_type=move_type,
            quantity_change=delta,
            quantity_before=quantity_after - delta,
            quantity_after=quantity_after,
            from_location=from_location,
            to_location=to_location,
            document_type=document_type,
            document_id=document_id,
            document_number=document_number,
            note=note,
            created_by=user_id,
            moved_at=datetime.utcnow()
        )
        db.add(movement)
        db.flush()

        logger.info(
            "Stock %s %+d for %s (%s -> %s) ref %s",
            move_type.value, delta, product.sku, movement.quantity_before,
            quantity_after, document_number
        )
        return movement


# =============================================================================
# MANUAL ADJUSTMENTS
# =============================================================================

class StockAdjustmentService:
    """Stock corrections entered by hand (counts, breakage, found goods)"""

    @staticmethod
    def record_adjustment(
        db: Session,
        product_id: int,
        quantity_change: int,
        user_id: Optional[int] = None,
        from_location: Optional[str] = None,
        to_location: Optional[str] = None,
        note: Optional[str] = None
    ) -> StockMove:
        """
        Post a signed manual correction and commit it.

        Goes through adjust_inventory, so the reserved-quantity floor and
        the ledger row apply exactly as for documents.
        """
        try:
            movement = InventoryAdjustmentService.adjust_inventory(
                db=db,
                product_id=product_id,
                delta=quantity_change,
                move_type=MoveType.ADJUSTMENT,
                user_id=user_id,
                document_type="adjustment",
                from_location=from_location or ("Inventory adjustment" if quantity_change > 0 else None),
                to_location=to_location or ("Inventory adjustment" if quantity_change < 0 else None),
                note=note,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(movement)
        logger.info("Manual adjustment %s by user %s: %s", movement.reference, user_id, note or "-")
        return movement


# =============================================================================
# LEDGER QUERIES
# =============================================================================

class StockMoveQueryService:
    """Read access to the stock ledger"""

    @staticmethod
    def list_moves(
        db: Session,
        product_id: Optional[int] = None,
        document_type: Optional[str] = None,
        document_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[StockMove]:
        query = db.query(StockMove)

        if product_id:
            query = query.filter(StockMove.product_id == product_id)

        if document_type:
            query = query.filter(StockMove.document_type == document_type)

        if document_id:
            query = query.filter(StockMove.document_id == document_id)

        return query.order_by(
            StockMove.moved_at.desc(), StockMove.id.desc()
        ).offset(offset).limit(limit).all()
