"""
Stock Moves API Router
======================
The stock ledger written by receipt and delivery validation, plus manual
adjustments. Ledger rows are never edited or deleted.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission, SecurityAuditLog
from ..models import StockMove, MoveType
from ..services.inventory_service import StockMoveQueryService, StockAdjustmentService

router = APIRouter(prefix="/api/stock-moves", tags=["Stock Moves"])


class StockMoveOut(BaseModel):
    id: int
    reference: str
    product_id: int
    product_sku: Optional[str] = None
    move_type: MoveType
    quantity_change: int
    quantity_before: int
    quantity_after: int
    from_location: Optional[str]
    to_location: Optional[str]
    document_type: Optional[str]
    document_id: Optional[int]
    document_number: Optional[str]
    note: Optional[str] = None
    moved_at: datetime


class StockAdjustmentRequest(BaseModel):
    product_id: int
    # Signed: positive adds stock, negative removes it
    quantity_change: int
    from_location: Optional[str] = Field(None, max_length=100)
    to_location: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = Field(None, max_length=255)


def _move_out(move: StockMove) -> StockMoveOut:
    return StockMoveOut(
        id=move.id,
        reference=move.reference,
        product_id=move.product_id,
        product_sku=move.product.sku if move.product else None,
        move_type=move.move_type,
        quantity_change=move.quantity_change,
        quantity_before=move.quantity_before,
        quantity_after=move.quantity_after,
        from_location=move.from_location,
        to_location=move.to_location,
        document_type=move.document_type,
        document_id=move.document_id,
        document_number=move.document_number,
        note=move.note,
        moved_at=move.moved_at,
    )


@router.get("", response_model=List[StockMoveOut])
async def list_stock_moves(
    product_id: Optional[int] = None,
    document_type: Optional[str] = None,
    document_id: Optional[int] = None,
    limit: int = Query(100, le=500),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_VIEW))
):
    """Ledger rows, newest first."""
    moves = StockMoveQueryService.list_moves(
        db,
        product_id=product_id,
        document_type=document_type,
        document_id=document_id,
        limit=limit,
        offset=offset
    )
    return [_move_out(m) for m in moves]


@router.get("/{move_id}", response_model=StockMoveOut)
async def get_stock_move(
    move_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_VIEW))
):
    move = db.query(StockMove).filter(StockMove.id == move_id).first()
    if not move:
        raise HTTPException(status_code=404, detail="Stock move not found")
    return _move_out(move)


@router.post("", response_model=StockMoveOut, status_code=201)
async def create_stock_adjustment(
    data: StockAdjustmentRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_ADJUST))
):
    """
    Post a manual stock correction.

    The move is applied immediately; a decrease below the reserved
    quantity is refused with 409 and nothing is written.
    """
    move = StockAdjustmentService.record_adjustment(
        db,
        product_id=data.product_id,
        quantity_change=data.quantity_change,
        user_id=current_user.id,
        from_location=data.from_location,
        to_location=data.to_location,
        note=data.note,
    )

    SecurityAuditLog.log_sensitive_action(
        db, current_user.id, "adjust", "stock_move", move.id,
        {"reference": move.reference, "product_id": move.product_id, "quantity_change": move.quantity_change}
    )
    return _move_out(move)
