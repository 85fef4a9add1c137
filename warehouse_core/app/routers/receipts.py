"""
Receipts API Router
===================
Incoming goods workflow:
- Draft: header and lines being entered
- Ready: supplier and warehouse confirmed
- Done: goods received, on-hand increased

Stock is posted server-side by the transition endpoint; clients never
send on-hand figures.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..security import (
    get_db, require_permission, has_permission, Permission, SecurityAuditLog
)
from ..models import Receipt, ReceiptStatus
from ..services.document_service import ReceiptService
from ..services.workflow import line_total, allowed_receipt_targets

router = APIRouter(prefix="/api/receipts", tags=["Receipts"])


# =============================================================================
# SCHEMAS
# =============================================================================

class ReceiptLineIn(BaseModel):
    product_id: Optional[int] = None
    quantity_received: int = Field(0, ge=0)
    # Defaults to the product's price when omitted
    price_per_unit: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)


class ReceiptCreateRequest(BaseModel):
    supplier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    receipt_date: Optional[datetime] = None
    line_items: List[ReceiptLineIn] = []


class ReceiptUpdateRequest(BaseModel):
    supplier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    receipt_date: Optional[datetime] = None


class ReceiptLinesRequest(BaseModel):
    line_items: List[ReceiptLineIn]


class ReceiptTransitionRequest(BaseModel):
    target_status: ReceiptStatus


class ReceiptLineOut(BaseModel):
    id: int
    position: int
    product_id: Optional[int]
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity_received: int
    price_per_unit: Decimal
    line_total: Decimal


class ReceiptOut(BaseModel):
    id: int
    receipt_number: str
    supplier_id: Optional[int]
    supplier_name: Optional[str] = None
    warehouse_id: Optional[int]
    warehouse_shortcode: Optional[str] = None
    scheduled_date: datetime
    receipt_date: datetime
    status: ReceiptStatus
    allowed_transitions: List[ReceiptStatus] = []
    stock_posted: bool
    posted_at: Optional[datetime]
    created_at: datetime
    total: Decimal
    line_items: List[ReceiptLineOut] = []


def _receipt_out(receipt: Receipt) -> ReceiptOut:
    lines = [
        ReceiptLineOut(
            id=line.id,
            position=line.position,
            product_id=line.product_id,
            product_sku=line.product.sku if line.product else None,
            product_name=line.product.name if line.product else None,
            quantity_received=line.quantity_received,
            price_per_unit=line.price_per_unit,
            line_total=line_total(line.quantity_received, line.price_per_unit),
        )
        for line in receipt.line_items
    ]
    return ReceiptOut(
        id=receipt.id,
        receipt_number=receipt.receipt_number,
        supplier_id=receipt.supplier_id,
        supplier_name=receipt.supplier.name if receipt.supplier else None,
        warehouse_id=receipt.warehouse_id,
        warehouse_shortcode=receipt.warehouse.shortcode if receipt.warehouse else None,
        scheduled_date=receipt.scheduled_date,
        receipt_date=receipt.receipt_date,
        status=receipt.status,
        allowed_transitions=sorted(allowed_receipt_targets(receipt.status), key=lambda s: s.value),
        stock_posted=receipt.stock_posted,
        posted_at=receipt.posted_at,
        created_at=receipt.created_at,
        total=ReceiptService.total(receipt),
        line_items=lines,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[ReceiptOut])
async def list_receipts(
    status: Optional[ReceiptStatus] = None,
    supplier_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(50, le=200),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_VIEW))
):
    """List receipts, newest first. `search` matches the receipt number."""
    query = db.query(Receipt)

    if status:
        query = query.filter(Receipt.status == status)

    if supplier_id:
        query = query.filter(Receipt.supplier_id == supplier_id)

    if warehouse_id:
        query = query.filter(Receipt.warehouse_id == warehouse_id)

    if search:
        query = query.filter(Receipt.receipt_number.ilike(f"%{search.strip()}%"))

    receipts = query.order_by(
        Receipt.created_at.desc(), Receipt.id.desc()
    ).offset(offset).limit(limit).all()

    return [_receipt_out(r) for r in receipts]


@router.post("", status_code=201)
async def create_receipt(
    data: ReceiptCreateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_EDIT))
):
    """Create a receipt in Draft with the next REC/YYYY/NNNN number."""
    header = data.model_dump(exclude={"line_items"})
    receipt = ReceiptService.create_receipt(
        db,
        header,
        user_id=current_user.id,
        items=[item.model_dump() for item in data.line_items]
    )

    SecurityAuditLog.log_sensitive_action(
        db, current_user.id, "create", "receipt",
        receipt.id, {"receipt_number": receipt.receipt_number}
    )

    return {
        "success": True,
        "receipt_id": receipt.id,
        "receipt_number": receipt.receipt_number,
        "status": receipt.status.value,
        "receipt": _receipt_out(receipt)
    }


@router.get("/{receipt_id}", response_model=ReceiptOut)
async def get_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_VIEW))
):
    return _receipt_out(ReceiptService.get_document(db, receipt_id))


@router.patch("/{receipt_id}", response_model=ReceiptOut)
async def update_receipt(
    receipt_id: int,
    data: ReceiptUpdateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_EDIT))
):
    """Change supplier, warehouse or dates of an unposted receipt."""
    # supplier_id / warehouse_id may be cleared with null, dates may not
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in ("supplier_id", "warehouse_id")
    }
    receipt = ReceiptService.update_header(db, receipt_id, changes)
    return _receipt_out(receipt)


@router.put("/{receipt_id}/line-items", response_model=ReceiptOut)
async def replace_receipt_lines(
    receipt_id: int,
    data: ReceiptLinesRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_EDIT))
):
    """Replace the whole line item set. Refused once stock is posted."""
    receipt = ReceiptService.update_line_items(
        db, receipt_id, [item.model_dump() for item in data.line_items]
    )
    return _receipt_out(receipt)


@router.post("/{receipt_id}/transition")
async def transition_receipt(
    receipt_id: int,
    data: ReceiptTransitionRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_EDIT))
):
    """
    Move a receipt to another status.

    Entering or leaving Done requires the validate permission. Entering
    Done for the first time adds every line's received quantity to stock.
    """
    receipt = ReceiptService.get_document(db, receipt_id)
    touches_done = ReceiptStatus.DONE in (receipt.status, data.target_status)
    if touches_done and receipt.status != data.target_status \
            and not has_permission(current_user, Permission.RECEIPT_VALIDATE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permissions: {Permission.RECEIPT_VALIDATE}"
        )

    outcome = ReceiptService.attempt_transition(
        db, receipt_id, data.target_status, user_id=current_user.id
    )

    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=outcome.failure.reason
        )

    stock_moves = [m.reference for m in outcome.movements]
    if outcome.changed:
        SecurityAuditLog.log_sensitive_action(
            db, current_user.id, "transition", "receipt", receipt_id,
            {"status": data.target_status.value, "stock_moves": stock_moves}
        )

    receipt = outcome.document
    return {
        "success": True,
        "changed": outcome.changed,
        "status": receipt.status.value,
        "stock_moves": stock_moves,
        "receipt": _receipt_out(receipt)
    }


@router.delete("/{receipt_id}", status_code=204)
async def delete_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.RECEIPT_EDIT))
):
    ReceiptService.delete_document(db, receipt_id)
