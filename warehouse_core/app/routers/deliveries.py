"""
Delivery Orders API Router
==========================
Outgoing goods workflow (forward only):
- Picked: items taken from stock
- Packed: packed quantities recorded
- Validated: shipped, on-hand decreased by packed quantities
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, validator
from sqlalchemy.orm import Session

from ..security import (
    get_db, require_permission, has_permission, Permission, SecurityAuditLog
)
from ..models import DeliveryOrder, DeliveryStatus
from ..services.document_service import DeliveryService
from ..services.workflow import line_total, allowed_delivery_targets

router = APIRouter(prefix="/api/deliveries", tags=["Delivery Orders"])


# =============================================================================
# SCHEMAS
# =============================================================================

class DeliveryLineIn(BaseModel):
    product_id: Optional[int] = None
    quantity_picked: int = Field(0, ge=0)
    quantity_packed: int = Field(0, ge=0)
    price_per_unit: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)

    @validator('quantity_packed')
    def packed_within_picked(cls, v, values):
        picked = values.get('quantity_picked')
        if picked is not None and v > picked:
            raise ValueError(f"quantity packed ({v}) exceeds quantity picked ({picked})")
        return v


class DeliveryCreateRequest(BaseModel):
    customer_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    line_items: List[DeliveryLineIn] = []


class DeliveryUpdateRequest(BaseModel):
    customer_id: Optional[int] = None
    delivery_date: Optional[datetime] = None


class DeliveryLinesRequest(BaseModel):
    line_items: List[DeliveryLineIn]


class DeliveryTransitionRequest(BaseModel):
    target_status: DeliveryStatus


class DeliveryLineOut(BaseModel):
    id: int
    position: int
    product_id: Optional[int]
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity_picked: int
    quantity_packed: int
    price_per_unit: Decimal
    line_total: Decimal


class DeliveryOut(BaseModel):
    id: int
    delivery_number: str
    customer_id: Optional[int]
    customer_name: Optional[str] = None
    delivery_date: datetime
    status: DeliveryStatus
    allowed_transitions: List[DeliveryStatus] = []
    stock_posted: bool
    posted_at: Optional[datetime]
    created_at: datetime
    total: Decimal
    line_items: List[DeliveryLineOut] = []


def _delivery_out(delivery: DeliveryOrder) -> DeliveryOut:
    lines = [
        DeliveryLineOut(
            id=line.id,
            position=line.position,
            product_id=line.product_id,
            product_sku=line.product.sku if line.product else None,
            product_name=line.product.name if line.product else None,
            quantity_picked=line.quantity_picked,
            quantity_packed=line.quantity_packed,
            price_per_unit=line.price_per_unit,
            line_total=line_total(line.quantity_packed, line.price_per_unit),
        )
        for line in delivery.line_items
    ]
    return DeliveryOut(
        id=delivery.id,
        delivery_number=delivery.delivery_number,
        customer_id=delivery.customer_id,
        customer_name=delivery.customer.name if delivery.customer else None,
        delivery_date=delivery.delivery_date,
        status=delivery.status,
        allowed_transitions=sorted(allowed_delivery_targets(delivery.status), key=lambda s: s.value),
        stock_posted=delivery.stock_posted,
        posted_at=delivery.posted_at,
        created_at=delivery.created_at,
        total=DeliveryService.total(delivery),
        line_items=lines,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[DeliveryOut])
async def list_deliveries(
    status: Optional[DeliveryStatus] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(50, le=200),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_VIEW))
):
    """List delivery orders, newest first. `search` matches the delivery number."""
    query = db.query(DeliveryOrder)

    if status:
        query = query.filter(DeliveryOrder.status == status)

    if customer_id:
        query = query.filter(DeliveryOrder.customer_id == customer_id)

    if search:
        query = query.filter(DeliveryOrder.delivery_number.ilike(f"%{search.strip()}%"))

    deliveries = query.order_by(
        DeliveryOrder.created_at.desc(), DeliveryOrder.id.desc()
    ).offset(offset).limit(limit).all()

    return [_delivery_out(d) for d in deliveries]


@router.post("", status_code=201)
async def create_delivery(
    data: DeliveryCreateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_EDIT))
):
    """Create a delivery order in Picked with the next DO/YYYY/NNNN number."""
    header = data.model_dump(exclude={"line_items"})
    delivery = DeliveryService.create_delivery(
        db,
        header,
        user_id=current_user.id,
        items=[item.model_dump() for item in data.line_items]
    )

    SecurityAuditLog.log_sensitive_action(
        db, current_user.id, "create", "delivery",
        delivery.id, {"delivery_number": delivery.delivery_number}
    )

    return {
        "success": True,
        "delivery_id": delivery.id,
        "delivery_number": delivery.delivery_number,
        "status": delivery.status.value,
        "delivery": _delivery_out(delivery)
    }


@router.get("/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_VIEW))
):
    return _delivery_out(DeliveryService.get_document(db, delivery_id))


@router.patch("/{delivery_id}", response_model=DeliveryOut)
async def update_delivery(
    delivery_id: int,
    data: DeliveryUpdateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_EDIT))
):
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k == "customer_id"
    }
    delivery = DeliveryService.update_header(db, delivery_id, changes)
    return _delivery_out(delivery)


@router.put("/{delivery_id}/line-items", response_model=DeliveryOut)
async def replace_delivery_lines(
    delivery_id: int,
    data: DeliveryLinesRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_EDIT))
):
    """Replace the whole line item set. Packed may never exceed picked."""
    delivery = DeliveryService.update_line_items(
        db, delivery_id, [item.model_dump() for item in data.line_items]
    )
    return _delivery_out(delivery)


@router.post("/{delivery_id}/transition")
async def transition_delivery(
    delivery_id: int,
    data: DeliveryTransitionRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_EDIT))
):
    """
    Move a delivery order forward.

    Validating requires the validate permission and removes every line's
    packed quantity from stock; the whole order fails if any product
    lacks free stock.
    """
    if data.target_status == DeliveryStatus.VALIDATED \
            and not has_permission(current_user, Permission.DELIVERY_VALIDATE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permissions: {Permission.DELIVERY_VALIDATE}"
        )

    outcome = DeliveryService.attempt_transition(
        db, delivery_id, data.target_status, user_id=current_user.id
    )

    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=outcome.failure.reason
        )

    stock_moves = [m.reference for m in outcome.movements]
    if outcome.changed:
        SecurityAuditLog.log_sensitive_action(
            db, current_user.id, "transition", "delivery", delivery_id,
            {"status": data.target_status.value, "stock_moves": stock_moves}
        )

    delivery = outcome.document
    return {
        "success": True,
        "changed": outcome.changed,
        "status": delivery.status.value,
        "stock_moves": stock_moves,
        "delivery": _delivery_out(delivery)
    }


@router.delete("/{delivery_id}", status_code=204)
async def delete_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.DELIVERY_EDIT))
):
    DeliveryService.delete_document(db, delivery_id)
