"""
Manufacturing Orders API Router
===============================
Production workflow:
- Draft: product, quantity and components being entered
- Ready: product and quantity confirmed
- In Progress: components available, operations being worked
- Done: every operation finished

Operations move Pending -> In Progress <-> Paused, then Done.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission, SecurityAuditLog
from ..models import (
    ManufacturingOrder, ManufacturingComponent, ManufacturingOperation,
    ManufacturingStatus, OperationStatus,
)
from ..services.manufacturing_service import ManufacturingService
from ..services.workflow import allowed_manufacturing_targets

router = APIRouter(prefix="/api/manufacturing-orders", tags=["Manufacturing"])
operations_router = APIRouter(prefix="/api/operations", tags=["Manufacturing"])


# =============================================================================
# SCHEMAS
# =============================================================================

class ComponentIn(BaseModel):
    product_id: Optional[int] = None
    component_name: Optional[str] = Field(None, max_length=200)
    required_quantity: int = Field(0, ge=0)
    # Only used for components without a linked product
    available_quantity: int = Field(0, ge=0)
    unit_of_measure: Optional[str] = Field(None, max_length=20)


class OperationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sequence: Optional[int] = Field(None, ge=1)


class ManufacturingCreateRequest(BaseModel):
    product_id: Optional[int] = None
    quantity: int = Field(0, ge=0)
    unit_of_measure: Optional[str] = Field(None, max_length=20)
    responsible: Optional[str] = Field(None, max_length=200)
    schedule_date: Optional[datetime] = None
    components: List[ComponentIn] = []
    operations: List[OperationIn] = []


class ManufacturingUpdateRequest(BaseModel):
    product_id: Optional[int] = None
    quantity: Optional[int] = Field(None, ge=0)
    unit_of_measure: Optional[str] = Field(None, max_length=20)
    responsible: Optional[str] = Field(None, max_length=200)
    schedule_date: Optional[datetime] = None


class ManufacturingTransitionRequest(BaseModel):
    target_status: ManufacturingStatus


class OperationStatusRequest(BaseModel):
    status: OperationStatus


class ComponentOut(BaseModel):
    id: int
    product_id: Optional[int]
    component_name: str
    required_quantity: int
    available_quantity: int
    unit_of_measure: str
    is_available: bool


class OperationOut(BaseModel):
    id: int
    order_id: int
    name: str
    sequence: int
    status: OperationStatus
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ManufacturingOut(BaseModel):
    id: int
    reference: str
    product_id: Optional[int]
    product_name: Optional[str] = None
    quantity: int
    unit_of_measure: str
    responsible: Optional[str]
    schedule_date: datetime
    status: ManufacturingStatus
    allowed_transitions: List[ManufacturingStatus] = []
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    components: List[ComponentOut] = []
    operations: List[OperationOut] = []


def _component_out(component: ManufacturingComponent) -> ComponentOut:
    return ComponentOut(
        id=component.id,
        product_id=component.product_id,
        component_name=component.component_name,
        required_quantity=component.required_quantity,
        available_quantity=component.available,
        unit_of_measure=component.unit_of_measure,
        is_available=component.is_available,
    )


def _order_out(order: ManufacturingOrder) -> ManufacturingOut:
    order_status = ManufacturingStatus(order.status)
    return ManufacturingOut(
        id=order.id,
        reference=order.reference,
        product_id=order.product_id,
        product_name=order.product.name if order.product else None,
        quantity=order.quantity,
        unit_of_measure=order.unit_of_measure,
        responsible=order.responsible,
        schedule_date=order.schedule_date,
        status=order_status,
        allowed_transitions=[
            s for s in ManufacturingStatus if s in allowed_manufacturing_targets(order_status)
        ],
        started_at=order.started_at,
        completed_at=order.completed_at,
        created_at=order.created_at,
        components=[_component_out(c) for c in order.components],
        operations=[OperationOut.model_validate(op) for op in order.operations],
    )


# =============================================================================
# ORDERS
# =============================================================================

@router.get("", response_model=List[ManufacturingOut])
async def list_manufacturing_orders(
    status: Optional[ManufacturingStatus] = None,
    product_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(50, le=200),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_VIEW))
):
    """List manufacturing orders by schedule date. `search` matches the reference."""
    query = db.query(ManufacturingOrder)

    if status:
        query = query.filter(ManufacturingOrder.status == status)

    if product_id:
        query = query.filter(ManufacturingOrder.product_id == product_id)

    if search:
        query = query.filter(ManufacturingOrder.reference.ilike(f"%{search.strip()}%"))

    orders = query.order_by(
        ManufacturingOrder.schedule_date.asc(), ManufacturingOrder.id.asc()
    ).offset(offset).limit(limit).all()

    return [_order_out(o) for o in orders]


@router.post("", status_code=201)
async def create_manufacturing_order(
    data: ManufacturingCreateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    """Create a manufacturing order in Draft with the next MO/YYYY/NNNN reference."""
    order = ManufacturingService.create_order(
        db,
        data.model_dump(exclude={"components", "operations"}),
        user_id=current_user.id,
        components=[c.model_dump() for c in data.components],
        operations=[op.model_dump() for op in data.operations],
    )

    SecurityAuditLog.log_sensitive_action(
        db, current_user.id, "create", "manufacturing_order",
        order.id, {"reference": order.reference}
    )

    return {
        "success": True,
        "order_id": order.id,
        "reference": order.reference,
        "status": order.status.value,
        "order": _order_out(order)
    }


@router.get("/{order_id}", response_model=ManufacturingOut)
async def get_manufacturing_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_VIEW))
):
    return _order_out(ManufacturingService.get_order(db, order_id))


@router.patch("/{order_id}", response_model=ManufacturingOut)
async def update_manufacturing_order(
    order_id: int,
    data: ManufacturingUpdateRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    """Change an order that has not been started."""
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    return _order_out(ManufacturingService.update_order(db, order_id, changes))


@router.post("/{order_id}/transition")
async def transition_manufacturing_order(
    order_id: int,
    data: ManufacturingTransitionRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    outcome = ManufacturingService.attempt_transition(
        db, order_id, data.target_status, user_id=current_user.id
    )

    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=outcome.failure.reason
        )

    if outcome.changed:
        SecurityAuditLog.log_sensitive_action(
            db, current_user.id, "transition", "manufacturing_order", order_id,
            {"status": data.target_status.value}
        )

    order = outcome.document
    return {
        "success": True,
        "changed": outcome.changed,
        "status": ManufacturingStatus(order.status).value,
        "order": _order_out(order)
    }


# =============================================================================
# COMPONENTS & OPERATIONS
# =============================================================================

@router.get("/{order_id}/components", response_model=List[ComponentOut])
async def list_components(
    order_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_VIEW))
):
    order = ManufacturingService.get_order(db, order_id)
    return [_component_out(c) for c in order.components]


@router.post("/{order_id}/components", response_model=ComponentOut, status_code=201)
async def add_component(
    order_id: int,
    data: ComponentIn,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    return _component_out(ManufacturingService.add_component(db, order_id, data.model_dump()))


@router.get("/{order_id}/operations", response_model=List[OperationOut])
async def list_operations(
    order_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_VIEW))
):
    order = ManufacturingService.get_order(db, order_id)
    return order.operations


@router.post("/{order_id}/operations", response_model=OperationOut, status_code=201)
async def add_operation(
    order_id: int,
    data: OperationIn,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    return ManufacturingService.add_operation(db, order_id, data.model_dump())


@operations_router.patch("/{operation_id}", response_model=OperationOut)
async def update_operation_status(
    operation_id: int,
    data: OperationStatusRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.MANUFACTURING_EDIT))
):
    """Start, pause, resume or finish an operation of an In Progress order."""
    outcome = ManufacturingService.set_operation_status(db, operation_id, data.status)
    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=outcome.failure.reason
        )
    return outcome.document
