"""
Manufacturing Order Service
===========================
Create manufacturing orders (MO/YYYY/NNNN) with their components and
operations, and move orders and operations through their workflows.

Manufacturing orders do not post stock; component availability is read
from the linked products when the order is started.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import (
    Product, ManufacturingOrder, ManufacturingComponent, ManufacturingOperation,
    ManufacturingStatus, OperationStatus,
)
from .inventory_service import InventoryError, InvalidOperationError
from .document_service import TransitionOutcome, insert_numbered
from .workflow import check_manufacturing_transition, check_operation_transition

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (ManufacturingStatus.DRAFT, ManufacturingStatus.READY)


class ManufacturingService:
    """Manufacturing orders: Draft -> Ready -> In Progress -> Done"""

    @staticmethod
    def get_order(db: Session, order_id: int, lock: bool = False) -> ManufacturingOrder:
        query = db.query(ManufacturingOrder).filter(ManufacturingOrder.id == order_id)
        if lock:
            query = query.with_for_update().populate_existing()
        order = query.first()
        if not order:
            raise HTTPException(status_code=404, detail="Manufacturing order not found")
        return order

    @staticmethod
    def get_operation(db: Session, operation_id: int, lock: bool = False) -> ManufacturingOperation:
        query = db.query(ManufacturingOperation).filter(ManufacturingOperation.id == operation_id)
        if lock:
            query = query.with_for_update().populate_existing()
        operation = query.first()
        if not operation:
            raise HTTPException(status_code=404, detail="Operation not found")
        return operation

    @staticmethod
    def _check_product(db: Session, product_id: Optional[int]) -> None:
        if product_id and not db.query(Product).filter(Product.id == product_id).first():
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")

    @classmethod
    def _build_component(cls, db: Session, data: Dict[str, Any]) -> ManufacturingComponent:
        product_id = data.get("product_id")
        cls._check_product(db, product_id)
        name = data.get("component_name")
        if not name and product_id:
            name = db.get(Product, product_id).name
        if not name:
            raise InvalidOperationError("Component needs a name or a product")
        return ManufacturingComponent(
            product_id=product_id,
            component_name=name,
            required_quantity=data.get("required_quantity") or 0,
            available_quantity=data.get("available_quantity") or 0,
            unit_of_measure=data.get("unit_of_measure") or "Units",
        )

    @staticmethod
    def _ensure_editable(order: ManufacturingOrder) -> None:
        if ManufacturingStatus(order.status) not in EDITABLE_STATUSES:
            raise InvalidOperationError(
                f"Manufacturing order {order.reference} is {order.status.value} and can no longer be edited"
            )

    # -------------------------------------------------------------------------
    # Create / edit
    # -------------------------------------------------------------------------

    @classmethod
    def create_order(
        cls,
        db: Session,
        header: Dict[str, Any],
        user_id: Optional[int] = None,
        components: Optional[List[Dict[str, Any]]] = None,
        operations: Optional[List[Dict[str, Any]]] = None
    ) -> ManufacturingOrder:
        header = {k: v for k, v in header.items() if v is not None}
        cls._check_product(db, header.get("product_id"))
        components = components or []
        operations = operations or []

        def build():
            order = ManufacturingOrder(
                status=ManufacturingStatus.DRAFT,
                created_by=user_id,
                **header
            )
            order.components = [cls._build_component(db, c) for c in components]
            order.operations = [
                ManufacturingOperation(name=op["name"], sequence=op.get("sequence") or index)
                for index, op in enumerate(operations, start=1)
            ]
            return order

        order = insert_numbered(
            db, build, ManufacturingOrder, "reference", "manufacturing", "MO", "Manufacturing order"
        )
        logger.info("Manufacturing order %s created by user %s", order.reference, user_id)
        return order

    @classmethod
    def update_order(cls, db: Session, order_id: int, changes: Dict[str, Any]) -> ManufacturingOrder:
        order = cls.get_order(db, order_id, lock=True)
        try:
            cls._ensure_editable(order)
            cls._check_product(db, changes.get("product_id"))
            for key, value in changes.items():
                setattr(order, key, value)
            order.updated_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        return order

    @classmethod
    def add_component(cls, db: Session, order_id: int, data: Dict[str, Any]) -> ManufacturingComponent:
        order = cls.get_order(db, order_id, lock=True)
        try:
            cls._ensure_editable(order)
            component = cls._build_component(db, data)
            order.components.append(component)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(component)
        return component

    @classmethod
    def add_operation(cls, db: Session, order_id: int, data: Dict[str, Any]) -> ManufacturingOperation:
        """Append a work step; without a sequence it goes after the last one"""
        order = cls.get_order(db, order_id, lock=True)
        try:
            if order.status == ManufacturingStatus.DONE:
                raise InvalidOperationError(f"Manufacturing order {order.reference} is already Done")
            sequence = data.get("sequence")
            if sequence is None:
                highest = db.query(func.max(ManufacturingOperation.sequence)).filter(
                    ManufacturingOperation.order_id == order.id
                ).scalar()
                sequence = (highest or 0) + 1
            operation = ManufacturingOperation(name=data["name"], sequence=sequence)
            order.operations.append(operation)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(operation)
        return operation

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    @classmethod
    def attempt_transition(
        cls,
        db: Session,
        order_id: int,
        target_status,
        user_id: Optional[int] = None
    ) -> TransitionOutcome:
        target = ManufacturingStatus(target_status)

        try:
            order = cls.get_order(db, order_id, lock=True)
            current = ManufacturingStatus(order.status)

            if target == current:
                db.rollback()
                return TransitionOutcome(document=order, changed=False)

            verdict = check_manufacturing_transition(order, target)
            if not verdict:
                db.rollback()
                logger.info(
                    "Manufacturing order %s %s -> %s rejected: %s",
                    order.reference, current.value, target.value, verdict.reason
                )
                return TransitionOutcome(document=order, failure=verdict)

            now = datetime.utcnow()
            if target == ManufacturingStatus.IN_PROGRESS and order.started_at is None:
                order.started_at = now
            if target == ManufacturingStatus.DONE:
                order.completed_at = now

            order.status = target
            order.updated_at = now
            db.commit()

        except (InventoryError, HTTPException):
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("Manufacturing order %s transition to %s failed", order_id, target.value)
            raise

        db.refresh(order)
        logger.info(
            "Manufacturing order %s %s -> %s by user %s",
            order.reference, current.value, target.value, user_id
        )
        return TransitionOutcome(document=order, changed=True)

    @classmethod
    def set_operation_status(cls, db: Session, operation_id: int, target_status) -> TransitionOutcome:
        """Start, pause, resume or finish an operation"""
        target = OperationStatus(target_status)

        try:
            operation = cls.get_operation(db, operation_id, lock=True)
            current = OperationStatus(operation.status)

            if target == current:
                db.rollback()
                return TransitionOutcome(document=operation, changed=False)

            verdict = check_operation_transition(operation, target, operation.order.status)
            if not verdict:
                db.rollback()
                return TransitionOutcome(document=operation, failure=verdict)

            now = datetime.utcnow()
            if target == OperationStatus.IN_PROGRESS and operation.started_at is None:
                operation.started_at = now
            if target == OperationStatus.DONE:
                operation.completed_at = now
            operation.status = target
            db.commit()

        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("Operation %s transition to %s failed", operation_id, target.value)
            raise

        db.refresh(operation)
        logger.info("Operation %s (%s) %s -> %s", operation.id, operation.name, current.value, target.value)
        return TransitionOutcome(document=operation, changed=True)
