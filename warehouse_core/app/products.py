import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .security import get_db, require_permission, Permission, sanitize_input, SecurityAuditLog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _get_product(db: Session, product_id: int) -> models.Product:
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _check_location(db: Session, location_id: Optional[int]):
    if location_id and not db.query(models.Location).filter(models.Location.id == location_id).first():
        raise HTTPException(status_code=404, detail="Location not found")


@router.get("", response_model=List[schemas.ProductOut])
def list_products(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False),
    limit: int = Query(100, le=500),
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.PRODUCT_VIEW)),
):
    """
    List products. `search` matches SKU or name (case-insensitive),
    `low_stock` keeps products at or below their minimum quantity.
    """
    query = db.query(models.Product)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(models.Product.sku.ilike(pattern), models.Product.name.ilike(pattern)))

    if category:
        query = query.filter(models.Product.category.ilike(f"%{category}%"))

    if low_stock:
        query = query.filter(models.Product.on_hand_quantity <= models.Product.minimum_quantity)

    return query.order_by(models.Product.sku).offset(offset).limit(limit).all()


@router.post("", response_model=schemas.ProductOut, status_code=201)
def create_product(product_in: schemas.ProductCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.PRODUCT_MANAGE))):
    sku = sanitize_input(product_in.sku).upper()
    if db.query(models.Product).filter(models.Product.sku == sku).first():
        raise HTTPException(status_code=409, detail=f"Product with SKU {sku} already exists")
    _check_location(db, product_in.location_id)

    data = {k: sanitize_input(v) for k, v in product_in.model_dump().items()}
    data["sku"] = sku
    product = models.Product(**data)
    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info("Product %s created with opening stock %s", product.sku, product.on_hand_quantity)
    return product


@router.get("/{product_id}", response_model=schemas.ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.PRODUCT_VIEW))):
    return _get_product(db, product_id)


@router.patch("/{product_id}", response_model=schemas.ProductOut)
def update_product(product_id: int, product_in: schemas.ProductUpdate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.PRODUCT_MANAGE))):
    """Update master data. On-hand quantity is not writable here."""
    product = _get_product(db, product_id)
    changes = {k: v for k, v in product_in.model_dump(exclude_unset=True).items() if v is not None}

    if "location_id" in changes:
        _check_location(db, changes["location_id"])

    if changes.get("reserved_quantity", 0) > product.on_hand_quantity:
        raise HTTPException(
            status_code=400,
            detail=f"Reserved quantity cannot exceed on hand ({product.on_hand_quantity})"
        )

    for key, value in changes.items():
        setattr(product, key, sanitize_input(value))
    db.commit()
    db.refresh(product)
    return product


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.PRODUCT_MANAGE))):
    """Delete a product that no document line or stock move references."""
    product = _get_product(db, product_id)

    referenced = (
        db.query(models.ReceiptLineItem.id).filter(models.ReceiptLineItem.product_id == product_id).first()
        or db.query(models.DeliveryLineItem.id).filter(models.DeliveryLineItem.product_id == product_id).first()
        or db.query(models.StockMove.id).filter(models.StockMove.product_id == product_id).first()
        or db.query(models.ManufacturingOrder.id).filter(models.ManufacturingOrder.product_id == product_id).first()
        or db.query(models.ManufacturingComponent.id).filter(models.ManufacturingComponent.product_id == product_id).first()
    )
    if referenced:
        raise HTTPException(
            status_code=409,
            detail=f"Product {product.sku} is referenced by documents or stock moves and cannot be deleted"
        )

    sku = product.sku
    db.delete(product)
    db.commit()

    SecurityAuditLog.log_sensitive_action(
        db, current_user.id, "delete", "product", product_id, {"sku": sku}
    )
