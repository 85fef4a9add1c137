from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import models, schemas
from .security import get_db, require_permission, Permission, sanitize_input

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


@router.post("", response_model=schemas.WarehouseOut, status_code=201)
def create_warehouse(warehouse_in: schemas.WarehouseCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.WAREHOUSE_MANAGE))):
    shortcode = sanitize_input(warehouse_in.shortcode).upper()
    if db.query(models.Warehouse).filter(models.Warehouse.shortcode == shortcode).first():
        raise HTTPException(status_code=409, detail=f"Warehouse {shortcode} already exists")
    warehouse = models.Warehouse(name=sanitize_input(warehouse_in.name), shortcode=shortcode, address=warehouse_in.address)
    db.add(warehouse)
    db.commit()
    db.refresh(warehouse)
    return warehouse


@router.get("", response_model=List[schemas.WarehouseOut])
def list_warehouses(db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.WAREHOUSE_VIEW))):
    return db.query(models.Warehouse).order_by(models.Warehouse.shortcode).all()


@router.post("/{warehouse_id}/locations", response_model=schemas.LocationOut, status_code=201)
def create_location(warehouse_id: int, location_in: schemas.LocationCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.WAREHOUSE_MANAGE))):
    warehouse = db.query(models.Warehouse).filter(models.Warehouse.id == warehouse_id).first()
    if not warehouse:
        raise HTTPException(status_code=404, detail="Warehouse not found")
    shortcode = sanitize_input(location_in.shortcode)
    if db.query(models.Location).filter(models.Location.shortcode == shortcode).first():
        raise HTTPException(status_code=409, detail=f"Location {shortcode} already exists")
    location = models.Location(
        warehouse_id=warehouse_id,
        name=sanitize_input(location_in.name),
        shortcode=shortcode,
        description=location_in.description,
    )
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


@router.get("/{warehouse_id}/locations", response_model=List[schemas.LocationOut])
def list_locations(warehouse_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.WAREHOUSE_VIEW))):
    return db.query(models.Location).filter(models.Location.warehouse_id == warehouse_id).order_by(models.Location.shortcode).all()
