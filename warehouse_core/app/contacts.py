from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import models, schemas
from .security import get_db, require_permission, Permission, sanitize_input

router = APIRouter(prefix="/contacts", tags=["contacts"])


def _get_contact(db: Session, contact_id: int) -> models.Contact:
    contact = db.query(models.Contact).filter(models.Contact.id == contact_id).first()
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact


@router.post("", response_model=schemas.ContactOut, status_code=201)
def create_contact(contact_in: schemas.ContactCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.CONTACT_MANAGE))):
    data = {k: sanitize_input(v) for k, v in contact_in.model_dump().items()}
    contact = models.Contact(**data)
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


@router.get("", response_model=List[schemas.ContactOut])
def list_contacts(contact_type: Optional[models.ContactType] = None, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.CONTACT_VIEW))):
    query = db.query(models.Contact)
    if contact_type:
        # Vendor / Customer filters include contacts that are both
        query = query.filter(models.Contact.contact_type.in_([contact_type, models.ContactType.BOTH]))
    return query.order_by(models.Contact.name).all()


@router.get("/{contact_id}", response_model=schemas.ContactOut)
def get_contact(contact_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.CONTACT_VIEW))):
    return _get_contact(db, contact_id)


@router.patch("/{contact_id}", response_model=schemas.ContactOut)
def update_contact(contact_id: int, contact_in: schemas.ContactUpdate, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.CONTACT_MANAGE))):
    contact = _get_contact(db, contact_id)
    for key, value in contact_in.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(contact, key, sanitize_input(value))
    db.commit()
    db.refresh(contact)
    return contact


@router.delete("/{contact_id}", status_code=204)
def delete_contact(contact_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_permission(Permission.CONTACT_MANAGE))):
    contact = _get_contact(db, contact_id)
    in_use = (
        db.query(models.Receipt.id).filter(models.Receipt.supplier_id == contact_id).first()
        or db.query(models.DeliveryOrder.id).filter(models.DeliveryOrder.customer_id == contact_id).first()
    )
    if in_use:
        raise HTTPException(status_code=409, detail="Contact is referenced by receipts or deliveries")
    db.delete(contact)
    db.commit()
