from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, validator

from .models import UserRole, ContactType


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str = UserRole.WAREHOUSE_STAFF.value


class LoginIn(BaseModel):
    username: str
    password: str


class SignupIn(BaseModel):
    full_name: Optional[str] = None
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100)
    password: str
    role: UserRole = UserRole.WAREHOUSE_STAFF


class UserOut(BaseModel):
    id: int
    full_name: Optional[str] = None
    email: EmailStr
    username: str
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ChangePasswordIn(BaseModel):
    old_password: str
    new_password: str


# =============================================================================
# CONTACTS
# =============================================================================

class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=30)
    email: EmailStr
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    contact_type: ContactType = ContactType.BOTH


class ContactUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    contact_type: Optional[ContactType] = None


class ContactOut(BaseModel):
    id: int
    name: str
    phone: str
    email: str
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    contact_type: ContactType
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# WAREHOUSES
# =============================================================================

class WarehouseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    shortcode: str = Field(..., min_length=1, max_length=20)
    address: Optional[str] = None


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    shortcode: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None


class LocationOut(BaseModel):
    id: int
    name: str
    shortcode: str
    warehouse_id: int
    description: Optional[str] = None

    class Config:
        from_attributes = True


class WarehouseOut(BaseModel):
    id: int
    name: str
    shortcode: str
    address: Optional[str] = None
    locations: List[LocationOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# PRODUCTS
# =============================================================================

class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    unit_of_measure: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None
    on_hand_quantity: int = Field(0, ge=0)  # opening stock
    minimum_quantity: int = Field(0, ge=0)
    price_per_unit: Decimal = Field(Decimal('0'), ge=0, max_digits=10, decimal_places=2)
    preferred_supplier: Optional[str] = None
    location_id: Optional[int] = None


class ProductUpdate(BaseModel):
    """Master data only; on-hand moves through receipts and deliveries"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    unit_of_measure: Optional[str] = Field(None, min_length=1, max_length=20)
    description: Optional[str] = None
    minimum_quantity: Optional[int] = Field(None, ge=0)
    reserved_quantity: Optional[int] = Field(None, ge=0)
    price_per_unit: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    preferred_supplier: Optional[str] = None
    location_id: Optional[int] = None

    class Config:
        extra = "forbid"


class ProductOut(BaseModel):
    id: int
    sku: str
    name: str
    category: str
    unit_of_measure: str
    description: Optional[str] = None
    on_hand_quantity: int
    reserved_quantity: int
    free_to_use_quantity: int
    minimum_quantity: int
    is_low_stock: bool
    price_per_unit: Decimal
    preferred_supplier: Optional[str] = None
    location_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @validator('price_per_unit')
    def two_places(cls, v):
        return v.quantize(Decimal('0.01'))
