"""
Warehouse Inventory - Data Models
=================================
Relational model for a small-business warehouse:

- Master data: users, contacts (vendors/customers), warehouses, locations, products
- Documents: receipts (incoming goods), delivery orders (outgoing goods)
  and manufacturing orders (components and work operations)
- Stock ledger: one immutable row per posted stock adjustment
- System tables: document number sequences and audit log

Quantities are whole units; money uses Numeric(10, 2), never floats.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean,
    Numeric, Enum as SQLEnum, Index, CheckConstraint
)
from sqlalchemy.orm import relationship, validates
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    INVENTORY_MANAGER = "Inventory Manager"
    WAREHOUSE_STAFF = "Warehouse Staff"


class ContactType(str, Enum):
    VENDOR = "Vendor"
    CUSTOMER = "Customer"
    BOTH = "Both"


class ReceiptStatus(str, Enum):
    """Receipt workflow: Draft -> Ready -> Done"""
    DRAFT = "Draft"
    READY = "Ready"
    DONE = "Done"


class DeliveryStatus(str, Enum):
    """Delivery workflow: Picked -> Packed -> Validated"""
    PICKED = "Picked"
    PACKED = "Packed"
    VALIDATED = "Validated"


class ManufacturingStatus(str, Enum):
    """Manufacturing order workflow: Draft -> Ready -> In Progress -> Done"""
    DRAFT = "Draft"
    READY = "Ready"
    IN_PROGRESS = "In Progress"
    DONE = "Done"


class OperationStatus(str, Enum):
    """Work step on a manufacturing order"""
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    PAUSED = "Paused"
    DONE = "Done"


class MoveType(str, Enum):
    RECEIPT = "receipt"
    DELIVERY = "delivery"
    ADJUSTMENT = "adjustment"  # manual correction


# =============================================================================
# USERS & CONTACTS
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)  # login id
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(String(50), nullable=False, default=UserRole.WAREHOUSE_STAFF.value)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Contact(Base):
    """Vendor and/or customer. Referenced by documents, never owned by them."""
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=False)
    email = Column(String(255), nullable=False)
    address_line = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    contact_type = Column(SQLEnum(ContactType), nullable=False, default=ContactType.BOTH)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_vendor(self) -> bool:
        return self.contact_type in (ContactType.VENDOR, ContactType.BOTH)

    @property
    def is_customer(self) -> bool:
        return self.contact_type in (ContactType.CUSTOMER, ContactType.BOTH)


# =============================================================================
# WAREHOUSES & PRODUCTS
# =============================================================================

class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    shortcode = Column(String(20), unique=True, nullable=False)  # e.g. "WH"
    address = Column(Text, nullable=True)

    locations = relationship("Location", back_populates="warehouse", cascade="all, delete-orphan")
    receipts = relationship("Receipt", back_populates="warehouse")


class Location(Base):
    """Rack, zone or room inside a warehouse"""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    shortcode = Column(String(50), unique=True, nullable=False)  # e.g. "WH/Stock/A1"
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=True)

    warehouse = relationship("Warehouse", back_populates="locations")
    products = relationship("Product", back_populates="location")


class Product(Base):
    """
    Product catalog entry with its stock position.

    on_hand_quantity is only ever changed through
    InventoryAdjustmentService.adjust_inventory (atomic UPDATE); API updates
    cannot write it.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    unit_of_measure = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)

    on_hand_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    minimum_quantity = Column(Integer, nullable=False, default=0)  # reorder threshold

    price_per_unit = Column(Numeric(10, 2), nullable=False, default=0)
    preferred_supplier = Column(String(200), nullable=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    location = relationship("Location", back_populates="products")

    __table_args__ = (
        CheckConstraint('on_hand_quantity >= 0', name='ck_product_on_hand_positive'),
        CheckConstraint('reserved_quantity >= 0', name='ck_product_reserved_positive'),
        CheckConstraint('reserved_quantity <= on_hand_quantity', name='ck_product_reserved_not_exceed_on_hand'),
        CheckConstraint('price_per_unit >= 0', name='ck_product_price_positive'),
        Index('ix_product_category', 'category'),
    )

    @validates('on_hand_quantity', 'reserved_quantity', 'minimum_quantity')
    def validate_quantity(self, key, value):
        """Prevent negative stock figures"""
        if value is not None and value < 0:
            raise ValueError(f"{key} cannot be negative")
        return value

    @property
    def free_to_use_quantity(self) -> int:
        return (self.on_hand_quantity or 0) - (self.reserved_quantity or 0)

    @property
    def is_low_stock(self) -> bool:
        return (self.on_hand_quantity or 0) <= (self.minimum_quantity or 0)


# =============================================================================
# INWARD DOCUMENTS
# =============================================================================

class Receipt(Base):
    """
    Incoming goods from a supplier.

    Workflow:
    1. Draft - header and lines being entered
    2. Ready - supplier and warehouse confirmed
    3. Done  - goods received, on-hand increased (posted once)
    """
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    receipt_number = Column(String(50), unique=True, nullable=False, index=True)

    supplier_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)

    scheduled_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    receipt_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    status = Column(SQLEnum(ReceiptStatus), nullable=False, default=ReceiptStatus.DRAFT)

    # Set when stock has been posted; a Done -> Ready -> Done round trip must not post twice
    stock_posted = Column(Boolean, nullable=False, default=False)
    posted_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Contact")
    warehouse = relationship("Warehouse", back_populates="receipts")
    line_items = relationship(
        "ReceiptLineItem",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptLineItem.position",
    )

    __table_args__ = (
        Index('ix_receipt_status_date', 'status', 'scheduled_date'),
    )


class ReceiptLineItem(Base):
    __tablename__ = "receipt_line_items"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Nullable while the document is being edited; the transition guards require it
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    quantity_received = Column(Integer, nullable=False, default=0)
    price_per_unit = Column(Numeric(10, 2), nullable=False, default=0)

    receipt = relationship("Receipt", back_populates="line_items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint('quantity_received >= 0', name='ck_receipt_line_qty_positive'),
        CheckConstraint('price_per_unit >= 0', name='ck_receipt_line_price_positive'),
    )


# =============================================================================
# OUTWARD DOCUMENTS
# =============================================================================

class DeliveryOrder(Base):
    """
    Outgoing goods to a customer.

    Workflow:
    1. Picked    - items taken from stock
    2. Packed    - packed quantities recorded
    3. Validated - shipped, on-hand decreased by packed quantities
    """
    __tablename__ = "delivery_orders"

    id = Column(Integer, primary_key=True, index=True)
    delivery_number = Column(String(50), unique=True, nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey("contacts.id"), nullable=True)
    delivery_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    status = Column(SQLEnum(DeliveryStatus), nullable=False, default=DeliveryStatus.PICKED)

    stock_posted = Column(Boolean, nullable=False, default=False)
    posted_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Contact")
    line_items = relationship(
        "DeliveryLineItem",
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryLineItem.position",
    )

    __table_args__ = (
        Index('ix_delivery_status_date', 'status', 'delivery_date'),
    )


class DeliveryLineItem(Base):
    __tablename__ = "delivery_line_items"

    id = Column(Integer, primary_key=True, index=True)
    delivery_id = Column(Integer, ForeignKey("delivery_orders.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    quantity_picked = Column(Integer, nullable=False, default=0)
    quantity_packed = Column(Integer, nullable=False, default=0)
    price_per_unit = Column(Numeric(10, 2), nullable=False, default=0)

    delivery = relationship("DeliveryOrder", back_populates="line_items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint('quantity_picked >= 0', name='ck_delivery_line_picked_positive'),
        CheckConstraint('quantity_packed >= 0', name='ck_delivery_line_packed_positive'),
        CheckConstraint('quantity_packed <= quantity_picked', name='ck_delivery_line_packed_not_exceed_picked'),
        CheckConstraint('price_per_unit >= 0', name='ck_delivery_line_price_positive'),
    )


# =============================================================================
# MANUFACTURING
# =============================================================================

class ManufacturingOrder(Base):
    """
    Production of a finished product from components.

    Workflow:
    1. Draft       - product, quantity and components being entered
    2. Ready       - product and quantity confirmed
    3. In Progress - components available, operations being worked
    4. Done        - every operation finished
    """
    __tablename__ = "manufacturing_orders"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(50), unique=True, nullable=False, index=True)  # MO/2024/0001

    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    unit_of_measure = Column(String(20), nullable=False, default="Units")
    responsible = Column(String(200), nullable=True)
    schedule_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    status = Column(SQLEnum(ManufacturingStatus), nullable=False, default=ManufacturingStatus.DRAFT)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product")
    components = relationship(
        "ManufacturingComponent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ManufacturingComponent.id",
    )
    operations = relationship(
        "ManufacturingOperation",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ManufacturingOperation.sequence",
    )

    __table_args__ = (
        CheckConstraint('quantity >= 0', name='ck_mo_quantity_positive'),
        Index('ix_mo_status_date', 'status', 'schedule_date'),
    )


class ManufacturingComponent(Base):
    __tablename__ = "manufacturing_components"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("manufacturing_orders.id", ondelete="CASCADE"), nullable=False)

    # Linked components read availability from stock; free-text ones carry a typed figure
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    component_name = Column(String(200), nullable=False)
    required_quantity = Column(Integer, nullable=False, default=0)
    available_quantity = Column(Integer, nullable=False, default=0)
    unit_of_measure = Column(String(20), nullable=False, default="Units")

    order = relationship("ManufacturingOrder", back_populates="components")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint('required_quantity >= 0', name='ck_mo_component_required_positive'),
        CheckConstraint('available_quantity >= 0', name='ck_mo_component_available_positive'),
    )

    @property
    def available(self) -> int:
        if self.product is not None:
            return self.product.free_to_use_quantity
        return self.available_quantity or 0

    @property
    def is_available(self) -> bool:
        return self.available >= (self.required_quantity or 0)


class ManufacturingOperation(Base):
    """Work step such as cutting, assembly or inspection"""
    __tablename__ = "manufacturing_operations"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("manufacturing_orders.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    sequence = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(OperationStatus), nullable=False, default=OperationStatus.PENDING)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    order = relationship("ManufacturingOrder", back_populates="operations")


# =============================================================================
# STOCK LEDGER
# =============================================================================

class StockMove(Base):
    """
    Immutable record of every posted stock change.

    Written by InventoryAdjustmentService in the same transaction as the
    product UPDATE, so the ledger and on-hand figures cannot drift apart.
    """
    __tablename__ = "stock_moves"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(50), unique=True, nullable=False)  # MOV/2024/0001

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    move_type = Column(SQLEnum(MoveType), nullable=False)

    # Signed: positive for receipts, negative for deliveries, either for adjustments
    quantity_change = Column(Integer, nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    from_location = Column(String(100), nullable=True)
    to_location = Column(String(100), nullable=True)

    document_type = Column(String(20), nullable=True)  # receipt, delivery, adjustment
    document_id = Column(Integer, nullable=True)
    document_number = Column(String(50), nullable=True)
    note = Column(String(255), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    moved_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    product = relationship("Product")

    __table_args__ = (
        Index('ix_stock_move_product_date', 'product_id', 'moved_at'),
        Index('ix_stock_move_document', 'document_type', 'document_id'),
    )


# =============================================================================
# SYSTEM TABLES
# =============================================================================

class AuditLog(Base):
    """General audit log for document and master-data changes"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(30), nullable=False)

    # JSON stored as text for SQLite compatibility
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
        Index('ix_audit_user_date', 'user_id', 'created_at'),
    )


class NumberSequence(Base):
    """
    Per-kind document number counters with year-wise reset.
    Rows are locked with SELECT ... FOR UPDATE while incrementing.
    """
    __tablename__ = "number_sequences"

    id = Column(Integer, primary_key=True, index=True)
    sequence_name = Column(String(50), unique=True, nullable=False)  # receipt, delivery, stock_move
    prefix = Column(String(20), default="")
    current_number = Column(Integer, nullable=False, default=0)
    year = Column(Integer, nullable=True)
    padding = Column(Integer, nullable=False, default=4)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
