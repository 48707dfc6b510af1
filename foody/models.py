"""
SQLAlchemy Database Models

Persistence for the ordering core:
- Products with promotional discount configuration
- Orders with immutable item snapshots
- Bills (one per order) and the bill number sequence
- Reviews (one per user and product)
- Cart lines backing the cart collaborator

Enumerations are part of the wire contract; their values and casing must
not change.

Author: Foody Engineering
Version: 1.0.0
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from foody.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Store enum values ("pending"), not member names ("PENDING")."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
    )


class DiscountType(str, enum.Enum):
    """How a product's effective price is derived."""
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BOGO = "bogo"
    COMBO = "combo"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    SERVED = "served"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    """Accepted payment methods. eSewa is the card-equivalent wallet."""
    CASH = "cash"
    ESEWA = "esewa"
    KHALTI = "khalti"
    BANK = "bank"


class BillStatus(str, enum.Enum):
    """Bill lifecycle."""
    REQUESTED = "requested"
    GENERATED = "generated"
    PAID = "paid"


class BillRequester(str, enum.Enum):
    """Who asked for the bill."""
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


class Product(Base):
    """
    Menu item with its promotional pricing configuration.

    ``rating`` and ``num_reviews`` are owned by the review aggregator and
    always equal the aggregate of the current reviews. The discounted
    price is computed on read by the pricing engine and never stored.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_products_price_positive"),
        CheckConstraint("discount_value >= 0", name="ck_products_discount_value"),
        CheckConstraint("combo_price >= 0", name="ck_products_combo_price"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_products_rating"),
        CheckConstraint("num_reviews >= 0", name="ck_products_num_reviews"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # CATALOG
    # =========================================================================
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=False)
    image = Column(String(500), nullable=False, default="")
    is_veg = Column(Boolean, nullable=False, default=False)
    is_available = Column(Boolean, nullable=False, default=True)

    # =========================================================================
    # DISCOUNT & PROMOTION
    # =========================================================================
    discount_type = Column(
        _enum_column(DiscountType, "discount_type"),
        nullable=False,
        default=DiscountType.NONE,
        index=True,
    )
    discount_value = Column(Float, nullable=False, default=0.0)
    bogo_buy_quantity = Column(Integer, nullable=False, default=0)
    bogo_get_quantity = Column(Integer, nullable=False, default=0)
    combo_items = Column(JSON, nullable=False, default=list)  # product ids
    combo_price = Column(Float, nullable=False, default=0.0)
    offer_label = Column(String(100), nullable=False, default="")
    offer_valid_until = Column(DateTime(timezone=True), nullable=True, index=True)

    # =========================================================================
    # AGGREGATE RATING
    # =========================================================================
    rating = Column(Float, nullable=False, default=0.0)
    num_reviews = Column(Integer, nullable=False, default=0)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Product #{self.id} - {self.name} - {self.discount_type.value}>"


class Order(Base):
    """
    A placed order.

    Items are snapshots taken at checkout. Totals are fixed at creation
    together with the tax rate that produced them. ``status`` changes only
    through the order state machine, ``is_paid`` only through billing.
    Orders are never deleted.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    table_number = Column(String(20), nullable=False, default="")
    notes = Column(Text, nullable=False, default="")

    status = Column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    tax_rate = Column(Float, nullable=False)
    tax = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    is_paid = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order #{self.id} - user {self.user_id} - {self.status.value}>"


class OrderItem(Base):
    """
    Snapshot of one cart line at checkout.

    ``product_id`` is a plain reference without a foreign key so the
    snapshot outlives edits to, or deletion of, the product.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(Integer, nullable=False, index=True)
    name = Column(String(120), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    image = Column(String(500), nullable=False, default="")

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class Bill(Base):
    """
    Financial record derived from exactly one order.

    The unique constraint on ``order_id`` is what decides a race between
    two generate calls; ``bill_number`` comes from ``BillSequence``.
    """
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    user_id = Column(Integer, nullable=False, index=True)
    bill_number = Column(String(30), nullable=False, unique=True, index=True)

    # Snapshot of the order totals at generation time
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False)
    total = Column(Float, nullable=False)

    payment_method = Column(
        _enum_column(PaymentMethod, "payment_method"),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    status = Column(
        _enum_column(BillStatus, "bill_status"),
        nullable=False,
        default=BillStatus.GENERATED,
        index=True,
    )
    requested_by = Column(
        _enum_column(BillRequester, "bill_requester"),
        nullable=False,
        default=BillRequester.STAFF,
    )
    call_waiter = Column(Boolean, nullable=False, default=False)

    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Bill {self.bill_number} - order #{self.order_id} - {self.status.value}>"


class BillSequence(Base):
    """
    Named counter incremented atomically inside the bill insert transaction.
    """
    __tablename__ = "bill_sequences"

    name = Column(String(30), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class Review(Base):
    """A customer's rating of a product. One per (user, product)."""
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_reviews_user_product"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(String(500), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Review #{self.id} - product #{self.product_id} - {self.rating}>"


class CartItem(Base):
    """Mutable pre-checkout line owned by the cart store."""
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
