"""
Pydantic Schemas for Request/Response Validation

Field names follow the storefront client (camelCase on the wire,
snake_case in Python). Responses are built from ORM objects with
``from_attributes``; computed pricing fields are filled in by
``ProductResponse.from_product``.

Author: Foody Engineering
Version: 1.0.0
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from foody.core.exceptions import ValidationError as DomainValidationError
from foody.models import (
    BillRequester,
    BillStatus,
    DiscountType,
    OrderStatus,
    PaymentMethod,
)
from foody.services.pricing import describe_offer, is_offer_active, quote_price, validate_discount


class CamelModel(BaseModel):
    """Base for every wire schema: camelCase out, either case in."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# PRODUCT SCHEMAS
# =============================================================================

class DiscountUpdate(CamelModel):
    """Request to set a product's promotional discount."""
    discount_type: DiscountType = Field(..., examples=["percentage"])
    discount_value: float = Field(default=0.0, examples=[20])
    bogo_buy_quantity: int = Field(default=0, ge=0)
    bogo_get_quantity: int = Field(default=0, ge=0)
    combo_items: List[int] = Field(default_factory=list)
    combo_price: float = Field(default=0.0)
    offer_label: str = Field(default="", max_length=100)
    offer_valid_until: Optional[datetime] = None

    @model_validator(mode="after")
    def check_discount(self) -> "DiscountUpdate":
        try:
            validate_discount(
                self.discount_type,
                self.discount_value,
                self.bogo_buy_quantity,
                self.bogo_get_quantity,
                self.combo_price,
                self.combo_items,
            )
        except DomainValidationError as e:
            raise ValueError(e.message) from e
        return self


class ProductResponse(CamelModel):
    """A product with its computed pricing."""
    id: int
    name: str
    description: str
    price: float
    image: str
    is_veg: bool
    is_available: bool
    discount_type: DiscountType
    discount_value: float
    bogo_buy_quantity: int
    bogo_get_quantity: int
    combo_items: List[int]
    combo_price: float
    offer_label: str
    offer_valid_until: Optional[datetime]
    rating: float
    num_reviews: int

    # computed on read, never stored
    final_price: float
    savings_amount: float
    savings_percentage: float
    offer_badge: Optional[str] = None
    offer_active: bool = False

    @classmethod
    def from_product(cls, product: Any) -> "ProductResponse":
        quote = quote_price(product)
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            image=product.image,
            is_veg=product.is_veg,
            is_available=product.is_available,
            discount_type=product.discount_type,
            discount_value=product.discount_value,
            bogo_buy_quantity=product.bogo_buy_quantity,
            bogo_get_quantity=product.bogo_get_quantity,
            combo_items=list(product.combo_items or []),
            combo_price=product.combo_price,
            offer_label=product.offer_label,
            offer_valid_until=product.offer_valid_until,
            rating=product.rating,
            num_reviews=product.num_reviews,
            final_price=quote.final_price,
            savings_amount=quote.savings_amount,
            savings_percentage=quote.savings_percentage,
            offer_badge=describe_offer(product),
            offer_active=is_offer_active(product),
        )


class ProductListResponse(CamelModel):
    total: int
    products: List[ProductResponse]


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class OrderCreate(CamelModel):
    """Checkout request; the items come from the user's cart."""
    table_number: str = Field(default="", max_length=20, examples=["4"])
    notes: str = Field(default="", max_length=500)


class OrderStatusUpdate(CamelModel):
    # plain str so unknown values reach the state machine and get its message
    status: str = Field(..., examples=["confirmed"])


class OrderItemResponse(CamelModel):
    product_id: int
    name: str
    price: float
    quantity: int
    image: str
    line_total: float


class OrderResponse(CamelModel):
    """Response schema for a single order."""
    id: int
    user_id: int
    table_number: str
    notes: str
    status: OrderStatus
    items: List[OrderItemResponse]
    subtotal: float
    tax_rate: float
    tax: float
    total: float
    is_paid: bool
    created_at: datetime
    updated_at: Optional[datetime]


class OrderCreateResponse(CamelModel):
    """Response after successfully placing an order."""
    success: bool
    message: str
    order: OrderResponse


class OrderStatusResponse(CamelModel):
    success: bool
    order: OrderResponse
    allowed_transitions: List[OrderStatus]


# =============================================================================
# BILL SCHEMAS
# =============================================================================

class BillCreate(CamelModel):
    """Staff request to generate a bill."""
    payment_method: str = Field(default=PaymentMethod.CASH.value, examples=["cash"])


class BillRequest(CamelModel):
    """Customer asking for the bill at the table."""
    payment_method: str = Field(default=PaymentMethod.CASH.value, examples=["esewa"])
    call_waiter: bool = False


class BillPay(CamelModel):
    payment_method: Optional[str] = Field(default=None, examples=["khalti"])


class BillResponse(CamelModel):
    """Response schema for a single bill."""
    id: int
    order_id: int
    user_id: int
    bill_number: str
    subtotal: float
    tax: float
    total: float
    payment_method: PaymentMethod
    status: BillStatus
    requested_by: BillRequester
    call_waiter: bool
    is_paid: bool
    paid_at: Optional[datetime]
    created_at: datetime


class BillActionResponse(CamelModel):
    success: bool
    message: str
    bill: BillResponse


# =============================================================================
# REVIEW SCHEMAS
# =============================================================================

class ReviewCreate(CamelModel):
    # validated by the review service so the error text stays consistent
    rating: int = Field(..., examples=[5])
    comment: Optional[str] = Field(default=None, examples=["Best momo in town"])


class ReviewUpdate(CamelModel):
    rating: Optional[int] = None
    comment: Optional[str] = None


class ReviewResponse(CamelModel):
    id: int
    user_id: int
    product_id: int
    order_id: Optional[int]
    rating: int
    comment: str
    created_at: datetime
    updated_at: Optional[datetime]


class RatingResponse(CamelModel):
    """Aggregate rating of a product after a review write."""
    rating: float
    num_reviews: int


class ReviewWriteResponse(CamelModel):
    success: bool
    created: bool = False
    review: ReviewResponse
    product_rating: RatingResponse


class ReviewDeleteResponse(CamelModel):
    success: bool
    message: str
    product_rating: RatingResponse


# =============================================================================
# SYSTEM SCHEMAS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    timestamp: datetime


class DashboardResponse(CamelModel):
    """Aggregated statistics for the admin console."""
    total_orders: int
    pending_orders: int
    orders_by_status: dict[str, int]
    total_revenue: float
    paid_revenue: float
    bills_generated: int
    bills_requested: int
    paid_bills_by_method: dict[str, int]
    recent_orders: List[OrderResponse]
