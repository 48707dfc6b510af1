"""
FastAPI Application Entry Point

Foody Ordering Core - orders, bills, promotional pricing and reviews.

Endpoints:
    - GET  /api/products: Menu with computed prices
    - PUT  /api/products/{id}/discount: Configure an offer (staff)
    - POST /api/orders: Checkout the caller's cart
    - PUT  /api/orders/{id}/status: Advance an order (staff)
    - POST /api/bills/{order_id}: Generate the bill (staff)
    - PUT  /api/bills/{id}/pay: Record payment (staff)
    - POST /api/products/{id}/reviews: Rate a product
    - GET  /api/dashboard-data: Admin console statistics
    - GET  /health: System health check

Identity arrives from the session provider in the ``X-User-Id`` and
``X-User-Role`` headers.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from kombu.exceptions import OperationalError as BrokerUnavailable
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from foody.core.config import get_settings, setup_logging
from foody.core.exceptions import FoodyError, NotFound, PermissionDenied, ValidationError
from foody.database import engine, get_db, init_db
from foody.models import Bill, BillStatus, DiscountType, Order, OrderStatus, Product
from foody.schemas import (
    BillActionResponse,
    BillCreate,
    BillPay,
    BillRequest,
    BillResponse,
    DashboardResponse,
    DiscountUpdate,
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
    ProductListResponse,
    ProductResponse,
    RatingResponse,
    ReviewCreate,
    ReviewDeleteResponse,
    ReviewResponse,
    ReviewUpdate,
    ReviewWriteResponse,
)
from foody.services.billing import BillingService, ledger_row
from foody.services.cart import get_cart_store
from foody.services.checkout import CheckoutConverter
from foody.services.documents import get_bill_renderer
from foody.services.identity import Identity, Role
from foody.services.order_state import OrderStateMachine, allowed_transitions
from foody.services.pricing import is_offer_active
from foody.services.reviews import ReviewService
from foody.tasks import export_bill_to_ledger

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")
    logger.info(f"Bill renderer: {get_bill_renderer().provider_name}")

    yield  # Application runs

    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle, billing and promotional pricing for the Foody "
        "restaurant storefront and admin console."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_identity(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    x_user_role: str = Header(Role.CUSTOMER.value, alias="X-User-Role"),
) -> Identity:
    """Caller identity as passed on by the session provider."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise ValidationError(f"Unknown role '{x_user_role}'")
    return Identity(user_id=x_user_id, role=role)


async def require_staff(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_staff:
        raise PermissionDenied("Staff access required")
    return identity


def queue_ledger_export(bill: Bill) -> None:
    """Hand a paid bill to the ledger worker; the payment stands either way."""
    try:
        export_bill_to_ledger.delay(ledger_row(bill))
    except BrokerUnavailable as e:
        logger.error(f"Could not queue ledger export for {bill.bill_number}: {e}")


async def _get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product #{product_id} not found")
    return product


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "restaurant": settings.restaurant_name,
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Verify the database and the Celery broker are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(func.count(Order.id)))
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if db_status == redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# PRODUCT ENDPOINTS
# =============================================================================

@app.get(
    "/api/products",
    response_model=ProductListResponse,
    tags=["Products"],
)
async def list_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    available_only: bool = Query(False, alias="availableOnly"),
    db: AsyncSession = Depends(get_db),
) -> ProductListResponse:
    """Menu with the computed price of every product."""
    query = select(Product).order_by(Product.id)
    count_query = select(func.count(Product.id))
    if available_only:
        query = query.where(Product.is_available.is_(True))
        count_query = count_query.where(Product.is_available.is_(True))

    total = (await db.execute(count_query)).scalar() or 0
    products = (await db.execute(query.offset(skip).limit(limit))).scalars().all()

    return ProductListResponse(
        total=total,
        products=[ProductResponse.from_product(p) for p in products],
    )


@app.get(
    "/api/products/offers",
    response_model=list[ProductResponse],
    tags=["Products"],
    summary="Products with a live offer",
)
async def list_offers(db: AsyncSession = Depends(get_db)) -> list[ProductResponse]:
    """Available products whose discount is set and not expired."""
    result = await db.execute(
        select(Product)
        .where(
            Product.discount_type != DiscountType.NONE,
            Product.is_available.is_(True),
        )
        .order_by(Product.id)
    )
    now = datetime.now().astimezone()
    return [
        ProductResponse.from_product(p)
        for p in result.scalars().all()
        if is_offer_active(p, now)
    ]


@app.get(
    "/api/products/{product_id}",
    response_model=ProductResponse,
    responses=ERROR_RESPONSES,
    tags=["Products"],
)
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)) -> ProductResponse:
    return ProductResponse.from_product(await _get_product(db, product_id))


@app.put(
    "/api/products/{product_id}/discount",
    response_model=ProductResponse,
    responses=ERROR_RESPONSES,
    tags=["Products"],
    summary="Set a product's offer (staff)",
)
async def set_discount(
    product_id: int,
    payload: DiscountUpdate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    product = await _get_product(db, product_id)

    product.discount_type = payload.discount_type
    product.discount_value = payload.discount_value
    product.bogo_buy_quantity = payload.bogo_buy_quantity
    product.bogo_get_quantity = payload.bogo_get_quantity
    product.combo_items = list(payload.combo_items)
    product.combo_price = payload.combo_price
    product.offer_label = payload.offer_label
    product.offer_valid_until = payload.offer_valid_until
    await db.commit()
    await db.refresh(product)

    logger.info(
        f"Product #{product_id} offer set to {payload.discount_type.value} "
        f"by user {identity.user_id}"
    )
    return ProductResponse.from_product(product)


@app.delete(
    "/api/products/{product_id}/discount",
    response_model=ProductResponse,
    responses=ERROR_RESPONSES,
    tags=["Products"],
    summary="Remove a product's offer (staff)",
)
async def remove_discount(
    product_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    product = await _get_product(db, product_id)

    product.discount_type = DiscountType.NONE
    product.discount_value = 0.0
    product.bogo_buy_quantity = 0
    product.bogo_get_quantity = 0
    product.combo_items = []
    product.combo_price = 0.0
    product.offer_label = ""
    product.offer_valid_until = None
    await db.commit()
    await db.refresh(product)

    logger.info(f"Product #{product_id} offer removed by user {identity.user_id}")
    return ProductResponse.from_product(product)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    status_code=201,
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Checkout the caller's cart",
)
async def create_order(
    payload: OrderCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> OrderCreateResponse:
    cart = get_cart_store(db)
    order = await CheckoutConverter(db, cart).place_order(
        identity.user_id,
        table_number=payload.table_number,
        notes=payload.notes,
    )
    try:
        await cart.clear(identity.user_id)
    except SQLAlchemyError as e:
        # the order is committed; a stale cart must not turn it into an error
        logger.error(f"Order #{order.id} placed but cart of user {identity.user_id} not cleared: {e}")

    return OrderCreateResponse(
        success=True,
        message="Order placed successfully!",
        order=OrderResponse.model_validate(order),
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """Get a specific order by ID (owner or staff)."""
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order #{order_id} not found")
    if not (identity.owns(order.user_id) or identity.is_staff):
        raise PermissionDenied("Not authorized to view this order")

    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}/status",
    response_model=OrderStatusResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Advance or cancel an order (staff)",
)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> OrderStatusResponse:
    order = await OrderStateMachine(db).transition(order_id, payload.status)
    return OrderStatusResponse(
        success=True,
        order=OrderResponse.model_validate(order),
        allowed_transitions=sorted(allowed_transitions(order.status), key=list(OrderStatus).index),
    )


# =============================================================================
# BILL ENDPOINTS
# =============================================================================

@app.post(
    "/api/bills/{order_id}",
    status_code=201,
    response_model=BillActionResponse,
    responses=ERROR_RESPONSES,
    tags=["Bills"],
    summary="Generate the bill for an order (staff)",
)
async def generate_bill(
    order_id: int,
    payload: Optional[BillCreate] = None,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> BillActionResponse:
    payload = payload or BillCreate()
    bill = await BillingService(db).generate(order_id, payload.payment_method)
    return BillActionResponse(
        success=True,
        message=f"Bill {bill.bill_number} generated",
        bill=BillResponse.model_validate(bill),
    )


@app.post(
    "/api/bills/{order_id}/request",
    response_model=BillActionResponse,
    responses=ERROR_RESPONSES,
    tags=["Bills"],
    summary="Ask for the bill at the table",
)
async def request_bill(
    order_id: int,
    response: Response,
    payload: Optional[BillRequest] = None,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> BillActionResponse:
    payload = payload or BillRequest()
    bill, created = await BillingService(db).request_bill(
        order_id,
        identity,
        payment_method=payload.payment_method,
        call_waiter=payload.call_waiter,
    )
    response.status_code = 201 if created else 200
    return BillActionResponse(
        success=True,
        message="Bill requested" if created else f"Bill {bill.bill_number} already exists",
        bill=BillResponse.model_validate(bill),
    )


@app.put(
    "/api/bills/{bill_id}/fulfil",
    response_model=BillActionResponse,
    responses=ERROR_RESPONSES,
    tags=["Bills"],
    summary="Confirm a requested bill (staff)",
)
async def fulfil_bill(
    bill_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> BillActionResponse:
    bill = await BillingService(db).fulfil_request(bill_id)
    return BillActionResponse(
        success=True,
        message=f"Bill {bill.bill_number} generated",
        bill=BillResponse.model_validate(bill),
    )


@app.put(
    "/api/bills/{bill_id}/pay",
    response_model=BillActionResponse,
    responses=ERROR_RESPONSES,
    tags=["Bills"],
    summary="Record payment of a bill (staff)",
)
async def pay_bill(
    bill_id: int,
    payload: Optional[BillPay] = None,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> BillActionResponse:
    payload = payload or BillPay()
    bill = await BillingService(db).mark_paid(bill_id, payload.payment_method)

    queue_ledger_export(bill)

    return BillActionResponse(
        success=True,
        message=f"Bill {bill.bill_number} paid",
        bill=BillResponse.model_validate(bill),
    )


async def _get_visible_bill(db: AsyncSession, bill_id: int, identity: Identity) -> Bill:
    bill = await BillingService(db).get_bill(bill_id)
    if not (identity.owns(bill.user_id) or identity.is_staff):
        raise PermissionDenied("Not authorized to view this bill")
    return bill


@app.get(
    "/api/bills/{bill_id}",
    response_model=BillResponse,
    responses=ERROR_RESPONSES,
    tags=["Bills"],
)
async def get_bill(
    bill_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> BillResponse:
    return BillResponse.model_validate(await _get_visible_bill(db, bill_id, identity))


@app.get(
    "/api/bills/{bill_id}/document",
    responses=ERROR_RESPONSES,
    tags=["Bills"],
    summary="Download the rendered bill",
)
async def get_bill_document(
    bill_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await _get_visible_bill(db, bill_id, identity)
    document = await BillingService(db).build_document(bill_id)
    rendered = await get_bill_renderer().render(document)

    return Response(
        content=rendered.content,
        media_type=rendered.media_type,
        headers={"Content-Disposition": f'attachment; filename="{rendered.filename}"'},
    )


# =============================================================================
# REVIEW ENDPOINTS
# =============================================================================

@app.get(
    "/api/products/{product_id}/reviews",
    response_model=list[ReviewResponse],
    responses=ERROR_RESPONSES,
    tags=["Reviews"],
)
async def list_reviews(
    product_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[ReviewResponse]:
    await _get_product(db, product_id)
    reviews = await ReviewService(db).list_for_product(product_id, limit=limit, offset=skip)
    return [ReviewResponse.model_validate(r) for r in reviews]


@app.post(
    "/api/products/{product_id}/reviews",
    response_model=ReviewWriteResponse,
    responses=ERROR_RESPONSES,
    tags=["Reviews"],
    summary="Rate a product (creates or updates the caller's review)",
)
async def submit_review(
    product_id: int,
    payload: ReviewCreate,
    response: Response,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> ReviewWriteResponse:
    review, created = await ReviewService(db).submit(
        identity, product_id, payload.rating, payload.comment
    )
    product = await _get_product(db, product_id)

    response.status_code = 201 if created else 200
    return ReviewWriteResponse(
        success=True,
        created=created,
        review=ReviewResponse.model_validate(review),
        product_rating=RatingResponse(rating=product.rating, num_reviews=product.num_reviews),
    )


@app.put(
    "/api/reviews/{review_id}",
    response_model=ReviewWriteResponse,
    responses=ERROR_RESPONSES,
    tags=["Reviews"],
)
async def update_review(
    review_id: int,
    payload: ReviewUpdate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> ReviewWriteResponse:
    review = await ReviewService(db).update(
        identity, review_id, rating=payload.rating, comment=payload.comment
    )
    product = await _get_product(db, review.product_id)

    return ReviewWriteResponse(
        success=True,
        review=ReviewResponse.model_validate(review),
        product_rating=RatingResponse(rating=product.rating, num_reviews=product.num_reviews),
    )


@app.delete(
    "/api/reviews/{review_id}",
    response_model=ReviewDeleteResponse,
    responses=ERROR_RESPONSES,
    tags=["Reviews"],
)
async def delete_review(
    review_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> ReviewDeleteResponse:
    summary = await ReviewService(db).delete(identity, review_id)
    return ReviewDeleteResponse(
        success=True,
        message=f"Review #{review_id} deleted",
        product_rating=RatingResponse(rating=summary.rating, num_reviews=summary.num_reviews),
    )


# =============================================================================
# DASHBOARD ENDPOINTS
# =============================================================================

@app.get(
    "/api/dashboard-data",
    response_model=DashboardResponse,
    responses=ERROR_RESPONSES,
    tags=["Dashboard"],
)
async def dashboard_data(
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
) -> DashboardResponse:
    """Get aggregated dashboard statistics."""

    by_status_result = await db.execute(
        select(Order.status, func.count(Order.id)).group_by(Order.status)
    )
    orders_by_status = {s.value: 0 for s in OrderStatus}
    for status, count in by_status_result.all():
        orders_by_status[status.value] = count

    revenue_result = await db.execute(
        select(func.sum(Order.total)).where(Order.status != OrderStatus.CANCELLED)
    )
    total_revenue = revenue_result.scalar() or 0.0

    paid_result = await db.execute(
        select(func.sum(Bill.total)).where(Bill.is_paid.is_(True))
    )
    paid_revenue = paid_result.scalar() or 0.0

    bills_result = await db.execute(
        select(Bill.status, func.count(Bill.id)).group_by(Bill.status)
    )
    bills_by_status = {status: count for status, count in bills_result.all()}

    method_result = await db.execute(
        select(Bill.payment_method, func.count(Bill.id))
        .where(Bill.is_paid.is_(True))
        .group_by(Bill.payment_method)
    )
    paid_bills_by_method = {method.value: count for method, count in method_result.all()}

    recent_result = await db.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(10)
    )

    return DashboardResponse(
        total_orders=sum(orders_by_status.values()),
        pending_orders=orders_by_status[OrderStatus.PENDING.value],
        orders_by_status=orders_by_status,
        total_revenue=round(total_revenue, 2),
        paid_revenue=round(paid_revenue, 2),
        bills_generated=sum(bills_by_status.values()),
        bills_requested=bills_by_status.get(BillStatus.REQUESTED, 0),
        paid_bills_by_method=paid_bills_by_method,
        recent_orders=[OrderResponse.model_validate(o) for o in recent_result.scalars().all()],
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(FoodyError)
async def domain_exception_handler(request: Request, exc: FoodyError) -> JSONResponse:
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "foody.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
