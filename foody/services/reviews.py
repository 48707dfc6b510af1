"""
Reviews and Aggregate Rating

A product's ``rating`` and ``num_reviews`` always equal the aggregate of
its current reviews. Instead of persistence hooks firing behind the
scenes, every review write goes through ``ReviewService``, which runs the
write and ``ReviewAggregator.recompute`` in one transaction:

    1. lock the product row (one writer per product)
    2. insert / update / delete the review
    3. recompute count and mean over the current review set
    4. commit

A failure anywhere rolls back all four steps, so a rating is never left
half-updated. Lock contention is retried.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from foody.core.config import get_settings
from foody.core.exceptions import NotFound, PermissionDenied, ValidationError
from foody.database import with_write_retries
from foody.models import Order, OrderItem, OrderStatus, Product, Review
from foody.services.identity import Identity
from foody.services.pricing import round_half_up

logger = logging.getLogger(__name__)

# Orders that prove the customer actually ate the dish
REVIEWABLE_ORDER_STATES = (OrderStatus.SERVED, OrderStatus.COMPLETED)


@dataclass(frozen=True)
class RatingSummary:
    """Aggregate rating of a product."""
    rating: float
    num_reviews: int


def summarize(count: int, total: int) -> RatingSummary:
    """Mean rounded half-up to one decimal; 0/0 when there are no reviews."""
    if count == 0:
        return RatingSummary(rating=0.0, num_reviews=0)
    mean = Decimal(total) / Decimal(count)
    return RatingSummary(rating=round_half_up(mean, 1), num_reviews=count)


def summarize_ratings(ratings: Iterable[int]) -> RatingSummary:
    ratings = list(ratings)
    return summarize(len(ratings), sum(ratings))


class ReviewAggregator:
    """
    Recomputes a product's aggregate rating from scratch.

    Never commits; it runs inside the caller's unit of work.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_product(self, product_id: int) -> Product:
        """
        Load the product holding a row lock until the transaction ends.

        Raises:
            NotFound: No such product
        """
        result = await self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFound(f"Product #{product_id} not found")
        return product

    async def recompute(self, product: Product) -> RatingSummary:
        """Write the aggregate of the current review set onto ``product``."""
        await self.session.flush()
        row = (
            await self.session.execute(
                select(
                    func.count(Review.id),
                    func.coalesce(func.sum(Review.rating), 0),
                ).where(Review.product_id == product.id)
            )
        ).one()

        summary = summarize(int(row[0]), int(row[1]))
        product.rating = summary.rating
        product.num_reviews = summary.num_reviews
        await self.session.flush()

        logger.debug(
            f"Product #{product.id} rating recomputed: "
            f"{summary.rating} from {summary.num_reviews} reviews"
        )
        return summary


class ReviewService:
    """
    Review writes, each followed by an aggregate recompute.

    Example:
        >>> reviews = ReviewService(session)
        >>> review, created = await reviews.submit(actor, product_id=3, rating=5)
        >>> created
        True
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.aggregator = ReviewAggregator(session)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def _validate_rating(rating) -> int:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        return rating

    def _clean_comment(self, comment: Optional[str]) -> str:
        comment = (comment or "").strip()
        limit = self.settings.review_comment_max_length
        if len(comment) > limit:
            raise ValidationError(f"Comment cannot exceed {limit} characters")
        return comment

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _get_review(self, review_id: int) -> Review:
        review = await self.session.get(Review, review_id, populate_existing=True)
        if review is None:
            raise NotFound(f"Review #{review_id} not found")
        return review

    async def _find_review(self, user_id: int, product_id: int) -> Optional[Review]:
        result = await self.session.execute(
            select(Review)
            .where(Review.user_id == user_id, Review.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_qualifying_order(self, user_id: int, product_id: int) -> Optional[int]:
        """Id of a served/completed order of ``user_id`` containing the product."""
        return await self.session.scalar(
            select(Order.id)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(
                Order.user_id == user_id,
                OrderItem.product_id == product_id,
                Order.status.in_(REVIEWABLE_ORDER_STATES),
            )
            .order_by(Order.created_at.desc())
            .limit(1)
        )

    async def list_for_product(self, product_id: int, limit: int = 20, offset: int = 0) -> list[Review]:
        result = await self.session.execute(
            select(Review)
            .where(Review.product_id == product_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # WRITES
    # =========================================================================

    async def submit(
        self,
        actor: Identity,
        product_id: int,
        rating: int,
        comment: Optional[str] = None,
    ) -> tuple[Review, bool]:
        """
        Create the actor's review of a product, or update it if one exists.

        Returns:
            (review, created)

        Raises:
            ValidationError: Bad rating/comment, or no qualifying order
            NotFound: No such product
        """
        rating = self._validate_rating(rating)
        comment = self._clean_comment(comment)

        async def _submit() -> tuple[Review, bool]:
            product = await self.aggregator.lock_product(product_id)

            review = await self._find_review(actor.user_id, product_id)
            created = review is None
            if created:
                order_id = await self._find_qualifying_order(actor.user_id, product_id)
                if order_id is None and self.settings.review_requires_purchase:
                    raise ValidationError("You can only review products you have ordered")
                review = Review(
                    user_id=actor.user_id,
                    product_id=product_id,
                    order_id=order_id,
                    rating=rating,
                    comment=comment,
                )
                self.session.add(review)
            else:
                review.rating = rating
                review.comment = comment

            await self.aggregator.recompute(product)
            await self.session.commit()
            return review, created

        review, created = await with_write_retries(
            self.session,
            _submit,
            description=f"Review of product #{product_id}",
            # a concurrent first submission by the same user surfaces as a
            # unique violation; the retry finds it and updates instead
            retry_on=(OperationalError, IntegrityError),
        )
        logger.info(
            f"Review #{review.id} {'created' if created else 'updated'} "
            f"for product #{product_id} by user {actor.user_id}"
        )
        return review, created

    async def update(
        self,
        actor: Identity,
        review_id: int,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Review:
        """
        Edit a review. Owner or admin only.

        Raises:
            ValidationError: Bad rating/comment
            NotFound: No such review
            PermissionDenied: Neither owner nor admin
        """
        if rating is not None:
            rating = self._validate_rating(rating)
        if comment is not None:
            comment = self._clean_comment(comment)

        async def _update() -> Review:
            review = await self._get_review(review_id)
            if not (actor.owns(review.user_id) or actor.is_admin):
                raise PermissionDenied("Not authorized to edit this review")

            product = await self.aggregator.lock_product(review.product_id)
            # re-read under the lock; it may have been deleted meanwhile
            review = await self._get_review(review_id)
            if rating is not None:
                review.rating = rating
            if comment is not None:
                review.comment = comment

            await self.aggregator.recompute(product)
            await self.session.commit()
            return review

        review = await with_write_retries(
            self.session, _update, description=f"Update of review #{review_id}"
        )
        logger.info(f"Review #{review_id} updated by user {actor.user_id}")
        return review

    async def delete(self, actor: Identity, review_id: int) -> RatingSummary:
        """
        Remove a review. Owner or admin only.

        Returns:
            RatingSummary: The product's aggregate after removal

        Raises:
            NotFound: No such review
            PermissionDenied: Neither owner nor admin
        """
        async def _delete() -> RatingSummary:
            review = await self._get_review(review_id)
            if not (actor.owns(review.user_id) or actor.is_admin):
                raise PermissionDenied("Not authorized to delete this review")

            product = await self.aggregator.lock_product(review.product_id)
            review = await self._get_review(review_id)
            await self.session.delete(review)

            summary = await self.aggregator.recompute(product)
            await self.session.commit()
            return summary

        summary = await with_write_retries(
            self.session, _delete, description=f"Deletion of review #{review_id}"
        )
        logger.info(f"Review #{review_id} deleted by user {actor.user_id}")
        return summary
