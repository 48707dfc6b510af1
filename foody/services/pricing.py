"""
Promotional Pricing Engine

Derives the effective selling price of a product from its discount
configuration. Everything here is a pure function of the product's
fields: no I/O, no stored results, safe to call on every read.

Discount types:
    - none:        list price
    - percentage:  price minus discount_value percent, never below zero
    - fixed:       price minus discount_value, never below zero
    - combo:       combo_price when set, else list price
    - bogo:        list price (a quantity promotion, not a unit price rule)

Offer expiry (``offer_valid_until``) is deliberately not applied to the
quote; listing only live offers is the job of ``is_offer_active`` at the
query layer.

Author: Foody Engineering
Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Protocol, Union

from foody.core.config import get_settings
from foody.core.exceptions import ValidationError
from foody.models import DiscountType


class Priceable(Protocol):
    """Anything carrying the discount fields of a product."""
    price: float
    discount_type: DiscountType
    discount_value: float
    combo_price: float


@dataclass(frozen=True)
class PriceQuote:
    """
    Computed pricing for one unit of a product.

    Attributes:
        list_price: Price before any discount
        final_price: Effective unit price after the discount rule
        savings_amount: list_price - final_price
        savings_percentage: Savings as a percentage of list_price
    """
    list_price: float
    final_price: float
    savings_amount: float
    savings_percentage: float

    @property
    def is_discounted(self) -> bool:
        return self.final_price < self.list_price

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary using the client's field names."""
        return {
            "finalPrice": self.final_price,
            "savingsAmount": self.savings_amount,
            "savingsPercentage": self.savings_percentage,
        }


def round_half_up(value: Union[float, int, Decimal], digits: int = 2) -> float:
    """
    Round like the storefront does (0.5 always rounds away from zero).

    The builtin ``round`` uses banker's rounding on binary floats, which
    would disagree with amounts the client already displays.
    """
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _coerce_discount_type(value: Union[DiscountType, str, None]) -> DiscountType:
    if value is None:
        return DiscountType.NONE
    if isinstance(value, DiscountType):
        return value
    try:
        return DiscountType(value)
    except ValueError:
        valid = [d.value for d in DiscountType]
        raise ValidationError(f"Invalid discount type '{value}'. Must be one of: {valid}")


def final_price(product: Priceable) -> float:
    """Effective unit price of ``product`` under its discount rule."""
    price = product.price
    discount_type = _coerce_discount_type(product.discount_type)
    discount_value = product.discount_value or 0.0

    if discount_type == DiscountType.PERCENTAGE:
        return max(0.0, round_half_up(price - price * discount_value / 100))
    if discount_type == DiscountType.FIXED:
        return max(0.0, round_half_up(price - discount_value))
    if discount_type == DiscountType.COMBO and (product.combo_price or 0) > 0:
        return round_half_up(product.combo_price)
    return price


def quote_price(product: Priceable) -> PriceQuote:
    """
    Price a product.

    Args:
        product: Product (or any object with the discount fields)

    Returns:
        PriceQuote: final price and savings

    Example:
        >>> quote = quote_price(product)  # price=1000, 20% off
        >>> quote.final_price, quote.savings_amount, quote.savings_percentage
        (800.0, 200.0, 20.0)
    """
    price = product.price
    final = final_price(product)
    savings = round_half_up(price - final)
    if price == 0:
        percentage = 0.0
    else:
        percentage = round_half_up((price - final) / price * 100)

    return PriceQuote(
        list_price=price,
        final_price=final,
        savings_amount=savings,
        savings_percentage=percentage,
    )


def is_offer_active(product: Any, now: Optional[datetime] = None) -> bool:
    """
    Whether the product carries a discount that has not expired.

    A missing ``offer_valid_until`` means the offer runs until removed.
    """
    if _coerce_discount_type(product.discount_type) == DiscountType.NONE:
        return False

    valid_until = product.offer_valid_until
    if valid_until is None:
        return True

    now = now or datetime.now(timezone.utc)
    if valid_until.tzinfo is None:
        # SQLite hands back naive values; they were written as UTC
        valid_until = valid_until.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return valid_until > now


def describe_offer(product: Any) -> Optional[str]:
    """
    Badge text for the product's offer, or None when there is no offer.

    An explicit ``offer_label`` always wins.
    """
    discount_type = _coerce_discount_type(product.discount_type)
    if discount_type == DiscountType.NONE:
        return None
    if product.offer_label:
        return product.offer_label

    symbol = get_settings().currency_symbol
    if discount_type == DiscountType.PERCENTAGE:
        return f"{product.discount_value:g}% Off"
    if discount_type == DiscountType.FIXED:
        return f"{symbol} {product.discount_value:g} Off"
    if discount_type == DiscountType.BOGO:
        buy = product.bogo_buy_quantity or 1
        get = product.bogo_get_quantity or 1
        return f"Buy {buy} Get {get} Free"
    return "Combo Deal"


def validate_discount(
    discount_type: Union[DiscountType, str],
    discount_value: float = 0.0,
    bogo_buy_quantity: int = 0,
    bogo_get_quantity: int = 0,
    combo_price: float = 0.0,
    combo_items: Optional[list[int]] = None,
) -> DiscountType:
    """
    Reject discount configurations the engine cannot price sensibly.

    Raises:
        ValidationError: On the first problem found

    Returns:
        DiscountType: The parsed discount type
    """
    discount_type = _coerce_discount_type(discount_type)

    if discount_value is None or discount_value < 0:
        raise ValidationError("Discount value cannot be negative")
    if combo_price is None or combo_price < 0:
        raise ValidationError("Combo price cannot be negative")

    if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
        raise ValidationError("Percentage discount cannot exceed 100")
    if discount_type in (DiscountType.PERCENTAGE, DiscountType.FIXED) and discount_value == 0:
        raise ValidationError(f"A {discount_type.value} discount needs a value greater than 0")
    if discount_type == DiscountType.BOGO and (bogo_buy_quantity < 1 or bogo_get_quantity < 1):
        raise ValidationError("BOGO offers need buy and get quantities of at least 1")
    if discount_type == DiscountType.COMBO and combo_price <= 0 and not combo_items:
        raise ValidationError("Combo offers need a combo price or combo items")

    return discount_type
