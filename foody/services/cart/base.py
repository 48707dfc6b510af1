"""
Cart Store Abstract Base Class

Defines the interface the checkout converter consumes. The cart itself
(adding, removing, changing quantities) belongs to the storefront; the
core only reads a populated cart and asks for it to be cleared once an
order has been placed.

Author: Foody Engineering
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CartProduct:
    """
    Live product data as the cart sees it at read time.

    Attributes:
        id: Product id
        name: Current display name
        price: Current list price
        image: Image URL or path
        is_veg: Vegetarian flag
    """
    id: int
    name: str
    price: float
    image: str = ""
    is_veg: bool = False


@dataclass(frozen=True)
class CartLine:
    """One product and the quantity the customer wants."""
    product: CartProduct
    quantity: int


class BaseCartStore(ABC):
    """
    Abstract base class for cart stores.

    Example:
        >>> lines = await store.get_populated(user_id=7)
        >>> sum(line.product.price * line.quantity for line in lines)
        600.0
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the store (e.g. "memory", "sql")."""
        pass

    @abstractmethod
    async def get_populated(self, user_id: int) -> list[CartLine]:
        """
        Read the user's cart joined with live product data.

        Args:
            user_id: Cart owner

        Returns:
            list[CartLine]: Lines in the order they were added (may be empty)
        """
        pass

    @abstractmethod
    async def clear(self, user_id: int) -> None:
        """
        Empty the user's cart.

        Args:
            user_id: Cart owner
        """
        pass
