"""
Bill Renderer Abstract Base Class

The invoice/PDF renderer is an external collaborator. It receives a fully
populated ``BillDocument`` (bill, order, item snapshots) and returns the
binary document; it never reads the database itself.

Author: Foody Engineering
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from foody.services.billing import BillDocument


@dataclass
class RenderedDocument:
    """
    Output of a renderer.

    Attributes:
        content: Raw document bytes
        media_type: MIME type for the HTTP response
        filename: Suggested download name
    """
    content: bytes
    media_type: str
    filename: str


class BaseBillRenderer(ABC):
    """Abstract base class for bill renderers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the renderer name."""
        pass

    @abstractmethod
    async def render(self, document: BillDocument) -> RenderedDocument:
        """
        Render a populated bill.

        Args:
            document: Bill, order and items, fully loaded

        Returns:
            RenderedDocument: Bytes plus response metadata
        """
        pass
