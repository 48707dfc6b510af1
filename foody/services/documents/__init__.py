"""
Bill Renderer Factory

Usage:
    from foody.services.documents import get_bill_renderer

    renderer = get_bill_renderer()
    rendered = await renderer.render(document)
"""

import logging
from functools import lru_cache

from foody.services.documents.base import BaseBillRenderer, RenderedDocument
from foody.services.documents.mock import MockBillRenderer

logger = logging.getLogger(__name__)


@lru_cache()
def get_bill_renderer() -> BaseBillRenderer:
    """
    Get the configured bill renderer.

    Only the text renderer ships with this service; the PDF renderer is
    deployed separately and plugs in through ``BaseBillRenderer``.
    """
    logger.info("Bill Renderer: Using MockBillRenderer")
    return MockBillRenderer()


def reset_bill_renderer() -> None:
    """Clear the cached renderer instance."""
    get_bill_renderer.cache_clear()


__all__ = [
    "get_bill_renderer",
    "reset_bill_renderer",
    "BaseBillRenderer",
    "RenderedDocument",
    "MockBillRenderer",
]
