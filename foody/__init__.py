"""
                    Foody Ordering Core

Order lifecycle, billing and promotional pricing backend for the
Foody restaurant storefront and admin console.

Author: Foody Engineering
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Foody Engineering"
