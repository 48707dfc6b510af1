"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from foody.core.config import get_settings, Settings, EnvironmentMode
from foody.core.exceptions import (
    FoodyError,
    ValidationError,
    InvalidStatus,
    PermissionDenied,
    NotFound,
    Conflict,
    InvalidTransition,
    TransientError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "FoodyError",
    "ValidationError",
    "InvalidStatus",
    "PermissionDenied",
    "NotFound",
    "Conflict",
    "InvalidTransition",
    "TransientError",
]
