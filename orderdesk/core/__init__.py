"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from orderdesk.core.config import get_settings, Settings, EnvironmentMode
from orderdesk.core.exceptions import (
    OrderDeskError,
    InvalidArgumentError,
    NotFoundError,
    CorruptDataError,
    InvalidTransitionError,
    CollisionError,
    DocumentExistsError,
    TransientStoreError,
    RetryExhaustedError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderDeskError",
    "InvalidArgumentError",
    "NotFoundError",
    "CorruptDataError",
    "InvalidTransitionError",
    "CollisionError",
    "DocumentExistsError",
    "TransientStoreError",
    "RetryExhaustedError",
]
