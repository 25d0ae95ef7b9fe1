"""Order progress tracker for manufacturers and their customers.

Companies register an ordered list of production steps, record customer
orders and advance each order through those steps; customers look orders up
by order number.
"""

from .domain import (
    AuthIdentity,
    Company,
    Order,
    OrderStatus,
    OrderWithProgress,
    ProgressStep,
    StepStatus,
    TrackedOrder,
)
from .exceptions import (
    DuplicateError,
    NotFoundError,
    PartialFailureError,
    TrackingError,
    TransportError,
    ValidationError,
)
from .services import DashboardStats, TrackingService

__all__ = [
    "AuthIdentity",
    "Company",
    "Order",
    "OrderStatus",
    "OrderWithProgress",
    "ProgressStep",
    "StepStatus",
    "TrackedOrder",
    "DuplicateError",
    "NotFoundError",
    "PartialFailureError",
    "TrackingError",
    "TransportError",
    "ValidationError",
    "DashboardStats",
    "TrackingService",
]
