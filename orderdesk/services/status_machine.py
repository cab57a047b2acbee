"""
Order Status Machine

    pending ──► processing ──► completed
       │             │
       └──► cancelled ◄┘

``completed`` and ``cancelled`` are terminal. Nothing ever moves back into
``pending`` and no status moves to itself.
"""

from typing import Optional, Union

from orderdesk.core.exceptions import InvalidArgumentError, InvalidTransitionError
from orderdesk.models import OrderStatus

INITIAL_STATUS = OrderStatus.PENDING

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# One-click "advance" target shown on the dashboard action button
NEXT_STATUS: dict[OrderStatus, Optional[OrderStatus]] = {
    OrderStatus.PENDING: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.COMPLETED,
    OrderStatus.COMPLETED: None,
    OrderStatus.CANCELLED: None,
}


def parse_status(value: Union[str, OrderStatus, None]) -> OrderStatus:
    """
    Coerce a requested status.

    Raises:
        InvalidArgumentError: empty or not one of the four statuses
    """
    if isinstance(value, OrderStatus):
        return value
    if not value or not str(value).strip():
        raise InvalidArgumentError("Order ID and new status are required")
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        valid = [s.value for s in OrderStatus]
        raise InvalidArgumentError(f"Invalid status {value!r}. Options: {valid}")


def allowed_transitions(status: OrderStatus) -> frozenset[OrderStatus]:
    return ALLOWED_TRANSITIONS[status]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """Return whether an order may move from current to requested."""
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(
    current: OrderStatus,
    requested: OrderStatus,
    order_id: Optional[str] = None,
) -> None:
    """Raise ``InvalidTransitionError`` unless the move is in the table."""
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value, order_id=order_id)


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    return NEXT_STATUS[status]
