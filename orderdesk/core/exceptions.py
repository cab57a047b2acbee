"""
Order Desk Error Taxonomy

Every failure raised by the order core is one of these types. The HTTP layer
maps them to status codes; nothing inside the core swallows them.

    OrderDeskError
    ├── InvalidArgumentError     caller bug, never retried
    ├── NotFoundError            order does not exist
    ├── CorruptDataError         stored document cannot be parsed
    ├── InvalidTransitionError   move not in the status graph
    ├── CollisionError           generated order id already taken
    ├── DocumentExistsError      store-level conditional create refused
    └── TransientStoreError      network/contention, the only retried class
        └── RetryExhaustedError  retry budget spent

Author: Khalil Bannouri
Version: 1.0.0
"""

from typing import Optional


class OrderDeskError(Exception):
    """Base class for all order desk errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgumentError(OrderDeskError):
    """A required argument is missing, empty or outside its allowed values."""


class NotFoundError(OrderDeskError):
    """The referenced order does not exist."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class CorruptDataError(OrderDeskError):
    """A persisted order could not be parsed into a valid Order."""

    def __init__(self, order_id: Optional[str], reason: str):
        super().__init__(f"Invalid order data for order {order_id}: {reason}")
        self.order_id = order_id
        self.reason = reason


class InvalidTransitionError(OrderDeskError):
    """The requested status change is not in the transition table."""

    def __init__(self, current: str, requested: str, order_id: Optional[str] = None):
        target = f"order {order_id}" if order_id else "order"
        super().__init__(
            f"Cannot transition {target} from {current!r} to {requested!r}"
        )
        self.current = current
        self.requested = requested
        self.order_id = order_id


class CollisionError(OrderDeskError):
    """The generated order id is already in use. Regenerate and retry."""

    def __init__(self, order_id: str):
        super().__init__(
            f"Order ID collision detected for {order_id}. Please try again."
        )
        self.order_id = order_id


class DocumentExistsError(OrderDeskError):
    """Conditional create refused because the document id is taken."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class TransientStoreError(OrderDeskError):
    """Network or contention failure from the backing store."""


class RetryExhaustedError(TransientStoreError):
    """A transient failure persisted through the whole retry budget."""

    def __init__(self, order_id: str, attempts: int, last_error: Exception):
        super().__init__(
            f"Failed to update status for order {order_id} after "
            f"{attempts} attempts: {last_error}"
        )
        self.order_id = order_id
        self.attempts = attempts
        self.last_error = last_error
