"""
Pydantic Schemas for Documents, Requests and Responses

The ``Order`` model is the typed entity of the order core. Stored documents
only become ``Order`` objects through ``Order.from_document``, which turns any
shape problem into a ``CorruptDataError`` at the store boundary.

Field names follow the stored document shape (camelCase aliases) so the API
returns orders exactly as they are persisted.

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import date, datetime
from typing import Any, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from orderdesk.core.exceptions import CorruptDataError
from orderdesk.models import OrderStatus


# =============================================================================
# ORDER DOCUMENT PARTS
# =============================================================================

class Location(BaseModel):
    """Delivery coordinate picked on the map."""
    lat: float = Field(..., ge=-90, le=90, examples=[14.6937])
    lng: float = Field(..., ge=-180, le=180, examples=[-17.4441])


class Customer(BaseModel):
    """Who receives the order."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100, examples=["Awa Diop"])
    phone: str = Field(..., min_length=1, max_length=30, examples=["+221 77 123 45 67"])
    location: Location


class ExtraChoice(BaseModel):
    """A priced add-on selected for a line item."""
    id: str
    name: str
    price: int = Field(default=0, ge=0)


class OrderItem(BaseModel):
    """Single line item in an order."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1, examples=["dibi-mouton"])
    name: str = Field(..., min_length=1, max_length=100, examples=["Dibi Mouton"])
    price: int = Field(..., ge=0, examples=[3000])
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])
    extras: List[Union[str, ExtraChoice]] = Field(default_factory=list)

    @property
    def line_total(self) -> int:
        extras = sum(e.price for e in self.extras if isinstance(e, ExtraChoice))
        return (self.price + extras) * self.quantity


# =============================================================================
# ORDER ENTITY
# =============================================================================

class Order(BaseModel):
    """A placed order as stored in the ``orders`` collection."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: OrderStatus
    status_history: dict[OrderStatus, datetime] = Field(alias="statusHistory")
    customer: Customer
    items: List[OrderItem] = Field(..., min_length=1)
    total: int = Field(..., ge=0)
    preferred_delivery_time: Optional[str] = Field(default=None, alias="preferredDeliveryTime")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @model_validator(mode="after")
    def check_history(self) -> "Order":
        if self.status not in self.status_history:
            raise ValueError(f"statusHistory has no entry for current status {self.status.value}")
        return self

    @classmethod
    def from_document(cls, data: Any, doc_id: Optional[str] = None) -> "Order":
        """
        Parse a stored document.

        Raises:
            CorruptDataError: missing/unknown status or any other shape problem
        """
        if not isinstance(data, dict):
            raise CorruptDataError(doc_id, "document is not an object")

        order_id = data.get("id") or doc_id
        status = data.get("status")
        if not status:
            raise CorruptDataError(order_id, "missing status")
        if status not in {s.value for s in OrderStatus}:
            raise CorruptDataError(order_id, f"unknown status {status!r}")

        try:
            return cls.model_validate({**data, "id": order_id})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
                for err in e.errors()
            )
            raise CorruptDataError(order_id, problems) from e

    def to_document(self) -> dict[str, Any]:
        """Serialize back to the stored document shape."""
        return self.model_dump(mode="json", by_alias=True)

    def history(self) -> list[tuple[OrderStatus, datetime]]:
        """Status history in chronological order."""
        return sorted(self.status_history.items(), key=lambda entry: entry[1])


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    model_config = ConfigDict(populate_by_name=True)

    customer: Customer
    items: List[OrderItem] = Field(..., min_length=1)
    total: int = Field(..., ge=0, examples=[6000])
    preferred_delivery_time: Optional[str] = Field(
        default=None,
        alias="preferredDeliveryTime",
        max_length=50,
        examples=["19:30"],
    )

    @field_validator("preferred_delivery_time")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class StatusUpdateRequest(BaseModel):
    """Requested target status. Validated by the order service."""
    status: str = Field(..., examples=["processing"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool
    message: str
    order_id: str
    display_id: str
    status: OrderStatus
    total: int
    currency: str


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[Order]


class StatusUpdateResponse(BaseModel):
    """Response after a committed status transition."""
    success: bool
    message: str
    order: Order


class DailySummaryResponse(BaseModel):
    """Orders placed on one restaurant day."""
    day: date
    total_orders: int
    pending_orders: int
    orders: List[Order]


class OrderFeedEvent(BaseModel):
    """
    One delivery of the live order feed.

    ``orders`` is always the full snapshot, newest first. ``corrupt`` lists the
    parse errors of documents left out of the snapshot. ``error`` is set when
    the store failed; ``orders`` is then empty and the feed reconnects.
    """
    orders: List[Order] = Field(default_factory=list)
    corrupt: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    store_provider: str
    redis: str
    timestamp: datetime
