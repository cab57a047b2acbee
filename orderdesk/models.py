"""
SQLAlchemy Database Models

The order store is a document store: every order is kept as one JSON document
keyed by (collection, id), with a version counter for optimistic concurrency.
Status is mirrored into its own indexed column so the dashboard can filter
without decoding documents.

Author: Khalil Bannouri
Version: 1.0.0
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func

from orderdesk.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DocumentRecord(Base):
    """
    One stored document.

    ``version`` starts at 1 and is bumped by every committed update; an update
    only applies when the version it read is still current.
    """
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)

    data = Column(JSON, nullable=False)
    status = Column(String(20), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_documents_collection_status", "collection", "status"),
        Index("ix_documents_collection_created", "collection", "created_at"),
    )

    def __repr__(self):
        return f"<Document {self.collection}/{self.id} v{self.version} - {self.status}>"
