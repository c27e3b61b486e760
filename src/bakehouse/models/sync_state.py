"""
Sync bookkeeping models.

This module contains:
- SyncOutboxEntry: Publish delta written in the same transaction as the change
- ProcessedIntakeRow: Ingest watermark, one row per external intake row
"""

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index

from .base import BaseModel, enum_column
from .enums import IntakeOutcome, OutboxStatus


class SyncOutboxEntry(BaseModel):
    """
    Pending publish of one private record to the external store.

    Only the record identity is recorded (entity_uuid survives deletion); the publisher
    serializes the record's current state when it drains the outbox, so
    several entries for one record coalesce into a single row write.
    """

    __tablename__ = "sync_outbox"

    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    entity_uuid = Column(String(36), nullable=False)
    status = Column(enum_column(OutboxStatus), nullable=False, default=OutboxStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_outbox_status_entity", "status", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"SyncOutboxEntry(id={self.id}, {self.entity_type}:{self.entity_id}, "
            f"status='{self.status}')"
        )


class ProcessedIntakeRow(BaseModel):
    """
    Record that an external intake row has been handled.

    Written in the same transaction as the order it produced (or the
    rejection it recorded); the unique external_id makes replays no-ops.
    """

    __tablename__ = "processed_intake_rows"

    external_id = Column(String(64), nullable=False, unique=True)
    outcome = Column(enum_column(IntakeOutcome), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    error_code = Column(String(20), nullable=True)
    message = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"ProcessedIntakeRow(external_id='{self.external_id}', outcome='{self.outcome}')"
        )
