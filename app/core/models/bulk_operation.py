"""
Bulk operation ledger: one BulkOperation per batch job, one BulkOperationItem per target student.
Rows are never deleted; they are the audit trail of every bulk status change and export.
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class BulkOperation(Base):
    """
    Batch job header.

    Counters: processed_count == success_count + failure_count, processed_count <= total_count.
    total_count is fixed at creation. Status: pending -> processing -> completed | failed;
    pending -> cancelled.
    """

    __tablename__ = "bulk_operations"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id"), nullable=False, index=True)
    operation_type = Column(String(30), nullable=False)  # update_status | export | send_sms | send_email
    status = Column(String(20), nullable=False, default="pending")
    total_count = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    # {"new_status": "inactive"} or {"format": "xlsx", "columns": [...]}
    parameters = Column(JSON, nullable=False, default=dict)
    result_url = Column(String(500), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    created_by = Column(UUID(as_uuid=True), nullable=False, index=True)

    items = relationship(
        "BulkOperationItem",
        back_populates="operation",
        cascade="all, delete-orphan",
        order_by="BulkOperationItem.created_at",
    )


class BulkOperationItem(Base):
    """Per-student row of a bulk operation. Leaves 'pending' exactly once, then immutable."""

    __tablename__ = "bulk_operation_items"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id"), nullable=False)
    operation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.bulk_operations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: an unknown or since-removed student is recorded as a failed item, not a creation error
    student_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")  # pending | success | failed
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    operation = relationship("BulkOperation", back_populates="items")
