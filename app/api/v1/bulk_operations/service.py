"""
Bulk student operations: status change and export, tracked through the operation ledger.

Processing is synchronous within the call. Each status-update item commits on its own
(student update + item outcome + counters), so an interrupted run resumes from the
items that are still pending.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import BulkOperationType, StudentStatus
from app.core.exceptions import InvalidStudentStatus, ServiceError
from app.core.models import BulkOperation, BulkOperationItem, Student

from . import export_service, ledger
from .schemas import BulkOperationItemResponse, BulkOperationResponse

logger = logging.getLogger(__name__)


def parse_student_status(value) -> StudentStatus:
    if isinstance(value, StudentStatus):
        return value
    try:
        return StudentStatus((value or "").strip().lower())
    except (ValueError, AttributeError):
        raise InvalidStudentStatus(str(value))


def operation_to_response(operation: BulkOperation, include_items: bool = False) -> BulkOperationResponse:
    items = None
    if include_items:
        items = [BulkOperationItemResponse.model_validate(i) for i in operation.items]
    return BulkOperationResponse(
        id=operation.id,
        tenant_id=operation.tenant_id,
        operation_type=operation.operation_type,
        status=operation.status,
        total_count=operation.total_count,
        processed_count=operation.processed_count,
        success_count=operation.success_count,
        failure_count=operation.failure_count,
        parameters=operation.parameters or {},
        result_url=operation.result_url,
        error_message=operation.error_message,
        started_at=operation.started_at,
        completed_at=operation.completed_at,
        created_at=operation.created_at,
        created_by=operation.created_by,
        items=items,
    )


def _ensure_type(operation: BulkOperation, expected: BulkOperationType) -> None:
    if operation.operation_type != expected.value:
        raise ServiceError(
            f"Operation is of type '{operation.operation_type}', expected '{expected.value}'",
            status.HTTP_400_BAD_REQUEST,
        )


# ----- Status update -----


async def create_bulk_status_update(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: Sequence[UUID],
    new_status,
    created_by: UUID,
) -> BulkOperation:
    target = parse_student_status(new_status)
    return await ledger.create_operation(
        db,
        tenant_id,
        BulkOperationType.UPDATE_STATUS,
        student_ids,
        {"new_status": target.value},
        created_by,
    )


async def _apply_status_to_item(
    db: AsyncSession,
    tenant_id: UUID,
    operation_id: UUID,
    item_id: UUID,
    student_id: UUID,
    new_status: StudentStatus,
) -> None:
    """Student update, item outcome and counters in one transaction."""
    error: Optional[str] = None
    try:
        result = await db.execute(
            update(Student)
            .where(Student.tenant_id == tenant_id, Student.id == student_id)
            .values(status=new_status.value, updated_at=datetime.utcnow()),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount == 0:
            error = "student not found"
    except SQLAlchemyError as e:
        await db.rollback()
        error = str(e)

    await ledger.record_item_outcome(db, operation_id, item_id, success=error is None, error_message=error)
    await db.commit()


async def process_status_update(
    db: AsyncSession,
    tenant_id: UUID,
    operation_id: UUID,
    new_status=None,
) -> BulkOperation:
    """
    Drain the operation's pending items in batches of 100, then mark it completed.
    Item failures are recorded on the item; only a ledger failure fails the operation.
    Re-running on a terminal operation returns it unchanged.
    """
    operation = await ledger.get_operation(db, tenant_id, operation_id)
    if ledger.is_terminal(operation):
        return operation
    _ensure_type(operation, BulkOperationType.UPDATE_STATUS)
    target = parse_student_status(new_status or (operation.parameters or {}).get("new_status"))

    if not await ledger.mark_started(db, operation_id):
        return await ledger.get_operation(db, tenant_id, operation_id)

    try:
        while True:
            batch = await ledger.get_pending_items(db, operation_id, ledger.ITEM_BATCH_SIZE)
            if not batch:
                break
            for item_id, student_id in batch:
                await _apply_status_to_item(db, tenant_id, operation_id, item_id, student_id, target)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("bulk status update failed", extra={"operation_id": str(operation_id)})
        await ledger.mark_failed(db, operation_id, str(e))
        return await ledger.get_operation(db, tenant_id, operation_id)

    await ledger.mark_completed(db, operation_id)
    return await ledger.get_operation(db, tenant_id, operation_id)


# ----- Export -----


async def create_export(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: Sequence[UUID],
    export_format,
    columns: Optional[Sequence[str]],
    created_by: UUID,
) -> BulkOperation:
    fmt = export_service.parse_export_format(getattr(export_format, "value", export_format))
    return await ledger.create_operation(
        db,
        tenant_id,
        BulkOperationType.EXPORT,
        student_ids,
        {"format": fmt.value, "columns": list(columns or [])},
        created_by,
    )


async def _operation_student_ids(db: AsyncSession, operation_id: UUID) -> List[UUID]:
    result = await db.execute(
        select(BulkOperationItem.student_id)
        .where(BulkOperationItem.operation_id == operation_id)
        .order_by(BulkOperationItem.created_at, BulkOperationItem.id)
    )
    return list(result.scalars().all())


async def process_export(
    db: AsyncSession,
    tenant_id: UUID,
    operation_id: UUID,
    upload_dir: Optional[str] = None,
) -> BulkOperation:
    """Render the export file, then mark every item successful. Any failure fails the whole export."""
    operation = await ledger.get_operation(db, tenant_id, operation_id)
    if ledger.is_terminal(operation):
        return operation
    _ensure_type(operation, BulkOperationType.EXPORT)
    params = operation.parameters or {}

    if not await ledger.mark_started(db, operation_id):
        return await ledger.get_operation(db, tenant_id, operation_id)

    try:
        student_ids = await _operation_student_ids(db, operation_id)
        result_url = await export_service.export_students(
            db,
            tenant_id,
            student_ids,
            params.get("format", "xlsx"),
            params.get("columns") or [],
            upload_dir=upload_dir,
        )
        await ledger.mark_all_items_succeeded(db, operation_id)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("bulk export failed", extra={"operation_id": str(operation_id)})
        message = e.message if isinstance(e, ServiceError) else str(e)
        await ledger.mark_failed(db, operation_id, message or e.__class__.__name__)
        return await ledger.get_operation(db, tenant_id, operation_id)

    await ledger.mark_completed(db, operation_id, result_url)
    return await ledger.get_operation(db, tenant_id, operation_id)
