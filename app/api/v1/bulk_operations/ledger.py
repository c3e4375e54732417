"""
Bulk operation ledger: creation, lifecycle transitions and counters of BulkOperation / BulkOperationItem.

All state changes are UPDATE statements guarded by the allowed source states, so a transition
requested from a terminal state changes nothing. Functions that only stage writes leave the commit
to the caller; the mark_* functions commit their own transition.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.enums import BulkItemStatus, BulkOperationStatus, BulkOperationType
from app.core.exceptions import (
    NoTargetsProvided,
    OperationNotCancellable,
    OperationNotFound,
    ServiceError,
    TooManyTargets,
)
from app.core.models import BulkOperation, BulkOperationItem

logger = logging.getLogger(__name__)

MAX_BULK_STUDENTS = 1000
MAX_EXPORT_RECORDS = 10000
ITEM_BATCH_SIZE = 100

TERMINAL_STATUSES = (
    BulkOperationStatus.COMPLETED.value,
    BulkOperationStatus.FAILED.value,
    BulkOperationStatus.CANCELLED.value,
)
_ACTIVE_STATUSES = (BulkOperationStatus.PENDING.value, BulkOperationStatus.PROCESSING.value)

# Ledger rows are always re-read with populate_existing; in-session objects are not synchronized.
_NO_SYNC = {"synchronize_session": False}


def max_targets(operation_type: BulkOperationType) -> int:
    if operation_type == BulkOperationType.EXPORT:
        return MAX_EXPORT_RECORDS
    return MAX_BULK_STUDENTS


def is_terminal(operation: BulkOperation) -> bool:
    return operation.status in TERMINAL_STATUSES


async def create_operation(
    db: AsyncSession,
    tenant_id: UUID,
    operation_type: BulkOperationType,
    student_ids: Sequence[UUID],
    parameters: Optional[Dict[str, Any]],
    created_by: UUID,
) -> BulkOperation:
    """
    Create the operation and one pending item per target in a single transaction.
    Raises NoTargetsProvided / TooManyTargets before anything is written.
    """
    if not student_ids:
        raise NoTargetsProvided()
    limit = max_targets(operation_type)
    if len(student_ids) > limit:
        raise TooManyTargets(limit)

    now = datetime.utcnow()
    operation = BulkOperation(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        operation_type=operation_type.value,
        status=BulkOperationStatus.PENDING.value,
        total_count=len(student_ids),
        processed_count=0,
        success_count=0,
        failure_count=0,
        parameters=parameters or {},
        created_at=now,
        created_by=created_by,
    )
    db.add(operation)
    db.add_all(
        [
            BulkOperationItem(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                operation_id=operation.id,
                student_id=student_id,
                status=BulkItemStatus.PENDING.value,
                created_at=now,
            )
            for student_id in student_ids
        ]
    )
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "failed to create bulk operation",
            extra={"tenant_id": str(tenant_id), "operation_type": operation_type.value},
        )
        raise ServiceError("Failed to create bulk operation", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "bulk operation created",
        extra={
            "operation_id": str(operation.id),
            "operation_type": operation_type.value,
            "total_count": operation.total_count,
        },
    )
    return operation


async def get_operation(
    db: AsyncSession,
    tenant_id: UUID,
    operation_id: UUID,
    with_items: bool = False,
) -> BulkOperation:
    """Fresh read of an operation (tenant-scoped). Raises OperationNotFound."""
    stmt = (
        select(BulkOperation)
        .where(BulkOperation.tenant_id == tenant_id, BulkOperation.id == operation_id)
        .execution_options(populate_existing=True)
    )
    if with_items:
        stmt = stmt.options(selectinload(BulkOperation.items))
    result = await db.execute(stmt)
    operation = result.scalar_one_or_none()
    if not operation:
        raise OperationNotFound()
    return operation


async def list_operations(
    db: AsyncSession,
    tenant_id: UUID,
    created_by: UUID,
    limit: int = 20,
) -> List[BulkOperation]:
    """Operations started by one user, newest first. limit is clamped to 1..100."""
    if limit <= 0 or limit > 100:
        limit = 20
    stmt = (
        select(BulkOperation)
        .where(BulkOperation.tenant_id == tenant_id, BulkOperation.created_by == created_by)
        .order_by(BulkOperation.created_at.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _transition(
    db: AsyncSession,
    operation_id: UUID,
    from_statuses: Tuple[str, ...],
    values: Dict[str, Any],
) -> bool:
    result = await db.execute(
        update(BulkOperation)
        .where(BulkOperation.id == operation_id, BulkOperation.status.in_(from_statuses))
        .values(**values),
        execution_options=_NO_SYNC,
    )
    await db.commit()
    if result.rowcount == 0:
        logger.warning(
            "bulk operation transition ignored",
            extra={"operation_id": str(operation_id), "to_status": values.get("status")},
        )
        return False
    logger.info(
        "bulk operation transition",
        extra={"operation_id": str(operation_id), "to_status": values.get("status")},
    )
    return True


async def mark_started(db: AsyncSession, operation_id: UUID) -> bool:
    """pending -> processing. A resumed processing operation keeps its original started_at."""
    started = await _transition(
        db,
        operation_id,
        (BulkOperationStatus.PENDING.value,),
        {"status": BulkOperationStatus.PROCESSING.value, "started_at": datetime.utcnow()},
    )
    if started:
        return True
    current = await db.scalar(select(BulkOperation.status).where(BulkOperation.id == operation_id))
    return current == BulkOperationStatus.PROCESSING.value


async def mark_completed(db: AsyncSession, operation_id: UUID, result_url: Optional[str] = None) -> bool:
    values: Dict[str, Any] = {
        "status": BulkOperationStatus.COMPLETED.value,
        "completed_at": datetime.utcnow(),
    }
    if result_url is not None:
        values["result_url"] = result_url
    return await _transition(db, operation_id, _ACTIVE_STATUSES, values)


async def mark_failed(db: AsyncSession, operation_id: UUID, message: str) -> bool:
    return await _transition(
        db,
        operation_id,
        _ACTIVE_STATUSES,
        {
            "status": BulkOperationStatus.FAILED.value,
            "completed_at": datetime.utcnow(),
            "error_message": message,
        },
    )


async def cancel_operation(db: AsyncSession, tenant_id: UUID, operation_id: UUID) -> BulkOperation:
    """pending -> cancelled. Operations already being processed cannot be interrupted."""
    operation = await get_operation(db, tenant_id, operation_id)
    if operation.status != BulkOperationStatus.PENDING.value:
        raise OperationNotCancellable(operation.status)
    cancelled = await _transition(
        db,
        operation_id,
        (BulkOperationStatus.PENDING.value,),
        {"status": BulkOperationStatus.CANCELLED.value, "completed_at": datetime.utcnow()},
    )
    operation = await get_operation(db, tenant_id, operation_id)
    if not cancelled:
        raise OperationNotCancellable(operation.status)
    return operation


async def get_pending_items(
    db: AsyncSession,
    operation_id: UUID,
    limit: int = ITEM_BATCH_SIZE,
) -> List[Tuple[UUID, UUID]]:
    """Oldest pending items first, as (item_id, student_id) pairs."""
    result = await db.execute(
        select(BulkOperationItem.id, BulkOperationItem.student_id)
        .where(
            BulkOperationItem.operation_id == operation_id,
            BulkOperationItem.status == BulkItemStatus.PENDING.value,
        )
        .order_by(BulkOperationItem.created_at, BulkOperationItem.id)
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]


async def record_item_outcome(
    db: AsyncSession,
    operation_id: UUID,
    item_id: UUID,
    success: bool,
    error_message: Optional[str] = None,
) -> bool:
    """
    Stage the item's terminal state and the matching counter increments. Caller commits.
    Returns False (and stages nothing) when the item already left pending.
    """
    item_status = BulkItemStatus.SUCCESS if success else BulkItemStatus.FAILED
    result = await db.execute(
        update(BulkOperationItem)
        .where(
            BulkOperationItem.id == item_id,
            BulkOperationItem.operation_id == operation_id,
            BulkOperationItem.status == BulkItemStatus.PENDING.value,
        )
        .values(
            status=item_status.value,
            error_message=None if success else error_message,
            processed_at=datetime.utcnow(),
        ),
        execution_options=_NO_SYNC,
    )
    if result.rowcount == 0:
        return False

    counters: Dict[str, Any] = {"processed_count": BulkOperation.processed_count + 1}
    if success:
        counters["success_count"] = BulkOperation.success_count + 1
    else:
        counters["failure_count"] = BulkOperation.failure_count + 1
    await db.execute(
        update(BulkOperation).where(BulkOperation.id == operation_id).values(**counters),
        execution_options=_NO_SYNC,
    )
    return True


async def mark_all_items_succeeded(db: AsyncSession, operation_id: UUID) -> None:
    """Stage success for every pending item and set counters to the total. Caller commits."""
    now = datetime.utcnow()
    await db.execute(
        update(BulkOperationItem)
        .where(
            BulkOperationItem.operation_id == operation_id,
            BulkOperationItem.status == BulkItemStatus.PENDING.value,
        )
        .values(status=BulkItemStatus.SUCCESS.value, processed_at=now),
        execution_options=_NO_SYNC,
    )
    await db.execute(
        update(BulkOperation)
        .where(BulkOperation.id == operation_id)
        .values(
            processed_count=BulkOperation.total_count,
            success_count=BulkOperation.total_count,
            failure_count=0,
        ),
        execution_options=_NO_SYNC,
    )
