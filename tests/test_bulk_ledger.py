"""Operation ledger: creation limits, lifecycle transitions and counters."""
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.bulk_operations import ledger
from app.core.enums import BulkOperationType
from app.core.exceptions import NoTargetsProvided, OperationNotCancellable, OperationNotFound, TooManyTargets
from app.core.models import BulkOperation, BulkOperationItem


async def _count_operations(db: AsyncSession) -> int:
    return await db.scalar(select(func.count()).select_from(BulkOperation))


@pytest.mark.asyncio
async def test_create_operation_enumerates_items(db_session: AsyncSession, school) -> None:
    student_ids = [uuid.uuid4() for _ in range(3)]
    op = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, student_ids, {"new_status": "inactive"}, school.user.id
    )

    fresh = await ledger.get_operation(db_session, school.tenant_id, op.id, with_items=True)
    assert fresh.status == "pending"
    assert fresh.operation_type == "update_status"
    assert fresh.total_count == 3
    assert fresh.processed_count == fresh.success_count == fresh.failure_count == 0
    assert fresh.parameters == {"new_status": "inactive"}
    assert sorted(i.student_id for i in fresh.items) == sorted(student_ids)
    assert all(i.status == "pending" for i in fresh.items)


@pytest.mark.asyncio
async def test_create_operation_rejects_empty_targets(db_session: AsyncSession, school) -> None:
    with pytest.raises(NoTargetsProvided) as exc:
        await ledger.create_operation(
            db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [], {}, school.user.id
        )
    assert exc.value.status_code == 400
    assert await _count_operations(db_session) == 0


@pytest.mark.asyncio
async def test_status_update_ceiling_is_1000(db_session: AsyncSession, school) -> None:
    """1,001 targets fail and create nothing."""
    with pytest.raises(TooManyTargets) as exc:
        await ledger.create_operation(
            db_session,
            school.tenant_id,
            BulkOperationType.UPDATE_STATUS,
            [uuid.uuid4() for _ in range(1001)],
            {},
            school.user.id,
        )
    assert exc.value.limit == 1000
    assert await _count_operations(db_session) == 0
    assert await db_session.scalar(select(func.count()).select_from(BulkOperationItem)) == 0


@pytest.mark.asyncio
async def test_export_ceiling_is_10000(db_session: AsyncSession, school) -> None:
    op = await ledger.create_operation(
        db_session,
        school.tenant_id,
        BulkOperationType.EXPORT,
        [uuid.uuid4() for _ in range(1001)],
        {"format": "csv", "columns": []},
        school.user.id,
    )
    assert op.total_count == 1001

    with pytest.raises(TooManyTargets) as exc:
        await ledger.create_operation(
            db_session,
            school.tenant_id,
            BulkOperationType.EXPORT,
            [uuid.uuid4() for _ in range(10001)],
            {},
            school.user.id,
        )
    assert exc.value.limit == 10000
    assert await _count_operations(db_session) == 1


@pytest.mark.asyncio
async def test_terminal_state_is_never_left(db_session: AsyncSession, school) -> None:
    op = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4()], {}, school.user.id
    )

    assert await ledger.mark_started(db_session, op.id) is True
    started = await ledger.get_operation(db_session, school.tenant_id, op.id)
    assert started.status == "processing"
    assert started.started_at is not None

    assert await ledger.mark_completed(db_session, op.id, "/uploads/x.csv") is True
    assert await ledger.mark_failed(db_session, op.id, "late failure") is False
    assert await ledger.mark_started(db_session, op.id) is False
    assert await ledger.mark_completed(db_session, op.id, "/uploads/other.csv") is False

    final = await ledger.get_operation(db_session, school.tenant_id, op.id)
    assert final.status == "completed"
    assert final.result_url == "/uploads/x.csv"
    assert final.error_message is None
    assert final.completed_at is not None


@pytest.mark.asyncio
async def test_mark_failed_records_message(db_session: AsyncSession, school) -> None:
    op = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.EXPORT, [uuid.uuid4()], {}, school.user.id
    )
    await ledger.mark_started(db_session, op.id)
    assert await ledger.mark_failed(db_session, op.id, "disk full") is True

    final = await ledger.get_operation(db_session, school.tenant_id, op.id)
    assert final.status == "failed"
    assert final.error_message == "disk full"
    assert final.completed_at is not None


@pytest.mark.asyncio
async def test_record_item_outcome_keeps_counters_consistent(db_session: AsyncSession, school) -> None:
    op = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4(), uuid.uuid4()], {}, school.user.id
    )
    (first_id, _), (second_id, _) = await ledger.get_pending_items(db_session, op.id)

    assert await ledger.record_item_outcome(db_session, op.id, first_id, success=True) is True
    assert await ledger.record_item_outcome(db_session, op.id, second_id, success=False, error_message="nope") is True
    await db_session.commit()

    # A terminal item is immutable
    assert await ledger.record_item_outcome(db_session, op.id, first_id, success=False, error_message="again") is False
    await db_session.commit()

    fresh = await ledger.get_operation(db_session, school.tenant_id, op.id, with_items=True)
    assert fresh.processed_count == 2
    assert fresh.success_count == 1
    assert fresh.failure_count == 1
    assert fresh.processed_count == fresh.success_count + fresh.failure_count
    by_id = {i.id: i for i in fresh.items}
    assert by_id[first_id].status == "success"
    assert by_id[first_id].error_message is None
    assert by_id[second_id].status == "failed"
    assert by_id[second_id].error_message == "nope"
    assert await ledger.get_pending_items(db_session, op.id) == []


@pytest.mark.asyncio
async def test_cancel_only_pending(db_session: AsyncSession, school) -> None:
    pending = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4()], {}, school.user.id
    )
    cancelled = await ledger.cancel_operation(db_session, school.tenant_id, pending.id)
    assert cancelled.status == "cancelled"

    with pytest.raises(OperationNotCancellable) as exc:
        await ledger.cancel_operation(db_session, school.tenant_id, pending.id)
    assert exc.value.status_code == 409

    running = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4()], {}, school.user.id
    )
    await ledger.mark_started(db_session, running.id)
    with pytest.raises(OperationNotCancellable):
        await ledger.cancel_operation(db_session, school.tenant_id, running.id)


@pytest.mark.asyncio
async def test_get_operation_is_tenant_scoped(db_session: AsyncSession, school) -> None:
    op = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4()], {}, school.user.id
    )
    with pytest.raises(OperationNotFound):
        await ledger.get_operation(db_session, uuid.uuid4(), op.id)
    with pytest.raises(OperationNotFound):
        await ledger.get_operation(db_session, school.tenant_id, uuid.uuid4())


@pytest.mark.asyncio
async def test_list_operations_newest_first_for_creator(db_session: AsyncSession, school) -> None:
    other_user = uuid.uuid4()
    first = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.UPDATE_STATUS, [uuid.uuid4()], {}, school.user.id
    )
    second = await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.EXPORT, [uuid.uuid4()], {}, school.user.id
    )
    await ledger.create_operation(
        db_session, school.tenant_id, BulkOperationType.EXPORT, [uuid.uuid4()], {}, other_user
    )

    ops = await ledger.list_operations(db_session, school.tenant_id, school.user.id)
    assert [op.id for op in ops] == [second.id, first.id]

    assert len(await ledger.list_operations(db_session, school.tenant_id, school.user.id, limit=1)) == 1
    # Out-of-range limits fall back to the default
    assert len(await ledger.list_operations(db_session, school.tenant_id, school.user.id, limit=500)) == 2
