from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import BulkOperationListResponse, BulkOperationResponse, BulkStatusUpdateRequest, ExportRequest
from . import ledger, service

router = APIRouter(prefix="/api/v1/bulk-operations", tags=["bulk-operations"])
students_router = APIRouter(prefix="/api/v1/students", tags=["bulk-operations"])


@students_router.post(
    "/bulk/status",
    response_model=BulkOperationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("students", "update"))],
)
async def bulk_update_status(
    payload: BulkStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    """Change the status of up to 1000 students. Per-student failures are reported in the counters."""
    try:
        operation = await service.create_bulk_status_update(
            db, current_user.tenant_id, payload.student_ids, payload.new_status, current_user.id
        )
        operation = await service.process_status_update(db, current_user.tenant_id, operation.id, payload.new_status)
        return service.operation_to_response(operation)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@students_router.post(
    "/export",
    response_model=BulkOperationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("students", "read"))],
)
async def export_students(
    payload: ExportRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    """Export up to 10000 students as xlsx or csv. Download via GET /api/v1/bulk-operations/{id}/result."""
    try:
        operation = await service.create_export(
            db, current_user.tenant_id, payload.student_ids, payload.format, payload.columns, current_user.id
        )
        operation = await service.process_export(db, current_user.tenant_id, operation.id)
        return service.operation_to_response(operation)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=BulkOperationListResponse,
    dependencies=[Depends(check_permission("students", "read"))],
)
async def list_bulk_operations(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationListResponse:
    """Bulk operations started by the current user, newest first."""
    operations = await ledger.list_operations(db, current_user.tenant_id, current_user.id, limit=limit)
    return BulkOperationListResponse(
        operations=[service.operation_to_response(op) for op in operations],
        total=len(operations),
    )


@router.get(
    "/{operation_id}",
    response_model=BulkOperationResponse,
    dependencies=[Depends(check_permission("students", "read"))],
)
async def get_bulk_operation(
    operation_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    try:
        operation = await ledger.get_operation(db, current_user.tenant_id, operation_id, with_items=True)
        return service.operation_to_response(operation, include_items=True)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{operation_id}/cancel",
    response_model=BulkOperationResponse,
    dependencies=[Depends(check_permission("students", "update"))],
)
async def cancel_bulk_operation(
    operation_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkOperationResponse:
    """Cancel an operation that has not started processing yet."""
    try:
        operation = await ledger.cancel_operation(db, current_user.tenant_id, operation_id)
        return service.operation_to_response(operation)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{operation_id}/result",
    dependencies=[Depends(check_permission("students", "read"))],
)
async def download_bulk_operation_result(
    operation_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RedirectResponse:
    """Redirect to the operation's result file (exports)."""
    try:
        operation = await ledger.get_operation(db, current_user.tenant_id, operation_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not operation.result_url:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No result file available")
    return RedirectResponse(url=operation.result_url, status_code=status.HTTP_302_FOUND)
