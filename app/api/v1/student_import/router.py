import os
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ImportResult
from . import service

router = APIRouter(prefix="/api/v1/students/import", tags=["student-import"])


@router.get(
    "/template",
    dependencies=[Depends(check_permission("students", "create"))],
)
async def download_import_template(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    """Download the Excel import template with the tenant's classes and sections for reference."""
    try:
        content = await service.build_import_template(db, current_user.tenant_id)
        return Response(
            content=content,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": "attachment; filename=student_import_template.xlsx"},
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "",
    response_model=ImportResult,
    dependencies=[Depends(check_permission("students", "create"))],
)
async def import_students(
    file: UploadFile = File(..., description="Filled template (.xlsx) or CSV with the same column order"),
    branch_id: UUID = Form(...),
    academic_year_id: Optional[UUID] = Form(None, description="Defaults to the active academic year of the session"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ImportResult:
    """
    Bulk create students (max 500 rows). Valid rows are created even when other rows fail;
    inspect failed_count and errors in the response.
    """
    year_id = academic_year_id or current_user.academic_year_id
    if year_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="academic_year_id is required")
    file_type = os.path.splitext(file.filename or "")[1].lower().lstrip(".")
    content = await file.read()
    try:
        return await service.import_students(
            db,
            current_user.tenant_id,
            branch_id,
            year_id,
            current_user.id,
            content,
            file_type,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
