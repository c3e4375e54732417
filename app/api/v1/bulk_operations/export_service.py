"""Student export: denormalize students into flat rows and render them as CSV or XLSX files."""
import logging
import os
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.enums import AddressType, EnrollmentStatus, ExportFormat
from app.core.exceptions import InvalidExportFormat
from app.core.models import Student, StudentEnrollment

from .schemas import DEFAULT_EXPORT_COLUMNS, EXPORT_COLUMN_LABELS, ExportColumn, ExportRow

logger = logging.getLogger(__name__)

# Student ids per SELECT ... IN (...) round trip
_FETCH_CHUNK = 1000
_HEADER_FILL = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")
_MAX_COLUMN_WIDTH = 60


def parse_export_format(value: str) -> ExportFormat:
    try:
        return ExportFormat((value or "").strip().lower())
    except ValueError:
        raise InvalidExportFormat(value)


def column_label(column: str) -> str:
    """Human label for a column key; unknown keys are shown as-is."""
    try:
        return EXPORT_COLUMN_LABELS[ExportColumn(column)]
    except ValueError:
        return column


def resolve_columns(columns: Optional[Sequence[str]]) -> List[str]:
    if not columns:
        return list(DEFAULT_EXPORT_COLUMNS)
    return list(columns)


def _fmt_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def _to_export_row(student: Student) -> ExportRow:
    row = ExportRow(
        admission_number=student.admission_number or "",
        first_name=student.first_name or "",
        last_name=student.last_name or "",
        full_name=student.full_name,
        gender=student.gender or "",
        date_of_birth=_fmt_date(student.date_of_birth),
        blood_group=student.blood_group or "",
        aadhaar_number=student.aadhaar_number or "",
        admission_date=_fmt_date(student.admission_date),
        phone=student.phone or "",
        email=student.email or "",
        status=student.status or "",
        branch=student.branch.name if student.branch else "",
    )

    # First current address only
    address = next(
        (a for a in student.addresses if a.address_type == AddressType.CURRENT.value),
        None,
    )
    if address:
        row.address = address.address_line1 or ""
        if address.address_line2:
            row.address += ", " + address.address_line2
        row.city = address.city or ""
        row.state = address.state or ""

    guardian = next((g for g in student.guardians if g.is_primary), None)
    if guardian:
        row.guardian_name = guardian.full_name
        row.guardian_phone = guardian.phone or ""
        row.guardian_email = guardian.email or ""
        row.guardian_relation = guardian.relation or ""

    enrollment = next(
        (e for e in student.enrollments if e.status == EnrollmentStatus.ACTIVE.value),
        None,
    )
    if enrollment:
        row.roll_number = enrollment.roll_number or ""
        row.class_name = enrollment.school_class.name if enrollment.school_class else ""
        row.section = enrollment.section.name if enrollment.section else ""
    return row


async def load_export_rows(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: Sequence[UUID],
) -> List[ExportRow]:
    """
    One flat row per existing student of the tenant, ordered by admission number.
    Unknown ids are skipped; missing guardian/address/enrollment leave fields empty.
    """
    students: Dict[UUID, Student] = {}
    ids = list(dict.fromkeys(student_ids))
    for start in range(0, len(ids), _FETCH_CHUNK):
        chunk = ids[start:start + _FETCH_CHUNK]
        stmt = (
            select(Student)
            .where(Student.tenant_id == tenant_id, Student.id.in_(chunk))
            .options(
                selectinload(Student.branch),
                selectinload(Student.addresses),
                selectinload(Student.guardians),
                selectinload(Student.enrollments).selectinload(StudentEnrollment.school_class),
                selectinload(Student.enrollments).selectinload(StudentEnrollment.section),
            )
        )
        result = await db.execute(stmt)
        for student in result.scalars().all():
            students[student.id] = student
    ordered = sorted(students.values(), key=lambda s: s.admission_number or "")
    return [_to_export_row(s) for s in ordered]


def write_csv(path: str, rows: Sequence[ExportRow], columns: Sequence[str]) -> None:
    df = pd.DataFrame(
        [[row.value_for(c) for c in columns] for row in rows],
        columns=[column_label(c) for c in columns],
    )
    df.to_csv(path, index=False, encoding="utf-8")


def write_xlsx(path: str, rows: Sequence[ExportRow], columns: Sequence[str]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Students"

    labels = [column_label(c) for c in columns]
    ws.append(labels)
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = _HEADER_FILL

    widths = [len(label) for label in labels]
    for row in rows:
        values = [row.value_for(c) for c in columns]
        ws.append(values)
        # Stored text starting with "=" stays text, never a live formula
        for cell in ws[ws.max_row]:
            if isinstance(cell.value, str) and cell.value.startswith("="):
                cell.data_type = "s"
        for i, value in enumerate(values):
            widths[i] = max(widths[i], len(value))

    for i, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = min(width + 2, _MAX_COLUMN_WIDTH)
    wb.save(path)


async def export_students(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: Sequence[UUID],
    export_format: str,
    columns: Optional[Sequence[str]] = None,
    upload_dir: Optional[str] = None,
) -> str:
    """
    Render the export file under <upload_dir>/exports/<tenant_id>/ and return its public URL.
    Errors propagate; the caller decides the operation outcome.
    """
    fmt = parse_export_format(export_format)
    selected = resolve_columns(columns)
    rows = await load_export_rows(db, tenant_id, student_ids)

    export_dir = os.path.join(upload_dir or settings.upload_dir, "exports", str(tenant_id))
    os.makedirs(export_dir, exist_ok=True)
    filename = "students-{}-{}.{}".format(
        datetime.utcnow().strftime("%Y%m%d-%H%M%S"),
        uuid.uuid4().hex[:8],
        fmt.value,
    )
    path = os.path.join(export_dir, filename)
    partial_path = path + ".part"

    writer = write_csv if fmt == ExportFormat.CSV else write_xlsx
    try:
        writer(partial_path, rows, selected)
        os.replace(partial_path, path)
    except Exception:
        if os.path.exists(partial_path):
            os.remove(partial_path)
        raise

    logger.info(
        "student export written",
        extra={"tenant_id": str(tenant_id), "rows": len(rows), "format": fmt.value, "file": filename},
    )
    prefix = settings.upload_url_prefix.rstrip("/")
    return f"{prefix}/exports/{tenant_id}/{filename}"
