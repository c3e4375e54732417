"""
Student bulk import: downloadable Excel template and CSV / XLSX import.

Every row is validated against the reference snapshot before any write. Each valid row is
created in its own transaction (student, enrollment, primary guardian, current address), so a
failing row never affects rows imported before or after it.
"""
import io
import logging
import uuid
from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

import pandas as pd
from fastapi import status
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import AddressType, EnrollmentStatus, Gender, GuardianRelation, StudentStatus
from app.core.exceptions import ImportFileError, ServiceError
from app.core.models import AcademicYear, Branch, Student, StudentAddress, StudentEnrollment, StudentGuardian

from .resolver import ReferenceData, build_reference_data, list_classes_with_sections
from .schemas import (
    COLUMN_LABELS,
    STUDENT_IMPORT_COLUMNS,
    ImportResult,
    ImportRowError,
    StudentImportRow,
)

logger = logging.getLogger(__name__)

MAX_IMPORT_ROWS = 500
DATE_FORMAT = "%Y-%m-%d"
DEFAULT_COUNTRY = "India"

STUDENTS_SHEET_NAME = "Students"
INSTRUCTIONS_SHEET_NAME = "Instructions"
REFERENCE_SHEET_NAME = "Reference"
SECTIONS_SHEET_NAME = "Sections"

SUPPORTED_FILE_TYPES = ("csv", "xlsx")

_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
_THIN = Side(style="thin", color="000000")
_HEADER_BORDER = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)

INSTRUCTIONS = [
    "Student Bulk Import Instructions",
    "",
    "1. Fill in the 'Students' sheet with student data",
    "2. Fields marked with * are mandatory",
    "3. Date format: YYYY-MM-DD (e.g., 2015-06-15)",
    "4. Gender values: male, female, other",
    "5. Guardian relation: father, mother, guardian",
    "6. Class Name and Section Name must exist in the system (see the 'Reference' sheet)",
    "7. Remove the sample row before uploading",
    f"8. Maximum {MAX_IMPORT_ROWS} students per import",
    "",
    "Notes:",
    "- Admission Number must be unique",
    "- If admission date is empty, current date will be used",
    "- Students will be enrolled in the academic year selected at upload",
]


def _column_index(key: str) -> int:
    return next(i for i, c in enumerate(STUDENT_IMPORT_COLUMNS) if c.key == key)


# ----- Template -----


async def build_import_template(db: AsyncSession, tenant_id: UUID) -> bytes:
    """Excel template: Students (header + sample row + dropdowns), Instructions, Reference, Sections."""
    classes = await list_classes_with_sections(db, tenant_id)

    wb = Workbook()
    ws_students = wb.active
    ws_students.title = STUDENTS_SHEET_NAME
    ws_students.append([c.header for c in STUDENT_IMPORT_COLUMNS])
    for i, cell in enumerate(ws_students[1], start=1):
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.border = _HEADER_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        ws_students.column_dimensions[get_column_letter(i)].width = 20
    ws_students.append([c.sample for c in STUDENT_IMPORT_COLUMNS])

    ws_instructions = wb.create_sheet(INSTRUCTIONS_SHEET_NAME)
    for line in INSTRUCTIONS:
        ws_instructions.append([line])
    ws_instructions["A1"].font = Font(bold=True)
    ws_instructions.column_dimensions["A"].width = 90

    ws_reference = wb.create_sheet(REFERENCE_SHEET_NAME)
    ws_reference.append(["Available Classes", "Available Sections"])
    for class_name, section_names in classes:
        ws_reference.append([class_name, ", ".join(section_names)])
    ws_reference.column_dimensions["A"].width = 25
    ws_reference.column_dimensions["B"].width = 50

    ws_sections = wb.create_sheet(SECTIONS_SHEET_NAME)
    ws_sections.append(["Class Name", "Section Name"])
    for class_name, section_names in classes:
        for section_name in section_names:
            ws_sections.append([class_name, section_name])

    last_row = MAX_IMPORT_ROWS + 1
    if classes:
        dv_class = DataValidation(
            type="list",
            formula1=f"'{REFERENCE_SHEET_NAME}'!$A$2:$A${1 + len(classes)}",
            allow_blank=True,
        )
        dv_class.error = "Select a class from the Reference sheet"
        ws_students.add_data_validation(dv_class)
        col = get_column_letter(_column_index("class_name") + 1)
        dv_class.add(f"{col}2:{col}{last_row}")

    dv_gender = DataValidation(type="list", formula1='"{}"'.format(",".join(g.value for g in Gender)), allow_blank=True)
    dv_gender.error = "Use male, female or other"
    ws_students.add_data_validation(dv_gender)
    col = get_column_letter(_column_index("gender") + 1)
    dv_gender.add(f"{col}2:{col}{last_row}")

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


# ----- Parsing -----


def _cell_text(value) -> str:
    """Normalize a spreadsheet cell to trimmed text. Dates become YYYY-MM-DD, whole floats lose '.0'."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _rows_from_table(table) -> List[StudentImportRow]:
    """Skip the header row and rows whose first cell is blank. Row numbers are sheet row numbers."""
    rows: List[StudentImportRow] = []
    for row_number, raw in enumerate(table, start=1):
        if row_number == 1:
            continue
        cells = [_cell_text(v) for v in (raw or ())]
        if not cells or not cells[0]:
            continue
        rows.append(StudentImportRow.from_cells(row_number, cells))
    return rows


def parse_csv(content: bytes) -> List[StudentImportRow]:
    # Every cell as text: admission numbers, phones and postal codes keep their leading zeros.
    # Blank lines are kept so row numbers match the sheet.
    try:
        df = pd.read_csv(
            io.BytesIO(content),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            encoding="utf-8-sig",
        )
    except UnicodeDecodeError:
        raise ImportFileError("CSV file must be UTF-8 encoded")
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ImportFileError(f"Invalid CSV file: {e}")
    df = df.fillna("")
    return _rows_from_table(df.itertuples(index=False, name=None))


def parse_xlsx(content: bytes) -> List[StudentImportRow]:
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ImportFileError(f"Invalid Excel file: {e}")
    try:
        if not wb.worksheets:
            raise ImportFileError("Excel file has no sheets")
        return _rows_from_table(wb.worksheets[0].iter_rows(values_only=True))
    finally:
        wb.close()


def parse_rows(content: bytes, file_type: str) -> List[StudentImportRow]:
    """Parse file bytes into rows and apply the empty / row-count guards."""
    file_type = (file_type or "").strip().lower().lstrip(".")
    if file_type not in SUPPORTED_FILE_TYPES:
        raise ImportFileError("Unsupported file type (use .csv or .xlsx)")
    if not content:
        raise ImportFileError("File is empty")

    rows = parse_csv(content) if file_type == "csv" else parse_xlsx(content)
    if not rows:
        raise ImportFileError("No data rows found in file")
    if len(rows) > MAX_IMPORT_ROWS:
        raise ImportFileError(f"Too many rows (max {MAX_IMPORT_ROWS})")
    return rows


# ----- Validation -----


def _parse_date(value: str) -> Optional[date]:
    """Strict YYYY-MM-DD; unpadded forms such as 2015-6-5 are rejected."""
    if len(value) != len("YYYY-MM-DD"):
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def validate_row(row: StudentImportRow, reference: ReferenceData) -> List[ImportRowError]:
    """All field-level problems of one row; empty list means the row can be created."""
    errors: List[ImportRowError] = []

    def fail(key: str, message: str) -> None:
        errors.append(ImportRowError(row=row.row_number, column=COLUMN_LABELS[key], message=message))

    if not row.admission_number:
        fail("admission_number", "Admission number is required")
    if not row.first_name:
        fail("first_name", "First name is required")
    if not row.last_name:
        fail("last_name", "Last name is required")

    if not row.date_of_birth:
        fail("date_of_birth", "Date of birth is required")
    elif _parse_date(row.date_of_birth) is None:
        fail("date_of_birth", "Invalid date format (use YYYY-MM-DD)")

    if not row.gender:
        fail("gender", "Gender is required")
    elif row.gender.lower() not in {g.value for g in Gender}:
        fail("gender", "Invalid gender (use male/female/other)")

    if not row.class_name:
        fail("class_name", "Class name is required")
    elif reference.class_id(row.class_name) is None:
        fail("class_name", "Class not found in system")

    if not row.section_name:
        fail("section_name", "Section name is required")
    elif reference.section_id(row.class_name, row.section_name) is None:
        fail("section_name", "Section not found for the specified class")

    if not row.guardian_name:
        fail("guardian_name", "Guardian name is required")
    if not row.guardian_phone:
        fail("guardian_phone", "Guardian phone is required")

    if row.admission_date and _parse_date(row.admission_date) is None:
        fail("admission_date", "Invalid date format (use YYYY-MM-DD)")
    return errors


# ----- Creation -----


def _guardian_relation(value: str) -> str:
    try:
        return GuardianRelation((value or "").strip().lower()).value
    except ValueError:
        return GuardianRelation.GUARDIAN.value


def _add_guardian(db: AsyncSession, tenant_id: UUID, student_id: UUID, user_id: UUID, row: StudentImportRow) -> None:
    first_name, _, last_name = row.guardian_name.strip().partition(" ")
    db.add(
        StudentGuardian(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            student_id=student_id,
            relation=_guardian_relation(row.guardian_relation),
            first_name=first_name,
            last_name=last_name.strip(),
            phone=row.guardian_phone,
            email=row.guardian_email or None,
            is_primary=True,
            created_by=user_id,
        )
    )


def _add_address(db: AsyncSession, tenant_id: UUID, student_id: UUID, row: StudentImportRow) -> None:
    db.add(
        StudentAddress(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            student_id=student_id,
            address_type=AddressType.CURRENT.value,
            address_line1=row.address_line1,
            address_line2=row.address_line2 or None,
            city=row.city,
            state=row.state,
            postal_code=row.postal_code,
            country=DEFAULT_COUNTRY,
        )
    )


async def _create_row_records(
    db: AsyncSession,
    tenant_id: UUID,
    branch_id: UUID,
    academic_year_id: UUID,
    user_id: UUID,
    row: StudentImportRow,
    reference: ReferenceData,
) -> UUID:
    """Stage and commit one row's student, enrollment, guardian and address together."""
    admission_date = _parse_date(row.admission_date) if row.admission_date else date.today()
    student_id = uuid.uuid4()
    db.add(
        Student(
            id=student_id,
            tenant_id=tenant_id,
            branch_id=branch_id,
            admission_number=row.admission_number,
            first_name=row.first_name,
            middle_name=row.middle_name or None,
            last_name=row.last_name,
            date_of_birth=_parse_date(row.date_of_birth),
            gender=row.gender.lower(),
            blood_group=row.blood_group or None,
            aadhaar_number=row.aadhaar_number or None,
            status=StudentStatus.ACTIVE.value,
            admission_date=admission_date,
            created_by=user_id,
        )
    )
    # Student row must exist before its dependents on backends that enforce FKs immediately
    await db.flush()
    db.add(
        StudentEnrollment(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            student_id=student_id,
            academic_year_id=academic_year_id,
            class_id=reference.class_id(row.class_name),
            section_id=reference.section_id(row.class_name, row.section_name),
            roll_number=row.roll_number or None,
            status=EnrollmentStatus.ACTIVE.value,
            enrollment_date=admission_date,
            created_by=user_id,
        )
    )
    if row.guardian_name and row.guardian_phone:
        _add_guardian(db, tenant_id, student_id, user_id, row)
    if row.address_line1:
        _add_address(db, tenant_id, student_id, row)
    await db.commit()
    return student_id


async def _ensure_import_targets(
    db: AsyncSession,
    tenant_id: UUID,
    branch_id: UUID,
    academic_year_id: UUID,
) -> None:
    branch = await db.scalar(select(Branch.id).where(Branch.id == branch_id, Branch.tenant_id == tenant_id))
    if not branch:
        raise ServiceError("Branch not found", status.HTTP_404_NOT_FOUND)
    year = await db.scalar(
        select(AcademicYear.id).where(AcademicYear.id == academic_year_id, AcademicYear.tenant_id == tenant_id)
    )
    if not year:
        raise ServiceError("Academic year not found", status.HTTP_404_NOT_FOUND)


async def import_students(
    db: AsyncSession,
    tenant_id: UUID,
    branch_id: UUID,
    academic_year_id: UUID,
    user_id: UUID,
    content: bytes,
    file_type: str,
) -> ImportResult:
    """
    Import students from CSV / XLSX bytes.
    File-level problems raise ImportFileError before any write; row problems are returned in the result.
    """
    rows = parse_rows(content, file_type)
    await _ensure_import_targets(db, tenant_id, branch_id, academic_year_id)
    reference = await build_reference_data(db, tenant_id, academic_year_id)

    result = ImportResult(total_rows=len(rows))
    for row in rows:
        row_errors = validate_row(row, reference)
        if row_errors:
            result.errors.extend(row_errors)
            result.failed_count += 1
            continue

        try:
            student_id = await _create_row_records(
                db, tenant_id, branch_id, academic_year_id, user_id, row, reference
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(
                "student import row failed",
                extra={"tenant_id": str(tenant_id), "row": row.row_number, "error": str(e)},
            )
            reason = getattr(e, "orig", None) or e
            result.errors.append(ImportRowError(row=row.row_number, message=f"Failed to create student: {reason}"))
            result.failed_count += 1
            continue

        result.created_ids.append(student_id)
        result.success_count += 1

    logger.info(
        "student import finished",
        extra={
            "tenant_id": str(tenant_id),
            "total_rows": result.total_rows,
            "success_count": result.success_count,
            "failed_count": result.failed_count,
        },
    )
    return result
