from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class ImportColumn:
    """One column of the student import sheet. Position in STUDENT_IMPORT_COLUMNS is the cell index."""

    key: str
    label: str
    required: bool = False
    hint: Optional[str] = None
    sample: str = ""

    @property
    def header(self) -> str:
        text = self.label + ("*" if self.required else "")
        if self.hint:
            text += f" ({self.hint})"
        return text


# Shared by the template generator and the parser.
STUDENT_IMPORT_COLUMNS: Tuple[ImportColumn, ...] = (
    ImportColumn("admission_number", "Admission Number", True, sample="ADM2024001"),
    ImportColumn("first_name", "First Name", True, sample="John"),
    ImportColumn("middle_name", "Middle Name"),
    ImportColumn("last_name", "Last Name", True, sample="Doe"),
    ImportColumn("date_of_birth", "Date of Birth", True, "YYYY-MM-DD", "2015-06-15"),
    ImportColumn("gender", "Gender", True, "male/female/other", "male"),
    ImportColumn("blood_group", "Blood Group", sample="O+"),
    ImportColumn("aadhaar_number", "Aadhaar Number", sample="123456789012"),
    ImportColumn("class_name", "Class Name", True, sample="Class 5"),
    ImportColumn("section_name", "Section Name", True, sample="Section A"),
    ImportColumn("roll_number", "Roll Number", sample="1"),
    ImportColumn("admission_date", "Admission Date", False, "YYYY-MM-DD", "2024-04-01"),
    ImportColumn("guardian_name", "Guardian Name", True, sample="Robert Doe"),
    ImportColumn("guardian_relation", "Guardian Relation", True, "father/mother/guardian", "father"),
    ImportColumn("guardian_phone", "Guardian Phone", True, sample="9876543210"),
    ImportColumn("guardian_email", "Guardian Email", sample="robert@email.com"),
    ImportColumn("address_line1", "Address Line 1", sample="123 Main Street"),
    ImportColumn("address_line2", "Address Line 2", sample="Apt 4B"),
    ImportColumn("city", "City", sample="Mumbai"),
    ImportColumn("state", "State", sample="Maharashtra"),
    ImportColumn("postal_code", "Postal Code", sample="400001"),
)

COLUMN_LABELS = {c.key: c.label for c in STUDENT_IMPORT_COLUMNS}


@dataclass
class StudentImportRow:
    """One spreadsheet row mapped by column position. row_number is the 1-based sheet row."""

    row_number: int
    admission_number: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    date_of_birth: str = ""
    gender: str = ""
    blood_group: str = ""
    aadhaar_number: str = ""
    class_name: str = ""
    section_name: str = ""
    roll_number: str = ""
    admission_date: str = ""
    guardian_name: str = ""
    guardian_relation: str = ""
    guardian_phone: str = ""
    guardian_email: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    @classmethod
    def from_cells(cls, row_number: int, cells: List[str]) -> "StudentImportRow":
        values = {
            column.key: cells[index]
            for index, column in enumerate(STUDENT_IMPORT_COLUMNS)
            if index < len(cells)
        }
        return cls(row_number=row_number, **values)


class ImportRowError(BaseModel):
    row: int
    column: Optional[str] = None
    message: str


class ImportResult(BaseModel):
    total_rows: int = 0
    success_count: int = 0
    failed_count: int = 0
    errors: List[ImportRowError] = Field(default_factory=list)
    created_ids: List[UUID] = Field(default_factory=list)
