from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import ExportFormat, StudentStatus


class BulkStatusUpdateRequest(BaseModel):
    student_ids: List[UUID] = Field(..., description="Target students (max 1000)")
    new_status: StudentStatus


class ExportRequest(BaseModel):
    student_ids: List[UUID] = Field(..., description="Students to export (max 10000)")
    format: ExportFormat = ExportFormat.XLSX
    columns: List[str] = Field(default_factory=list, description="Column keys in output order; empty = default set")


class ExportColumn(str, Enum):
    """Export column keys. Values double as attribute names on ExportRow."""

    ADMISSION_NUMBER = "admission_number"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    FULL_NAME = "full_name"
    CLASS = "class"
    SECTION = "section"
    ROLL_NUMBER = "roll_number"
    GENDER = "gender"
    DATE_OF_BIRTH = "date_of_birth"
    BLOOD_GROUP = "blood_group"
    AADHAAR_NUMBER = "aadhaar_number"
    ADMISSION_DATE = "admission_date"
    PHONE = "phone"
    EMAIL = "email"
    GUARDIAN_NAME = "guardian_name"
    GUARDIAN_PHONE = "guardian_phone"
    GUARDIAN_EMAIL = "guardian_email"
    GUARDIAN_RELATION = "guardian_relation"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    STATUS = "status"
    BRANCH = "branch"


EXPORT_COLUMN_LABELS: Dict[ExportColumn, str] = {
    ExportColumn.ADMISSION_NUMBER: "Admission Number",
    ExportColumn.FIRST_NAME: "First Name",
    ExportColumn.LAST_NAME: "Last Name",
    ExportColumn.FULL_NAME: "Full Name",
    ExportColumn.CLASS: "Class",
    ExportColumn.SECTION: "Section",
    ExportColumn.ROLL_NUMBER: "Roll Number",
    ExportColumn.GENDER: "Gender",
    ExportColumn.DATE_OF_BIRTH: "Date of Birth",
    ExportColumn.BLOOD_GROUP: "Blood Group",
    ExportColumn.AADHAAR_NUMBER: "Aadhaar Number",
    ExportColumn.ADMISSION_DATE: "Admission Date",
    ExportColumn.PHONE: "Phone",
    ExportColumn.EMAIL: "Email",
    ExportColumn.GUARDIAN_NAME: "Guardian Name",
    ExportColumn.GUARDIAN_PHONE: "Guardian Phone",
    ExportColumn.GUARDIAN_EMAIL: "Guardian Email",
    ExportColumn.GUARDIAN_RELATION: "Guardian Relation",
    ExportColumn.ADDRESS: "Address",
    ExportColumn.CITY: "City",
    ExportColumn.STATE: "State",
    ExportColumn.STATUS: "Status",
    ExportColumn.BRANCH: "Branch",
}

DEFAULT_EXPORT_COLUMNS: List[str] = [
    ExportColumn.ADMISSION_NUMBER.value,
    ExportColumn.FIRST_NAME.value,
    ExportColumn.LAST_NAME.value,
    ExportColumn.CLASS.value,
    ExportColumn.SECTION.value,
    ExportColumn.PHONE.value,
    ExportColumn.GUARDIAN_NAME.value,
    ExportColumn.GUARDIAN_PHONE.value,
    ExportColumn.STATUS.value,
]


class ExportRow(BaseModel):
    """One denormalized student record. Missing related data stays as empty string."""

    admission_number: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    class_name: str = ""
    section: str = ""
    roll_number: str = ""
    gender: str = ""
    date_of_birth: str = ""
    blood_group: str = ""
    aadhaar_number: str = ""
    admission_date: str = ""
    phone: str = ""
    email: str = ""
    guardian_name: str = ""
    guardian_phone: str = ""
    guardian_email: str = ""
    guardian_relation: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    status: str = ""
    branch: str = ""

    def value_for(self, column: str) -> str:
        """Cell value for a column key; unknown keys render empty."""
        try:
            key = ExportColumn(column)
        except ValueError:
            return ""
        if key is ExportColumn.CLASS:
            return self.class_name
        return getattr(self, key.value)


class BulkOperationItemResponse(BaseModel):
    id: UUID
    student_id: UUID
    status: str
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BulkOperationResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    operation_type: str
    status: str
    total_count: int
    processed_count: int
    success_count: int
    failure_count: int
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    created_by: UUID
    items: Optional[List[BulkOperationItemResponse]] = None

    class Config:
        from_attributes = True


class BulkOperationListResponse(BaseModel):
    operations: List[BulkOperationResponse]
    total: int
