from app.core.models.tenant import Tenant
from app.core.models.branch import Branch
from app.core.models.academic_year import AcademicYear
from app.core.models.class_model import SchoolClass
from app.core.models.section_model import Section
from app.core.models.student import Student
from app.core.models.student_guardian import StudentGuardian
from app.core.models.student_address import StudentAddress
from app.core.models.student_enrollment import StudentEnrollment
from app.core.models.bulk_operation import BulkOperation, BulkOperationItem

__all__ = [
    "AcademicYear",
    "Branch",
    "BulkOperation",
    "BulkOperationItem",
    "SchoolClass",
    "Section",
    "Student",
    "StudentAddress",
    "StudentEnrollment",
    "StudentGuardian",
    "Tenant",
]
