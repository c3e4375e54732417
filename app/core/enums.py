from enum import Enum


class StudentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRANSFERRED = "transferred"
    GRADUATED = "graduated"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class AddressType(str, Enum):
    CURRENT = "current"
    PERMANENT = "permanent"


class GuardianRelation(str, Enum):
    FATHER = "father"
    MOTHER = "mother"
    GRANDFATHER = "grandfather"
    GRANDMOTHER = "grandmother"
    UNCLE = "uncle"
    AUNT = "aunt"
    SIBLING = "sibling"
    GUARDIAN = "guardian"
    OTHER = "other"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    PROMOTED = "promoted"
    TRANSFERRED = "transferred"
    LEFT = "left"


class BulkOperationType(str, Enum):
    UPDATE_STATUS = "update_status"
    EXPORT = "export"
    SEND_SMS = "send_sms"
    SEND_EMAIL = "send_email"


class BulkOperationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BulkItemStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ExportFormat(str, Enum):
    XLSX = "xlsx"
    CSV = "csv"
