from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ----- Bulk operations: pre-flight rejections (nothing is persisted) -----
class NoTargetsProvided(ServiceError):
    def __init__(self, message: str = "No students provided") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class TooManyTargets(ServiceError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Too many students selected (max {limit})", status.HTTP_400_BAD_REQUEST)
        self.limit = limit


class InvalidExportFormat(ServiceError):
    def __init__(self, export_format: str) -> None:
        super().__init__(f"Invalid export format '{export_format}' (use xlsx or csv)", status.HTTP_400_BAD_REQUEST)


class InvalidStudentStatus(ServiceError):
    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid student status '{value}' (use active, inactive, transferred or graduated)",
            status.HTTP_400_BAD_REQUEST,
        )


class ImportFileError(ServiceError):
    """Import file rejected before any row is validated or written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


# ----- Bulk operations: lookups and lifecycle -----
class OperationNotFound(ServiceError):
    def __init__(self) -> None:
        super().__init__("Bulk operation not found", status.HTTP_404_NOT_FOUND)


class OperationNotCancellable(ServiceError):
    def __init__(self, current_status: str) -> None:
        super().__init__(
            f"Only pending operations can be cancelled (current status: {current_status})",
            status.HTTP_409_CONFLICT,
        )
