# errors.py — Error taxonomy for the task portal
# Every error maps to one HTTP status and one stable catalogue code.
# Codes follow TP-{DOMAIN}-{NUMBER}.

from typing import Any, Dict, Optional


ERROR_CATALOGUE = {
    # Authentication & authorisation
    "TP-AUTH-001": {"message": "Not authenticated", "http_status": 401},
    "TP-AUTH-002": {"message": "Invalid credentials", "http_status": 401},
    "TP-AUTH-003": {"message": "Insufficient permissions", "http_status": 403},

    # Requests
    "TP-REQ-001": {"message": "Request validation failed", "http_status": 400},
    "TP-REQ-002": {"message": "Resource not found", "http_status": 404},
    "TP-REQ-003": {"message": "Method not allowed", "http_status": 405},

    # Tasks & executions
    "TP-TASK-001": {"message": "Tasks can only be assigned to collaborators", "http_status": 400},
    "TP-EXEC-001": {"message": "Task execution already submitted", "http_status": 400},

    # Files
    "TP-FS-001": {"message": "File too large", "http_status": 400},
    "TP-FS-002": {"message": "Invalid file type", "http_status": 400},
    "TP-FS-003": {"message": "Invalid file content type", "http_status": 400},
    "TP-FS-004": {"message": "Object storage operation failed", "http_status": 500},

    # System
    "TP-DB-001": {"message": "Database error", "http_status": 500},
    "TP-SYS-001": {"message": "Internal server error", "http_status": 500},
    "TP-SYS-002": {"message": "Service misconfigured", "http_status": 500},
}


class AppError(Exception):
    """Base class for every error the API renders as a JSON envelope."""

    code = "TP-SYS-001"
    status_code = 500

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or ERROR_CATALOGUE[self.code]["message"]
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "code": self.code}


class Unauthenticated(AppError):
    code = "TP-AUTH-001"
    status_code = 401


class InvalidCredentials(Unauthenticated):
    code = "TP-AUTH-002"


class Forbidden(AppError):
    code = "TP-AUTH-003"
    status_code = 403


class NotFound(AppError):
    code = "TP-REQ-002"
    status_code = 404


class ValidationError(AppError):
    code = "TP-REQ-001"
    status_code = 400


class InvalidAssignee(ValidationError):
    """Raised when a task is assigned to a missing user (404) or a non-collaborator (400)."""

    code = "TP-TASK-001"


class Conflict(ValidationError):
    code = "TP-EXEC-001"


class FileTooLarge(ValidationError):
    code = "TP-FS-001"


class InvalidFileType(ValidationError):
    code = "TP-FS-002"


class InvalidContentType(ValidationError):
    code = "TP-FS-003"


class UploadFailed(AppError):
    code = "TP-FS-004"
    status_code = 500
    retryable = True


class PersistenceError(AppError):
    code = "TP-DB-001"
    status_code = 500


class ConfigurationError(AppError):
    code = "TP-SYS-002"
    status_code = 500
