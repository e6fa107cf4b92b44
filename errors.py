"""Domain error taxonomy.

Services raise these; ``main.py`` converts them into JSON responses at the
request boundary. Each class carries the HTTP status and a stable machine
readable ``code`` so clients can tell, for example, ``no_capacity`` apart
from ``duplicate_application`` even though both are conflicts.
"""
from __future__ import annotations

import enum
from typing import Optional


class ValidationFailure(str, enum.Enum):
    MISSING_FILE = "missing_file"
    UNSUPPORTED_TYPE = "unsupported_type"
    FILE_TOO_LARGE = "file_too_large"
    CORRUPT_FILE = "corrupt_file"
    INVALID_PATH = "invalid_path"


class JobBoardError(Exception):
    status_code = 400
    code = "error"
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(JobBoardError):
    status_code = 422
    code = "validation_error"
    default_message = "Invalid input"

    def __init__(self, failure: ValidationFailure, message: Optional[str] = None) -> None:
        self.failure = failure
        super().__init__(message or failure.value.replace("_", " "))


class NotFoundError(JobBoardError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"

    def __init__(self, entity: str, entity_id=None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} {entity_id} not found"
        super().__init__(message)


class AuthorizationError(JobBoardError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to do this"


class WrongRole(AuthorizationError):
    code = "wrong_role"
    default_message = "Your role does not allow this action"


class NotOwner(AuthorizationError):
    code = "not_owner"
    default_message = "You do not own this resource"


class AdminRequired(AuthorizationError):
    code = "admin_required"
    default_message = "Administrator privileges required"


class ConflictError(JobBoardError):
    status_code = 409
    code = "conflict"
    default_message = "Request conflicts with the current state"


class NoCapacity(ConflictError):
    code = "no_capacity"
    default_message = "No free slots available"


class DuplicateApplication(ConflictError):
    code = "duplicate_application"
    default_message = "You have already applied for this job."


class MissingCV(ConflictError):
    code = "missing_cv"
    default_message = "You must upload a CV before applying."


class NoExistingCV(ConflictError):
    code = "no_existing_cv"
    default_message = "There is no CV to replace. Upload one first."


class CVAlreadyExists(ConflictError):
    code = "cv_already_exists"
    default_message = "You already have a CV. Replace it instead."


class CompanyAlreadyExists(ConflictError):
    code = "company_already_exists"
    default_message = "You already have a company profile."


class MissingCompany(ConflictError):
    code = "missing_company"
    default_message = "Create a company profile before posting jobs."


class AlreadyRegistered(ConflictError):
    code = "already_registered"
    default_message = "Email already registered"


class StorageFailure(JobBoardError):
    status_code = 500
    code = "storage_failure"
    default_message = "File storage failed"


class SelfDeletion(JobBoardError):
    status_code = 400
    code = "self_deletion"
    default_message = "Admins cannot delete themselves"
