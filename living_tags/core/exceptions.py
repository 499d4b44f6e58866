"""Custom exceptions for the Living Tags application."""


# -----------------------------------------------------------------------------
# Application Base Error
# -----------------------------------------------------------------------------


class AppError(Exception):
    """Base application error with HTTP semantics.

    All domain exceptions that should map to HTTP responses inherit from this.
    The global error handler in error_handlers.py catches these and returns
    a consistent JSON response.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str = "An unexpected error occurred", context: dict | None = None):
        self.detail = detail
        self.context = context
        super().__init__(self.detail)


# -----------------------------------------------------------------------------
# Generic CRUD Exceptions
# -----------------------------------------------------------------------------


class EntityNotFound(AppError):
    """Entity not found by primary key (404)."""

    status_code = 404
    error_code = "NOT_FOUND"


class ValidationError(AppError):
    """Generic validation error (400).

    Raised before any state change: malformed tag name, empty content.
    """

    status_code = 400
    error_code = "VALIDATION_ERROR"


# -----------------------------------------------------------------------------
# Tag / Assignment Exceptions
# -----------------------------------------------------------------------------


class DuplicateTagNameError(AppError):
    """Tag with the same name already exists for this user (409)."""

    status_code = 409
    error_code = "DUPLICATE_TAG_NAME"


class ManualAssignmentConflict(AppError):
    """Attempt to write an AI assignment over a manual one (409).

    Manual assignments are authoritative; reconciliation must drop such
    candidates before they reach storage.
    """

    status_code = 409
    error_code = "MANUAL_ASSIGNMENT_CONFLICT"


# -----------------------------------------------------------------------------
# Import / Export Exceptions
# -----------------------------------------------------------------------------


class ImportFormatError(ValidationError):
    """Import document is malformed or has an unsupported format id (400)."""

    error_code = "IMPORT_FORMAT_ERROR"


# -----------------------------------------------------------------------------
# Remote Collaborator Exceptions
# -----------------------------------------------------------------------------


class PersistenceError(AppError):
    """Persistence collaborator call failed (502).

    Causes:
        - Database unavailable or constraint failure
        - Remote API unreachable or returned 5xx
    """

    status_code = 502
    error_code = "PERSISTENCE_FAILED"


class ClassifierError(AppError):
    """Classifier call failed (502).

    All classifier exceptions inherit from this class,
    allowing callers to catch all classifier errors with a single handler.
    """

    status_code = 502
    error_code = "CLASSIFIER_FAILED"


class ClassifierTimeoutError(ClassifierError):
    """Classifier did not answer within classifier_timeout_seconds (504)."""

    status_code = 504
    error_code = "CLASSIFIER_TIMEOUT"


class ClassifierRateLimitError(ClassifierError):
    """Classifier rate limit exceeded (429)."""

    status_code = 429
    error_code = "CLASSIFIER_RATE_LIMITED"


class ClassifierResponseError(ClassifierError):
    """Classifier answered with something that is not a valid tag list.

    Causes:
        - Response is not JSON after repair attempts
        - Confidence outside [0, 1] or missing fields
    """

    error_code = "CLASSIFIER_BAD_RESPONSE"
