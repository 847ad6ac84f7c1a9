"""Custom exceptions for the notetree store.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Per-operation failures inside a batch
(validation, reference, constraint) are captured into that operation's
result; only BatchFatalError aborts a whole batch.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_PARENT_CYCLE = 1003

    # Page errors (2xxx)
    PAGE_NOT_FOUND = 2001
    PAGE_NAME_REQUIRED = 2002

    # Reference errors (3xxx)
    UNRESOLVED_TEMP_ID = 3001
    REFERENCE_NOT_FOUND = 3002
    DUPLICATE_TEMP_ID = 3003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    CONSTRAINT_VIOLATION = 4003

    # Batch errors (45xx)
    BATCH_FATAL = 4501
    BATCH_TOO_LARGE = 4503
    BATCH_RETRIES_EXHAUSTED = 4504
    BATCH_INVALID_OPERATION = 4505

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    MISSING_FIELD = 7002
    INVALID_OPERATION_TYPE = 7003


class NoteTreeError(Exception):
    """Base exception for all notetree errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
        error_type: Taxonomy label reported in batch results
    """

    error_type = "NoteTreeError"

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.error_type,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(NoteTreeError):
    """Raised when an operation payload is malformed or incomplete."""

    error_type = "ValidationError"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class ReferenceResolutionError(NoteTreeError):
    """Raised when a temp id or a referenced note/page cannot be resolved.

    Reported as ``ReferenceError`` in batch results. Named differently here so
    it does not shadow the builtin of the same name.
    """

    error_type = "ReferenceError"

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.REFERENCE_NOT_FOUND
    ):
        details = {}
        if reference:
            details["reference"] = reference
        if field:
            details["field"] = field

        super().__init__(message, code=code, details=details)
        self.reference = reference
        self.field = field


class NoteNotFoundError(ReferenceResolutionError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            reference=note_id,
            code=ErrorCode.NOTE_NOT_FOUND,
        )
        self.note_id = note_id


class PageNotFoundError(ReferenceResolutionError):
    """Raised when a page cannot be found."""

    def __init__(self, page_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Page with ID '{page_id}' not found",
            reference=page_id,
            code=ErrorCode.PAGE_NOT_FOUND,
        )
        self.page_id = page_id


class ConstraintError(NoteTreeError):
    """Raised when the store rejects a write on an integrity constraint."""

    error_type = "ConstraintError"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONSTRAINT_VIOLATION,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class StorageError(NoteTreeError):
    """Raised for storage/persistence errors outside a batch."""

    error_type = "StorageError"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class BatchFatalError(NoteTreeError):
    """Raised when a batch transaction had to be rolled back as a whole.

    No per-operation results survive a fatal error: every write of the batch
    has been undone.

    Attributes:
        total_count: Number of operations in the batch
        failed_index: Index of the operation being applied when the failure
            happened, if known
        original_error: The underlying exception if applicable
    """

    error_type = "BatchFatalError"

    def __init__(
        self,
        message: str,
        total_count: int = 0,
        failed_index: Optional[int] = None,
        code: ErrorCode = ErrorCode.BATCH_FATAL,
        original_error: Optional[Exception] = None
    ):
        if total_count < 0:
            raise ValueError("total_count must be non-negative")

        details: Dict[str, Any] = {"total_count": total_count}
        if failed_index is not None:
            details["failed_index"] = failed_index
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.total_count = total_count
        self.failed_index = failed_index
        self.original_error = original_error


class ConfigurationError(NoteTreeError):
    """Raised for configuration-related errors."""

    error_type = "ConfigurationError"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
