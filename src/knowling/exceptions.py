"""Custom exceptions for the Knowling notebook.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every failure leaves the core
typed by kind; nothing is retried.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_ALREADY_EXISTS = 1003

    # Category errors (3xxx)
    CATEGORY_NOT_FOUND = 3001
    CATEGORY_INVALID = 3002

    # Relational storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Vector index errors (5xxx)
    VECTOR_INDEX_FAILED = 5001
    VECTOR_EXTENSION_UNAVAILABLE = 5002
    EMBEDDING_MODEL_LOAD_FAILED = 5101
    EMBEDDING_INFERENCE_FAILED = 5102
    EMBEDDING_DIMENSION_MISMATCH = 5103

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001

    # File access errors (8xxx)
    FILE_NOT_FOUND = 8001
    FILE_NOT_DIRECTORY = 8002
    FILE_NOT_WRITABLE = 8003
    FILE_IO_FAILED = 8004


class KnowlingError(Exception):
    """Base exception for all notebook errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(KnowlingError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class CategoryNotFoundError(KnowlingError):
    """Raised when a category id does not resolve to a known category."""

    def __init__(self, category_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Category with ID '{category_id}' not found",
            code=ErrorCode.CATEGORY_NOT_FOUND,
            details={"category_id": category_id},
        )
        self.category_id = category_id


class PersistenceError(KnowlingError):
    """Raised when the relational store fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class DuplicateIdError(PersistenceError):
    """Raised when a note is added with an id that is already present."""

    def __init__(self, note_id: str, original_error: Optional[Exception] = None):
        super().__init__(
            f"Note with ID '{note_id}' already exists",
            operation="add_note",
            code=ErrorCode.NOTE_ALREADY_EXISTS,
            original_error=original_error,
        )
        self.details["note_id"] = note_id
        self.note_id = note_id


class VectorIndexError(KnowlingError):
    """Raised when the vector engine fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.VECTOR_INDEX_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class EmbeddingError(VectorIndexError):
    """Raised when the embedding model cannot be loaded or fails to embed."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.EMBEDDING_INFERENCE_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message, operation=operation, code=code, original_error=original_error
        )


class FileAccessError(KnowlingError):
    """Raised for import/export file-system failures."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.FILE_IO_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.original_error = original_error


class ConfigurationError(KnowlingError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class EmbeddingDimensionError(ConfigurationError):
    """Raised when a vector does not have the configured dimension.

    This is a fatal configuration error: the embedding model and the
    vector store disagree, and no retry can fix that.
    """

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        super().__init__(
            message
            or f"Embedding dimension mismatch: expected {expected}, got {actual}",
            config_key="embedding_dim",
            code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
        )
        self.details["expected"] = expected
        self.details["actual"] = actual
        self.expected = expected
        self.actual = actual


class ValidationError(KnowlingError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
