"""Exceptions raised by the storage layer, the deletion pipeline and the token codec.

Classes:
    ShortenerError:
        Base class for all application-specific errors.

    StorageError:
        Generic base class for mapping store errors.

    NotFoundError:
        Raised when no record exists for a short code.

    GoneError:
        Raised when the record for a short code has been soft-deleted.

    AlreadyExistsError:
        Raised when inserting a long URL that is already stored. Carries the
        short code of the existing record.

    DeadlineExceededError:
        Raised when a storage operation does not finish within its deadline.

    StatementPreparationError:
        Raised when a statement cannot be built or compiled.

    ExecutionError:
        Raised when executing or committing a statement fails.

    ScanError:
        Raised when stored rows cannot be decoded.

    UnreachableError:
        Raised by the health check when the backend cannot be reached.

    StorageInitError:
        Raised when schema or file setup fails at start-up.

    QueueClosedError:
        Raised when putting to, or getting from, a closed hand-off queue.

    DeletionPipelineError:
        Raised when the deletion worker pool has died.

    DeletionPipelineClosedError:
        Raised when submitting to a pipeline that no longer accepts batches.

    InvalidTokenError:
        Raised when an owner token fails signature verification.

Example:
    >>> from shortener.exceptions import AlreadyExistsError
    >>> raise AlreadyExistsError("https://a.example", "abc123")
    Traceback (most recent call last):
        ...
    shortener.exceptions.AlreadyExistsError: URL https://a.example already stored as abc123
"""


class ShortenerError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortener_error"


class StorageError(ShortenerError):
    """Generic base class for mapping store errors."""

    error_code = "storage:storage_error"


class NotFoundError(StorageError):
    error_code = "storage:not_found"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"short code {short_code} not found")


class GoneError(StorageError):
    error_code = "storage:gone"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"short code {short_code} was deleted")


class AlreadyExistsError(StorageError):
    """Designed outcome of the long URL uniqueness constraint, not a fault."""

    error_code = "storage:already_exists"

    def __init__(self, url: str, short_code: str):
        self.url = url
        self.short_code = short_code
        super().__init__(f"URL {url} already stored as {short_code}")


class DeadlineExceededError(StorageError):
    error_code = "storage:deadline_exceeded"


class StatementPreparationError(StorageError):
    error_code = "storage:statement_preparation"


class ExecutionError(StorageError):
    error_code = "storage:execution"


class ScanError(StorageError):
    error_code = "storage:scan"


class UnreachableError(StorageError):
    error_code = "storage:unreachable"


class StorageInitError(StorageError):
    error_code = "storage:init"


class QueueClosedError(ShortenerError):
    error_code = "pipeline:queue_closed"


class DeletionPipelineError(ShortenerError):
    """The deletion worker pool terminated because a worker failed."""

    error_code = "pipeline:failed"


class DeletionPipelineClosedError(DeletionPipelineError):
    error_code = "pipeline:closed"


class InvalidTokenError(ShortenerError):
    error_code = "token:invalid"
