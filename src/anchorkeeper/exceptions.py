"""Exception classes raised by the request store.

- StorageError: transport or transaction failure, safe to retry
- ConflictError: unique-constraint violation on insert
- ValidationError: malformed request row or argument, not retryable
"""


class AnchorKeeperError(Exception):
    """Base exception for all Anchor Keeper errors."""

    retryable = False

    def __init__(self, detail: str, error_code: str = "INTERNAL_ERROR"):
        self.detail = detail
        self.error_code = error_code
        super().__init__(detail)

    def to_dict(self):
        return {
            "error": self.error_code,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class StorageError(AnchorKeeperError):
    """Raised when the request store cannot complete a read or a transaction."""

    retryable = True

    def __init__(self, detail: str, error_code: str = "STORAGE_ERROR"):
        super().__init__(detail, error_code)


class ConflictError(StorageError):
    """Raised when an insert collides with an existing row."""

    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail, error_code="CONFLICT")


class ValidationError(AnchorKeeperError):
    """Raised when a request row or call argument is malformed."""

    def __init__(self, detail: str):
        super().__init__(detail, error_code="VALIDATION_ERROR")
