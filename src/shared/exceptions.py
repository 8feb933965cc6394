"""Custom exceptions for the receipt tracker application."""


class ReceiptTrackerError(Exception):
    """Base exception for all receipt tracker errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ReceiptTrackerError):
    """Raised when input validation fails."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class AuthError(ReceiptTrackerError):
    """Raised when the caller has no usable identity."""

    def __init__(self, message: str = "You must be signed in"):
        super().__init__(message, status_code=401)


class NotFoundOrForbiddenError(ReceiptTrackerError):
    """
    Raised when an id/owner pair does not match a stored row.

    Covers both "does not exist" and "belongs to someone else" with the
    same message so callers cannot probe for other users' records.
    """

    def __init__(self, message: str = "Receipt not found"):
        super().__init__(message, status_code=404)


class StorageError(ReceiptTrackerError):
    """Raised when object storage operations fail."""

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, status_code=500)


class PersistError(ReceiptTrackerError):
    """Raised when database operations fail."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class ConfigurationError(ReceiptTrackerError):
    """Raised when required configuration is missing."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, status_code=500)
