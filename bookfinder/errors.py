"""Exception taxonomy shared by the library, session and catalog layers."""

from enum import Enum


class BookFinderError(Exception):
    """Base class for recoverable, user-facing errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class AuthErrorReason(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ALREADY_REGISTERED = "already_registered"


class AuthError(BookFinderError):
    """Raised when login or registration is refused."""

    def __init__(self, reason: AuthErrorReason, message: str = "") -> None:
        if not message:
            message = {
                AuthErrorReason.INVALID_CREDENTIALS: "Invalid email or password.",
                AuthErrorReason.ALREADY_REGISTERED: "Email already registered. Please login instead.",
            }[reason]
        super().__init__(message)
        self.reason = reason


class NotFoundError(BookFinderError, LookupError):
    """Raised when a book entry or user does not exist."""
    pass


class ValidationError(BookFinderError, ValueError):
    """Raised for invalid user input (empty name, malformed email, bad status...)."""
    pass


class ExternalServiceError(BookFinderError):
    """Raised when the catalog or the image relay is unreachable or answers non-2xx."""

    retryable = False

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CatalogTimeoutError(ExternalServiceError):
    """The catalog did not answer within the configured timeout."""

    retryable = True


class SessionRequiredError(RuntimeError):
    """A library operation was attempted without an authenticated session."""
    pass


class OwnershipError(RuntimeError):
    """A library operation named an owner other than the session user."""
    pass
