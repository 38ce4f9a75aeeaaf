"""Shared exceptions module.

Every error raised by the membership core carries an ``ErrorKind``. Kinds are
mapped to HTTP status codes only at the API boundary (see ``api.middleware``).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError


class ErrorKind(str, Enum):
    """Closed set of error kinds surfaced by the membership core."""

    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    PROVIDER = "provider"
    PERSISTENCE = "persistence"


class ProviderErrorKind(str, Enum):
    """Subdivision of billing provider failures."""

    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"


class ClubhouseException(Exception):
    """Base exception for Clubhouse services."""

    kind: ErrorKind = ErrorKind.PERSISTENCE
    default_message: str = "Operation failed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        """Create a new ClubhouseException instance.

        Args:
        ----
            message (str, optional): Short, user-safe description of the failure.
            **context: Structured details (ids, field names) kept for logging.

        """
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class NotFoundException(ClubhouseException):
    """Exception raised when a member, subscription or session is not found."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Object not found"


class PermissionException(ClubhouseException):
    """Exception raised when a resource does not belong to the caller."""

    kind = ErrorKind.AUTHORIZATION
    default_message = "User does not have the right to perform this action"


class ValidationException(ClubhouseException):
    """Exception raised for malformed or missing input."""

    kind = ErrorKind.VALIDATION
    default_message = "Invalid request"


class PersistenceException(ClubhouseException):
    """Exception raised when a storage write fails."""

    kind = ErrorKind.PERSISTENCE
    default_message = "Failed to save changes"


class BillingConfigurationError(ClubhouseException):
    """Raised when billing is not configured for this instance."""

    kind = ErrorKind.CONFIGURATION
    default_message = "Billing is not configured for this instance"


class BillingProviderError(ClubhouseException):
    """Exception raised when the billing provider fails.

    The message is always generic; the provider's own description is kept in
    ``context["provider_message"]`` for logs only.
    """

    kind = ErrorKind.PROVIDER
    provider_kind: ProviderErrorKind = ProviderErrorKind.TRANSIENT
    default_message = "The billing provider could not complete the request"


class ProviderNotFoundError(BillingProviderError):
    """The referenced provider resource was deleted upstream."""

    provider_kind = ProviderErrorKind.NOT_FOUND
    default_message = "The billing record no longer exists at the provider"


class ProviderTransientError(BillingProviderError):
    """Network or rate-limit failure; the call is safe to retry."""

    provider_kind = ProviderErrorKind.TRANSIENT
    default_message = "The billing provider is temporarily unavailable"


class ProviderConfigurationError(BillingProviderError):
    """Provider credentials are missing or rejected."""

    kind = ErrorKind.CONFIGURATION
    provider_kind = ProviderErrorKind.CONFIGURATION
    default_message = "Billing is not configured for this instance"


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append({field: message})

    return {"errors": error_messages}
