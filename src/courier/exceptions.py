"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from CourierError for easy catching.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

    All custom exceptions in Courier inherit from this class,
    allowing callers to catch all Courier-related errors with
    a single except clause.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "courier_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(CourierError):
    """Invalid input provided.

    Raised when create/update input or a triggered event fails validation.
    Fatal to the single call and never retried.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(CourierError):
    """Resource not found.

    Raised when a subscription, inbound mapping or delivery log doesn't exist.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery_attempt").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class ForbiddenError(CourierError):
    """A disabled resource was accessed."""

    code: str = "forbidden"


class AuthenticationError(CourierError):
    """Authentication failed.

    Raised when an inbound request carries a missing or wrong shared secret.
    """

    code: str = "authentication_error"


class DeliveryError(CourierError):
    """An outbound delivery attempt failed.

    Covers transport failures and non-2xx responses. Never propagated to the
    event producer; it only ends up in the delivery log.

    Attributes:
        status_code: HTTP status if a response was received.
    """

    code: str = "delivery_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamError(CourierError):
    """The submission collaborator rejected a mapped inbound record.

    Attributes:
        status_code: HTTP status to return to the inbound caller.
    """

    code: str = "upstream_error"

    def __init__(self, message: str, status_code: int = 502) -> None:
        self.status_code = status_code
        super().__init__(message)


class StorageError(CourierError):
    """Storage operation failed.

    Raised when a store rejects a write, e.g. a duplicate insert or a second
    finalization of a delivery attempt.
    """

    code: str = "storage_error"


class ConfigurationError(CourierError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
