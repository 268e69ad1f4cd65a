"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from CourierError for easy catching.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
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

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
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


class ConfigurationError(CourierError):
    """Configuration error.

    Raised when a subscription or the service itself is configured in a way
    that makes delivery impossible (missing secret, unusable URL).
    """

    code: str = "configuration_error"


class SigningError(ConfigurationError):
    """Payload could not be signed.

    Raised when the signing secret is empty.
    """

    code: str = "signing_error"


class StorageError(CourierError):
    """Storage operation failed."""

    code: str = "storage_error"


class TransientStorageError(StorageError):
    """Storage operation failed in a way that may succeed on retry."""

    code: str = "transient_storage_error"


class InvalidTransitionError(CourierError):
    """Delivery record state machine was asked for a forbidden transition.

    Attributes:
        delivery_id: Record the transition was attempted on.
        status: Current status of the record.
    """

    code: str = "invalid_transition"

    def __init__(self, delivery_id: str, status: str, message: str) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(f"Delivery {delivery_id} ({status}): {message}")
