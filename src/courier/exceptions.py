"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from CourierError for easy catching.

Delivery outcomes (success, retryable or permanent failure, rate-limit
deferral) are status values, not exceptions; see ``courier.models.OutcomeKind``.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

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

    Raised synchronously when registration or update input is malformed.
    Nothing is stored or queued when this is raised.

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
        resource_type: Type of resource (e.g., "endpoint", "delivery").
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


class InvalidTransitionError(CourierError):
    """A delivery was asked to make a transition its state machine forbids.

    Attributes:
        delivery_id: The delivery.
        from_status: Current status.
        to_status: Requested status.
    """

    code: str = "invalid_transition"

    def __init__(self, delivery_id: str, from_status: str, to_status: str) -> None:
        self.delivery_id = delivery_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"delivery {delivery_id}: cannot move from {from_status} to {to_status}")


class StorageError(CourierError):
    """Storage operation failed."""

    code: str = "storage_error"


class ConfigurationError(CourierError):
    """Required configuration is missing or invalid."""

    code: str = "configuration_error"
