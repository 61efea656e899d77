# src/loadout_publisher/exceptions.py

"""
Shared custom exceptions for the Loadout Publisher service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- LoadoutPublisherError (base)
  - RetryableError (the caller may re-invoke the whole pipeline)
    - DeviceLookupUnavailableError
    - StorageListError
    - SigningError
    - PublishError
  - NonRetryableError (re-invoking with the same input will fail again)
    - ValidationError
      - MissingParameterError
      - InvalidIdentifierError
    - DeviceLookupRejectedError
    - MalformedDeviceResponseError
    - ConfigurationError

Nothing in the service retries automatically; the retryable marker only
informs logs and callers.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .schemas import PublishOutcome


class LoadoutPublisherError(Exception):
    """Base exception for all Loadout Publisher service errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(LoadoutPublisherError):
    """Base class for errors where re-invoking the pipeline may succeed."""

    pass


class NonRetryableError(LoadoutPublisherError):
    """Base class for errors that will recur on the same input."""

    pass


# === Validation Errors ===


class ValidationError(NonRetryableError):
    """Base class for request validation errors."""

    pass


class MissingParameterError(ValidationError):
    """Raised when a required query parameter is absent or empty."""

    def __init__(self, parameter: str, alternatives: tuple[str, ...] = (), **kwargs):
        name = f"'{parameter}'"
        if alternatives:
            name += " (or " + ", ".join(f"'{alt}'" for alt in alternatives) + ")"
        message = f"Query parameter {name} is required."
        context = {"parameter": parameter, "alternatives": list(alternatives)}
        super().__init__(
            message, error_code="MISSING_PARAMETER", context=context, **kwargs
        )


class InvalidIdentifierError(ValidationError):
    """Raised when an identifier cannot be used as a storage prefix segment."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "INVALID_IDENTIFIER"
        super().__init__(message, **kwargs)


# === Device Resolution Errors ===


class ResolutionError(LoadoutPublisherError):
    """Base class for failures while mapping a user to a device."""

    pass


class DeviceLookupUnavailableError(ResolutionError, RetryableError):
    """Raised when the device lookup endpoint cannot be reached."""

    def __init__(self, url: str, reason: str, **kwargs):
        message = f"Device API request error: {reason}"
        context = {"url": url, "reason": reason}
        super().__init__(
            message, error_code="DEVICE_LOOKUP_UNAVAILABLE", context=context, **kwargs
        )


class DeviceLookupRejectedError(ResolutionError, NonRetryableError):
    """Raised when the device lookup endpoint answers with a non-200 status."""

    def __init__(self, status_code: int, body: str = "", **kwargs):
        message = f"Device API request failed with status {status_code}"
        context = {"status_code": status_code, "body": body[:512]}
        super().__init__(
            message, error_code="DEVICE_LOOKUP_REJECTED", context=context, **kwargs
        )


class MalformedDeviceResponseError(ResolutionError, NonRetryableError):
    """Raised when either JSON layer of the lookup response is unusable."""

    def __init__(self, reason: str, raw: str = "", **kwargs):
        message = f"Malformed Device API response: {reason}"
        context = {"reason": reason, "raw": raw[:512]}
        super().__init__(
            message, error_code="MALFORMED_DEVICE_RESPONSE", context=context, **kwargs
        )


# === Storage Errors ===


class StorageError(LoadoutPublisherError):
    """Base class for object-storage failures."""

    pass


class StorageListError(StorageError, RetryableError):
    """Raised when listing objects under a prefix fails."""

    def __init__(self, bucket: str, prefix: str, reason: str, **kwargs):
        message = f"Failed to list s3://{bucket}/{prefix}: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"bucket": bucket, "prefix": prefix, "reason": reason})
        super().__init__(
            message, error_code="STORAGE_LIST_FAILED", context=context, **kwargs
        )


class SigningError(StorageError, RetryableError):
    """Raised when a presigned URL cannot be generated for a key."""

    def __init__(self, bucket: str, key: str, reason: str, **kwargs):
        message = f"Failed to presign s3://{bucket}/{key}: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"bucket": bucket, "key": key, "reason": reason})
        super().__init__(
            message, error_code="SIGNING_FAILED", context=context, **kwargs
        )


# === Messaging Errors ===


class PublishError(RetryableError):
    """
    Raised when a batch cannot be delivered to the device topic.

    `outcome` is attached by the orchestrator and holds the counts achieved
    before the failing batch.
    """

    outcome: Optional["PublishOutcome"] = None

    def __init__(self, topic: str, reason: str, batch_index: int = -1, **kwargs):
        message = f"Error publishing batch to IoT topic {topic}: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"topic": topic, "reason": reason, "batch_index": batch_index})
        super().__init__(message, error_code="PUBLISH_FAILED", context=context, **kwargs)
        self.batch_index = batch_index


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, LoadoutPublisherError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
