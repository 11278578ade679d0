"""
Gateway exceptions for Botrelay.

Defines the error taxonomy shared by adapters, the normalizer, the
conversation registry, outbound delivery and the agent runner.
"""

from enum import Enum


class FailureType(Enum):
    """Classification of delivery failures for retry decisions."""

    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, platform: str | None = None):
        super().__init__(message)
        self.platform = platform


class NormalizationError(GatewayError):
    """Inbound payload is malformed or missing a required field."""

    def __init__(self, reason: str, platform: str | None = None):
        super().__init__(f"Cannot normalize inbound payload: {reason}", platform)
        self.reason = reason


class DeliveryError(GatewayError):
    """Sending an action through a platform API failed."""

    pass


class TransientNetworkError(DeliveryError):
    """Network-level failure (connection, timeout, 5xx). Retryable."""

    pass


class RateLimited(DeliveryError):
    """Platform rate limit hit. Retryable after `retry_after` seconds."""

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, platform)
        self.retry_after = retry_after


class AuthError(DeliveryError):
    """Platform credentials are invalid or missing. Fatal for the adapter."""

    pass


class AgentError(GatewayError):
    """The language model or one of its tools failed during a run."""

    def __init__(self, message: str, kind: str = "model"):
        super().__init__(message)
        self.kind = kind


class RegistryClosedError(GatewayError):
    """Enqueue attempted while the registry is draining for shutdown."""

    pass


def classify_delivery_error(error: Exception) -> FailureType:
    """
    Classify an exception raised by an adapter send primitive.

    Args:
        error: The exception to classify.

    Returns:
        The failure type classification.
    """
    if isinstance(error, RateLimited):
        return FailureType.RATE_LIMIT
    elif isinstance(error, AuthError):
        return FailureType.AUTH_ERROR
    elif isinstance(error, TransientNetworkError):
        return FailureType.NETWORK_ERROR
    elif isinstance(error, DeliveryError):
        return FailureType.INVALID_REQUEST
    elif isinstance(error, (ConnectionError, TimeoutError)):
        return FailureType.NETWORK_ERROR

    return FailureType.UNKNOWN


def should_retry(failure_type: FailureType) -> bool:
    """
    Determine if a failure type should trigger another delivery attempt.

    Args:
        failure_type: The classified failure type.

    Returns:
        True if the send should be retried.
    """
    # Auth errors need operator action; invalid requests will fail again
    non_retriable = {
        FailureType.AUTH_ERROR,
        FailureType.INVALID_REQUEST,
    }
    return failure_type not in non_retriable
