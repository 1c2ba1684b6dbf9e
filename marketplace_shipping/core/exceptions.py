"""
Marketplace Shipping Exception Hierarchy

All exceptions carry code, message and details so sync records and logs keep
enough context to retry a failed booking later.

Exception Hierarchy:
    ShippingBridgeError
    ├── ShippingValidationError
    │   └── BookingValidationError
    ├── ConfigurationError
    ├── ResolutionGap
    ├── QuoteFailedError
    ├── PartialSyncFailure
    └── UpstreamError
        ├── UpstreamThrottled
        ├── UpstreamUnavailable
        ├── UpstreamRejected
        └── TokenRefreshError
"""
from typing import Any, Dict, Optional


class ShippingBridgeError(Exception):
    """
    Base exception for all shipping bridge errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
    """

    default_code: str = "SHIPPING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CALLER ERRORS
# =============================================================================

class ShippingValidationError(ShippingBridgeError):
    """Missing destination, variant ids, line items - caller's fault, never retried."""
    default_code = "SHIPPING_VALIDATION_FAILED"


class BookingValidationError(ShippingValidationError):
    """A booking payload is missing a mandatory contact/address field."""
    default_code = "BOOKING_VALIDATION_FAILED"

    def __init__(self, message: str, seller_id: Optional[str] = None, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"seller_id": seller_id, "field": field})
        super().__init__(message, details=details, **kwargs)


class ConfigurationError(ShippingBridgeError):
    """A collaborator is not configured (missing domain/credentials)."""
    default_code = "NOT_CONFIGURED"


# =============================================================================
# DOMAIN ERRORS
# =============================================================================

class ResolutionGap(ShippingBridgeError):
    """A variant, seller or origin could not be resolved. Recorded as skipped."""
    default_code = "RESOLUTION_GAP"


class QuoteFailedError(ShippingBridgeError):
    """Raised instead of an empty rate list when quotes are configured to fail closed."""
    default_code = "QUOTE_FAILED"


class PartialSyncFailure(ShippingBridgeError):
    """One seller group's booking failed; siblings are unaffected."""
    default_code = "PARTIAL_SYNC_FAILURE"

    def __init__(self, message: str, seller_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"seller_id": seller_id})
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

class UpstreamError(ShippingBridgeError):
    """
    Terminal failure talking to an upstream API.

    status is None for transport failures (timeout, connection refused).
    """
    default_code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        response_body: Any = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        **kwargs,
    ):
        self.status = status
        self.response_body = response_body
        details = kwargs.pop("details", {})
        details.update({
            "status": status,
            "response_body": response_body,
            "method": method,
            "url": url,
        })
        super().__init__(message, details=details, **kwargs)


class UpstreamThrottled(UpstreamError):
    """429/408 after the retry budget was spent."""
    default_code = "UPSTREAM_THROTTLED"


class UpstreamUnavailable(UpstreamError):
    """5xx or transport failure after the retry budget was spent."""
    default_code = "UPSTREAM_UNAVAILABLE"


class UpstreamRejected(UpstreamError):
    """Non-throttling 4xx. Never retried."""
    default_code = "UPSTREAM_REJECTED"


class TokenRefreshError(UpstreamError):
    """Bearer token refresh failed. Terminal."""
    default_code = "TOKEN_REFRESH_FAILED"


def upstream_error_for_status(status: Optional[int]) -> type:
    """Map an HTTP status to the matching UpstreamError subclass."""
    if status in (408, 429):
        return UpstreamThrottled
    if status is None or status >= 500:
        return UpstreamUnavailable
    return UpstreamRejected
