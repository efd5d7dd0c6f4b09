"""
Error types raised by the booking engine.

Every error carries an ``ErrorCode`` and the HTTP status the API layer
answers with; subclasses declare both as class attributes. Errors that never
reach HTTP (session conflicts inside an SMS turn) still use the same shape so
they log uniformly.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    INTERNAL_ERROR = "ERR_1000"

    BOOKING_REJECTED = "ERR_2002"

    PAYMENT_NOT_FOUND = "ERR_4001"

    SMS_GATEWAY_ERROR = "ERR_5001"
    TELEBIRR_ERROR = "ERR_5002"
    BOOKING_API_ERROR = "ERR_5003"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5004"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5005"

    INVALID_STATE_TRANSITION = "ERR_6001"
    SESSION_NOT_FOUND = "ERR_6002"
    CONCURRENT_SESSION_UPDATE = "ERR_6003"


class AppException(Exception):
    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        """Body returned by the API exception handler"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class PaymentNotFoundError(AppException):
    """A TeleBirr callback named a transaction we never issued"""

    error_code = ErrorCode.PAYMENT_NOT_FOUND
    status_code = 404

    def __init__(self, transaction_id: str):
        super().__init__(
            f"Payment not found: {transaction_id}",
            {"resource": "Payment", "identifier": str(transaction_id)},
        )


class BookingRejectedError(AppException):
    """The booking API refused the booking.

    ``reason`` is the server's own error string; the passenger sees it as-is.
    """

    error_code = ErrorCode.BOOKING_REJECTED
    status_code = 400

    def __init__(self, reason: str, upstream_status: int | None = None):
        super().__init__(f"Booking rejected: {reason}", {"upstream_status": upstream_status})
        self.reason = reason


class DownstreamError(AppException):
    """
    A service the bot depends on (booking API, TeleBirr, SMS gateway) failed.

    Subclasses set ``service``; it is copied into ``details`` so log lines
    and API errors both say which dependency broke.
    """

    error_code = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE
    status_code = 503
    service = "downstream"
    label = "Downstream error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"{self.label}: {message}", details)
        self.details["service"] = self.service

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500,
    ) -> "DownstreamError":
        """Error for a non-2xx answer; the stored body is capped at ``max_response_chars``"""
        status_code = getattr(response, "status_code", None)
        body = getattr(response, "text", "") or ""
        return cls(
            message or f"{operation} returned status {status_code}",
            {
                "operation": operation,
                "status_code": status_code,
                "response_text": body[:max_response_chars],
            },
        )


class SmsGatewayError(DownstreamError):
    error_code = ErrorCode.SMS_GATEWAY_ERROR
    service = "sms_gateway"
    label = "SMS gateway error"


class TelebirrError(DownstreamError):
    error_code = ErrorCode.TELEBIRR_ERROR
    service = "telebirr"
    label = "TeleBirr error"


class BookingApiError(DownstreamError):
    error_code = ErrorCode.BOOKING_API_ERROR
    service = "booking_api"
    label = "Booking API error"


class _NamedServiceError(DownstreamError):
    """Timeout and open-circuit errors name the service per instance"""

    def __init__(self, service: str, message: str, details: dict[str, Any]):
        self.service = service
        self.label = service
        super().__init__(message, details)


class ServiceTimeoutError(_NamedServiceError):
    error_code = ErrorCode.EXTERNAL_SERVICE_TIMEOUT

    def __init__(self, service: str, timeout_seconds: float):
        super().__init__(
            service,
            f"request timed out after {timeout_seconds}s",
            {"timeout_seconds": timeout_seconds},
        )


class CircuitBreakerOpenError(_NamedServiceError):
    def __init__(self, service: str, retry_after_seconds: float):
        super().__init__(
            service,
            "temporarily unavailable (circuit breaker open)",
            {"retry_after_seconds": retry_after_seconds},
        )


class SessionError(AppException):
    """Problems with the per-phone conversation row"""

    status_code = 400


class InvalidStateTransitionError(SessionError):
    """A handler returned a next state the transition table does not allow"""

    error_code = ErrorCode.INVALID_STATE_TRANSITION

    def __init__(self, current_state: str, target_state: str):
        super().__init__(
            f"Invalid transition from '{current_state}' to '{target_state}'",
            {"current_state": current_state, "target_state": target_state},
        )


class SessionNotFoundError(SessionError):
    error_code = ErrorCode.SESSION_NOT_FOUND
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"SMS session not found: {session_id}", {"session_id": session_id})


class ConcurrentSessionUpdateError(SessionError):
    """Another turn for the same phone committed first (version mismatch)"""

    error_code = ErrorCode.CONCURRENT_SESSION_UPDATE
    status_code = 409

    def __init__(self, session_id: str, expected_version: int):
        super().__init__(
            f"SMS session {session_id} was modified concurrently",
            {"session_id": session_id, "expected_version": expected_version},
        )
