#!/usr/bin/env python3
"""Exception Hierarchy for the Digital Twins synchronization core.

This module provides a structured exception hierarchy for handling errors
raised while talking to the digital-twin graph service: configuration,
authentication, API and network failures.

Design Principles:
    - All exceptions inherit from TwinSyncError base class
    - Exceptions preserve context (original error, details)
    - Callers can tell "the twin does not exist" (NotFoundError) apart from
      "the service could not be reached or refused" (TransportError)

Exception Hierarchy:
    TwinSyncError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── NotFoundError (twin or relationship unknown)
    └── TransportError (network/auth/service failure)
        ├── AuthenticationError
        │   ├── TokenFetchError
        │   ├── TokenExpiredError
        │   └── InvalidCredentialsError
        ├── APIError
        │   ├── RateLimitError
        │   ├── ValidationError
        │   ├── PreconditionFailedError
        │   └── ServerError
        ├── NetworkError
        │   ├── ConnectionError
        │   └── TimeoutError
        ├── MalformedResponseError
        └── CircuitOpenError
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class TwinSyncError(Exception):
    """Base exception for all twin synchronization errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NOT_FOUND")
        details: Additional context as a dictionary
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

        # Chain the original exception if provided
        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(TwinSyncError):
    """Raised when configuration is missing or invalid.

    These errors require fixing configuration before retry.
    """

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.missing_keys = missing_keys or []


# ============================================
# Not Found (the named twin/relationship does not exist)
# ============================================

class NotFoundError(TwinSyncError):
    """Raised when the requested twin or relationship does not exist (HTTP 404)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id
        if endpoint:
            details["endpoint"] = endpoint
        if response_body:
            details["response_body"] = response_body[:500]

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.status_code = 404
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.endpoint = endpoint
        self.response_body = response_body


# ============================================
# Transport Errors (everything else on the wire)
# ============================================

class TransportError(TwinSyncError):
    """Base class for communication failures with the graph service.

    Covers timeouts, authentication failures, service-side errors and
    malformed responses.
    """


class AuthenticationError(TransportError):
    """Base class for authentication-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class TokenFetchError(AuthenticationError):
    """Raised when token cannot be fetched from the identity provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 1,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code:
            details["status_code"] = status_code
        details["attempts"] = attempts
        super().__init__(
            message,
            code="TOKEN_FETCH_ERROR",
            details=details,
            **kwargs,
        )


class TokenExpiredError(AuthenticationError):
    """Raised when the service rejects the access token (HTTP 401)."""

    def __init__(self, message: str = "Access token has expired", **kwargs):
        super().__init__(message, code="TOKEN_EXPIRED", **kwargs)


class InvalidCredentialsError(AuthenticationError):
    """Raised when the client credentials are rejected."""

    def __init__(
        self,
        message: str = "Invalid client credentials",
        **kwargs,
    ):
        super().__init__(
            message,
            code="INVALID_CREDENTIALS",
            recoverable=False,  # Can't recover without new credentials
            **kwargs,
        )


# ============================================
# API Errors
# ============================================

class APIError(TransportError):
    """Base class for API response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: API endpoint that was called
        response_body: Raw response body (may be truncated)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            # Truncate large response bodies
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        kwargs.setdefault("recoverable", status_code in (429, 500, 502, 503, 504))
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header)
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after or 60


class ValidationError(APIError):
    """Raised when the service rejects a request (HTTP 400/422).

    Adding a property that already exists on a twin lands here.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 400)
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class PreconditionFailedError(APIError):
    """Raised when an If-Match precondition does not hold (HTTP 412)."""

    def __init__(
        self,
        message: str = "Precondition failed",
        etag: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 412)
        details = kwargs.pop("details", {})
        if etag:
            details["etag"] = etag
        super().__init__(
            message,
            code="PRECONDITION_FAILED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.etag = etag


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,  # Server errors are usually transient
            **kwargs,
        )


# ============================================
# Network Errors (Usually Recoverable)
# ============================================

class NetworkError(TransportError):
    """Base class for network-related errors.

    These errors are typically transient and recoverable with retry.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to server fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


class MalformedResponseError(TransportError):
    """Raised when the service answers with a body we cannot interpret."""

    def __init__(
        self,
        message: str = "Malformed response from service",
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(
            message,
            code="MALFORMED_RESPONSE",
            details=details,
            recoverable=False,
            **kwargs,
        )


class CircuitOpenError(TransportError):
    """Raised when circuit breaker is open and requests are being rejected.

    Attributes:
        reset_at: When the circuit breaker will attempt to close
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=True,  # Will auto-recover when circuit closes
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "TwinSyncError",
    # Configuration
    "ConfigurationError",
    # Not found
    "NotFoundError",
    # Transport
    "TransportError",
    # Authentication
    "AuthenticationError",
    "TokenFetchError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # API
    "APIError",
    "RateLimitError",
    "ValidationError",
    "PreconditionFailedError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "MalformedResponseError",
    "CircuitOpenError",
]
