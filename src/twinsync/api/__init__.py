"""Digital Twins service access.

This package provides the HTTP client, the OAuth2 credential and the error
taxonomy used to talk to an Azure Digital Twins instance.

Classes:
    DigitalTwinsClient: HTTP client with paging, token refresh and circuit breaker
    TokenManager: OAuth2 client-credentials token cache
    CircuitBreaker: Fail fast when the service keeps failing

Exceptions:
    TwinSyncError: Base exception
    ConfigurationError: Missing or invalid configuration
    NotFoundError: Twin or relationship does not exist
    TransportError: Network, authentication or service failure
"""
from .auth import CachedToken, TokenManager
from .client import DigitalTwinsClient
from .exceptions import (
    APIError,
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    InvalidCredentialsError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TokenExpiredError,
    TokenFetchError,
    TransportError,
    TwinSyncError,
    ValidationError,
)
from .resilience import CircuitBreaker, CircuitState, process_concurrent

__all__ = [
    # Auth
    "CachedToken",
    "TokenManager",
    # Client
    "DigitalTwinsClient",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
    "process_concurrent",
    # Exceptions - Base
    "TwinSyncError",
    "ConfigurationError",
    "NotFoundError",
    "TransportError",
    # Exceptions - Auth
    "AuthenticationError",
    "TokenFetchError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # Exceptions - API
    "APIError",
    "RateLimitError",
    "ValidationError",
    "PreconditionFailedError",
    "ServerError",
    # Exceptions - Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "MalformedResponseError",
    "CircuitOpenError",
]
