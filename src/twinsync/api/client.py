#!/usr/bin/env python3
"""HTTP Client for the Azure Digital Twins data-plane REST API.

This module provides a reusable, composable HTTP client that handles the
common concerns of talking to a Digital Twins instance:

    - OAuth2 authentication via TokenManager
    - Automatic token refresh on 401 responses
    - Rate limit handling on 429 responses (Retry-After)
    - Backoff on transient failures for reads and queries
    - nextLink and continuationToken pagination
    - Connection pooling via shared aiohttp session
    - Circuit breaker for resilience against service outages
    - Error handling with typed exceptions

Design Philosophy:
    This client knows HOW to talk to the service, but not WHAT to fetch.
    It has no knowledge of twins or relationships beyond paging shapes;
    that knowledge belongs in AzureDigitalTwinsGraph, which composes it.

Usage:
    async with DigitalTwinsClient(token_manager, base_url) as client:
        twin = await client.get("/digitaltwins/serra01")

        async for page in client.paginate("/digitaltwins/serra01/incomingrelationships"):
            for rel in page:
                ...

        await client.patch("/digitaltwins/serra01", [{"op": "add", "path": "/Moisture", "value": 30.0}])
"""
import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional, Union

import aiohttp

from .auth import TokenManager
from .exceptions import (
    APIError,
    ConfigurationError,
    ConnectionError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)
from .resilience import CircuitBreaker

if TYPE_CHECKING:
    from ..config import SyncConfig

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-10-31"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"

# Longest we honour a Retry-After before giving up on the attempt
MAX_RETRY_AFTER_SECONDS = 60

JSONBody = Union[dict[str, Any], list[Any]]


class DigitalTwinsClient:
    """Async HTTP client for the Azure Digital Twins data plane.

    This client is designed to be used as an async context manager to ensure
    proper session lifecycle management:

        async with DigitalTwinsClient(token_manager, base_url) as client:
            data = await client.get("/digitaltwins/serra01")

    An existing aiohttp.ClientSession may be injected (the transport); the
    client then leaves closing it to the owner.

    Attributes:
        token_manager: TokenManager supplying bearer tokens (the credential)
        base_url: Instance URL, e.g. "https://myadt.api.weu.digitaltwins.azure.net"
        api_version: api-version query parameter sent with every request
    """

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: str,
        api_version: str = DEFAULT_API_VERSION,
        request_timeout: float = 60.0,
        max_retries: int = 3,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the DigitalTwinsClient.

        Args:
            token_manager: TokenManager instance for authentication
            base_url: Digital Twins instance URL
            api_version: REST api-version
            request_timeout: Total timeout per request in seconds
            max_retries: Attempts per request for retryable failures
            enable_circuit_breaker: Enable circuit breaker for resilience
            circuit_failure_threshold: Failures before circuit opens
            circuit_timeout: Seconds before circuit attempts to close
            session: Optional externally owned aiohttp session

        Raises:
            ConfigurationError: If base_url is empty.
        """
        self.token_manager = token_manager
        self.base_url = (base_url or "").rstrip("/")

        if not self.base_url:
            raise ConfigurationError(
                "Base URL is required. Set ADT_SERVICE_URL.",
                missing_keys=["ADT_SERVICE_URL"],
            )

        self.api_version = api_version
        self.request_timeout = request_timeout
        self.max_retries = max(1, max_retries)

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

        self._circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self._circuit_breaker = CircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout=circuit_timeout,
                name="digital_twins",
            )

    @classmethod
    def from_config(
        cls,
        config: "SyncConfig",
        token_manager: Optional[TokenManager] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "DigitalTwinsClient":
        """Build a client from the process configuration."""
        return cls(
            token_manager=token_manager or TokenManager.from_config(config),
            base_url=config.service_url,
            api_version=config.api_version,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries,
            enable_circuit_breaker=config.enable_circuit_breaker,
            session=session,
        )

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "DigitalTwinsClient":
        """Enter async context: create the HTTP session if none was injected."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(
                    limit=20,
                    limit_per_host=20,
                ),
                timeout=aiohttp.ClientTimeout(
                    total=self.request_timeout,
                    connect=10,
                ),
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session if we created it."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    async def _get_auth_headers(self) -> dict[str, str]:
        """Get authorization headers with current token."""
        token = await self.token_manager.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _build_url(self, endpoint: str) -> tuple[str, bool]:
        """Resolve an endpoint or absolute nextLink; report if it is absolute."""
        if endpoint.startswith(("https://", "http://")):
            return endpoint, True
        return f"{self.base_url}{endpoint}", False

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[JSONBody] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make a single HTTP request (no retry logic).

        Args:
            method: HTTP method (GET, POST, PATCH)
            endpoint: API path (e.g., "/digitaltwins/serra01") or absolute nextLink
            params: Query parameters
            json_body: JSON request body (for POST/PATCH)
            extra_headers: Headers overriding the defaults (Content-Type, If-Match)

        Returns:
            Parsed JSON response ({} for empty bodies such as 204)

        Raises:
            APIError / NotFoundError: If response status is not 2xx
            RuntimeError: If called outside of async context manager
            ConnectionError / TimeoutError / NetworkError: Transport failures
            MalformedResponseError: If the body is not JSON
        """
        if not self._session:
            raise RuntimeError(
                "DigitalTwinsClient must be used as async context manager: "
                "async with DigitalTwinsClient(...) as client:"
            )

        url, absolute = self._build_url(endpoint)
        query_params = dict(params or {})
        if not absolute:
            query_params.setdefault("api-version", self.api_version)

        try:
            headers = await self._get_auth_headers()
            if extra_headers:
                headers.update(extra_headers)

            async with self._session.request(
                method=method,
                url=url,
                headers=headers,
                params=query_params or None,
                data=json.dumps(json_body) if json_body is not None else None,
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=endpoint,
                        response_body=error_text,
                        retry_after=response.headers.get("Retry-After"),
                    )

                if response.status == 204:
                    return {}

                body = await response.text()
                if not body:
                    return {}
                try:
                    return json.loads(body)
                except ValueError as e:
                    raise MalformedResponseError(
                        f"{method} {endpoint} returned a non-JSON body",
                        endpoint=endpoint,
                        cause=e,
                    )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out",
                timeout_seconds=self.request_timeout,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                cause=e,
            )

    @staticmethod
    def _error_message(response_body: str) -> Optional[str]:
        """Pull "code: message" out of the service's error envelope."""
        try:
            payload = json.loads(response_body)
        except (TypeError, ValueError):
            return None
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return None
        code = error.get("code")
        message = error.get("message")
        if code and message:
            return f"{code}: {message}"
        return message or code

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
        retry_after: Optional[str] = None,
    ) -> Exception:
        """Create appropriate exception based on status code."""
        service_message = self._error_message(response_body)
        suffix = f": {service_message}" if service_message else ""

        if status == 401:
            return TokenExpiredError(
                "Access token expired or invalid",
                details={"endpoint": endpoint},
            )

        if status == 404:
            return NotFoundError(
                resource_type="Resource",
                resource_id=endpoint,
                endpoint=endpoint,
                response_body=response_body,
            )

        if status == 412:
            return PreconditionFailedError(
                f"Precondition failed for {method} {endpoint}{suffix}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 429:
            try:
                wait = int(retry_after) if retry_after else None
            except ValueError:
                wait = None
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=wait,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status in (400, 422):
            return ValidationError(
                f"Validation failed for {method} {endpoint}{suffix}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"{method} {endpoint} failed{suffix}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[JSONBody] = None,
        extra_headers: Optional[dict[str, str]] = None,
        retry_transient: bool = True,
    ) -> Any:
        """Make an HTTP request with retry and circuit breaker.

        This method wraps _request() with resilience logic:
            - Circuit breaker: Fail fast if the service is down
            - 401 Unauthorized: Invalidate token, refresh, retry
            - 429 Rate Limited: Wait for Retry-After, retry
            - 5xx / network errors: Exponential backoff retry, only when
              retry_transient is set (a failed PATCH may already have landed)

        Raises:
            CircuitOpenError: If circuit breaker is open
            NotFoundError: Immediately, never retried
            TransportError subclasses: If request fails after all retries
        """
        if self._circuit_breaker:
            await self._circuit_breaker.before_call()

        last_error: Optional[Exception] = None
        backoff_delay = 1.0

        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._request(method, endpoint, params, json_body, extra_headers)

                if self._circuit_breaker:
                    await self._circuit_breaker.record_success()

                return result

            except TokenExpiredError as e:
                last_error = e
                logger.warning(f"Token rejected, refreshing (attempt {attempt}/{self.max_retries})")
                self.token_manager.invalidate()
                continue

            except RateLimitError as e:
                last_error = e
                if attempt < self.max_retries:
                    wait_time = min(e.retry_after, MAX_RETRY_AFTER_SECONDS)
                    logger.warning(
                        f"Rate limited, waiting {wait_time}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)
                continue

            except (ServerError, NetworkError) as e:
                last_error = e
                if retry_transient and attempt < self.max_retries:
                    logger.warning(
                        f"Transient failure on {method} {endpoint}: {e}. "
                        f"Retrying in {backoff_delay}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(backoff_delay)
                    backoff_delay = min(backoff_delay * 2, 60.0)
                    continue

                if self._circuit_breaker:
                    await self._circuit_breaker.record_failure(e)
                raise

            except (NotFoundError, ValidationError, PreconditionFailedError, MalformedResponseError):
                # Non-retryable: the service answered, the request was wrong
                raise

        if self._circuit_breaker and last_error:
            await self._circuit_breaker.record_failure(last_error)

        if last_error:
            raise last_error

        raise APIError(
            "Request failed after all retries",
            status_code=0,
            endpoint=endpoint,
            method=method,
        )

    @property
    def circuit_status(self) -> Optional[dict[str, Any]]:
        """Get circuit breaker status for monitoring."""
        if self._circuit_breaker:
            return self._circuit_breaker.get_status()
        return None

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a GET request.

        Args:
            endpoint: API path (e.g., "/digitaltwins/serra01") or absolute link
            params: Query parameters

        Returns:
            Parsed JSON response
        """
        return await self._request_with_retry("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_body: JSONBody,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a POST request used for read-only operations such as /query."""
        return await self._request_with_retry("POST", endpoint, params=params, json_body=json_body)

    async def patch(
        self,
        endpoint: str,
        operations: list[dict[str, Any]],
        if_match: Optional[str] = None,
    ) -> Any:
        """Send a JSON Patch document.

        Transient failures are not retried: the service may have applied
        the patch before the connection dropped.

        Args:
            endpoint: Twin path
            operations: JSON Patch operations, sent verbatim
            if_match: Optional etag precondition

        Returns:
            Parsed JSON response ({} for 204 No Content)
        """
        headers = {"Content-Type": JSON_PATCH_CONTENT_TYPE}
        if if_match:
            headers["If-Match"] = if_match
        return await self._request_with_retry(
            "PATCH",
            endpoint,
            json_body=operations,
            extra_headers=headers,
            retry_transient=False,
        )

    # ----------------------------------------
    # Pagination Methods
    # ----------------------------------------

    async def paginate(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> AsyncIterator[list[dict]]:
        """Iterate a list endpoint page by page, following nextLink.

        Pages are only requested as the caller consumes them, so a
        consumer that stops early never fetches the remaining pages.

        Yields:
            The "value" list of each page
        """
        next_endpoint: Optional[str] = endpoint
        next_params = params
        pages_fetched = 0

        while next_endpoint:
            data = await self.get(next_endpoint, params=next_params)
            pages_fetched += 1

            items = data.get("value", []) if isinstance(data, dict) else []
            logger.debug(f"Fetched page {pages_fetched} of {endpoint}: {len(items)} items")
            if items:
                yield items

            next_endpoint = data.get("nextLink") if isinstance(data, dict) else None
            # nextLink already carries the query string
            next_params = None

    async def query_pages(self, query: str) -> AsyncIterator[list[dict]]:
        """Run a graph query, following continuationToken.

        Yields:
            The "value" rows of each result page
        """
        body: dict[str, Any] = {"query": query}
        pages_fetched = 0

        while True:
            data = await self.post("/query", json_body=body)
            pages_fetched += 1

            if not isinstance(data, dict):
                raise MalformedResponseError("Query response is not an object", endpoint="/query")

            rows = data.get("value", [])
            logger.debug(f"Query page {pages_fetched}: {len(rows)} rows")
            if rows:
                yield rows

            token = data.get("continuationToken")
            if not token:
                break
            body = {"query": query, "continuationToken": token}
