#!/usr/bin/env python3
"""OAuth2 Token Management for the Azure Digital Twins data plane.

This module provides concurrency-safe OAuth2 token management using the
client credentials grant against the Azure AD v2 token endpoint.

Features:
    - Automatic token caching with dynamic expiration buffer (10% of TTL, max 5min)
    - Refresh serialized with asyncio.Lock (one fetch for many concurrent events)
    - Exponential backoff retry on failures (1s, 2s, 4s)
    - Transparent token refresh on 401 responses (see DigitalTwinsClient)

Security Notes:
    - Tokens are cached in memory only (never persisted to disk)
    - Token ID in log output is a SHA-256 hash prefix, never the token

Example:
    >>> manager = TokenManager.from_config(config)
    >>> token = await manager.get_token()
"""
import asyncio
import hashlib
import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import aiohttp

from .exceptions import (
    ConfigurationError,
    ConnectionError,
    InvalidCredentialsError,
    NetworkError,
    TimeoutError,
    TokenFetchError,
)

if TYPE_CHECKING:
    from ..config import SyncConfig

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "https://digitaltwins.azure.net/.default"


@dataclass
class CachedToken:
    """Container for cached OAuth2 access tokens.

    Attributes:
        access_token: The OAuth2 bearer token string.
        expires_at: Unix timestamp when the token expires.
        token_type: Token type, typically "Bearer".
        expires_in: Original TTL in seconds (for dynamic buffer calculation).
    """
    access_token: str
    expires_at: float
    token_type: Optional[str] = "Bearer"
    expires_in: int = 3599

    MAX_BUFFER_SECONDS = 300
    MIN_BUFFER_SECONDS = 30

    @property
    def token_id(self) -> str:
        """Get a safe identifier for logging (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.access_token.encode()).hexdigest()[:8]

    @property
    def _buffer_seconds(self) -> float:
        """Calculate dynamic buffer with jitter.

        Uses 10% of TTL capped between MIN_BUFFER and MAX_BUFFER,
        plus random jitter (±10%) so processes don't refresh in lockstep.
        """
        base_buffer = self.expires_in * 0.1
        buffer = max(self.MIN_BUFFER_SECONDS, min(base_buffer, self.MAX_BUFFER_SECONDS))
        jitter = buffer * random.uniform(-0.1, 0.1)
        return buffer + jitter

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired (with dynamic safety buffer + jitter)."""
        return time.time() >= (self.expires_at - self._buffer_seconds)


class TokenManager:
    """OAuth2 client-credentials token manager with automatic refresh.

    This is the opaque credential handed to DigitalTwinsClient. Tokens are
    cached and refreshed before expiration; concurrent callers share one
    refresh.

    Attributes:
        client_id: Azure AD application (client) ID.
        client_secret: Azure AD client secret.
        token_url: OAuth2 token endpoint.
        scope: Requested scope (the Digital Twins data plane by default).
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_url: Optional[str],
        scope: str = DEFAULT_SCOPE,
    ):
        missing = []
        if not client_id:
            missing.append("AZURE_CLIENT_ID")
        if not client_secret:
            missing.append("AZURE_CLIENT_SECRET")
        if not token_url:
            missing.append("AZURE_TOKEN_URL")
        if missing:
            raise ConfigurationError(
                f"Missing required credentials: {', '.join(missing)}",
                missing_keys=missing,
            )

        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.scope = scope

        self._cached_token: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: "SyncConfig") -> "TokenManager":
        """Build a token manager from the process configuration."""
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            token_url=config.token_url,
            scope=config.scope,
        )

    async def get_token(self) -> str:
        """Get a valid access token, fetching or refreshing as needed.

        Returns:
            str: The access token string

        Raises:
            TokenFetchError: If token cannot be obtained after retries
            InvalidCredentialsError: If the identity provider rejects the client
        """
        if self._cached_token and not self._cached_token.is_expired:
            return self._cached_token.access_token

        async with self._lock:
            if self._cached_token and not self._cached_token.is_expired:
                return self._cached_token.access_token

            self._cached_token = await self._fetch_token()
            return self._cached_token.access_token

    async def _fetch_token(self, max_retries: int = 3) -> CachedToken:
        """Fetch a new access token from the identity provider.

        Args:
            max_retries: Maximum number of retry attempts

        Returns:
            CachedToken with the new access token

        Raises:
            TokenFetchError: If token cannot be fetched after retries
            InvalidCredentialsError: If credentials are invalid (401)
        """
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
        }

        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.token_url,
                        data=payload,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=30),
                    ) as response:
                        if response.status == 200:
                            data = await response.json()
                            if not isinstance(data, dict):
                                raise TokenFetchError(
                                    "Token response is not a JSON object",
                                    status_code=200,
                                    attempts=attempt,
                                    details={"response_type": type(data).__name__},
                                )

                            access_token = data.get("access_token")
                            if not access_token:
                                raise TokenFetchError(
                                    "Token response missing access_token",
                                    status_code=200,
                                    attempts=attempt,
                                    details={"response_keys": list(data.keys())},
                                )

                            expires_in = int(data.get("expires_in", 3599))
                            token = CachedToken(
                                access_token=access_token,
                                expires_at=time.time() + expires_in,
                                token_type=data.get("token_type", "Bearer"),
                                expires_in=expires_in,
                            )
                            logger.info(
                                f"Token fetched (id={token.token_id}), expires in {expires_in}s"
                            )
                            return token

                        error_text = await response.text()

                        if response.status == 401:
                            raise InvalidCredentialsError(
                                "Invalid client credentials",
                                details={"response": error_text[:200]},
                            )

                        if response.status == 400:
                            # Azure AD reports bad secrets and unknown clients as 400
                            raise TokenFetchError(
                                f"Invalid token request: {error_text[:200]}",
                                status_code=400,
                                attempts=attempt,
                            )

                        last_error = TokenFetchError(
                            f"Token server returned HTTP {response.status}",
                            status_code=response.status,
                            attempts=attempt,
                            details={"response": error_text[:200]},
                        )
                        logger.warning(
                            f"Token fetch attempt {attempt}/{max_retries} failed: "
                            f"HTTP {response.status}"
                        )

            except aiohttp.ClientConnectionError as e:
                last_error = ConnectionError(
                    f"Failed to connect to token server: {e}",
                    host=self.token_url,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: "
                    f"Connection error - {e}"
                )

            except asyncio.TimeoutError as e:
                last_error = TimeoutError(
                    "Token request timed out",
                    timeout_seconds=30,
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: Timeout"
                )

            except aiohttp.ClientError as e:
                last_error = NetworkError(
                    f"Network error fetching token: {e}",
                    cause=e,
                )
                logger.warning(
                    f"Token fetch attempt {attempt}/{max_retries} failed: {e}"
                )

            if attempt < max_retries:
                wait_time = 2 ** (attempt - 1)  # 1s, 2s, 4s
                logger.debug(f"Waiting {wait_time}s before retry")
                await asyncio.sleep(wait_time)

        raise TokenFetchError(
            f"Failed to fetch token after {max_retries} attempts",
            attempts=max_retries,
            cause=last_error,
        )

    def invalidate(self):
        """Invalidate the cached token."""
        self._cached_token = None

