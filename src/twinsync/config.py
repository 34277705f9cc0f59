"""Process configuration for the twin synchronization core.

One SyncConfig is built at process start (usually via SyncConfig.from_env())
and handed to the token manager, the HTTP client and the use cases. Nothing
else in the package reads the environment.

Environment Variables:
    ADT_SERVICE_URL: Digital Twins instance URL (required)
    AZURE_TENANT_ID: Azure AD tenant (required unless AZURE_TOKEN_URL is set)
    AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: Service principal (required)
    AZURE_TOKEN_URL: Override for the token endpoint
    ADT_SCOPE, ADT_API_VERSION, ADT_REQUEST_TIMEOUT, ADT_MAX_RETRIES,
    ADT_CIRCUIT_BREAKER: Transport tuning
    SYNC_TARGET, SYNC_PARENT_RELATIONSHIP, SYNC_RESOLVE_STRATEGY,
    SYNC_FIELD_MAP, SYNC_USE_ETAG, SYNC_MAX_CONCURRENT_EVENTS: Routing
    LOG_LEVEL: Logging level for the CLI
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .api.auth import DEFAULT_SCOPE
from .api.client import DEFAULT_API_VERSION
from .api.exceptions import ConfigurationError
from .sync.domain.entities import SyncRoute, SyncTarget

TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"

RESOLVE_STRATEGIES = ("traversal", "query")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            details={"key": name},
            cause=e,
        )


def parse_field_map(raw: Optional[str]) -> Optional[dict[str, str]]:
    """Parse "Field:Property,Other:Prop" into a field map.

    A bare name ("Moisture") maps to the property of the same name.
    Returns None for an empty value.
    """
    if not raw or not raw.strip():
        return None

    field_map: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        source, _, target = entry.partition(":")
        source = source.strip()
        target = target.strip() or source
        if not source:
            raise ConfigurationError(
                f"Invalid SYNC_FIELD_MAP entry {entry!r}",
                details={"key": "SYNC_FIELD_MAP"},
            )
        field_map[source] = target
    return field_map or None


@dataclass
class SyncConfig:
    """Explicit configuration for one twinsync process.

    Attributes:
        service_url: Digital Twins instance URL (https://<name>.api.<region>.digitaltwins.azure.net)
        client_id: Azure AD application (client) ID
        client_secret: Azure AD client secret
        token_url: OAuth2 token endpoint
        scope: OAuth2 scope for the data plane
        api_version: Digital Twins REST api-version
        request_timeout: Total per-request timeout in seconds
        max_retries: Attempts for token refresh / rate-limit / transient read failures
        enable_circuit_breaker: Fail fast when the service keeps failing
        route: How telemetry events map onto twins
        resolve_strategy: "traversal" (incoming relationships) or "query"
        use_etag: Send the twin's etag as If-Match when patching
        max_concurrent_events: Bound for concurrently processed events
        log_level: Logging level name for the CLI
    """

    service_url: str
    client_id: str
    client_secret: str
    token_url: str
    scope: str = DEFAULT_SCOPE
    api_version: str = DEFAULT_API_VERSION
    request_timeout: float = 60.0
    max_retries: int = 3
    enable_circuit_breaker: bool = True
    route: SyncRoute = field(default_factory=SyncRoute)
    resolve_strategy: str = "traversal"
    use_etag: bool = False
    max_concurrent_events: int = 10
    log_level: str = "INFO"

    def __post_init__(self):
        self.service_url = (self.service_url or "").rstrip("/")
        self.validate()

    def validate(self) -> None:
        """Check required values and enumerations.

        Raises:
            ConfigurationError: On missing or invalid settings
        """
        missing = []
        if not self.service_url:
            missing.append("ADT_SERVICE_URL")
        if not self.client_id:
            missing.append("AZURE_CLIENT_ID")
        if not self.client_secret:
            missing.append("AZURE_CLIENT_SECRET")
        if not self.token_url:
            missing.append("AZURE_TOKEN_URL")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                missing_keys=missing,
            )

        if not self.service_url.startswith(("https://", "http://")):
            raise ConfigurationError(
                f"ADT_SERVICE_URL must be an http(s) URL, got {self.service_url!r}",
                details={"key": "ADT_SERVICE_URL"},
            )
        if self.resolve_strategy not in RESOLVE_STRATEGIES:
            raise ConfigurationError(
                f"SYNC_RESOLVE_STRATEGY must be one of {RESOLVE_STRATEGIES}, "
                f"got {self.resolve_strategy!r}",
                details={"key": "SYNC_RESOLVE_STRATEGY"},
            )
        if self.max_retries < 1:
            raise ConfigurationError(
                "ADT_MAX_RETRIES must be at least 1",
                details={"key": "ADT_MAX_RETRIES"},
            )
        if self.max_concurrent_events < 1:
            raise ConfigurationError(
                "SYNC_MAX_CONCURRENT_EVENTS must be at least 1",
                details={"key": "SYNC_MAX_CONCURRENT_EVENTS"},
            )

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "SyncConfig":
        """Build the configuration from environment variables.

        Args:
            dotenv: Load a .env file first (values already set win)

        Raises:
            ConfigurationError: On missing or invalid settings
        """
        if dotenv:
            load_dotenv()

        token_url = os.getenv("AZURE_TOKEN_URL")
        tenant_id = os.getenv("AZURE_TENANT_ID")
        if not token_url and tenant_id:
            token_url = TOKEN_URL_TEMPLATE.format(tenant_id=tenant_id)

        target_raw = os.getenv("SYNC_TARGET", SyncTarget.SELF.value).strip().lower()
        try:
            target = SyncTarget(target_raw)
        except ValueError as e:
            raise ConfigurationError(
                f"SYNC_TARGET must be 'self' or 'parent', got {target_raw!r}",
                details={"key": "SYNC_TARGET"},
                cause=e,
            )

        route = SyncRoute(
            target=target,
            relationship_name=os.getenv("SYNC_PARENT_RELATIONSHIP", "contains"),
            field_map=parse_field_map(os.getenv("SYNC_FIELD_MAP")),
        )

        timeout_raw = os.getenv("ADT_REQUEST_TIMEOUT", "60")
        try:
            request_timeout = float(timeout_raw)
        except ValueError as e:
            raise ConfigurationError(
                f"ADT_REQUEST_TIMEOUT must be a number, got {timeout_raw!r}",
                details={"key": "ADT_REQUEST_TIMEOUT"},
                cause=e,
            )

        return cls(
            service_url=os.getenv("ADT_SERVICE_URL", ""),
            client_id=os.getenv("AZURE_CLIENT_ID", ""),
            client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            token_url=token_url or "",
            scope=os.getenv("ADT_SCOPE", DEFAULT_SCOPE),
            api_version=os.getenv("ADT_API_VERSION", DEFAULT_API_VERSION),
            request_timeout=request_timeout,
            max_retries=_env_int("ADT_MAX_RETRIES", "3"),
            enable_circuit_breaker=_env_bool("ADT_CIRCUIT_BREAKER", "true"),
            route=route,
            resolve_strategy=os.getenv("SYNC_RESOLVE_STRATEGY", "traversal").strip().lower(),
            use_etag=_env_bool("SYNC_USE_ETAG", "false"),
            max_concurrent_events=_env_int("SYNC_MAX_CONCURRENT_EVENTS", "10"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def __repr__(self) -> str:
        # no client_secret
        return (
            f"SyncConfig("
            f"service_url={self.service_url!r}, "
            f"client_id={self.client_id!r}, "
            f"api_version={self.api_version!r}, "
            f"target={self.route.target.value}, "
            f"relationship={self.route.relationship_name!r}, "
            f"strategy={self.resolve_strategy}, "
            f"use_etag={self.use_etag})"
        )
