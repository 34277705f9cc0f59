"""Use cases layer - Business logic orchestration for twin synchronization.

This layer contains use case classes built on the graph port (ITwinGraph):
- Read a twin's property bag (FetchTwinUseCase)
- Resolve a twin's parent by traversal or query
- Apply property patches (ApplyPatchUseCase)
- Relay telemetry events into twin updates (SyncTelemetryUseCase)

Use cases depend only on ports, not concrete implementations.
"""

from .apply_patch import ApplyPatchUseCase
from .fetch_twin import FetchTwinUseCase
from .resolve_parent import QueryParentResolver, RelationshipTraversalResolver
from .sync_telemetry import SyncTelemetryUseCase

__all__ = [
    "ApplyPatchUseCase",
    "FetchTwinUseCase",
    "QueryParentResolver",
    "RelationshipTraversalResolver",
    "SyncTelemetryUseCase",
]
