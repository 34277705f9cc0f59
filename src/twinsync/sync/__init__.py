"""Sync module - Clean Architecture implementation of twin synchronization.

Reads twins, resolves parents and applies property patches on a digital
twin graph, and relays device telemetry into twin property updates.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Business logic orchestration
    adapters/   - Infrastructure implementations (Azure Digital Twins, IoT Hub)
"""

from .domain.entities import (
    BatchSyncResult,
    ParentResolution,
    PatchOp,
    PatchOperation,
    PropertyPatch,
    Relationship,
    ResolutionStatus,
    SyncOutcome,
    SyncRoute,
    SyncStage,
    SyncTarget,
    TelemetryEvent,
    Twin,
)
from .domain.ports import (
    IParentResolver,
    IPropertyPatcher,
    ITelemetryMapper,
    ITwinGraph,
    ITwinMapper,
    ITwinReader,
)

__all__ = [
    # Graph Entities
    "Twin",
    "Relationship",
    # Patch Entities
    "PatchOp",
    "PatchOperation",
    "PropertyPatch",
    # Telemetry and Routing
    "TelemetryEvent",
    "SyncRoute",
    "SyncTarget",
    "ParentResolution",
    "ResolutionStatus",
    # Result Entities
    "SyncStage",
    "SyncOutcome",
    "BatchSyncResult",
    # Ports
    "ITwinGraph",
    "ITwinMapper",
    "ITelemetryMapper",
    "ITwinReader",
    "IParentResolver",
    "IPropertyPatcher",
]
