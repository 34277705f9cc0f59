"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Twins, relationships, patches, telemetry events and results
- Ports: Abstract interfaces defining contracts for adapters

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
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
    property_path,
)
from .ports import (
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
    "property_path",
    # Event and Routing Entities
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
