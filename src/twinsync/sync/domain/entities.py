"""Domain entities for twin synchronization.

These are pure data structures with no infrastructure dependencies.
They represent the twins, relationships, patches and telemetry events the
synchronization core works with.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Mapping, Optional, Union

PropertyValue = Union[str, int, float, bool, None, dict, list]


@dataclass
class Twin:
    """Domain entity representing a digital twin in the graph service.

    The raw_data field preserves the full service response for diagnosability.
    """

    # $dtId
    id: str

    # $metadata.$model (DTDL model identifier)
    model_id: Optional[str] = None

    # User properties; $-prefixed system keys are excluded
    properties: dict[str, Any] = field(default_factory=dict)

    # $etag, usable as an If-Match precondition
    etag: Optional[str] = None

    metadata: dict[str, Any] = field(default_factory=dict)
    raw_data: dict[str, Any] = field(default_factory=dict)

    def has_property(self, name: str) -> bool:
        """Check if the twin currently carries a property."""
        return name in self.properties


@dataclass
class Relationship:
    """A named directed edge between two twins.

    For incoming relationships of a child, target_id is the child and
    source_id is the candidate parent.
    """

    name: str
    source_id: str
    target_id: Optional[str] = None
    relationship_id: Optional[str] = None


class PatchOp(str, Enum):
    """JSON Patch operations the core sends."""

    ADD = "add"
    REPLACE = "replace"


def property_path(name: str) -> str:
    """Build a JSON pointer for a top-level property (RFC 6901 escaping)."""
    if not name:
        raise ValueError("Property name must not be empty")
    return "/" + name.replace("~", "~0").replace("/", "~1")


def property_name(path: str) -> str:
    """Inverse of property_path for the first pointer segment."""
    return pointer_segments(path)[0]


def pointer_segments(path: str) -> list[str]:
    """Split a JSON pointer into unescaped segments."""
    return [segment.replace("~1", "/").replace("~0", "~") for segment in path[1:].split("/")]


def pointer_exists(document: Any, path: str) -> bool:
    """Whether every segment of path resolves through nested objects."""
    node = document
    for segment in pointer_segments(path):
        if not isinstance(node, Mapping) or segment not in node:
            return False
        node = node[segment]
    return True


@dataclass(frozen=True)
class PatchOperation:
    """One add/replace operation of a PropertyPatch."""

    op: PatchOp
    path: str
    value: Any = None

    def __post_init__(self):
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ValueError(f"Patch path must be a JSON pointer starting with '/', got {self.path!r}")
        if not isinstance(self.op, PatchOp):
            object.__setattr__(self, "op", PatchOp(self.op))

    @property
    def property_name(self) -> str:
        """Top-level property this operation touches."""
        return property_name(self.path)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape expected by the graph service."""
        return {"op": self.op.value, "path": self.path, "value": self.value}


@dataclass
class PropertyPatch:
    """Ordered, atomic set of property add/replace operations.

    Paths are unique within a patch; appending a path twice raises
    ValueError instead of leaving last-write-wins to the service.

    Example:
        patch = PropertyPatch().add("/Moisture", 30.0).replace("/UV", 9.5)
    """

    operations: list[PatchOperation] = field(default_factory=list)

    def __post_init__(self):
        seen: set[str] = set()
        for operation in self.operations:
            if operation.path in seen:
                raise ValueError(f"Duplicate patch path {operation.path!r}")
            seen.add(operation.path)

    def append(self, operation: PatchOperation) -> "PropertyPatch":
        """Append an operation, rejecting duplicate paths."""
        if operation.path in self.paths:
            raise ValueError(f"Duplicate patch path {operation.path!r}")
        self.operations.append(operation)
        return self

    def add(self, path: str, value: Any) -> "PropertyPatch":
        return self.append(PatchOperation(PatchOp.ADD, path, value))

    def replace(self, path: str, value: Any) -> "PropertyPatch":
        return self.append(PatchOperation(PatchOp.REPLACE, path, value))

    @classmethod
    def from_values(
        cls,
        values: Mapping[str, Any],
        op: PatchOp = PatchOp.ADD,
    ) -> "PropertyPatch":
        """Build a patch with one operation per property name."""
        return cls([PatchOperation(op, property_path(name), value) for name, value in values.items()])

    @property
    def paths(self) -> list[str]:
        return [operation.path for operation in self.operations]

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def is_replace_only(self) -> bool:
        """True when re-sending the patch cannot change the outcome."""
        return all(operation.op == PatchOp.REPLACE for operation in self.operations)

    def to_list(self) -> list[dict[str, Any]]:
        """Wire shape: [{"op", "path", "value"}, ...] in order."""
        return [operation.to_dict() for operation in self.operations]

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[PatchOperation]:
        return iter(self.operations)


@dataclass
class TelemetryEvent:
    """A device-originated message carrying field values for a twin.

    Produced by the messaging transport, consumed once by the driver.
    """

    device_id: str
    fields: dict[str, PropertyValue] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    event_id: Optional[str] = None
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Identifier used in log lines."""
        return self.event_id or f"{self.device_id}@{self.timestamp.isoformat() if self.timestamp else 'unknown'}"


# ============================================
# Resolution and Routing
# ============================================


class ResolutionStatus(str, Enum):
    """Outcome of a parent resolution."""

    FOUND = "found"
    NONE_FOUND = "none_found"
    FAILED = "failed"


@dataclass
class ParentResolution:
    """Result of resolving a twin's parent.

    NONE_FOUND is a normal outcome (the graph has no such parent);
    FAILED carries the transport error that prevented an answer.
    """

    child_id: str
    status: ResolutionStatus
    parent_id: Optional[str] = None
    error: Optional[Exception] = None

    @classmethod
    def found(cls, child_id: str, parent_id: str) -> "ParentResolution":
        return cls(child_id=child_id, status=ResolutionStatus.FOUND, parent_id=parent_id)

    @classmethod
    def none_found(cls, child_id: str) -> "ParentResolution":
        return cls(child_id=child_id, status=ResolutionStatus.NONE_FOUND)

    @classmethod
    def failed(cls, child_id: str, error: Exception) -> "ParentResolution":
        return cls(child_id=child_id, status=ResolutionStatus.FAILED, error=error)

    @property
    def is_found(self) -> bool:
        return self.status == ResolutionStatus.FOUND


class SyncTarget(str, Enum):
    """Which twin an event's values are written to."""

    SELF = "self"
    PARENT = "parent"


@dataclass
class SyncRoute:
    """How telemetry events are routed onto twins.

    Attributes:
        target: Patch the device's own twin or its parent
        relationship_name: Relationship linking parent to child
        field_map: Event field -> twin property; None maps every field to
                   the property of the same name
    """

    target: SyncTarget = SyncTarget.SELF
    relationship_name: str = "contains"
    field_map: Optional[dict[str, str]] = None

    @property
    def requires_resolution(self) -> bool:
        return self.target == SyncTarget.PARENT

    def map_fields(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Project event fields onto twin property names."""
        if self.field_map is None:
            return dict(fields)
        return {
            prop: fields[source]
            for source, prop in self.field_map.items()
            if source in fields
        }


# ============================================
# Results
# ============================================


class SyncStage(str, Enum):
    """Driver stages for one event."""

    IDLE = "idle"
    READING = "reading"
    RESOLVING = "resolving"
    PATCHING = "patching"


@dataclass
class SyncOutcome:
    """Result of processing one telemetry event.

    stage is the stage the driver was in when it stopped: PATCHING with
    success=True means the patch was applied.
    """

    event_id: str
    device_id: str
    success: bool
    stage: SyncStage
    started_at: datetime
    completed_at: Optional[datetime] = None
    target_twin_id: Optional[str] = None
    operations: list[dict[str, Any]] = field(default_factory=list)
    skipped: bool = False
    error_details: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and CLI output."""
        return {
            "event_id": self.event_id,
            "device_id": self.device_id,
            "target_twin_id": self.target_twin_id,
            "success": self.success,
            "skipped": self.skipped,
            "stage": self.stage.value,
            "operations": self.operations,
            "errors": self.error_details,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class BatchSyncResult:
    """Aggregate over a batch of independently processed events."""

    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success and not o.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
        }
