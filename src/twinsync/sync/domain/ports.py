"""Port interfaces for twin synchronization.

Ports define the contracts between the use cases and the infrastructure.
These are abstract base classes that adapters (or use cases, for the
reader/resolver/patcher capabilities the driver composes) must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Mapping, Optional, Union

from .entities import (
    ParentResolution,
    PropertyPatch,
    Relationship,
    TelemetryEvent,
    Twin,
)


class ITwinGraph(ABC):
    """Port for the digital-twin graph service.

    Implementations translate service failures into NotFoundError
    (unknown twin) or TransportError (everything else).
    """

    @abstractmethod
    async def get_twin(self, twin_id: str) -> Twin:
        """Fetch one twin.

        Raises:
            NotFoundError: If the twin does not exist
            TransportError: On any other communication failure
        """
        ...

    @abstractmethod
    def list_incoming_relationships(self, twin_id: str) -> AsyncIterator[Relationship]:
        """Lazily iterate the relationships pointing at a twin.

        Pages are fetched on demand; closing the iterator early stops
        further page requests.
        """
        ...

    @abstractmethod
    def query(self, query: str) -> AsyncIterator[Twin]:
        """Lazily iterate the twins returned by a graph query."""
        ...

    @abstractmethod
    async def update_twin(
        self,
        twin_id: str,
        patch: PropertyPatch,
        if_match: Optional[str] = None,
    ) -> None:
        """Apply a patch atomically.

        Args:
            twin_id: Twin to update
            patch: Operations, applied all-or-nothing by the service
            if_match: Optional etag precondition
        """
        ...


class ITwinMapper(ABC):
    """Port for mapping between graph service payloads and domain entities."""

    @abstractmethod
    def map_twin(self, raw: dict[str, Any]) -> Twin:
        """Transform a twin payload to a Twin entity."""
        ...

    @abstractmethod
    def map_relationship(self, raw: dict[str, Any]) -> Relationship:
        """Transform a relationship payload to a Relationship entity."""
        ...

    @abstractmethod
    def map_patch(self, patch: PropertyPatch) -> list[dict[str, Any]]:
        """Transform a PropertyPatch to the service's JSON Patch body."""
        ...


class ITelemetryMapper(ABC):
    """Port for turning a transport message into a TelemetryEvent."""

    @abstractmethod
    def map_event(self, raw: dict[str, Any]) -> TelemetryEvent:
        """Transform a deserialized transport message.

        Raises:
            ValueError: If the message has no device id or no readable body
        """
        ...


# ============================================
# Core capabilities composed by the driver
# ============================================


class ITwinReader(ABC):
    """Port for reading a twin's current state."""

    @abstractmethod
    async def execute(self, twin_id: str) -> Twin:
        """Fetch the twin's property bag and model id."""
        ...


class IParentResolver(ABC):
    """Port for locating a twin's logical parent.

    Strategies return NONE_FOUND when the graph has no parent and FAILED
    (with the error attached) when the service could not answer.
    """

    @abstractmethod
    async def resolve_parent(
        self,
        child_id: str,
        relationship_name: Optional[str] = None,
    ) -> ParentResolution:
        ...


class IPropertyPatcher(ABC):
    """Port for applying a partial property update."""

    @abstractmethod
    async def execute(
        self,
        twin_id: str,
        patch: PropertyPatch,
        existing: Union[Twin, Mapping[str, Any], None] = None,
        if_match: Optional[str] = None,
    ) -> PropertyPatch:
        """Apply the patch and return the operations actually sent."""
        ...
