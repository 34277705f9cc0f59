"""Shared test fixtures.

InMemoryTwinGraph implements ITwinGraph over plain dicts so use cases can be
exercised end to end without a network. It follows the service's patch
rules: "add" on an existing path is rejected, as is "replace" on a missing
one or any path below a missing object. A patch is applied all-or-nothing.
"""

import copy
import re
from typing import Any, AsyncIterator, Optional

import pytest

from twinsync.api.exceptions import NotFoundError, PreconditionFailedError, ValidationError
from twinsync.sync.domain.entities import PatchOp, PropertyPatch, Relationship, Twin, pointer_segments
from twinsync.sync.domain.ports import ITwinGraph

_PARENT_QUERY = re.compile(
    r"RELATED Parent\.(?P<rel>\w+) WHERE Child\.\$dtId = '(?P<child>(?:[^'\\]|\\.)*)'$"
)


class InMemoryTwinGraph(ITwinGraph):
    """In-memory twin graph for testing."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.twins: dict[str, dict[str, Any]] = {}
        self.models: dict[str, str] = {}
        self.etags: dict[str, int] = {}
        self.relationships: list[Relationship] = []

        # Set to a list of twin ids to override query evaluation
        self.query_results: Optional[list[str]] = None

        # Exceptions to raise, keyed by method name
        self.errors: dict[str, Exception] = {}

        self.get_calls: list[str] = []
        self.updates: list[tuple[str, PropertyPatch, Optional[str]]] = []
        self.queries: list[str] = []
        self.relationship_pages_fetched = 0
        self.relationships_yielded = 0

    def add_twin(self, twin_id: str, model: str = "dtmi:example:Thing;1", **properties) -> None:
        self.twins[twin_id] = dict(properties)
        self.models[twin_id] = model
        self.etags[twin_id] = 1

    def relate(self, source_id: str, name: str, target_id: str) -> None:
        self.relationships.append(
            Relationship(
                name=name,
                source_id=source_id,
                target_id=target_id,
                relationship_id=f"{source_id}-{name}-{target_id}",
            )
        )

    def etag(self, twin_id: str) -> str:
        return f'W/"{self.etags[twin_id]}"'

    def _raise_if_configured(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    def _require(self, twin_id: str) -> None:
        if twin_id not in self.twins:
            raise NotFoundError("Twin", twin_id)

    async def get_twin(self, twin_id: str) -> Twin:
        self.get_calls.append(twin_id)
        self._raise_if_configured("get_twin")
        self._require(twin_id)
        return Twin(
            id=twin_id,
            model_id=self.models[twin_id],
            properties=copy.deepcopy(self.twins[twin_id]),
            etag=self.etag(twin_id),
            metadata={"$model": self.models[twin_id]},
        )

    async def list_incoming_relationships(self, twin_id: str) -> AsyncIterator[Relationship]:
        self._raise_if_configured("list_incoming_relationships")
        self._require(twin_id)
        incoming = [r for r in self.relationships if r.target_id == twin_id]
        for start in range(0, len(incoming), self.page_size):
            self.relationship_pages_fetched += 1
            for relationship in incoming[start:start + self.page_size]:
                self.relationships_yielded += 1
                yield relationship

    async def query(self, query: str) -> AsyncIterator[Twin]:
        self.queries.append(query)
        self._raise_if_configured("query")

        if self.query_results is not None:
            parent_ids = list(self.query_results)
        else:
            match = _PARENT_QUERY.search(query)
            assert match, f"unsupported query: {query}"
            child_id = re.sub(r"\\(.)", r"\1", match.group("child"))
            parent_ids = [
                r.source_id
                for r in self.relationships
                if r.target_id == child_id and r.name == match.group("rel")
            ]

        for parent_id in parent_ids:
            yield await self.get_twin(parent_id)

    async def update_twin(
        self,
        twin_id: str,
        patch: PropertyPatch,
        if_match: Optional[str] = None,
    ) -> None:
        self.updates.append((twin_id, patch, if_match))
        self._raise_if_configured("update_twin")
        self._require(twin_id)

        if if_match is not None and if_match != self.etag(twin_id):
            raise PreconditionFailedError(etag=if_match)

        properties = copy.deepcopy(self.twins[twin_id])
        for operation in patch:
            *parents, leaf = pointer_segments(operation.path)
            container = properties
            for segment in parents:
                container = container.get(segment) if isinstance(container, dict) else None
            if not isinstance(container, dict):
                raise ValidationError(f"Parent of {operation.path} does not exist", field=operation.path)
            if operation.op == PatchOp.ADD and leaf in container:
                raise ValidationError(f"Property {operation.path} already exists", field=operation.path)
            if operation.op == PatchOp.REPLACE and leaf not in container:
                raise ValidationError(f"Property {operation.path} does not exist", field=operation.path)
            container[leaf] = copy.deepcopy(operation.value)

        self.twins[twin_id] = properties
        self.etags[twin_id] += 1


@pytest.fixture
def graph():
    """Empty in-memory twin graph."""
    return InMemoryTwinGraph()


@pytest.fixture
def greenhouse(graph):
    """A greenhouse containing a soil sensor and a UV sensor.

    serra01 -contains-> sensor01
    serra01 -contains-> uv01
    farm01  -owns-----> serra01
    """
    graph.add_twin("serra01", model="dtmi:greenhouse:Serra;1", Temperature=21.5)
    graph.add_twin("sensor01", model="dtmi:greenhouse:SoilSensor;1")
    graph.add_twin("uv01", model="dtmi:greenhouse:UVSensor;1", UV=0.0)
    graph.add_twin("farm01", model="dtmi:greenhouse:Farm;1")
    graph.relate("serra01", "contains", "sensor01")
    graph.relate("serra01", "contains", "uv01")
    graph.relate("farm01", "owns", "serra01")
    return graph
