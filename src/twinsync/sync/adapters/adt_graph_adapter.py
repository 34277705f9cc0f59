"""Azure Digital Twins adapter for the graph service port.

This adapter implements ITwinGraph and wraps DigitalTwinsClient to provide
twin-specific operations.
"""

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote

from ...api.exceptions import NotFoundError
from ..domain.entities import PropertyPatch, Relationship, Twin
from ..domain.ports import ITwinGraph
from .twin_mapper import TwinMapper

if TYPE_CHECKING:
    from ...api.client import DigitalTwinsClient

logger = logging.getLogger(__name__)


class AzureDigitalTwinsGraph(ITwinGraph):
    """Azure Digital Twins adapter for graph operations.

    Wraps DigitalTwinsClient; the client handles auth, paging and retries,
    this class knows the endpoints and payload shapes.
    """

    TWINS_ENDPOINT = "/digitaltwins"

    def __init__(
        self,
        client: "DigitalTwinsClient",
        mapper: Optional[TwinMapper] = None,
    ):
        """Initialize the adapter.

        Args:
            client: Configured DigitalTwinsClient instance (inside its context)
            mapper: Payload mapper, defaults to TwinMapper
        """
        self.client = client
        self.mapper = mapper or TwinMapper()

    def _twin_endpoint(self, twin_id: str) -> str:
        return f"{self.TWINS_ENDPOINT}/{quote(twin_id, safe='')}"

    @staticmethod
    def _as_twin_not_found(error: NotFoundError, twin_id: str) -> NotFoundError:
        return NotFoundError(
            resource_type="Twin",
            resource_id=twin_id,
            endpoint=error.endpoint,
            response_body=error.response_body,
            cause=error,
        )

    async def get_twin(self, twin_id: str) -> Twin:
        """Fetch a twin by id.

        Raises:
            NotFoundError: If the twin does not exist
            TransportError: On other failures
        """
        try:
            raw = await self.client.get(self._twin_endpoint(twin_id))
        except NotFoundError as e:
            raise self._as_twin_not_found(e, twin_id)
        return self.mapper.map_twin(raw)

    async def list_incoming_relationships(self, twin_id: str) -> AsyncIterator[Relationship]:
        """Iterate incoming relationships page by page.

        Yields:
            Relationship entities; the next page is requested only when the
            current one is exhausted
        """
        endpoint = f"{self._twin_endpoint(twin_id)}/incomingrelationships"
        try:
            async for page in self.client.paginate(endpoint):
                for raw in page:
                    yield self.mapper.map_relationship(raw)
        except NotFoundError as e:
            raise self._as_twin_not_found(e, twin_id)

    async def query(self, query: str) -> AsyncIterator[Twin]:
        """Run a graph query and iterate the resulting twins."""
        async for rows in self.client.query_pages(query):
            for row in rows:
                yield self.mapper.map_twin(self.mapper.unwrap_query_row(row))

    async def update_twin(
        self,
        twin_id: str,
        patch: PropertyPatch,
        if_match: Optional[str] = None,
    ) -> None:
        """Send the patch as one JSON Patch request.

        Raises:
            NotFoundError: If the twin does not exist
            PreconditionFailedError: If if_match no longer matches
            TransportError: On other failures
        """
        body = self.mapper.map_patch(patch)
        try:
            await self.client.patch(self._twin_endpoint(twin_id), body, if_match=if_match)
        except NotFoundError as e:
            raise self._as_twin_not_found(e, twin_id)
