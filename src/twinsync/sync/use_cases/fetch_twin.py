"""Fetch Twin Use Case - Reads a twin's current property bag.

Read-only. Errors are raised to the caller unchanged: NotFoundError when
the twin is unknown, TransportError for every other failure. The caller
decides how to log them.
"""

import logging

from ..domain.entities import Twin
from ..domain.ports import ITwinGraph, ITwinReader

logger = logging.getLogger(__name__)


class FetchTwinUseCase(ITwinReader):
    """Fetches a twin and logs its model and properties.

    Example:
        reader = FetchTwinUseCase(AzureDigitalTwinsGraph(client))
        twin = await reader.execute("serra01")
    """

    def __init__(self, graph: ITwinGraph):
        self.graph = graph

    async def execute(self, twin_id: str) -> Twin:
        """Fetch a twin by id.

        Args:
            twin_id: Non-empty twin identifier

        Returns:
            The twin with its full property bag

        Raises:
            ValueError: If twin_id is empty
            NotFoundError: If the twin does not exist
            TransportError: On any other communication failure
        """
        if not twin_id or not twin_id.strip():
            raise ValueError("Twin id must not be empty")

        twin = await self.graph.get_twin(twin_id)

        logger.info(f"Twin '{twin.id}' model id: {twin.model_id}")
        for name, value in twin.properties.items():
            logger.info(f"Twin '{twin.id}' property '{name}': {value}")

        return twin
