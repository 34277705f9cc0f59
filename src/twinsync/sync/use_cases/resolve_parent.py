"""Resolve Parent Use Cases - Locate a twin's logical parent.

Two interchangeable strategies implement IParentResolver:

- RelationshipTraversalResolver walks the child's incoming relationships
  and returns the source of the first one with the requested name.
- QueryParentResolver asks the graph query endpoint for the twin that
  relates to the child and takes the first row.

Both log every relationship/row they inspect. Transport failures are
caught, logged and returned as a FAILED resolution; anything else
(programming errors, invalid arguments) propagates.
"""

import logging
import re
from typing import Any, Optional

from ...api.exceptions import NotFoundError, TransportError
from ..domain.entities import ParentResolution
from ..domain.ports import IParentResolver, ITwinGraph

logger = logging.getLogger(__name__)

DEFAULT_RELATIONSHIP = "contains"

_RELATIONSHIP_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


async def _close_iterator(iterator: Any) -> None:
    """Close an async generator so no further pages are requested."""
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class RelationshipTraversalResolver(IParentResolver):
    """Finds the parent by scanning incoming relationships.

    The relationship sequence is lazy and paged; iteration stops at the
    first match so later pages are never fetched.
    """

    def __init__(self, graph: ITwinGraph, default_relationship: str = DEFAULT_RELATIONSHIP):
        self.graph = graph
        self.default_relationship = default_relationship

    async def resolve_parent(
        self,
        child_id: str,
        relationship_name: Optional[str] = None,
    ) -> ParentResolution:
        """Resolve the parent of child_id.

        Args:
            child_id: Twin whose parent is wanted
            relationship_name: Relationship to match (default "contains")

        Returns:
            FOUND with the source twin id, NONE_FOUND when no incoming
            relationship matches, FAILED on transport errors
        """
        name = relationship_name or self.default_relationship
        relationships = self.graph.list_incoming_relationships(child_id)

        try:
            async for relationship in relationships:
                logger.info(
                    f"Incoming relationship found for '{child_id}'. "
                    f"The name is \"{relationship.name}\" (source '{relationship.source_id}')"
                )
                if relationship.name == name:
                    return ParentResolution.found(child_id, relationship.source_id)

        except (NotFoundError, TransportError) as e:
            logger.warning(f"Error retrieving parent of '{child_id}': {e}")
            return ParentResolution.failed(child_id, e)

        finally:
            await _close_iterator(relationships)

        logger.info(f"No incoming relationship '{name}' found for '{child_id}'")
        return ParentResolution.none_found(child_id)


class QueryParentResolver(IParentResolver):
    """Finds the parent with a graph query.

    Only the first row is used. The graph may hold several parents for
    one child; the first one wins and a warning is logged when another
    row is present, so duplicate-parent data stays visible.
    """

    QUERY_TEMPLATE = (
        "SELECT Parent "
        "FROM digitaltwins Parent "
        "JOIN Child RELATED Parent.{relationship} "
        "WHERE Child.$dtId = '{child_id}'"
    )

    def __init__(self, graph: ITwinGraph, default_relationship: str = DEFAULT_RELATIONSHIP):
        self.graph = graph
        self.default_relationship = default_relationship

    @staticmethod
    def quote_literal(value: str) -> str:
        """Escape a value for use inside a single-quoted query literal."""
        return value.replace("\\", "\\\\").replace("'", "\\'")

    def build_query(self, child_id: str, relationship_name: Optional[str] = None) -> str:
        """Build the parent query for child_id.

        Raises:
            ValueError: If the relationship name is not a plain identifier
        """
        relationship = relationship_name or self.default_relationship
        if not _RELATIONSHIP_NAME.match(relationship):
            raise ValueError(f"Invalid relationship name {relationship!r}")
        return self.QUERY_TEMPLATE.format(
            relationship=relationship,
            child_id=self.quote_literal(child_id),
        )

    async def resolve_parent(
        self,
        child_id: str,
        relationship_name: Optional[str] = None,
    ) -> ParentResolution:
        """Resolve the parent of child_id by query.

        Returns:
            FOUND with the first row's twin id, NONE_FOUND for an empty
            result, FAILED on transport errors
        """
        query = self.build_query(child_id, relationship_name)
        logger.info(f"Query: {query}")

        rows = self.graph.query(query)
        try:
            parent_id: Optional[str] = None
            async for twin in rows:
                if parent_id is None:
                    logger.info(f"Query row for '{child_id}': parent '{twin.id}'")
                    parent_id = twin.id
                    continue

                logger.warning(
                    f"More than one parent found for '{child_id}' "
                    f"(also '{twin.id}'); using '{parent_id}'"
                )
                break

        except TransportError as e:
            logger.warning(f"Error retrieving parent of '{child_id}': {e}")
            return ParentResolution.failed(child_id, e)

        finally:
            await _close_iterator(rows)

        if parent_id is None:
            logger.warning(f"No parent found for '{child_id}'")
            return ParentResolution.none_found(child_id)

        return ParentResolution.found(child_id, parent_id)
