"""Twin mapper adapter for transforming between service payloads and entities.

This adapter implements ITwinMapper and encapsulates the Digital Twins
JSON conventions ($dtId, $etag, $metadata, $relationshipName, ...).
"""

from typing import Any

from ...api.exceptions import MalformedResponseError
from ..domain.entities import PropertyPatch, Relationship, Twin
from ..domain.ports import ITwinMapper


class TwinMapper(ITwinMapper):
    """Maps Digital Twins REST payloads to domain entities and back.

    This class handles:
    - Splitting system ($-prefixed) keys from user properties
    - Model id extraction from $metadata.$model
    - Relationship field extraction
    - The JSON Patch wire shape, reproduced as [{op, path, value}]
    """

    def map_twin(self, raw: dict[str, Any]) -> Twin:
        """Transform a twin payload to a Twin entity.

        Args:
            raw: Twin dictionary as returned by GET /digitaltwins/{id} or a query

        Returns:
            Twin entity

        Raises:
            MalformedResponseError: If the payload has no $dtId
        """
        if not isinstance(raw, dict) or not raw.get("$dtId"):
            raise MalformedResponseError(
                "Twin payload is missing $dtId",
                details={"keys": sorted(raw.keys()) if isinstance(raw, dict) else []},
            )

        metadata = raw.get("$metadata") or {}
        properties = {key: value for key, value in raw.items() if not key.startswith("$")}

        return Twin(
            id=raw["$dtId"],
            model_id=metadata.get("$model"),
            properties=properties,
            etag=raw.get("$etag"),
            metadata=metadata,
            raw_data=raw,
        )

    def map_relationship(self, raw: dict[str, Any]) -> Relationship:
        """Transform an (incoming) relationship payload to a Relationship entity.

        Raises:
            MalformedResponseError: If name or source id are missing
        """
        name = raw.get("$relationshipName") if isinstance(raw, dict) else None
        source_id = raw.get("$sourceId") if isinstance(raw, dict) else None
        if not name or not source_id:
            raise MalformedResponseError(
                "Relationship payload is missing $relationshipName or $sourceId",
                details={"keys": sorted(raw.keys()) if isinstance(raw, dict) else []},
            )

        return Relationship(
            name=name,
            source_id=source_id,
            target_id=raw.get("$targetId"),
            relationship_id=raw.get("$relationshipId"),
        )

    def map_patch(self, patch: PropertyPatch) -> list[dict[str, Any]]:
        """Transform a PropertyPatch to the JSON Patch body, order preserved."""
        return patch.to_list()

    def unwrap_query_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Return the twin of a query row.

        "SELECT Parent FROM ..." yields rows like {"Parent": {...twin...}};
        "SELECT * FROM digitaltwins" yields the twin itself.
        """
        if isinstance(row, dict) and "$dtId" not in row and len(row) == 1:
            (value,) = row.values()
            if isinstance(value, dict):
                return value
        return row
