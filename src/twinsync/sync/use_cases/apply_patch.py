"""Apply Patch Use Case - Writes a property patch to a twin.

The patch is sent as one request, so the service applies all operations or
none. When the caller knows the twin's current properties, adds on
properties that already exist are rewritten to replaces; re-sending a
replace-only patch leaves the twin unchanged.

Failures are never retried here.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from ..domain.entities import PatchOp, PatchOperation, PropertyPatch, Twin, pointer_exists
from ..domain.ports import IPropertyPatcher, ITwinGraph

logger = logging.getLogger(__name__)


class ApplyPatchUseCase(IPropertyPatcher):
    """Applies add/replace patches to a twin.

    Example:
        patcher = ApplyPatchUseCase(AzureDigitalTwinsGraph(client))
        await patcher.execute(
            "serra01",
            PropertyPatch().add("/Moisture", 30.0),
            existing=twin,
        )
    """

    def __init__(self, graph: ITwinGraph):
        self.graph = graph

    @staticmethod
    def reconcile(
        patch: PropertyPatch,
        existing: Union[Twin, Mapping[str, Any]],
    ) -> PropertyPatch:
        """Rewrite adds whose full path already exists to replaces.

        Args:
            patch: Patch as built by the caller
            existing: Twin or property bag the patch will be applied to

        Returns:
            A new patch; the input is left untouched
        """
        properties = existing.properties if isinstance(existing, Twin) else existing

        operations = []
        for operation in patch:
            if operation.op == PatchOp.ADD and pointer_exists(properties, operation.path):
                operation = PatchOperation(PatchOp.REPLACE, operation.path, operation.value)
            operations.append(operation)

        return PropertyPatch(operations)

    async def execute(
        self,
        twin_id: str,
        patch: PropertyPatch,
        existing: Optional[Union[Twin, Mapping[str, Any]]] = None,
        if_match: Optional[str] = None,
    ) -> PropertyPatch:
        """Apply a patch to a twin.

        Args:
            twin_id: Target twin
            patch: Non-empty patch
            existing: Current properties of the target, if known
            if_match: Concurrency token sent as If-Match

        Returns:
            The patch actually sent

        Raises:
            ValueError: If twin_id or patch is empty
            NotFoundError: If the twin does not exist
            PreconditionFailedError: If if_match no longer matches
            TransportError: On any other communication failure, including
                the service rejecting an add on an existing property
        """
        if not twin_id:
            raise ValueError("Twin id must not be empty")
        if patch.is_empty:
            raise ValueError(f"Refusing to send an empty patch to '{twin_id}'")

        if existing is not None:
            patch = self.reconcile(patch, existing)

        for operation in patch:
            logger.info(f"Patching '{twin_id}': {operation.op.value} {operation.path} = {operation.value!r}")

        await self.graph.update_twin(twin_id, patch, if_match=if_match)

        logger.info(f"Applied {len(patch)} operation(s) to '{twin_id}'")
        return patch
