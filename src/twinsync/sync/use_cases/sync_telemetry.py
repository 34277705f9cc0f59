"""Sync Telemetry Use Case - Relays device telemetry into twin properties.

This use case implements the per-event workflow. It depends only on the
reader, resolver and patcher ports, so it runs unchanged against the Azure
Digital Twins adapter or an in-memory graph.

Workflow (one event, strictly sequential):
1. READING: fetch the device's twin (confirms it exists)
2. RESOLVING: for parent routes, resolve the parent and fetch its twin
3. PATCHING: build one add per mapped field and apply it; adds on
   properties the target already has become replaces

A failure aborts the remaining steps for that event only. Events are
independent; no state is carried from one event to the next.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from ...api.exceptions import TwinSyncError
from ...api.resilience import process_concurrent
from ..domain.entities import (
    BatchSyncResult,
    PropertyPatch,
    ResolutionStatus,
    SyncOutcome,
    SyncRoute,
    SyncStage,
    TelemetryEvent,
    Twin,
)
from ..domain.ports import IParentResolver, IPropertyPatcher, ITwinReader

logger = logging.getLogger(__name__)


class SyncTelemetryUseCase:
    """Drives one telemetry event through read, resolve and patch.

    Example:
        graph = AzureDigitalTwinsGraph(client)
        use_case = SyncTelemetryUseCase(
            reader=FetchTwinUseCase(graph),
            patcher=ApplyPatchUseCase(graph),
            resolver=RelationshipTraversalResolver(graph),
            route=SyncRoute(target=SyncTarget.PARENT),
        )
        outcome = await use_case.execute(event)
    """

    def __init__(
        self,
        reader: ITwinReader,
        patcher: IPropertyPatcher,
        resolver: Optional[IParentResolver] = None,
        route: Optional[SyncRoute] = None,
        use_etag: bool = False,
        max_concurrent_events: int = 10,
    ):
        """Initialize the use case with its dependencies.

        Args:
            reader: Port for reading twins
            patcher: Port for applying property patches
            resolver: Port for locating parents; required for parent routes
            route: Routing of event fields onto twins (default: own twin)
            use_etag: Send the target's etag as If-Match
            max_concurrent_events: Bound for execute_many

        Raises:
            ValueError: If the route needs a resolver and none is given
        """
        self.reader = reader
        self.patcher = patcher
        self.resolver = resolver
        self.route = route or SyncRoute()
        self.use_etag = use_etag
        self.max_concurrent_events = max_concurrent_events

        if self.route.requires_resolution and resolver is None:
            raise ValueError("A parent resolver is required to route events to parent twins")

    async def execute(self, event: TelemetryEvent) -> SyncOutcome:
        """Process one telemetry event.

        Returns:
            SyncOutcome; never raises for service or input errors, which
            are logged once and reported as a failed outcome
        """
        outcome = SyncOutcome(
            event_id=event.label,
            device_id=event.device_id,
            success=False,
            stage=SyncStage.IDLE,
            started_at=datetime.now(timezone.utc),
        )

        try:
            await self._process(event, outcome)
        except (TwinSyncError, ValueError) as e:
            logger.error(f"Event {event.label} failed during {outcome.stage.value}: {e}")
            outcome.success = False
            outcome.error_details.append(str(e))

        outcome.completed_at = datetime.now(timezone.utc)
        return outcome

    async def _process(self, event: TelemetryEvent, outcome: SyncOutcome) -> None:
        outcome.stage = SyncStage.READING
        logger.info(f"Event {event.label}: reading twin '{event.device_id}'")
        target: Twin = await self.reader.execute(event.device_id)

        if self.route.requires_resolution:
            outcome.stage = SyncStage.RESOLVING
            resolution = await self.resolver.resolve_parent(
                event.device_id, self.route.relationship_name
            )

            if resolution.status == ResolutionStatus.NONE_FOUND:
                logger.warning(
                    f"Event {event.label}: '{event.device_id}' has no "
                    f"'{self.route.relationship_name}' parent, skipping"
                )
                outcome.success = True
                outcome.skipped = True
                return

            if resolution.status == ResolutionStatus.FAILED:
                raise resolution.error

            logger.info(f"Event {event.label}: parent of '{event.device_id}' is '{resolution.parent_id}'")
            target = await self.reader.execute(resolution.parent_id)

        outcome.target_twin_id = target.id

        values = self.route.map_fields(event.fields)
        if not values:
            logger.warning(f"Event {event.label}: no mapped fields to write to '{target.id}', skipping")
            outcome.success = True
            outcome.skipped = True
            return

        outcome.stage = SyncStage.PATCHING
        sent = await self.patcher.execute(
            target.id,
            PropertyPatch.from_values(values),
            existing=target,
            if_match=target.etag if self.use_etag else None,
        )

        outcome.operations = sent.to_list()
        outcome.success = True
        logger.info(f"Event {event.label}: updated '{target.id}' ({len(sent)} operation(s))")

    async def execute_many(self, events: Iterable[TelemetryEvent]) -> BatchSyncResult:
        """Process independent events concurrently.

        One event's failure never stops the others.

        Returns:
            BatchSyncResult with one outcome per event, in input order
        """
        events = list(events)
        if not events:
            return BatchSyncResult()

        results = await process_concurrent(
            events,
            self.execute,
            max_concurrent=self.max_concurrent_events,
            return_exceptions=True,
        )

        outcomes: list[SyncOutcome] = []
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.error(f"Event {event.label} failed unexpectedly: {result}")
                now = datetime.now(timezone.utc)
                result = SyncOutcome(
                    event_id=event.label,
                    device_id=event.device_id,
                    success=False,
                    stage=SyncStage.IDLE,
                    started_at=now,
                    completed_at=now,
                    error_details=[repr(result)],
                )
            outcomes.append(result)

        batch = BatchSyncResult(outcomes)
        logger.info(
            f"Processed {batch.total} events: {batch.succeeded} updated, "
            f"{batch.skipped} skipped, {batch.failed} failed"
        )
        return batch
