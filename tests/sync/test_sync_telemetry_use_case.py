"""Tests for the SyncTelemetryUseCase.

These tests wire the real reader, resolvers and patcher to the in-memory
graph, so the whole per-event workflow runs without a network.
"""

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from twinsync.api.exceptions import ServerError
from twinsync.sync.domain.entities import (
    PatchOp,
    SyncRoute,
    SyncStage,
    SyncTarget,
    TelemetryEvent,
    Twin,
)
from twinsync.sync.domain.ports import ITwinReader
from twinsync.sync.use_cases import (
    ApplyPatchUseCase,
    FetchTwinUseCase,
    QueryParentResolver,
    RelationshipTraversalResolver,
    SyncTelemetryUseCase,
)


def make_use_case(graph, route=None, resolver=None, **kwargs):
    return SyncTelemetryUseCase(
        reader=FetchTwinUseCase(graph),
        patcher=ApplyPatchUseCase(graph),
        resolver=resolver,
        route=route,
        **kwargs,
    )


def make_event(device_id="serra01", event_id="evt-1", **fields):
    return TelemetryEvent(
        device_id=device_id,
        fields=fields,
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        event_id=event_id,
    )


def error_records(caplog):
    return [r for r in caplog.records if r.levelno >= logging.ERROR]


class SlowReader(ITwinReader):
    """Reader that yields control before delegating, to interleave events."""

    def __init__(self, graph):
        self.inner = FetchTwinUseCase(graph)

    async def execute(self, twin_id: str) -> Twin:
        await asyncio.sleep(0.01)
        return await self.inner.execute(twin_id)


class TestSelfRoute:
    """Events written to the device's own twin."""

    async def test_new_property_is_added(self, greenhouse):
        outcome = await make_use_case(greenhouse).execute(make_event(Moisture=30.0))

        assert outcome.success
        assert not outcome.skipped
        assert outcome.stage == SyncStage.PATCHING
        assert outcome.target_twin_id == "serra01"
        assert outcome.operations == [{"op": "add", "path": "/Moisture", "value": 30.0}]
        assert greenhouse.twins["serra01"]["Moisture"] == 30.0

    async def test_existing_property_is_replaced(self, greenhouse):
        outcome = await make_use_case(greenhouse).execute(make_event(Temperature=24.0))

        assert outcome.success
        assert outcome.operations[0]["op"] == PatchOp.REPLACE.value
        assert greenhouse.twins["serra01"]["Temperature"] == 24.0

    async def test_same_event_twice_converges(self, greenhouse):
        use_case = make_use_case(greenhouse)

        first = await use_case.execute(make_event(Moisture=30.0))
        second = await use_case.execute(make_event(Moisture=30.0))

        assert first.success and second.success
        assert second.operations[0]["op"] == "replace"
        assert greenhouse.twins["serra01"] == {"Temperature": 21.5, "Moisture": 30.0}

    async def test_missing_twin_logs_one_error_and_never_patches(self, greenhouse, caplog):
        with caplog.at_level(logging.INFO):
            outcome = await make_use_case(greenhouse).execute(
                make_event(device_id="ghost", event_id="evt-404", Moisture=30.0)
            )

        assert not outcome.success
        assert outcome.stage == SyncStage.READING
        assert greenhouse.updates == []

        errors = error_records(caplog)
        assert len(errors) == 1
        assert "evt-404" in errors[0].getMessage()
        assert "reading" in errors[0].getMessage()
        assert "NOT_FOUND" in errors[0].getMessage()

    async def test_patch_failure_reported_with_stage(self, greenhouse, caplog):
        greenhouse.errors["update_twin"] = ServerError("Service unavailable", status_code=503)

        with caplog.at_level(logging.INFO):
            outcome = await make_use_case(greenhouse).execute(make_event(Moisture=30.0))

        assert not outcome.success
        assert outcome.stage == SyncStage.PATCHING
        assert "Service unavailable" in outcome.error_details[0]
        assert len(error_records(caplog)) == 1

    async def test_no_fields_is_skipped(self, greenhouse, caplog):
        with caplog.at_level(logging.WARNING):
            outcome = await make_use_case(greenhouse).execute(make_event())

        assert outcome.success
        assert outcome.skipped
        assert greenhouse.updates == []
        assert "no mapped fields" in caplog.text

    async def test_field_map_applied(self, greenhouse):
        route = SyncRoute(field_map={"soil": "Moisture"})

        outcome = await make_use_case(greenhouse, route=route).execute(
            make_event(soil=12.0, battery=80)
        )

        assert outcome.operations == [{"op": "add", "path": "/Moisture", "value": 12.0}]

    async def test_use_etag_sends_if_match(self, greenhouse):
        await make_use_case(greenhouse, use_etag=True).execute(make_event(Moisture=30.0))

        assert greenhouse.updates[-1][2] == 'W/"1"'

    async def test_etag_not_sent_by_default(self, greenhouse):
        await make_use_case(greenhouse).execute(make_event(Moisture=30.0))

        assert greenhouse.updates[-1][2] is None


class TestParentRoute:
    """Events written to the device's parent twin."""

    @pytest.fixture(params=[RelationshipTraversalResolver, QueryParentResolver], ids=["traversal", "query"])
    def parent_use_case(self, request, greenhouse):
        return make_use_case(
            greenhouse,
            route=SyncRoute(target=SyncTarget.PARENT),
            resolver=request.param(greenhouse),
        )

    async def test_patches_parent(self, greenhouse, parent_use_case):
        outcome = await parent_use_case.execute(make_event(device_id="sensor01", Moisture=30.0))

        assert outcome.success
        assert outcome.target_twin_id == "serra01"
        assert outcome.operations == [{"op": "add", "path": "/Moisture", "value": 30.0}]
        assert greenhouse.twins["serra01"]["Moisture"] == 30.0
        assert "Moisture" not in greenhouse.twins["sensor01"]

    async def test_parent_existing_property_replaced(self, greenhouse, parent_use_case):
        outcome = await parent_use_case.execute(make_event(device_id="uv01", Temperature=30.0))

        assert outcome.operations[0]["op"] == "replace"

    async def test_no_parent_is_skipped(self, greenhouse, parent_use_case, caplog):
        with caplog.at_level(logging.INFO):
            outcome = await parent_use_case.execute(make_event(device_id="farm01", Moisture=1.0))

        assert outcome.success
        assert outcome.skipped
        assert outcome.stage == SyncStage.RESOLVING
        assert greenhouse.updates == []
        assert error_records(caplog) == []

    async def test_resolution_failure_is_one_error(self, greenhouse, parent_use_case, caplog):
        error = ServerError("Service unavailable", status_code=503)
        greenhouse.errors["list_incoming_relationships"] = error
        greenhouse.errors["query"] = error

        with caplog.at_level(logging.INFO):
            outcome = await parent_use_case.execute(make_event(device_id="sensor01", Moisture=1.0))

        assert not outcome.success
        assert outcome.stage == SyncStage.RESOLVING
        assert greenhouse.updates == []
        assert len(error_records(caplog)) == 1

    def test_parent_route_requires_resolver(self, greenhouse):
        with pytest.raises(ValueError):
            make_use_case(greenhouse, route=SyncRoute(target=SyncTarget.PARENT))


class TestExecuteMany:
    """Concurrent processing of independent events."""

    async def test_events_on_different_twins_do_not_interfere(self, greenhouse):
        use_case = SyncTelemetryUseCase(
            reader=SlowReader(greenhouse),
            patcher=ApplyPatchUseCase(greenhouse),
            max_concurrent_events=4,
        )
        events = [
            make_event(device_id="serra01", event_id="e1", Moisture=30.0),
            make_event(device_id="uv01", event_id="e2", UV=9.5),
            make_event(device_id="sensor01", event_id="e3", Moisture=12.0),
        ]

        result = await use_case.execute_many(events)

        assert result.success
        assert result.succeeded == 3
        assert [o.event_id for o in result.outcomes] == ["e1", "e2", "e3"]
        assert greenhouse.twins["serra01"] == {"Temperature": 21.5, "Moisture": 30.0}
        assert greenhouse.twins["uv01"] == {"UV": 9.5}
        assert greenhouse.twins["sensor01"] == {"Moisture": 12.0}

    async def test_one_failure_does_not_stop_others(self, greenhouse):
        result = await make_use_case(greenhouse).execute_many([
            make_event(device_id="ghost", event_id="bad", Moisture=1.0),
            make_event(device_id="serra01", event_id="good", Moisture=2.0),
            make_event(device_id="serra01", event_id="empty"),
        ])

        assert result.to_dict() == {"total": 3, "succeeded": 1, "skipped": 1, "failed": 1}
        assert not result.success

    async def test_unexpected_exception_becomes_failed_outcome(self, greenhouse):
        greenhouse.errors["get_twin"] = RuntimeError("bug")

        result = await make_use_case(greenhouse).execute_many([make_event(Moisture=1.0)])

        assert result.failed == 1
        assert "RuntimeError" in result.outcomes[0].error_details[0]

    async def test_empty_batch(self, greenhouse):
        result = await make_use_case(greenhouse).execute_many([])

        assert result.total == 0
        assert result.success
