"""Tests for the ApplyPatchUseCase."""

import pytest

from twinsync.api.exceptions import NotFoundError, PreconditionFailedError, ServerError, ValidationError
from twinsync.sync.domain.entities import PatchOp, PropertyPatch, Twin
from twinsync.sync.use_cases.apply_patch import ApplyPatchUseCase
from twinsync.sync.use_cases.fetch_twin import FetchTwinUseCase


class TestApplyPatchUseCase:
    """Tests for patch application."""

    async def test_add_new_property(self, greenhouse):
        sent = await ApplyPatchUseCase(greenhouse).execute(
            "serra01", PropertyPatch().add("/Moisture", 30.0)
        )

        assert sent.to_list() == [{"op": "add", "path": "/Moisture", "value": 30.0}]
        assert greenhouse.twins["serra01"]["Moisture"] == 30.0

    async def test_add_on_existing_without_state_fails_loudly(self, greenhouse):
        with pytest.raises(ValidationError):
            await ApplyPatchUseCase(greenhouse).execute(
                "serra01", PropertyPatch().add("/Temperature", 25.0)
            )

        assert greenhouse.twins["serra01"]["Temperature"] == 21.5

    async def test_existing_properties_become_replace(self, greenhouse):
        twin = await FetchTwinUseCase(greenhouse).execute("serra01")
        patch = PropertyPatch.from_values({"Temperature": 25.0, "Moisture": 30.0})

        sent = await ApplyPatchUseCase(greenhouse).execute("serra01", patch, existing=twin)

        assert [op.op for op in sent] == [PatchOp.REPLACE, PatchOp.ADD]
        assert greenhouse.twins["serra01"] == {"Temperature": 25.0, "Moisture": 30.0}
        # caller's patch is untouched
        assert [op.op for op in patch] == [PatchOp.ADD, PatchOp.ADD]

    async def test_existing_as_plain_mapping(self, greenhouse):
        sent = await ApplyPatchUseCase(greenhouse).execute(
            "serra01",
            PropertyPatch().add("/Temperature", 19.0),
            existing={"Temperature": 21.5},
        )

        assert sent.is_replace_only

    def test_nested_add_under_existing_object_stays_add(self):
        patch = PropertyPatch().add("/Settings/Threshold", 5).add("/Settings/Mode", "manual")

        reconciled = ApplyPatchUseCase.reconcile(patch, {"Settings": {"Mode": "auto"}})

        assert [op.op for op in reconciled] == [PatchOp.ADD, PatchOp.REPLACE]

    def test_nested_path_through_scalar_stays_add(self):
        patch = PropertyPatch().add("/Settings/Threshold", 5)

        reconciled = ApplyPatchUseCase.reconcile(patch, {"Settings": "auto"})

        assert [op.op for op in reconciled] == [PatchOp.ADD]

    async def test_nested_add_applied_with_known_state(self, greenhouse):
        greenhouse.add_twin("serra02", Settings={"Mode": "auto"})
        twin = await FetchTwinUseCase(greenhouse).execute("serra02")
        patch = PropertyPatch().add("/Settings/Threshold", 5).add("/Settings/Mode", "manual")

        await ApplyPatchUseCase(greenhouse).execute("serra02", patch, existing=twin)

        assert greenhouse.twins["serra02"] == {"Settings": {"Mode": "manual", "Threshold": 5}}

    async def test_replace_only_patch_is_idempotent(self, greenhouse):
        patcher = ApplyPatchUseCase(greenhouse)
        patch = PropertyPatch().replace("/Temperature", 23.0)

        await patcher.execute("serra01", patch)
        first = dict(greenhouse.twins["serra01"])
        await patcher.execute("serra01", patch)

        assert greenhouse.twins["serra01"] == first == {"Temperature": 23.0}

    async def test_patch_is_atomic(self, greenhouse):
        """A rejected operation leaves the whole twin unchanged."""
        patch = PropertyPatch().add("/Moisture", 30.0).replace("/Missing", 1)

        with pytest.raises(ValidationError):
            await ApplyPatchUseCase(greenhouse).execute("serra01", patch)

        assert greenhouse.twins["serra01"] == {"Temperature": 21.5}

    async def test_empty_patch_rejected(self, greenhouse):
        with pytest.raises(ValueError):
            await ApplyPatchUseCase(greenhouse).execute("serra01", PropertyPatch())

        assert greenhouse.updates == []

    async def test_unknown_twin_raises_not_found(self, greenhouse):
        with pytest.raises(NotFoundError):
            await ApplyPatchUseCase(greenhouse).execute("ghost", PropertyPatch().add("/A", 1))

    async def test_if_match_forwarded(self, greenhouse):
        twin = await FetchTwinUseCase(greenhouse).execute("serra01")

        await ApplyPatchUseCase(greenhouse).execute(
            "serra01", PropertyPatch().add("/Moisture", 1), if_match=twin.etag
        )

        assert greenhouse.updates[-1][2] == twin.etag

    async def test_stale_etag_raises_precondition_failed(self, greenhouse):
        stale = Twin(id="serra01", etag=greenhouse.etag("serra01"))
        await greenhouse.update_twin("serra01", PropertyPatch().add("/Moisture", 1))

        with pytest.raises(PreconditionFailedError):
            await ApplyPatchUseCase(greenhouse).execute(
                "serra01", PropertyPatch().add("/UV", 2), if_match=stale.etag
            )

    async def test_transport_error_not_retried(self, greenhouse):
        greenhouse.errors["update_twin"] = ServerError("Service unavailable", status_code=503)

        with pytest.raises(ServerError):
            await ApplyPatchUseCase(greenhouse).execute("serra01", PropertyPatch().add("/A", 1))

        assert len(greenhouse.updates) == 1
