"""Tests for the FetchTwinUseCase."""

import logging

import pytest

from twinsync.api.exceptions import NotFoundError, TimeoutError
from twinsync.sync.domain.entities import PropertyPatch
from twinsync.sync.use_cases.fetch_twin import FetchTwinUseCase


class TestFetchTwinUseCase:
    """Tests for reading twins."""

    async def test_returns_properties_and_model(self, greenhouse):
        twin = await FetchTwinUseCase(greenhouse).execute("serra01")

        assert twin.id == "serra01"
        assert twin.model_id == "dtmi:greenhouse:Serra;1"
        assert twin.properties == {"Temperature": 21.5}

    async def test_reflects_last_patch(self, greenhouse):
        """Reading after a patch returns exactly the patched keys."""
        patch = PropertyPatch().add("/Moisture", 30.0).replace("/Temperature", 22.0)
        await greenhouse.update_twin("serra01", patch)

        twin = await FetchTwinUseCase(greenhouse).execute("serra01")

        assert twin.properties == {"Temperature": 22.0, "Moisture": 30.0}

    async def test_logs_model_and_properties(self, greenhouse, caplog):
        with caplog.at_level(logging.INFO, logger="twinsync.sync.use_cases.fetch_twin"):
            await FetchTwinUseCase(greenhouse).execute("serra01")

        assert "dtmi:greenhouse:Serra;1" in caplog.text
        assert "'Temperature': 21.5" in caplog.text

    async def test_unknown_twin_raises_not_found(self, greenhouse, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(NotFoundError):
                await FetchTwinUseCase(greenhouse).execute("missing")

        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    async def test_transport_error_propagates(self, greenhouse):
        greenhouse.errors["get_twin"] = TimeoutError(timeout_seconds=60)

        with pytest.raises(TimeoutError):
            await FetchTwinUseCase(greenhouse).execute("serra01")

    @pytest.mark.parametrize("twin_id", ["", "   "])
    async def test_empty_id_rejected(self, greenhouse, twin_id):
        with pytest.raises(ValueError):
            await FetchTwinUseCase(greenhouse).execute(twin_id)

        assert greenhouse.get_calls == []
