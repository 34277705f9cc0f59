"""Tests for IoTHubEventMapper adapter."""

import base64
import json
from datetime import datetime, timezone

import pytest

from twinsync.sync.adapters.event_mapper import IoTHubEventMapper


@pytest.fixture
def mapper():
    return IoTHubEventMapper()


def make_event(body, device_id="serra01", **extra):
    return {
        "id": "5f6e7d8c-0000-0000-0000-000000000001",
        "eventType": "Microsoft.Devices.DeviceTelemetry",
        "subject": f"devices/{device_id}",
        "eventTime": "2024-05-01T12:00:01Z",
        "data": {
            "properties": {},
            "systemProperties": {
                "iothub-connection-device-id": device_id,
                "iothub-enqueuedtime": "2024-05-01T12:00:00.1234567Z",
            },
            "body": body,
        },
        **extra,
    }


class TestMapEvent:
    """Tests for Event Grid telemetry mapping."""

    def test_full_event(self, mapper):
        event = mapper.map_event(make_event({"Moisture": 30.0}))

        assert event.device_id == "serra01"
        assert event.fields == {"Moisture": 30.0}
        assert event.event_id == "5f6e7d8c-0000-0000-0000-000000000001"
        assert event.timestamp == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_bare_data_object(self, mapper):
        event = mapper.map_event(make_event({"UV": 9.5})["data"])

        assert event.device_id == "serra01"
        assert event.fields == {"UV": 9.5}
        assert event.event_id is None

    def test_body_as_json_string(self, mapper):
        event = mapper.map_event(make_event(json.dumps({"Moisture": 12})))
        assert event.fields == {"Moisture": 12}

    def test_body_as_base64_json(self, mapper):
        encoded = base64.b64encode(json.dumps({"Moisture": 12}).encode()).decode()
        event = mapper.map_event(make_event(encoded))
        assert event.fields == {"Moisture": 12}

    def test_non_scalar_fields_dropped(self, mapper):
        event = mapper.map_event(make_event({"Moisture": 30.0, "gps": {"lat": 1.0}, "tags": ["a"]}))
        assert event.fields == {"Moisture": 30.0}

    def test_device_id_from_subject(self, mapper):
        raw = make_event({"Moisture": 1})
        raw["data"]["systemProperties"] = {}

        event = mapper.map_event(raw)

        assert event.device_id == "serra01"
        assert event.timestamp == datetime(2024, 5, 1, 12, 0, 1, tzinfo=timezone.utc)

    def test_missing_device_id_raises(self, mapper):
        with pytest.raises(ValueError):
            mapper.map_event({"data": {"body": {"Moisture": 1}}})

    def test_non_object_body_raises(self, mapper):
        with pytest.raises(ValueError):
            mapper.map_event(make_event("not json at all!"))

    def test_unparseable_timestamp_is_none(self, mapper):
        raw = make_event({"Moisture": 1})
        raw["data"]["systemProperties"]["iothub-enqueuedtime"] = "yesterday"

        assert mapper.map_event(raw).timestamp is None

    @pytest.mark.parametrize("value", [1714564800, {"at": "2024-05-01"}])
    def test_non_string_timestamp_is_none(self, mapper, value):
        raw = make_event({"Moisture": 1})
        raw["data"]["systemProperties"]["iothub-enqueuedtime"] = value

        event = mapper.map_event(raw)

        assert event.timestamp is None
        assert event.fields == {"Moisture": 1}
