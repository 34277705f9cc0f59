"""IoT Hub telemetry event mapper.

This adapter implements ITelemetryMapper for device telemetry routed from
IoT Hub through Event Grid ("Microsoft.Devices.DeviceTelemetry"). It accepts
the full Event Grid event or just its "data" object.
"""

import base64
import binascii
import json
import logging
from datetime import datetime
from typing import Any, Optional

from ..domain.entities import TelemetryEvent
from ..domain.ports import ITelemetryMapper

logger = logging.getLogger(__name__)

DEVICE_ID_PROPERTY = "iothub-connection-device-id"
ENQUEUED_TIME_PROPERTY = "iothub-enqueuedtime"

_SCALAR_TYPES = (str, int, float, bool)


class IoTHubEventMapper(ITelemetryMapper):
    """Maps IoT Hub telemetry (via Event Grid) to TelemetryEvent entities.

    This class handles:
    - Envelope detection (Event Grid event vs bare data object)
    - Device id from systemProperties, falling back to "devices/<id>" subjects
    - Bodies given as JSON objects, JSON strings or base64-encoded JSON
    - Timestamp parsing (ISO 8601, Z suffix, 7-digit fractions)
    """

    def map_event(self, raw: dict[str, Any]) -> TelemetryEvent:
        """Transform an Event Grid telemetry event to a TelemetryEvent.

        Args:
            raw: Deserialized Event Grid event, or its "data" object

        Returns:
            TelemetryEvent with scalar body fields

        Raises:
            ValueError: If no device id or no JSON object body can be found
        """
        if not isinstance(raw, dict):
            raise ValueError("Telemetry event must be a JSON object")

        data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
        system_properties = data.get("systemProperties") or {}

        device_id = system_properties.get(DEVICE_ID_PROPERTY) or self._device_from_subject(
            raw.get("subject")
        )
        if not device_id:
            raise ValueError(f"Telemetry event has no '{DEVICE_ID_PROPERTY}'")

        body = self._decode_body(data.get("body"))

        fields = {}
        for name, value in body.items():
            if isinstance(value, _SCALAR_TYPES):
                fields[name] = value
            else:
                logger.debug(f"Skipping non-scalar field '{name}' from {device_id}")

        timestamp = self._parse_timestamp(
            system_properties.get(ENQUEUED_TIME_PROPERTY) or raw.get("eventTime")
        )

        return TelemetryEvent(
            device_id=device_id,
            fields=fields,
            timestamp=timestamp,
            event_id=raw.get("id"),
            raw_data=raw,
        )

    @staticmethod
    def _device_from_subject(subject: Optional[str]) -> Optional[str]:
        """Extract the device id from a "devices/<id>" subject."""
        if subject and subject.startswith("devices/"):
            return subject.split("/", 2)[1] or None
        return None

    @staticmethod
    def _decode_body(body: Any) -> dict[str, Any]:
        """Return the telemetry body as a dict."""
        if isinstance(body, dict):
            return body

        if isinstance(body, str):
            try:
                decoded = json.loads(body)
            except ValueError:
                try:
                    decoded = json.loads(base64.b64decode(body, validate=True).decode("utf-8"))
                except (binascii.Error, UnicodeDecodeError, ValueError) as e:
                    raise ValueError("Telemetry body is neither JSON nor base64-encoded JSON") from e
            if isinstance(decoded, dict):
                return decoded

        raise ValueError("Telemetry body must be a JSON object")

    @staticmethod
    def _parse_timestamp(value: Any) -> Optional[datetime]:
        """Parse ISO 8601 timestamps as sent by IoT Hub and Event Grid."""
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            logger.warning(f"Ignoring non-string event timestamp {value!r}")
            return None
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # IoT Hub uses 7 fractional digits; fromisoformat wants at most 6
        if "." in text:
            head, _, rest = text.partition(".")
            digits = ""
            while rest and rest[0].isdigit():
                digits, rest = digits + rest[0], rest[1:]
            text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable event timestamp {value!r}")
            return None
