"""Adapters layer - Infrastructure implementations for twin synchronization.

This layer contains concrete implementations of the ports defined in the domain layer:
- AzureDigitalTwinsGraph: Azure Digital Twins REST implementation of ITwinGraph
- TwinMapper: Payload mapping implementation of ITwinMapper
- IoTHubEventMapper: IoT Hub / Event Grid implementation of ITelemetryMapper
"""

from .adt_graph_adapter import AzureDigitalTwinsGraph
from .event_mapper import IoTHubEventMapper
from .twin_mapper import TwinMapper

__all__ = [
    "AzureDigitalTwinsGraph",
    "IoTHubEventMapper",
    "TwinMapper",
]
