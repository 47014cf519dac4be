"""Test doubles for the M-Bus master and the MQTT transport."""

import asyncio
from typing import Dict, List, Tuple

from mbus_bridge.errors import TransportError
from mbus_bridge.models import DataRecord, Reading


def make_reading(address="5", manufacturer="ABC", value=1500, unit="Volume (1e-3 m^3)"):
    return Reading(
        address=str(address),
        slave_information={"Manufacturer": manufacturer},
        data_records=[DataRecord(id="1", value=value, unit_text=unit)],
    )


class RecordingMQTT:
    """Stands in for MQTTTransport and keeps every publish."""

    def __init__(self):
        self.messages: List[Tuple[str, str, bool]] = []
        self.connected = False

    async def __aenter__(self):
        self.connected = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.connected = False

    async def publish(self, topic: str, payload: str, retain: bool = True) -> None:
        self.messages.append((topic, payload, retain))

    def last(self, topic: str):
        for t, payload, _ in reversed(self.messages):
            if t == topic:
                return payload
        return None

    def count(self, topic: str) -> int:
        return sum(1 for t, _, _ in self.messages if t == topic)


class FakeMaster:
    """
    Scripted M-Bus master.

    ``responses`` maps an address to a list of Readings or exceptions that are
    returned in order; the last entry repeats once the list is exhausted.
    """

    def __init__(self, responses: Dict[str, list]):
        self.responses = {str(k): list(v) for k, v in responses.items()}
        self.calls: List[str] = []
        self.events: List[str] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True
        self.events.append("connect")

    async def close(self) -> None:
        self.connected = False
        self.events.append("close")

    async def get_reading(self, address: str) -> Reading:
        if not self.connected:
            raise TransportError("M-Bus master is not connected", address)
        self.calls.append(address)
        queue = self.responses[str(address)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        await asyncio.sleep(0)
        if isinstance(item, Exception):
            raise item
        return item
