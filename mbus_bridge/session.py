"""Per-address polling session: first poll creates properties, refresh updates them."""

import json
import logging

from .errors import PropertyLookupError, TransportError
from .homie import HomieNode
from .mapper import ScaleFactorCache, map_data_records, map_slave_information
from .models import DeviceState, MappedValue, Reading


def node_id_for(address: str) -> str:
    return f"busAddress-{address}"


class DeviceSession:
    """
    Binds one bus address to one Homie node.

    The first successful poll creates a property for every SlaveInformation
    field and every data record id, and publishes the initial values. Every
    later poll only publishes values to the properties created then.
    """

    def __init__(self, address: str, node: HomieNode, master):
        self.address = str(address)
        self.node = node
        self.master = master
        self.scale_factors = ScaleFactorCache()
        self.has_completed_first_poll = False
        self.state = DeviceState.CREATED
        self.logger = logging.getLogger(f"Device[{self.address}]")

    async def _read(self) -> Reading | None:
        try:
            return await self.master.get_reading(self.address)
        except TransportError as e:
            self.logger.error(f"Error on M-Bus receive: {e}")
            return None

    def _map(self, reading: Reading, is_first_poll: bool) -> list[MappedValue]:
        return map_slave_information(reading.slave_information) + map_data_records(
            reading.data_records, self.scale_factors, is_first_poll
        )

    async def first_poll(self) -> bool:
        """
        Read the device and create its properties.

        Returns:
            True on success. On a transport error nothing is created and the
            session stays in first-poll mode.
        """
        reading = await self._read()
        if reading is None:
            return False

        self.logger.info(f"Received M-Bus data:\n{json.dumps(reading.to_dict(), indent=2)}")

        for key, descriptor, value in self._map(reading, is_first_poll=True):
            prop = await self.node.add_property(descriptor)
            await prop.publish_value(value)

        self.has_completed_first_poll = True
        self.logger.info(f"Created {len(self.node.property_names)} properties on {self.node.id}")
        return True

    async def refresh(self) -> bool:
        """
        Read the device and republish values of existing properties.

        A failed read leaves the published values untouched. A key without a
        property is logged and skipped; the rest of the batch still goes out.
        """
        reading = await self._read()
        if reading is None:
            return False

        self.logger.debug(f"Received M-Bus data:\n{json.dumps(reading.to_dict(), indent=2)}")

        published = 0
        for key, _, value in self._map(reading, is_first_poll=False):
            try:
                prop = self.node.get_property(key)
            except PropertyLookupError as e:
                self.logger.error(f"Skipping value update: {e}")
                continue
            await prop.publish_value(value)
            published += 1

        self.logger.debug(f"Published {published} values on {self.node.id}")
        return True

    async def poll(self) -> bool:
        """Scheduled tick: retry property creation until a first poll succeeded."""
        if not self.has_completed_first_poll:
            return await self.first_poll()
        return await self.refresh()
