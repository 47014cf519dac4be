"""Minimal Homie 4 device publisher (device -> nodes -> properties).

Only what the bridge needs: retained attribute topics, property values and
the ``$state`` lifecycle. Properties are read-only; ``$set`` is not handled.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .errors import PropertyLookupError
from .models import DataType, PropertyDescriptor, Scalar

logger = logging.getLogger(__name__)

HOMIE_VERSION = "4.0.0"

STATE_INIT = "init"
STATE_READY = "ready"
STATE_DISCONNECTED = "disconnected"
STATE_LOST = "lost"


def format_value(value: Scalar, data_type: DataType) -> str:
    """Render a value as a Homie payload."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if data_type == DataType.INTEGER and isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class HomieProperty:
    """Handle for one published property."""

    def __init__(self, node: "HomieNode", descriptor: PropertyDescriptor):
        self.node = node
        self.descriptor = descriptor

    @property
    def name(self) -> str:
        return self.descriptor.key

    @property
    def topic(self) -> str:
        return f"{self.node.topic}/{self.descriptor.key}"

    def attributes(self) -> List[Tuple[str, str]]:
        attrs = [
            (f"{self.topic}/$name", self.descriptor.display_name),
            (f"{self.topic}/$datatype", self.descriptor.data_type.value),
        ]
        if self.descriptor.unit:
            attrs.append((f"{self.topic}/$unit", self.descriptor.unit))
        return attrs

    async def publish_value(self, value: Scalar) -> None:
        await self.node.device.mqtt.publish(
            self.topic, format_value(value, self.descriptor.data_type)
        )


class HomieNode:
    """A Homie node; the bridge uses one per bus address."""

    def __init__(self, device: "HomieDevice", node_id: str, name: str, node_type: str):
        self.device = device
        self.id = node_id
        self.name = name
        self.type = node_type
        self._properties: Dict[str, HomieProperty] = {}

    @property
    def topic(self) -> str:
        return f"{self.device.topic}/{self.id}"

    @property
    def property_names(self) -> List[str]:
        return list(self._properties)

    def attributes(self) -> List[Tuple[str, str]]:
        return [
            (f"{self.topic}/$name", self.name),
            (f"{self.topic}/$type", self.type),
            (f"{self.topic}/$properties", ",".join(self._properties)),
        ]

    async def add_property(self, descriptor: PropertyDescriptor) -> HomieProperty:
        """
        Create a property and announce its attributes.

        Adding a key that already exists returns the existing handle; the
        original descriptor stays in force.
        """
        existing = self._properties.get(descriptor.key)
        if existing is not None:
            if existing.descriptor != descriptor:
                logger.warning(
                    f"Property {descriptor.key} on {self.id} already exists, keeping original definition"
                )
            return existing

        prop = HomieProperty(self, descriptor)
        for topic, payload in prop.attributes():
            await self.device.mqtt.publish(topic, payload)
        # registered only once announced, so a failed announce is retried
        self._properties[descriptor.key] = prop
        if self.device.state == STATE_READY:
            await self.device.publish_node_attributes(self)
        return prop

    def get_property(self, key: str) -> HomieProperty:
        try:
            return self._properties[key]
        except KeyError:
            raise PropertyLookupError(self.id, key) from None


class HomieDevice:
    """
    Homie device published through an ``MQTTTransport``.

    Call ``init()`` once the MQTT connection is up, create nodes and
    properties, then ``setup()`` to announce the topology and become ready.
    """

    def __init__(self, device_id: str, name: str, mqtt, base_topic: str = "homie"):
        self.id = device_id
        self.name = name
        self.mqtt = mqtt
        self.base_topic = base_topic.rstrip("/")
        self.state: Optional[str] = None
        self._nodes: Dict[str, HomieNode] = {}

    @property
    def topic(self) -> str:
        return f"{self.base_topic}/{self.id}"

    @property
    def state_topic(self) -> str:
        return f"{self.topic}/$state"

    @property
    def nodes(self) -> List[HomieNode]:
        return list(self._nodes.values())

    def node(self, node_id: str, name: str | None = None, node_type: str = "M-Bus device") -> HomieNode:
        """Get or create the node ``node_id``."""
        node = self._nodes.get(node_id)
        if node is None:
            node = HomieNode(self, node_id, name or node_id, node_type)
            self._nodes[node_id] = node
        return node

    async def _set_state(self, state: str) -> None:
        self.state = state
        await self.mqtt.publish(self.state_topic, state)

    async def init(self) -> None:
        await self._set_state(STATE_INIT)
        await self.mqtt.publish(f"{self.topic}/$homie", HOMIE_VERSION)
        await self.mqtt.publish(f"{self.topic}/$name", self.name)
        await self.mqtt.publish(f"{self.topic}/$extensions", "")

    async def publish_node_attributes(self, node: HomieNode) -> None:
        await self.mqtt.publish(f"{self.topic}/$nodes", ",".join(self._nodes))
        for topic, payload in node.attributes():
            await self.mqtt.publish(topic, payload)

    async def setup(self) -> None:
        """Announce every node and switch ``$state`` to ready."""
        if self.state is None:
            await self.init()
        await self.mqtt.publish(f"{self.topic}/$nodes", ",".join(self._nodes))
        for node in self._nodes.values():
            for topic, payload in node.attributes():
                await self.mqtt.publish(topic, payload)
        await self._set_state(STATE_READY)
        logger.info(f"Homie device {self.topic} ready with {len(self._nodes)} node(s)")

    async def disconnect(self) -> None:
        if self.state is not None:
            await self._set_state(STATE_DISCONNECTED)
