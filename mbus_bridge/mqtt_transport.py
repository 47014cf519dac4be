"""MQTT transport layer for publishing Homie topics."""

import logging
import ssl

from aiomqtt import Client, Will

logger = logging.getLogger(__name__)


class MQTTTransport:
    """
    Async MQTT client wrapper for publishing retained Homie topics.

    Uses context manager pattern for automatic connection/disconnection.
    """

    def __init__(
        self,
        host: str,
        port: int,
        client_id: str,
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        qos: int = 1,
        will_topic: str | None = None,
        will_payload: str | None = None,
    ):
        """
        Initialize MQTT transport.

        Args:
            host: MQTT broker hostname
            port: MQTT broker port
            client_id: MQTT client identifier
            username: Optional authentication username
            password: Optional authentication password
            tls: Enable TLS encryption
            qos: Quality of Service level (0, 1, or 2)
            will_topic: Topic of the retained last will, if any
            will_payload: Payload of the last will
        """
        self.host = host
        self.port = port
        self.client_id = client_id
        self.username = username
        self.password = password
        self.tls = tls
        self.qos = qos
        self.will_topic = will_topic
        self.will_payload = will_payload
        self._client: Client | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def __aenter__(self):
        """Enter context manager - establish MQTT connection."""
        will = None
        if self.will_topic:
            will = Will(self.will_topic, self.will_payload, qos=self.qos, retain=True)

        self._client = Client(
            hostname=self.host,
            port=self.port,
            identifier=self.client_id,
            username=self.username,
            password=self.password,
            tls_context=ssl.create_default_context() if self.tls else None,
            will=will,
        )

        await self._client.__aenter__()
        logger.info(f"Connected to MQTT broker at {self.host}:{self.port}")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        """Exit context manager - close MQTT connection."""
        client, self._client = self._client, None
        if client:
            try:
                await client.__aexit__(exc_type, exc, tb)
            except Exception as e:
                # Log error but don't raise to avoid masking original exception
                logger.error(f"Error closing MQTT connection: {e}")

    async def publish(self, topic: str, payload: str, retain: bool = True) -> None:
        """
        Publish a text payload to the specified topic.

        Raises:
            RuntimeError: If MQTT client is not connected
        """
        if not self._client:
            raise RuntimeError("MQTT client not connected")

        await self._client.publish(
            topic=topic,
            payload=payload.encode("utf-8"),
            qos=self.qos,
            retain=retain,
        )
