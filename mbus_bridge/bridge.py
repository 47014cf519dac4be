"""Main controller that orchestrates M-Bus polling and Homie publishing."""

import logging
from typing import List

from .config import Settings
from .homie import STATE_LOST, HomieDevice
from .mbus_client import MBusMaster
from .models import DeviceState
from .mqtt_transport import MQTTTransport
from .scheduler import PollScheduler
from .session import DeviceSession, node_id_for

logger = logging.getLogger(__name__)


class Bridge:
    """
    Main controller for the M-Bus to Homie bridge.

    Startup: MQTT, then the M-Bus line, then a first poll per address, then
    the Homie device goes ready and the scheduler starts. Shutdown runs in the
    opposite direction: timers first, then the M-Bus line, then MQTT.
    """

    def __init__(self, settings: Settings, master: MBusMaster | None = None, mqtt=None):
        """Initialize the bridge; ``master`` and ``mqtt`` may be injected for tests."""
        self.settings = settings
        self.master = master or MBusMaster(
            serial_device=settings.MBUS_SERIAL_DEVICE,
            baudrate=settings.MBUS_BAUDRATE,
            host=settings.MBUS_HOST,
            port=settings.MBUS_PORT,
            timeout=settings.MBUS_TIMEOUT_S,
        )
        state_topic = f"{settings.HOMIE_BASE_TOPIC}/{settings.HOMIE_DEVICE_ID}/$state"
        self.mqtt = mqtt or MQTTTransport(
            host=settings.MQTT_HOST,
            port=settings.MQTT_PORT,
            client_id=settings.MQTT_CLIENT_ID,
            username=settings.MQTT_USERNAME,
            password=settings.MQTT_PASSWORD,
            tls=settings.MQTT_TLS,
            qos=settings.MQTT_QOS,
            will_topic=state_topic,
            will_payload=STATE_LOST,
        )
        self.device = HomieDevice(
            settings.HOMIE_DEVICE_ID,
            settings.HOMIE_DEVICE_NAME,
            self.mqtt,
            base_topic=settings.HOMIE_BASE_TOPIC,
        )
        self.sessions: List[DeviceSession] = []
        self.scheduler: PollScheduler | None = None
        self._mqtt_connected = False
        self._started = False
        self._stopped = False

    async def start(self) -> None:
        """Connect everything, run the first polls and arm the timers."""
        if self._started:
            logger.warning("Bridge already started")
            return
        self._started = True

        await self.mqtt.__aenter__()
        self._mqtt_connected = True
        await self.device.init()

        await self.master.connect()

        for address in self.settings.bus_addresses:
            node = self.device.node(node_id_for(address), name=f"M-Bus address {address}")
            session = DeviceSession(address, node, self.master)
            self.sessions.append(session)

            session.state = DeviceState.FIRST_POLL_PENDING
            try:
                ok = await session.first_poll()
            except Exception as e:
                # keep starting the remaining addresses
                logger.exception(f"Unexpected error on first poll of address {address}: {e}")
                ok = False
            if not ok:
                logger.error(
                    f"First poll of address {address} failed, retrying on the next scheduled tick"
                )
            session.state = DeviceState.ACTIVE

        await self.device.setup()

        self.scheduler = PollScheduler(self.sessions, self.settings.PUBLISH_SCHEDULE)
        self.scheduler.start()
        logger.info(f"Bridge running for {len(self.sessions)} address(es)")

    async def stop(self) -> None:
        """Cancel timers, drain in-flight polls, close the M-Bus line, then MQTT."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping bridge...")

        if self.scheduler:
            await self.scheduler.stop()
        else:
            for session in self.sessions:
                session.state = DeviceState.CLOSED

        await self.master.close()

        if self._mqtt_connected:
            try:
                await self.device.disconnect()
            except Exception as e:
                logger.error(f"Could not publish disconnected state: {e}")
            await self.mqtt.__aexit__(None, None, None)
            self._mqtt_connected = False

        logger.info("Bridge stopped")
