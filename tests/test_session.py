import unittest

from mbus_bridge.errors import TransportError
from mbus_bridge.homie import HomieDevice
from mbus_bridge.models import DataRecord, Reading
from mbus_bridge.session import DeviceSession, node_id_for

from tests.fakes import FakeMaster, RecordingMQTT, make_reading

BASE = "homie/mbus/busAddress-5"


class DeviceSessionTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.mqtt = RecordingMQTT()
        self.device = HomieDevice("mbus", "MBus Bridge", self.mqtt)
        await self.device.init()

    def _session(self, responses) -> DeviceSession:
        self.master = FakeMaster({"5": responses})
        self.master.connected = True
        return DeviceSession("5", self.device.node(node_id_for("5")), self.master)

    async def test_first_poll_creates_and_publishes(self) -> None:
        session = self._session([make_reading(value=1500)])
        self.assertTrue(await session.first_poll())

        self.assertTrue(session.has_completed_first_poll)
        self.assertEqual(self.mqtt.last(f"{BASE}/information/Manufacturer/$datatype"), "string")
        self.assertEqual(self.mqtt.last(f"{BASE}/information/Manufacturer"), "ABC")
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1/$datatype"), "float")
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1/$unit"), "m³")
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.5")

    async def test_property_created_before_value(self) -> None:
        session = self._session([make_reading()])
        await session.first_poll()
        topics = [t for t, _, _ in self.mqtt.messages]
        self.assertLess(
            topics.index(f"{BASE}/datarecord/id-1/$datatype"),
            topics.index(f"{BASE}/datarecord/id-1"),
        )

    async def test_refresh_only_updates_values(self) -> None:
        session = self._session([make_reading(value=1500), make_reading(value=1600)])
        await session.first_poll()
        self.assertTrue(await session.refresh())

        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.6")
        self.assertEqual(self.mqtt.count(f"{BASE}/datarecord/id-1/$datatype"), 1)
        self.assertEqual(self.mqtt.count(f"{BASE}/information/Manufacturer"), 2)

    async def test_first_poll_transport_error_creates_nothing(self) -> None:
        session = self._session([TransportError("timeout", "5")])
        with self.assertLogs("Device[5]", level="ERROR"):
            self.assertFalse(await session.first_poll())
        self.assertFalse(session.has_completed_first_poll)
        self.assertEqual(session.node.property_names, [])

    async def test_refresh_transport_error_keeps_values(self) -> None:
        session = self._session([make_reading(value=1500), TransportError("timeout", "5")])
        await session.first_poll()
        published = len(self.mqtt.messages)

        with self.assertLogs("Device[5]", level="ERROR"):
            self.assertFalse(await session.refresh())
        self.assertEqual(len(self.mqtt.messages), published)
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.5")

    async def test_refresh_skips_unknown_record(self) -> None:
        later = Reading(
            address="5",
            slave_information={"Manufacturer": "ABC"},
            data_records=[
                DataRecord(id="9", value=3, unit_text="Power (W)"),
                DataRecord(id="1", value=1700, unit_text="Volume (1e-3 m^3)"),
            ],
        )
        session = self._session([make_reading(), later])
        await session.first_poll()

        with self.assertLogs("Device[5]", level="ERROR") as logs:
            await session.refresh()
        self.assertTrue(any("datarecord/id-9" in line for line in logs.output))
        self.assertEqual(self.mqtt.count(f"{BASE}/datarecord/id-9"), 0)
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.7")

    async def test_poll_retries_first_poll_until_it_succeeds(self) -> None:
        session = self._session([TransportError("timeout", "5"), make_reading(value=1500), make_reading(value=1600)])

        with self.assertLogs("Device[5]", level="ERROR"):
            self.assertFalse(await session.poll())
        self.assertEqual(session.node.property_names, [])

        self.assertTrue(await session.poll())
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.5")

        self.assertTrue(await session.poll())
        self.assertEqual(self.mqtt.last(f"{BASE}/datarecord/id-1"), "1.6")
        self.assertEqual(self.mqtt.count(f"{BASE}/datarecord/id-1/$datatype"), 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
