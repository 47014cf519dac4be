import asyncio
import logging
import os
import signal
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from mbus_bridge.bridge import Bridge
from mbus_bridge.config import load_settings
from mbus_bridge.main import _parse_args, configure_logging, main, run

from tests.fakes import FakeMaster, RecordingMQTT, make_reading


class RestoreRootLogger:
    """configure_logging() replaces the root handlers; put them back afterwards."""

    def setUp(self) -> None:
        root = logging.getLogger()
        self._handlers = root.handlers[:]
        self._level = root.level

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            if handler not in self._handlers:
                root.removeHandler(handler)
                handler.close()
        root.handlers[:] = self._handlers
        root.setLevel(self._level)


class CliParsingTest(unittest.TestCase):
    def test_defaults(self) -> None:
        args = _parse_args([])
        self.assertEqual(args.env_file, ".env")
        self.assertIsNone(args.log_level)

    def test_overrides(self) -> None:
        args = _parse_args(["--env-file", "bridge.env", "--log-level", "DEBUG"])
        self.assertEqual(args.env_file, "bridge.env")
        self.assertEqual(args.log_level, "DEBUG")


class RunTest(RestoreRootLogger, unittest.TestCase):
    def test_configuration_error_exits_before_connecting(self) -> None:
        with patch.dict("os.environ", {}, clear=True), patch("mbus_bridge.main.Bridge") as bridge:
            with self.assertRaises(SystemExit) as ctx:
                run(["--env-file", "/nonexistent/bridge.env"])
        self.assertEqual(ctx.exception.code, 1)
        bridge.assert_not_called()


class SignalShutdownTest(unittest.IsolatedAsyncioTestCase):
    async def test_sigterm_stops_bridge_and_returns_zero(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            settings = load_settings(
                env_file=None,
                MBUS_SERIAL_DEVICE="/dev/ttyUSB0",
                MBUS_BUS_ADDRESSES="5",
                HOMIE_DEVICE_ID="mbus",
            )
        master = FakeMaster({"5": [make_reading("5")]})
        mqtt = RecordingMQTT()

        loop = asyncio.get_running_loop()
        self.addCleanup(loop.remove_signal_handler, signal.SIGINT)
        self.addCleanup(loop.remove_signal_handler, signal.SIGTERM)
        loop.call_later(0.05, os.kill, os.getpid(), signal.SIGTERM)

        with patch("mbus_bridge.main.Bridge", side_effect=lambda s: Bridge(s, master=master, mqtt=mqtt)):
            exit_code = await asyncio.wait_for(main(settings), timeout=5.0)

        self.assertEqual(exit_code, 0)
        self.assertEqual(master.events, ["connect", "close"])
        self.assertEqual(master.calls, ["5"])
        self.assertEqual(mqtt.last("homie/mbus/$state"), "disconnected")


class LoggingTest(RestoreRootLogger, unittest.TestCase):
    def test_log_dir_writes_combined_and_error_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            configure_logging("INFO", tmp)
            log = logging.getLogger("mbus_bridge.test")
            log.info("lifecycle event")
            log.error("transport failure")

            # close the file handlers before the directory goes away
            self.tearDown()
            combined = (Path(tmp) / "combined.log").read_text(encoding="utf-8")
            errors = (Path(tmp) / "error.log").read_text(encoding="utf-8")

        self.assertIn("lifecycle event", combined)
        self.assertIn("transport failure", combined)
        self.assertNotIn("lifecycle event", errors)
        self.assertIn("transport failure", errors)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
