"""M-Bus transport that drives the libmbus command line tools.

The frame codec lives in libmbus; this module only spawns
``mbus-serial-request-data`` (or ``mbus-tcp-request-data``) for one address,
bounds it with a timeout and converts the XML it prints into a ``Reading``.

All reads go through a single worker task so that only one conversation is
ever active on the physical bus, regardless of how many devices are polled.
"""

import asyncio
import logging
import re
import shutil
import xml.etree.ElementTree as ET
from typing import List, Optional, Tuple

from .errors import TransportError
from .models import DataRecord, Reading, Scalar

logger = logging.getLogger(__name__)

SERIAL_TOOL = "mbus-serial-request-data"
TCP_TOOL = "mbus-tcp-request-data"

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def _coerce(text: Optional[str]) -> Scalar:
    """Convert numeric XML text to int/float, leave everything else as str."""
    text = (text or "").strip()
    if _INT_RE.match(text):
        return int(text)
    if _NUMBER_RE.match(text):
        return float(text)
    return text


def parse_mbus_xml(xml_text: str | bytes, address: str) -> Reading:
    """
    Parse the XML document printed by the libmbus request tools.

    Args:
        xml_text: Tool output, an ``<MBusData>`` document; pass bytes so the
            encoding libmbus declares (ISO-8859-1) is honoured
        address: Bus address the reading belongs to

    Returns:
        Reading with SlaveInformation fields and data records in document order

    Raises:
        TransportError: If the output is not a well-formed MBusData document
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise TransportError(f"Malformed M-Bus XML from address {address}: {e}", address) from e

    if root.tag != "MBusData":
        raise TransportError(f"Unexpected root element <{root.tag}> from address {address}", address)

    reading = Reading(address=address)

    info = root.find("SlaveInformation")
    if info is not None:
        for child in info:
            reading.slave_information[child.tag] = _coerce(child.text)

    for rec in root.findall("DataRecord"):
        storage = rec.findtext("StorageNumber")
        reading.data_records.append(
            DataRecord(
                id=rec.get("id", str(len(reading.data_records))),
                value=_coerce(rec.findtext("Value")),
                unit_text=(rec.findtext("Unit") or "").strip(),
                function=rec.findtext("Function"),
                storage_number=int(storage) if storage and _INT_RE.match(storage) else None,
            )
        )

    return reading


class MBusMaster:
    """
    Single-owner access to one M-Bus line.

    ``get_reading`` enqueues a request and awaits its result; one worker task
    executes the requests strictly one after another.
    """

    def __init__(
        self,
        serial_device: str | None = None,
        baudrate: int = 2400,
        host: str | None = None,
        port: int = 10001,
        timeout: float = 10.0,
    ):
        """
        Initialize the M-Bus master.

        Args:
            serial_device: Serial port of the M-Bus level converter
            baudrate: Serial baud rate
            host: Hostname of an M-Bus TCP gateway, used when no serial device is given
            port: TCP port of the gateway
            timeout: Upper bound in seconds for a single read
        """
        if not serial_device and not host:
            raise ValueError("MBusMaster needs a serial device or a TCP host")
        self.serial_device = serial_device
        self.baudrate = baudrate
        self.host = host
        self.port = port
        self.timeout = timeout

        self._queue: asyncio.Queue[Optional[Tuple[str, asyncio.Future]]] | None = None
        self._worker: asyncio.Task | None = None
        self._closed = True

    @property
    def tool(self) -> str:
        return SERIAL_TOOL if self.serial_device else TCP_TOOL

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def _command(self, address: str) -> List[str]:
        if self.serial_device:
            return [self.tool, "-b", str(self.baudrate), self.serial_device, str(address)]
        return [self.tool, str(self.host), str(self.port), str(address)]

    async def connect(self) -> None:
        """Open the line: check the libmbus tool is installed and start the worker."""
        if not self._closed:
            return
        if shutil.which(self.tool) is None:
            raise TransportError(f"libmbus tool '{self.tool}' not found on PATH")

        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="mbus-master")
        self._closed = False
        logger.info(f"M-Bus master ready ({' '.join(self._command('<address>'))})")

    async def close(self) -> None:
        """Stop accepting requests, let queued ones finish, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        assert self._queue is not None
        await self._queue.put(None)
        if self._worker and not self._worker.done():
            await self._worker
        self._worker = None
        logger.info("M-Bus master closed")

    async def get_reading(self, address: str) -> Reading:
        """
        Read one device.

        Raises:
            TransportError: If the master is closed or the read fails
        """
        if self._closed or self._queue is None:
            raise TransportError("M-Bus master is not connected", address)
        if self._worker is None or self._worker.done():
            raise TransportError("M-Bus worker is not running", address)
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((str(address), future))
        return await future

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            if item is None:
                break
            address, future = item
            if future.cancelled():
                continue
            try:
                reading = await self._request(address)
            except TransportError as e:
                if not future.cancelled():
                    # drop the traceback, it references this suspended worker frame
                    future.set_exception(e.with_traceback(None))
            except Exception as e:
                if not future.cancelled():
                    future.set_exception(TransportError(f"M-Bus read failed: {e}", address))
            else:
                if not future.cancelled():
                    future.set_result(reading)

    async def _request(self, address: str) -> Reading:
        cmd = self._command(address)
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"Cannot start {self.tool}: {e}", address) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TransportError(
                f"Timeout after {self.timeout}s reading address {address}", address
            )

        if proc.returncode != 0:
            detail = (stderr or stdout).decode("utf-8", errors="replace").strip()
            raise TransportError(
                f"{self.tool} exited with {proc.returncode} for address {address}: {detail}",
                address,
            )

        return parse_mbus_xml(stdout, address)
