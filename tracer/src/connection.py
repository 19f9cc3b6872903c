"""
Physical channel to the charge controller.

Defines the Connection protocol used by the acquisition loop and two
implementations:

- SerialConnection: a real serial port via pyserial.
- InMemoryConnection: scripted input lines and recorded writes, used by the
  test suite and for dry runs without hardware.

Opening a serial port retries while the device is absent (unplugged USB
adapter, port not yet enumerated), waiting a fixed delay between attempts,
until the shared stop event is set. Every other open failure (permission
denied, bad identifier) is raised as ConnectionOpenError and treated as
fatal by the caller.

A connection has a single owner thread. Nothing here is synchronized.

CHANGELOG:
- 2026-10-19: Stop waiting for an absent device on shutdown
- 2026-10-19: Add available_ports() for port discovery
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import errno
import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from typing import Protocol

import serial
from serial.tools import list_ports

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BAUD_RATE: int = 57600
"""Line speed used by the charge controller."""

DEFAULT_READ_TIMEOUT_S: float = 2.0
"""Upper bound on how long a single read_line() may block."""

DEFAULT_OPEN_RETRY_DELAY_S: float = 1.0
"""Fixed delay between open attempts while the device is absent."""


class ConnectionOpenError(RuntimeError):
    """Raised when a port cannot be opened for a reason other than absence."""


class OpenCancelled(Exception):
    """Raised when shutdown is requested while waiting for an absent device."""


class Connection(Protocol):
    """Capability set the acquisition loop needs from a physical channel."""

    def read_line(self) -> str:
        """Read one line, without its trailing CR/LF.

        Raises:
            TimeoutError: If no data arrived before the read timeout.
            OSError: On any other I/O failure.
        """
        ...

    def write(self, data: bytes) -> int:
        """Write raw bytes and return the number written."""
        ...

    def flush(self) -> None:
        """Block until all written bytes have been transmitted."""
        ...

    def close(self) -> None:
        """Release the underlying channel."""
        ...


ConnectionFactory = Callable[[str], Connection]
"""Opens (or re-opens) a Connection for a device identifier."""


# ---------------------------------------------------------------------------
# Serial implementation
# ---------------------------------------------------------------------------


class SerialConnection:
    """Connection backed by an open ``serial.Serial`` port.

    Args:
        port: An already opened pyserial port.
    """

    def __init__(self, port: serial.Serial) -> None:
        self._port = port

    @property
    def name(self) -> str:
        return str(self._port.port)

    def read_line(self) -> str:
        """Read bytes until a newline or until the read timeout expires.

        A partial line (data followed by the timeout) is returned as-is.
        Interrupted reads are retried.

        Raises:
            TimeoutError: If not a single byte arrived before the timeout.
            serial.SerialException: On device errors (it is an OSError).
        """
        while True:
            try:
                raw = self._port.read_until(b"\n")
                break
            except InterruptedError:
                continue
        if not raw:
            raise TimeoutError(f"no data from {self.name} within read timeout")
        return raw.decode("ascii", errors="replace").rstrip("\r\n")

    def write(self, data: bytes) -> int:
        written = self._port.write(data)
        return len(data) if written is None else written

    def flush(self) -> None:
        self._port.flush()

    def close(self) -> None:
        if self._port.is_open:
            self._port.close()


def is_device_absent(exc: serial.SerialException) -> bool:
    """Return True if *exc* means the device is simply not present."""
    if exc.errno in (errno.ENOENT, errno.ENODEV, errno.ENXIO):
        return True
    # pyserial on Windows folds the WinError into the message text.
    return "FileNotFoundError" in str(exc)


def open_serial(
    identifier: str,
    *,
    baud_rate: int = DEFAULT_BAUD_RATE,
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_S,
    retry_delay_s: float = DEFAULT_OPEN_RETRY_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
    stop_event: threading.Event | None = None,
) -> SerialConnection:
    """Open a serial port, retrying indefinitely while the device is absent.

    Args:
        identifier: Serial endpoint name, e.g. ``/dev/ttyUSB0`` or ``COM3``.
        baud_rate: Line speed.
        read_timeout_s: Read timeout applied to every read.
        retry_delay_s: Seconds to wait between attempts while absent.
        sleep: Sleep function, injectable for tests. Unused when
            *stop_event* is given.
        stop_event: Shared shutdown flag. When set, waiting for an absent
            device ends with OpenCancelled.

    Returns:
        An open SerialConnection.

    Raises:
        ConnectionOpenError: For any failure other than device absence.
        OpenCancelled: If *stop_event* is set while the device is absent.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            port = serial.Serial(identifier, baud_rate, timeout=read_timeout_s)
        except serial.SerialException as exc:
            if not is_device_absent(exc):
                raise ConnectionOpenError(
                    f"cannot open serial port {identifier}: {exc}"
                ) from exc
            logger.warning(
                "Device %s not present (attempt %d), retrying in %.1fs",
                identifier,
                attempt,
                retry_delay_s,
            )
            if stop_event is None:
                sleep(retry_delay_s)
            elif stop_event.wait(retry_delay_s):
                raise OpenCancelled(
                    f"shutdown requested while waiting for {identifier}"
                ) from exc
            continue
        logger.info(
            "Opened serial port %s at %d baud (attempt %d)",
            identifier,
            baud_rate,
            attempt,
        )
        return SerialConnection(port)


def serial_factory(
    *,
    baud_rate: int = DEFAULT_BAUD_RATE,
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_S,
    retry_delay_s: float = DEFAULT_OPEN_RETRY_DELAY_S,
    stop_event: threading.Event | None = None,
) -> ConnectionFactory:
    """Return a ConnectionFactory that opens serial ports with these options.

    Pass the pipeline's stop event so a shutdown is not held up by a device
    that never appears.
    """

    def _open(identifier: str) -> Connection:
        return open_serial(
            identifier,
            baud_rate=baud_rate,
            read_timeout_s=read_timeout_s,
            retry_delay_s=retry_delay_s,
            stop_event=stop_event,
        )

    return _open


def available_ports() -> list[str]:
    """Return the device names of all serial ports on this machine."""
    return [info.device for info in list_ports.comports()]


def discard_pending_line(connection: Connection) -> None:
    """Throw away one line so a command is not interleaved with a frame.

    This is a best-effort heuristic, not a guaranteed frame boundary. A
    timeout is expected when the device is idle and is ignored.
    """
    try:
        discarded = connection.read_line()
    except TimeoutError:
        logger.debug("No in-flight line to discard before command")
        return
    logger.debug("Discarded in-flight line before command: %r", discarded)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryConnection:
    """Scripted Connection for tests and hardware-free runs.

    Each item of *script* is either a line to return from read_line() or an
    exception instance to raise. When the script runs out, read_line()
    raises TimeoutError like an idle serial port.

    Args:
        script: Lines and/or exceptions, consumed in order.
        name: Identifier reported in logs.
    """

    def __init__(
        self,
        script: Iterable[str | BaseException] = (),
        *,
        name: str = "memory",
    ) -> None:
        self.name = name
        self._script: deque[str | BaseException] = deque(script)
        self.writes: list[bytes] = []
        self.flush_count = 0
        self.closed = False

    def feed(self, *items: str | BaseException) -> None:
        """Append more lines or exceptions to the script."""
        self._script.extend(items)

    def read_line(self) -> str:
        if self.closed:
            raise OSError(f"connection {self.name} is closed")
        if not self._script:
            raise TimeoutError(f"no data from {self.name} within read timeout")
        item = self._script.popleft()
        if isinstance(item, BaseException):
            raise item
        return item.rstrip("\r\n")

    def write(self, data: bytes) -> int:
        if self.closed:
            raise OSError(f"connection {self.name} is closed")
        self.writes.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        self.flush_count += 1

    def close(self) -> None:
        self.closed = True
