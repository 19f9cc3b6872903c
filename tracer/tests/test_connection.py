"""
Tests for the serial and in-memory connections.

pyserial is mocked throughout: ``serial.Serial`` is patched in the
connection module so no hardware is touched.

CHANGELOG:
- 2026-10-19: Cover cancelling the absent-device wait
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import errno
import logging
import threading
from unittest.mock import MagicMock, patch

import pytest
import serial
from tracer.src.connection import (
    ConnectionOpenError,
    InMemoryConnection,
    OpenCancelled,
    SerialConnection,
    available_ports,
    discard_pending_line,
    is_device_absent,
    open_serial,
    serial_factory,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _absent_error() -> serial.SerialException:
    return serial.SerialException(
        errno.ENOENT, "could not open port /dev/ttyUSB0: No such file or directory"
    )


def _permission_error() -> serial.SerialException:
    return serial.SerialException(
        errno.EACCES, "could not open port /dev/ttyUSB0: Permission denied"
    )


def _mock_port(*reads: bytes | BaseException) -> MagicMock:
    port = MagicMock()
    port.port = "/dev/ttyUSB0"
    port.is_open = True
    port.read_until.side_effect = list(reads)
    return port


# ===========================================================================
# open_serial: retry on absence, fatal otherwise
# ===========================================================================


class TestOpenSerial:
    def test_opens_with_baud_rate_and_timeout(self) -> None:
        with patch("tracer.src.connection.serial.Serial") as mock_cls:
            conn = open_serial("/dev/ttyUSB0", baud_rate=57600, read_timeout_s=2.0)

        mock_cls.assert_called_once_with("/dev/ttyUSB0", 57600, timeout=2.0)
        assert isinstance(conn, SerialConnection)

    def test_retries_while_device_absent(self, caplog: pytest.LogCaptureFixture) -> None:
        """Absent device: retry with a fixed delay, logging each attempt."""
        sleep = MagicMock()
        with patch(
            "tracer.src.connection.serial.Serial",
            side_effect=[_absent_error(), _absent_error(), MagicMock()],
        ) as mock_cls:
            with caplog.at_level(logging.WARNING, logger="tracer.src.connection"):
                open_serial("/dev/ttyUSB0", retry_delay_s=1.0, sleep=sleep)

        assert mock_cls.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(1.0)
        assert sum("not present" in r.message for r in caplog.records) == 2

    def test_other_failure_is_fatal(self) -> None:
        sleep = MagicMock()
        with patch(
            "tracer.src.connection.serial.Serial", side_effect=_permission_error()
        ):
            with pytest.raises(ConnectionOpenError):
                open_serial("/dev/ttyUSB0", sleep=sleep)

        sleep.assert_not_called()

    def test_stop_event_ends_absent_wait(self) -> None:
        """A set stop event ends the retry loop instead of sleeping forever."""
        stop_event = threading.Event()
        stop_event.set()
        sleep = MagicMock()
        with patch(
            "tracer.src.connection.serial.Serial", side_effect=_absent_error()
        ) as mock_cls:
            with pytest.raises(OpenCancelled):
                open_serial("/dev/ttyUSB0", sleep=sleep, stop_event=stop_event)

        mock_cls.assert_called_once()
        sleep.assert_not_called()

    def test_stop_event_unset_keeps_retrying(self) -> None:
        stop_event = threading.Event()
        with patch(
            "tracer.src.connection.serial.Serial",
            side_effect=[_absent_error(), MagicMock()],
        ) as mock_cls:
            conn = open_serial(
                "/dev/ttyUSB0", retry_delay_s=0.01, stop_event=stop_event
            )

        assert mock_cls.call_count == 2
        assert isinstance(conn, SerialConnection)

    def test_serial_factory_passes_stop_event(self) -> None:
        stop_event = threading.Event()
        with patch("tracer.src.connection.open_serial") as mock_open:
            serial_factory(baud_rate=9600, stop_event=stop_event)("COM3")

        mock_open.assert_called_once_with(
            "COM3",
            baud_rate=9600,
            read_timeout_s=2.0,
            retry_delay_s=1.0,
            stop_event=stop_event,
        )


class TestIsDeviceAbsent:
    def test_enoent(self) -> None:
        assert is_device_absent(_absent_error())

    def test_windows_message(self) -> None:
        exc = serial.SerialException(
            "could not open port 'COM7': FileNotFoundError(2, 'The system cannot find the file specified.', None, 2)"
        )
        assert is_device_absent(exc)

    def test_permission_denied(self) -> None:
        assert not is_device_absent(_permission_error())


# ===========================================================================
# SerialConnection.read_line / write
# ===========================================================================


class TestSerialReadLine:
    def test_trims_crlf(self) -> None:
        conn = SerialConnection(_mock_port(b"1:2:3\r\n"))

        assert conn.read_line() == "1:2:3"

    def test_partial_line_returned_on_timeout(self) -> None:
        """Data followed by the timeout (no newline) is returned as-is."""
        conn = SerialConnection(_mock_port(b"12.6:18"))

        assert conn.read_line() == "12.6:18"

    def test_no_data_raises_timeout(self) -> None:
        conn = SerialConnection(_mock_port(b""))

        with pytest.raises(TimeoutError):
            conn.read_line()

    def test_interrupted_read_is_retried(self) -> None:
        port = _mock_port(InterruptedError(), b"ok\n")
        conn = SerialConnection(port)

        assert conn.read_line() == "ok"
        assert port.read_until.call_count == 2

    def test_device_error_propagates(self) -> None:
        conn = SerialConnection(_mock_port(serial.SerialException("device reports readiness to read but returned no data")))

        with pytest.raises(OSError):
            conn.read_line()


class TestSerialWrite:
    def test_write_and_flush(self) -> None:
        port = _mock_port()
        port.write.return_value = 4
        conn = SerialConnection(port)

        assert conn.write(b"LON\n") == 4
        conn.flush()

        port.write.assert_called_once_with(b"LON\n")
        port.flush.assert_called_once()

    def test_close_only_when_open(self) -> None:
        port = _mock_port()
        port.is_open = False
        SerialConnection(port).close()

        port.close.assert_not_called()


# ===========================================================================
# Helpers around the protocol
# ===========================================================================


class TestDiscardPendingLine:
    def test_discards_one_line(self) -> None:
        conn = InMemoryConnection(["in-flight", "next"])

        discard_pending_line(conn)

        assert conn.read_line() == "next"

    def test_timeout_ignored(self) -> None:
        discard_pending_line(InMemoryConnection())


class TestAvailablePorts:
    def test_lists_device_names(self) -> None:
        infos = [MagicMock(device="/dev/ttyUSB0"), MagicMock(device="/dev/ttyACM0")]
        with patch("tracer.src.connection.list_ports.comports", return_value=infos):
            assert available_ports() == ["/dev/ttyUSB0", "/dev/ttyACM0"]


class TestInMemoryConnection:
    def test_scripted_lines_then_timeout(self) -> None:
        conn = InMemoryConnection(["a\r\n", "b"])

        assert conn.read_line() == "a"
        assert conn.read_line() == "b"
        with pytest.raises(TimeoutError):
            conn.read_line()

    def test_scripted_exception_raised(self) -> None:
        conn = InMemoryConnection([OSError("unplugged")])

        with pytest.raises(OSError, match="unplugged"):
            conn.read_line()

    def test_records_writes(self) -> None:
        conn = InMemoryConnection()
        conn.write(b"LON\n")
        conn.flush()

        assert conn.writes == [b"LON\n"]
        assert conn.flush_count == 1

    def test_closed_connection_rejects_io(self) -> None:
        conn = InMemoryConnection(["a"])
        conn.close()

        with pytest.raises(OSError):
            conn.read_line()
        with pytest.raises(OSError):
            conn.write(b"x")
