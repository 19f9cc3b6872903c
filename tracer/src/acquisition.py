"""
Acquisition loop: the producer side of the telemetry pipeline.

Runs on its own thread and is the sole owner of the Connection and the
PersistenceBuffer. Each cycle:

1. Forces a full reconnect if the previous cycles hit the consecutive
   failure threshold (default 5), then resets the counter.
2. Reads one line and decodes it. A read or decode failure increments the
   failure counter and yields a placeholder Sample for this cycle.
3. Appends real samples to the buffer (placeholders only when configured),
   which commits a batch when full.
4. Publishes the Sample to the consumer queue without blocking.
5. Waits the inter-sample interval (returns early on shutdown).
6. Drains at most one pending load command and writes it to the device.

Shutdown is cooperative: the shared stop event is checked at the top of
every cycle. On exit, on any path, the buffer is flushed and the connection
closed. A fatal open failure during reconnect stops the loop, is stored on
``error`` and sets the stop event so the consumer side can exit. A shutdown
requested while the device is absent ends the open wait and the loop.

CHANGELOG:
- 2026-10-19: Count a reconnect even when the previous attempt raised
- 2026-10-19: End cleanly when shutdown interrupts waiting for the device
- 2026-10-19: Persist placeholders only when explicitly enabled
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import enum
import logging
import queue
import threading

from tracer.src.buffer import PersistenceBuffer
from tracer.src.codec import DecodeError, decode_line, encode_command
from tracer.src.connection import (
    Connection,
    ConnectionFactory,
    ConnectionOpenError,
    OpenCancelled,
    discard_pending_line,
)
from tracer.src.health import HealthWriter
from tracer.src.models import Sample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SAMPLE_INTERVAL_S: float = 1.0
"""Fixed wait between acquisition cycles."""

DEFAULT_COMMAND_POLL_S: float = 0.001
"""How long a cycle waits for a pending load command."""

DEFAULT_RECONNECT_THRESHOLD: int = 5
"""Consecutive read/decode failures that force a reconnect."""


class LoopState(enum.Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class AcquisitionLoop:
    """Reads, decodes, persists and publishes samples from one device.

    Args:
        identifier: Device identifier passed to the connection factory.
        connection_factory: Opens the device; blocks while it is absent and
            raises ConnectionOpenError on fatal failures.
        buffer: Persistence buffer, owned exclusively by this loop.
        samples: Consumer queue. Sends never block; with a bounded queue a
            full queue drops the sample.
        commands: Load command queue (True = load on).
        stop_event: Shared shutdown flag, set by the consumer side.
        sample_interval_s: Wait between cycles.
        command_poll_s: Wait for a pending command in each cycle.
        reconnect_threshold: Consecutive failures before a forced reconnect.
        persist_placeholders: Also buffer placeholder samples.
        health: Optional health file writer.
        connection: An already open connection. When omitted, the factory
            is called on the first cycle.
    """

    def __init__(
        self,
        *,
        identifier: str,
        connection_factory: ConnectionFactory,
        buffer: PersistenceBuffer,
        samples: queue.Queue[Sample],
        commands: queue.Queue[bool],
        stop_event: threading.Event,
        sample_interval_s: float = DEFAULT_SAMPLE_INTERVAL_S,
        command_poll_s: float = DEFAULT_COMMAND_POLL_S,
        reconnect_threshold: int = DEFAULT_RECONNECT_THRESHOLD,
        persist_placeholders: bool = False,
        health: HealthWriter | None = None,
        connection: Connection | None = None,
    ) -> None:
        if reconnect_threshold < 1:
            raise ValueError("reconnect_threshold must be >= 1")
        self._identifier = identifier
        self._connection_factory = connection_factory
        self._connection = connection
        self._ever_opened = connection is not None
        self._buffer = buffer
        self._samples = samples
        self._commands = commands
        self._stop_event = stop_event
        self._sample_interval_s = sample_interval_s
        self._command_poll_s = command_poll_s
        self._reconnect_threshold = reconnect_threshold
        self._persist_placeholders = persist_placeholders
        self._health = health
        self._thread: threading.Thread | None = None

        self.state = LoopState.RUNNING
        self.consecutive_failures = 0
        self.reconnect_count = 0
        self.error: ConnectionOpenError | None = None

    @property
    def connection(self) -> Connection | None:
        return self._connection

    # ------------------------------------------------------------------
    # Thread management
    # ------------------------------------------------------------------

    def start(self) -> threading.Thread:
        """Run the loop on a new daemon thread named ``acquisition``."""
        self._thread = threading.Thread(target=self.run, name="acquisition", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop thread. Returns True if it has finished."""
        if self._thread is None:
            return self.state is LoopState.STOPPED
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def run(self) -> None:
        """Run cycles until the stop event is set, then shut down."""
        logger.info("Acquisition loop started for %s", self._identifier)
        try:
            while not self._stop_event.is_set():
                try:
                    self.run_once()
                except (ConnectionOpenError, OpenCancelled):
                    raise
                except Exception:
                    logger.error("Acquisition cycle error", exc_info=True)
                    self._stop_event.wait(self._sample_interval_s)
        except ConnectionOpenError as exc:
            logger.critical("Cannot open %s, stopping: %s", self._identifier, exc)
            self.error = exc
            self._stop_event.set()
        except OpenCancelled:
            logger.info("Shutdown requested while waiting for %s", self._identifier)
        finally:
            self._shutdown()

    # ------------------------------------------------------------------
    # Single cycle
    # ------------------------------------------------------------------

    def run_once(self) -> Sample:
        """Execute one acquisition cycle and return the published Sample.

        Raises:
            ConnectionOpenError: If a (re)connect hits a fatal open failure.
            OpenCancelled: If shutdown is requested while the device is absent.
        """
        if self._connection is None:
            self._open(reconnect=self._ever_opened)
        elif self.consecutive_failures >= self._reconnect_threshold:
            logger.warning(
                "%d consecutive failures, reconnecting to %s",
                self.consecutive_failures,
                self._identifier,
            )
            self._close_connection()
            self._open(reconnect=True)

        sample = self._acquire()

        if not sample.synthetic or self._persist_placeholders:
            flushed_before = self._buffer.flushed_batches
            self._buffer.append(sample)
            if self._health is not None:
                if self._buffer.flushed_batches != flushed_before:
                    self._health.record_flush()
                if not sample.synthetic:
                    self._health.record_sample(len(self._buffer))

        self._publish(sample)
        self._stop_event.wait(self._sample_interval_s)
        self._drain_command()
        return sample

    def send_load_command(self, load_on: bool) -> None:
        """Write a load on/off command to the device.

        A throwaway read runs first so the command is less likely to land in
        the middle of a telemetry frame. Write failures are logged.
        """
        assert self._connection is not None, "No open connection"
        data = encode_command(load_on)
        try:
            discard_pending_line(self._connection)
        except OSError:
            logger.warning("Read before load command failed", exc_info=True)
        try:
            self._connection.write(data)
            self._connection.flush()
        except OSError:
            logger.error("Failed to send load command %r", data, exc_info=True)
            return
        logger.info("Sent load %s command", "on" if load_on else "off")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self) -> Sample:
        assert self._connection is not None
        try:
            line = self._connection.read_line()
            sample = decode_line(line)
        except (OSError, DecodeError) as exc:
            self.consecutive_failures += 1
            logger.warning(
                "Read failed (%d/%d consecutive): %s",
                self.consecutive_failures,
                self._reconnect_threshold,
                exc,
            )
            return Sample.placeholder()
        self.consecutive_failures = 0
        return sample

    def _open(self, *, reconnect: bool) -> None:
        self._connection = self._connection_factory(self._identifier)
        self._ever_opened = True
        self.consecutive_failures = 0
        if not reconnect:
            return
        self.reconnect_count += 1
        if self._health is not None:
            self._health.record_reconnect(self.reconnect_count)

    def _publish(self, sample: Sample) -> None:
        try:
            self._samples.put_nowait(sample)
        except queue.Full:
            logger.debug("Consumer queue full, dropping sample")

    def _drain_command(self) -> None:
        try:
            load_on = self._commands.get(timeout=self._command_poll_s)
        except queue.Empty:
            return
        self.send_load_command(load_on)

    def _close_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except OSError:
            logger.warning("Error closing connection to %s", self._identifier, exc_info=True)
        self._connection = None

    def _shutdown(self) -> None:
        self.state = LoopState.STOPPING
        try:
            self._buffer.flush_on_shutdown()
            if self._health is not None:
                self._health.record_flush()
        finally:
            self._close_connection()
            self.state = LoopState.STOPPED
            logger.info("Acquisition loop stopped")
