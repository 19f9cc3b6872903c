"""
Consumer-facing facade over the acquisition pipeline.

TelemetryPipeline wires the store, buffer, acquisition loop, channels and
load switch together and gives the presentation layer a small API:

- start() / stop() (or use it as a context manager),
- drain() / wait_for_sample() / latest() / history for readings,
- set_load() / toggle_load() for device control.

Both channels are unbounded ``queue.Queue`` instances: the acquisition
thread never blocks on a slow or absent consumer.

CHANGELOG:
- 2026-10-19: Share the stop event with the serial factory
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from typing import TYPE_CHECKING

from tracer.src.acquisition import (
    DEFAULT_COMMAND_POLL_S,
    DEFAULT_RECONNECT_THRESHOLD,
    DEFAULT_SAMPLE_INTERVAL_S,
    AcquisitionLoop,
)
from tracer.src.buffer import DEFAULT_CAPACITY, PersistenceBuffer
from tracer.src.connection import ConnectionFactory, ConnectionOpenError, serial_factory
from tracer.src.control import LoadSwitch
from tracer.src.health import HealthWriter
from tracer.src.models import Sample
from tracer.src.store import SampleStore

if TYPE_CHECKING:
    from tracer.src.config import TracerSettings

logger = logging.getLogger(__name__)

HISTORY_SIZE: int = 256
"""Number of recent samples kept for display."""


class TelemetryPipeline:
    """Owns one acquisition loop and the channels around it.

    Args:
        identifier: Device identifier (serial port name).
        connection_factory: Opens the device for the acquisition loop.
        store: Durable store; opened by start() and closed by stop().
        buffer_capacity: Samples per batch commit.
        sample_interval_s: Wait between acquisition cycles.
        command_poll_s: Wait for a pending command in each cycle.
        reconnect_threshold: Consecutive failures before a forced reconnect.
        persist_placeholders: Also store placeholder samples.
        health: Optional health file writer.
        history_size: Number of recent samples kept in ``history``.
        stop_event: Shared shutdown flag. A new one is created when omitted;
            pass the one given to the connection factory so shutdown can
            interrupt a wait for an absent device.
    """

    def __init__(
        self,
        identifier: str,
        *,
        connection_factory: ConnectionFactory,
        store: SampleStore,
        buffer_capacity: int = DEFAULT_CAPACITY,
        sample_interval_s: float = DEFAULT_SAMPLE_INTERVAL_S,
        command_poll_s: float = DEFAULT_COMMAND_POLL_S,
        reconnect_threshold: int = DEFAULT_RECONNECT_THRESHOLD,
        persist_placeholders: bool = False,
        health: HealthWriter | None = None,
        history_size: int = HISTORY_SIZE,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.identifier = identifier
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.samples: queue.Queue[Sample] = queue.Queue()
        self.commands: queue.Queue[bool] = queue.Queue()
        self.switch = LoadSwitch(self.commands)
        self.history: deque[Sample] = deque(maxlen=history_size)

        self._store = store
        self._buffer = PersistenceBuffer(store, capacity=buffer_capacity)
        self._loop = AcquisitionLoop(
            identifier=identifier,
            connection_factory=connection_factory,
            buffer=self._buffer,
            samples=self.samples,
            commands=self.commands,
            stop_event=self.stop_event,
            sample_interval_s=sample_interval_s,
            command_poll_s=command_poll_s,
            reconnect_threshold=reconnect_threshold,
            persist_placeholders=persist_placeholders,
            health=health,
        )
        self._latest: Sample | None = None
        self._switch_seeded = False
        self._started = False

    @classmethod
    def from_settings(cls, settings: TracerSettings, identifier: str) -> TelemetryPipeline:
        """Build a serial-backed pipeline from TracerSettings."""
        stop_event = threading.Event()
        return cls(
            identifier,
            connection_factory=serial_factory(
                baud_rate=settings.baud_rate,
                read_timeout_s=settings.read_timeout_s,
                retry_delay_s=settings.open_retry_delay_s,
                stop_event=stop_event,
            ),
            store=SampleStore(settings.database_path),
            buffer_capacity=settings.buffer_capacity,
            sample_interval_s=settings.sample_interval_s,
            command_poll_s=settings.command_poll_s,
            reconnect_threshold=settings.reconnect_threshold,
            persist_placeholders=settings.persist_placeholders,
            health=HealthWriter(settings.health_path) if settings.health_path else None,
            stop_event=stop_event,
        )

    @property
    def loop(self) -> AcquisitionLoop:
        return self._loop

    @property
    def running(self) -> bool:
        return self._started and not self.stop_event.is_set()

    @property
    def error(self) -> ConnectionOpenError | None:
        """Fatal open failure that stopped acquisition, if any."""
        return self._loop.error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the store and start the acquisition thread."""
        if self._started:
            raise RuntimeError("pipeline already started")
        self._store.open()
        self._loop.start()
        self._started = True

    def stop(self, timeout: float | None = None) -> bool:
        """Signal shutdown and wait for the final flush.

        Args:
            timeout: Seconds to wait for the acquisition thread. The worst
                case is one read timeout plus one sample interval.

        Returns:
            True if the acquisition thread finished and the store was closed.
        """
        self.stop_event.set()
        if not self._started:
            return True
        if not self._loop.join(timeout):
            logger.warning("Acquisition thread still running after %ss", timeout)
            return False
        self._store.close()
        return True

    def __enter__(self) -> TelemetryPipeline:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def drain(self) -> list[Sample]:
        """Return every sample published since the last call, without blocking."""
        drained: list[Sample] = []
        while True:
            try:
                drained.append(self.samples.get_nowait())
            except queue.Empty:
                break
        for sample in drained:
            self._observe(sample)
        return drained

    def wait_for_sample(self, timeout: float | None = None) -> Sample | None:
        """Block up to *timeout* seconds for the next sample."""
        try:
            sample = self.samples.get(timeout=timeout)
        except queue.Empty:
            return None
        self._observe(sample)
        return sample

    def latest(self) -> Sample:
        """Most recent sample seen by the consumer, or a placeholder."""
        return self._latest if self._latest is not None else Sample.placeholder()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def set_load(self, on: bool) -> None:
        self.switch.set(on)

    def toggle_load(self) -> bool:
        return self.switch.toggle()

    def _observe(self, sample: Sample) -> None:
        self._latest = sample
        self.history.append(sample)
        if not self._switch_seeded and not sample.synthetic:
            self.switch.sync(sample.load_onoff)
            self._switch_seeded = True
