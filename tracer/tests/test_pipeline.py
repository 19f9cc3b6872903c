"""
Tests for the consumer-facing TelemetryPipeline.

The pipeline runs a real acquisition thread against an InMemoryConnection
and a temporary SQLite store.

CHANGELOG:
- 2026-10-19: Stop promptly while the serial device is absent
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import errno
from pathlib import Path
from unittest.mock import MagicMock, patch

import serial
from tracer.src.acquisition import LoopState
from tracer.src.config import TracerSettings
from tracer.src.connection import ConnectionOpenError, InMemoryConnection
from tracer.src.health import HealthWriter
from tracer.src.pipeline import TelemetryPipeline
from tracer.src.store import SampleStore

from conftest import VALID_LINE

LOAD_OFF_LINE = "12.6:18.3:2.1:0.0:14.4:1.0:0.0:25.5:0.0:0.0:9999999"


def _make_pipeline(
    tmp_path: Path, connection: InMemoryConnection, **kwargs: object
) -> TelemetryPipeline:
    return TelemetryPipeline(
        "/dev/ttyUSB0",
        connection_factory=MagicMock(return_value=connection),
        store=SampleStore(tmp_path / "pipeline.db"),
        sample_interval_s=0.01,
        command_poll_s=0.001,
        **kwargs,
    )


def _stored_rows(tmp_path: Path) -> int:
    with SampleStore(tmp_path / "pipeline.db") as store:
        return store.count()


class TestLifecycle:
    def test_samples_flow_and_are_persisted_on_stop(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection([VALID_LINE] * 3))

        with pipeline:
            received = [pipeline.wait_for_sample(timeout=5) for _ in range(3)]

        assert all(s is not None and not s.synthetic for s in received)
        assert pipeline.stop_event.is_set()
        assert _stored_rows(tmp_path) == 3

    def test_stop_without_start(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection())

        assert pipeline.stop() is True
        assert not pipeline.running

    def test_fatal_error_exposed(self, tmp_path: Path) -> None:
        pipeline = TelemetryPipeline(
            "/dev/ttyUSB0",
            connection_factory=MagicMock(side_effect=ConnectionOpenError("denied")),
            store=SampleStore(tmp_path / "pipeline.db"),
            sample_interval_s=0,
        )

        pipeline.start()
        assert pipeline.stop_event.wait(timeout=5)
        assert pipeline.stop(timeout=5)

        assert isinstance(pipeline.error, ConnectionOpenError)

    def test_stop_while_device_absent(self, tmp_path: Path) -> None:
        """stop() returns while the serial port never appears."""
        settings = TracerSettings(
            database_path=str(tmp_path / "s.db"), open_retry_delay_s=0.05
        )
        absent = serial.SerialException(errno.ENOENT, "No such file or directory")

        with patch(
            "tracer.src.connection.serial.Serial", side_effect=absent
        ) as mock_cls:
            pipeline = TelemetryPipeline.from_settings(settings, "/dev/ttyUSB9")
            pipeline.start()
            assert not pipeline.stop_event.wait(timeout=0.2)
            assert pipeline.stop(timeout=3)

        assert mock_cls.call_count >= 2
        assert pipeline.error is None
        assert pipeline.loop.state is LoopState.STOPPED


class TestReadings:
    def test_latest_is_placeholder_before_first_sample(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection())

        assert pipeline.latest().synthetic

    def test_drain_updates_latest_and_history(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection([VALID_LINE] * 2))

        with pipeline:
            first = pipeline.wait_for_sample(timeout=5)
            second = pipeline.wait_for_sample(timeout=5)
            rest = pipeline.drain()

        assert first is not None and second is not None
        assert list(pipeline.history)[:2] == [first, second]
        assert len(pipeline.history) == 2 + len(rest)
        assert pipeline.latest() == pipeline.history[-1]

    def test_history_is_bounded(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection(), history_size=2)
        for _ in range(3):
            pipeline.samples.put(pipeline.latest())

        pipeline.drain()

        assert len(pipeline.history) == 2

    def test_switch_seeded_from_first_real_sample(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection([VALID_LINE]))

        with pipeline:
            sample = pipeline.wait_for_sample(timeout=5)

        assert sample is not None and sample.load_onoff is True
        assert pipeline.switch.is_on is True
        assert pipeline.commands.empty()


class TestControl:
    def test_set_load_reaches_device(self, tmp_path: Path) -> None:
        conn = InMemoryConnection([LOAD_OFF_LINE] * 50)
        pipeline = _make_pipeline(tmp_path, conn)

        with pipeline:
            pipeline.wait_for_sample(timeout=5)
            pipeline.set_load(True)
            while not pipeline.commands.empty():
                pipeline.wait_for_sample(timeout=5)
            pipeline.wait_for_sample(timeout=5)

        assert conn.writes == [b"LON\n"]

    def test_toggle_load_returns_new_state(self, tmp_path: Path) -> None:
        pipeline = _make_pipeline(tmp_path, InMemoryConnection())

        assert pipeline.toggle_load() is True
        assert pipeline.commands.get_nowait() is True


class TestFromSettings:
    def test_builds_from_settings(self, tmp_path: Path) -> None:
        settings = TracerSettings(
            database_path=str(tmp_path / "s.db"),
            buffer_capacity=8,
            health_path=str(tmp_path / "health.json"),
        )

        pipeline = TelemetryPipeline.from_settings(settings, "/dev/ttyUSB0")

        assert pipeline.identifier == "/dev/ttyUSB0"
        assert pipeline._buffer.capacity == 8
        assert isinstance(pipeline.loop._health, HealthWriter)
        assert pipeline._store.path == tmp_path / "s.db"
