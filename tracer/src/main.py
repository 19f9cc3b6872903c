"""
Headless entrypoint for the solar tracer acquisition daemon.

Loads TracerSettings, configures structured JSON logging, resolves the serial
port, and runs a TelemetryPipeline until SIGINT/SIGTERM. The consumer side
here simply logs every sample; a dashboard would use the same pipeline API.

Exit status is 1 when acquisition stopped on a fatal open failure (wrong
port name, permission denied) or no serial port could be found.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tracer.src.connection import available_ports
from tracer.src.pipeline import TelemetryPipeline

if TYPE_CHECKING:
    from tracer.src.config import TracerSettings

logger = logging.getLogger(__name__)

CONSUMER_POLL_S: float = 0.5
"""How long the consumer waits for a sample before re-checking shutdown."""


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(log_file: str = "", level: str = "INFO") -> None:
    """Configure structured JSON logging for the daemon.

    Warnings and errors go to stderr. When *log_file* is set, records at
    *level* and above are also appended to that file.

    Args:
        log_file: Path of the log file, or empty to log to stderr only.
        level: Level name for the file handler.
    """
    formatter = JsonFormatter()
    root = logging.getLogger()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    root.addHandler(console)

    root_level = logging.WARNING
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        root_level = min(root_level, logging.getLevelName(level))
    root.setLevel(root_level)


def log_config_summary(settings: TracerSettings) -> None:
    """Log the effective configuration at startup."""
    logger.info(
        "Tracer starting with config: "
        "serial_port=%s, baud_rate=%s, read_timeout_s=%s, "
        "sample_interval_s=%s, reconnect_threshold=%s, "
        "buffer_capacity=%s, database_path=%s, "
        "persist_placeholders=%s, health_path=%s",
        settings.serial_port or "<auto>",
        settings.baud_rate,
        settings.read_timeout_s,
        settings.sample_interval_s,
        settings.reconnect_threshold,
        settings.buffer_capacity,
        settings.database_path,
        settings.persist_placeholders,
        settings.health_path or "<disabled>",
    )


# ---------------------------------------------------------------------------
# Port resolution and consumer loop
# ---------------------------------------------------------------------------


def resolve_port(settings: TracerSettings) -> str | None:
    """Return the configured port, or the first available one."""
    if settings.serial_port:
        return settings.serial_port
    ports = available_ports()
    for index, port in enumerate(ports):
        logger.info("%d: %s", index, port)
    if not ports:
        logger.error("No serial ports found and TRACER_SERIAL_PORT is not set")
        return None
    logger.warning("TRACER_SERIAL_PORT not set, using first available port %s", ports[0])
    return ports[0]


def consume(pipeline: TelemetryPipeline, poll_s: float = CONSUMER_POLL_S) -> None:
    """Log samples until the pipeline's stop event is set."""
    while not pipeline.stop_event.is_set():
        sample = pipeline.wait_for_sample(timeout=poll_s)
        if sample is None:
            continue
        if sample.synthetic:
            logger.debug("Placeholder sample at %s", sample.time_formatted())
        else:
            logger.info("Sample %s", sample.describe())


def _handle_signal(stop_event: threading.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the stop event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    stop_event.set()


def run(settings: TracerSettings) -> int:
    """Run the daemon until shutdown and return the process exit status."""
    log_config_summary(settings)

    port = resolve_port(settings)
    if port is None:
        return 1

    pipeline = TelemetryPipeline.from_settings(settings, port)
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, lambda *_: _handle_signal(pipeline.stop_event))

    with pipeline:
        consume(pipeline)

    if pipeline.error is not None:
        logger.critical("Acquisition stopped on fatal error: %s", pipeline.error)
        return 1
    logger.info("Shutdown complete")
    return 0


def main() -> None:
    """Synchronous entrypoint for the tracer daemon."""
    from tracer.src.config import TracerSettings

    settings = TracerSettings()
    configure_logging(settings.log_file, settings.log_level)
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
