"""
Tracer daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Every variable carries the ``TRACER_`` prefix and may also come from a
``.env`` file in the working directory.

CHANGELOG:
- 2026-10-19: Initial creation
"""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TracerSettings(BaseSettings):
    """Acquisition daemon configuration.

    Attributes:
        serial_port: Serial endpoint (e.g. ``/dev/ttyUSB0``, ``COM3``). When
            empty, the first available port is used.
        baud_rate: Serial line speed (default 57600).
        read_timeout_s: Bound on a single line read.
        open_retry_delay_s: Wait between open attempts while the device is absent.
        sample_interval_s: Wait between acquisition cycles.
        command_poll_s: Wait for a pending load command in each cycle.
        reconnect_threshold: Consecutive read/decode failures before a
            forced reconnect.
        buffer_capacity: Samples per batch commit.
        database_path: SQLite file for stored samples.
        log_file: Log file path (INFO and up). Empty disables the file.
        log_level: Level of the log file handler.
        persist_placeholders: Also store placeholder samples.
        health_path: Health JSON file path. Empty disables it.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACER_", env_file=".env", env_file_encoding="utf-8"
    )

    serial_port: str = ""
    baud_rate: int = 57600
    read_timeout_s: float = 2.0
    open_retry_delay_s: float = 1.0
    sample_interval_s: float = 1.0
    command_poll_s: float = 0.001
    reconnect_threshold: int = 5
    buffer_capacity: int = 256
    database_path: str = "solar_data.sql"
    log_file: str = "solar-tracer.log"
    log_level: str = "INFO"
    persist_placeholders: bool = False
    health_path: str = ""

    @field_validator("baud_rate", "reconnect_threshold", "buffer_capacity")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """Reject zero and negative counts and rates."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("read_timeout_s", "open_retry_delay_s")
    @classmethod
    def timeouts_must_be_positive(cls, v: float) -> float:
        """A zero timeout would turn reads and retries into busy loops."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("sample_interval_s", "command_poll_s")
    @classmethod
    def intervals_must_be_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalize to upper case and check against the logging module."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v!r}")
        return level
