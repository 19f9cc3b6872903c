"""
Durable SQLite store for telemetry samples.

One table, ``data``, holds one row per Sample with an autoincrementing id,
the ten telemetry columns and a ``time`` column defaulted by the database at
insert time when not supplied. The table is created on first open. Rows are
only ever inserted; this module never updates or deletes.

Batches are written in a single transaction. A row that fails to insert is
logged and skipped without aborting the batch. If the transaction itself
fails the whole batch is logged and dropped: there is no retry and no
re-buffering.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy import (
    Boolean,
    DateTime,
    Double,
    Engine,
    Integer,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tracer.src.models import FIELD_NAMES, Sample

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "solar_data.sql"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the tracer store."""

    pass


class Reading(Base):
    """Stored telemetry row.

    Attributes:
        id: Autoincrementing identity key.
        time: Capture time; defaults to CURRENT_TIMESTAMP when omitted.
    """

    __tablename__ = "data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    battery_voltage: Mapped[float] = mapped_column(Double, nullable=False)
    pv_voltage: Mapped[float] = mapped_column(Double, nullable=False)
    load_current: Mapped[float] = mapped_column(Double, nullable=False)
    over_discharge: Mapped[float] = mapped_column(Double, nullable=False)
    battery_max: Mapped[float] = mapped_column(Double, nullable=False)
    battery_full: Mapped[bool] = mapped_column(Boolean, nullable=False)
    charging: Mapped[bool] = mapped_column(Boolean, nullable=False)
    battery_temp: Mapped[float] = mapped_column(Double, nullable=False)
    charge_current: Mapped[float] = mapped_column(Double, nullable=False)
    load_onoff: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time: Mapped[datetime.datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.current_timestamp()
    )

    def __repr__(self) -> str:
        return (
            f"Reading(id={self.id!r}, time={self.time!r}, "
            f"battery_voltage={self.battery_voltage!r})"
        )


def sample_to_row(sample: Sample) -> dict[str, object]:
    """Map a Sample to insert parameters for the ``data`` table."""
    row: dict[str, object] = {name: getattr(sample, name) for name in FIELD_NAMES}
    # Stored naive, in UTC, like SQLite's CURRENT_TIMESTAMP.
    row["time"] = sample.captured_at.replace(tzinfo=None)
    return row


class SampleStore:
    """SQLite-backed append-only store for Samples.

    Args:
        path: Filesystem path of the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        with SampleStore("solar_data.sql") as store:
            store.commit_batch(samples)
    """

    def __init__(self, path: str | Path = DEFAULT_DATABASE_PATH) -> None:
        self._path = Path(path)
        self._engine: Engine | None = None

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        """Create the engine and the ``data`` table if it does not exist."""
        self._engine = create_engine(f"sqlite:///{self._path}")
        Base.metadata.create_all(self._engine)
        logger.info("Opened sample store at %s", self._path)

    def close(self) -> None:
        """Dispose of the engine. Further operations require open()."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> SampleStore:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def commit_batch(self, samples: Sequence[Sample]) -> int:
        """Insert *samples* in one transaction.

        Each row is a separate parameterized INSERT. A failing row is logged
        and skipped; the remaining rows are still committed. If the
        transaction fails to begin or commit, the batch is lost.

        Args:
            samples: Samples to persist, in insertion order.

        Returns:
            Number of rows committed (0 if the transaction failed).
        """
        assert self._engine is not None, "SampleStore not opened. Call open() or use with."
        if not samples:
            return 0

        stmt = insert(Reading)
        written = 0
        try:
            with self._engine.begin() as conn:
                for sample in samples:
                    try:
                        conn.execute(stmt, sample_to_row(sample))
                    except SQLAlchemyError:
                        logger.error(
                            "Failed to insert sample captured at %d",
                            sample.timestamp,
                            exc_info=True,
                        )
                        continue
                    written += 1
        except SQLAlchemyError:
            logger.error(
                "Batch commit failed, dropping %d samples", len(samples), exc_info=True
            )
            return 0

        logger.info("Wrote %d samples to %s", written, self._path)
        return written

    def count(self) -> int:
        """Return the number of rows in the ``data`` table."""
        assert self._engine is not None, "SampleStore not opened. Call open() or use with."
        with self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(Reading)).scalar_one()
