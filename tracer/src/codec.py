"""
Line codec for the charge controller's ASCII serial protocol.

Telemetry arrives as one newline-terminated line of colon-separated numbers:
ten telemetry fields in Sample.FIELD_NAMES order followed by a trailing
integer frame terminator, e.g.::

    12.6:18.3:2.1:0.0:14.4:1.0:0.0:25.5:0.0:1.0:9999999

The terminator is checked for being numeric but otherwise discarded. A line
of exactly ten tokens is also accepted, in which case the final integer is
the load state. Control commands are sent as ``LON\\n`` / ``LOFF\\n`` with no
acknowledgement from the device.

Decoding is strict: any token that is not a number, or a token count other
than ten or eleven, raises DecodeError so a truncated or garbled line can
never shift values into the wrong fields.

CHANGELOG:
- 2026-10-19: Match the frame against the whole line
- 2026-10-19: Reject non-numeric tokens instead of skipping them
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import re

from tracer.src.models import FIELD_NAMES, Sample

LINE_PATTERN = re.compile(r"(?:[+-]?(?:\d*\.)?\d+:){9,10}\d{1,19}")
"""Device frame shape: nine or ten ``number:`` groups followed by an integer.

Matched against the whole stripped line, so every token is a plain decimal
number (no exponent, ``nan``, ``inf`` or digit separators).
"""

LOAD_ON_COMMAND = b"LON\n"
LOAD_OFF_COMMAND = b"LOFF\n"

_FIELD_COUNT = len(FIELD_NAMES)


class DecodeError(ValueError):
    """Raised when a raw line is not a valid telemetry frame."""


def decode_line(raw_line: str, *, timestamp: int | None = None) -> Sample:
    """Decode one raw telemetry line into a Sample.

    Args:
        raw_line: A single line as read from the device, with or without
            its trailing line terminator.
        timestamp: Capture time to stamp on the sample. Defaults to the
            current wall clock.

    Returns:
        The decoded Sample.

    Raises:
        DecodeError: If the whole line is not a frame of ten or eleven plain
            decimal tokens.
    """
    line = raw_line.strip()
    if not LINE_PATTERN.fullmatch(line):
        raise DecodeError(f"line does not match telemetry frame: {line!r}")

    values = [float(token) for token in line.split(":")]
    return Sample.from_values(values[:_FIELD_COUNT], timestamp=timestamp)


def encode_command(load_on: bool) -> bytes:
    """Encode a load on/off command as raw bytes for the device."""
    return LOAD_ON_COMMAND if load_on else LOAD_OFF_COMMAND
