"""
Shared load on/off state for the input and presentation threads.

The switch is only a display-side mirror of the requested load state. The
command itself always travels through the command queue to the acquisition
thread, which is the only writer to the device.
"""

from __future__ import annotations

import logging
import queue
import threading

logger = logging.getLogger(__name__)


class LoadSwitch:
    """Mutex-guarded load state that forwards every change as a command.

    Args:
        commands: The acquisition loop's command queue.
        is_on: Initial state, normally seeded from the first sample.
    """

    def __init__(self, commands: queue.Queue[bool], *, is_on: bool = False) -> None:
        self._commands = commands
        self._lock = threading.Lock()
        self._is_on = is_on

    @property
    def is_on(self) -> bool:
        with self._lock:
            return self._is_on

    def set(self, on: bool) -> None:
        """Request the load on or off."""
        with self._lock:
            self._is_on = on
            self._commands.put_nowait(on)
        logger.info("Load %s requested", "on" if on else "off")

    def toggle(self) -> bool:
        """Flip the requested state and return the new value."""
        with self._lock:
            self._is_on = not self._is_on
            on = self._is_on
            self._commands.put_nowait(on)
        logger.info("Load %s requested", "on" if on else "off")
        return on

    def sync(self, on: bool) -> None:
        """Set the displayed state without sending a command."""
        with self._lock:
            self._is_on = on
