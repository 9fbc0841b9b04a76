"""Time source for the token lifecycle.

Every component that reads the time or waits goes through a :class:`Clock`
so tests can drive expiry and polling deterministically. Waiting is
cancellable: :meth:`Clock.wait` blocks on a :class:`threading.Event`
instead of :func:`time.sleep`, so a host process can abort a two-minute
device-code poll by setting the event.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional


class Clock(ABC):
    """Abstract time source."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...

    @abstractmethod
    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        """Block for *seconds* unless *cancel* is set first.

        Returns:
            ``True`` if the wait was cancelled, ``False`` if it ran to
            completion.
        """
        ...


class SystemClock(Clock):
    """Wall-clock implementation backed by :mod:`threading`."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        event = cancel if cancel is not None else threading.Event()
        if seconds <= 0:
            return event.is_set()
        return event.wait(timeout=seconds)
