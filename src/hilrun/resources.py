# Copyright (c) Syntropy Systems
"""Exclusive handles for singleton hardware (debug probe, remote rig)."""
from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from typing_extensions import Self

from hilrun.errors import ResourceBusyError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


class ExclusiveHandle:
    """A resource that allows one holder at a time.

    acquire() never waits: a second holder is a scheduling bug, so it
    raises ResourceBusyError. release() is safe to call on every exit
    path but only the first call after an acquire releases the lock.
    """

    name: str
    _lock: threading.Lock
    _held: bool
    acquisitions: int

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._held = False
        self.acquisitions = 0

    def acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            msg = f"{self.name} is already in use"
            raise ResourceBusyError(msg)
        self._held = True
        self.acquisitions += 1
        logger.debug("Acquired %s", self.name)

    def release(self) -> bool:
        """Release the handle; returns False if it was not held."""
        if not self._held:
            return False
        self._held = False
        self._lock.release()
        logger.debug("Released %s", self.name)
        return True

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        _ = self.release()
