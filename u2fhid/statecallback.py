"""A single-use callback shared between clones, with completion waiting."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _CallbackSlot(Generic[T]):
    """The callback shared by every clone; it is consumed by the first call."""

    def __init__(self, callback: Callable[[T], None]) -> None:
        self.lock = threading.Lock()
        self.callback: Optional[Callable[[T], None]] = callback


class _Completion:
    """Tracks whether any clone has been called yet."""

    def __init__(self) -> None:
        self.condition = threading.Condition()
        self.pending = True


class StateCallback(Generic[T]):
    """Wraps a callback that runs at most once across all of its clones.

    Each instance may carry its own observer, which runs only when that
    instance is the one whose call actually invoked the callback.
    """

    def __init__(self, callback: Callable[[T], None]) -> None:
        self._slot: _CallbackSlot[T] = _CallbackSlot(callback)
        self._completion = _Completion()
        self._observer: Optional[Callable[[], None]] = None
        self._observer_lock = threading.Lock()

    def add_uncloneable_observer(self, observer: Callable[[], None]) -> None:
        """Set the observer of this instance; clones do not inherit it."""
        with self._observer_lock:
            if self._observer is not None:
                logger.error("Replacing an already-set observer.")
            self._observer = observer

    def call(self, value: T) -> None:
        """Invoke the shared callback if no clone has done so yet, then wake waiters."""
        try:
            with self._slot.lock:
                callback, self._slot.callback = self._slot.callback, None
                if callback is not None:
                    callback(value)
                    with self._observer_lock:
                        observer, self._observer = self._observer, None
                    if observer is not None:
                        observer()
        finally:
            with self._completion.condition:
                self._completion.pending = False
                self._completion.condition.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until some clone has been called.

        Returns False if the timeout elapsed first.
        """
        completion = self._completion
        with completion.condition:
            return completion.condition.wait_for(
                lambda: not completion.pending, timeout
            )

    def clone(self) -> "StateCallback[T]":
        """Return a handle sharing the callback and completion, without the observer."""
        twin = copy.copy(self)
        twin._observer = None
        twin._observer_lock = threading.Lock()
        return twin