"""Background transactions that poll for devices until done, cancelled or timed out."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol

from .statecallback import StateCallback

logger = logging.getLogger(__name__)

Alive = Callable[[], bool]
NewDeviceCallback = Callable[[Any, Alive], None]


class U2FTokenError(enum.Enum):
    """Reasons a token operation can fail."""

    UNKNOWN = "unknown"
    NOT_SUPPORTED = "not supported"
    INVALID_STATE = "invalid state"
    CONSTRAINT = "constraint"
    NOT_ALLOWED = "not allowed"


class AuthenticatorError(Exception):
    """An authenticator failure.

    ``token_error`` names the token-level reason; when it is None the
    failure lies with the platform itself.
    """

    def __init__(self, token_error: Optional[U2FTokenError] = None) -> None:
        self.token_error = token_error
        message = "platform error" if token_error is None else token_error.value
        super().__init__(message)

    @classmethod
    def platform(cls) -> "AuthenticatorError":
        return cls(None)

    @property
    def is_platform(self) -> bool:
        return self.token_error is None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuthenticatorError):
            return NotImplemented
        return self.token_error is other.token_error

    def __hash__(self) -> int:
        return hash((AuthenticatorError, self.token_error))

    def __repr__(self) -> str:
        return f"AuthenticatorError({self.token_error!r})"


class RunLoop:
    """Runs ``target(alive)`` in a thread until cancelled or timed out.

    ``timeout`` is in milliseconds; ``alive()`` turns False once it has
    elapsed or once ``cancel`` has been called.
    """

    def __init__(self, target: Callable[[Alive], None], timeout: Optional[float] = None) -> None:
        self._cancelled = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout / 1000
        self._thread = threading.Thread(target=target, args=(self.alive,), daemon=True)
        self._thread.start()

    def alive(self) -> bool:
        if self._cancelled.is_set():
            return False
        return self._deadline is None or time.monotonic() < self._deadline

    def cancel(self) -> None:
        """Stop the loop and wait for its thread to finish."""
        self._cancelled.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()


class _Monitor(Protocol):
    def run(self, alive: Alive) -> None: ...


class Transaction:
    """Monitors devices in the background and reports a final outcome.

    ``monitor_factory(new_device_cb)`` builds the device monitor whose
    ``run(alive)`` polls for devices. If the monitor fails, the callback
    receives a platform error; once it stops, it receives NOT_ALLOWED
    unless some device already completed the operation.
    """

    def __init__(
        self,
        timeout: float,
        callback: StateCallback,
        new_device_cb: NewDeviceCallback,
        monitor_factory: Callable[[NewDeviceCallback], _Monitor],
    ) -> None:
        def run(alive: Alive) -> None:
            monitor = monitor_factory(new_device_cb)
            try:
                monitor.run(alive)
            except OSError:
                logger.exception("device monitor failed")
                callback.call(AuthenticatorError.platform())
                return
            callback.call(AuthenticatorError(U2FTokenError.NOT_ALLOWED))

        try:
            self._runloop: Optional[RunLoop] = RunLoop(run, timeout)
        except RuntimeError as exc:
            raise AuthenticatorError.platform() from exc

    def cancel(self) -> None:
        """Stop monitoring; blocks until the background thread is done."""
        runloop, self._runloop = self._runloop, None
        if runloop is not None:
            runloop.cancel()


def unsupported_transaction(
    timeout: float, callback: StateCallback, new_device_cb: NewDeviceCallback
) -> Transaction:
    """Transaction factory for platforms without token support: always fails."""
    callback.call(AuthenticatorError(U2FTokenError.NOT_SUPPORTED))
    raise AuthenticatorError(U2FTokenError.NOT_SUPPORTED)