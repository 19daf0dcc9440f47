"""Register and sign state machines driving every device a transaction finds."""

from __future__ import annotations

import enum
import functools
import logging
import operator
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar

from .protocol import (
    PARAMETER_SIZE,
    u2f_init_device,
    u2f_is_keyhandle_valid,
    u2f_register,
    u2f_sign,
)
from .statecallback import StateCallback
from .transaction import AuthenticatorError, U2FTokenError
from .u2ftypes import U2FDevice, U2FDeviceInfo

logger = logging.getLogger(__name__)

_RETRY_INTERVAL = 0.1
_ATTEMPT_ERRORS = (OSError, ValueError)

K = TypeVar("K")


class AuthenticatorTransports(enum.Flag):
    """Transports a credential may be used over."""

    USB = 1
    NFC = 2
    BLE = 4


@dataclass(frozen=True)
class KeyHandle:
    """A credential id and the transports it is known to work over."""

    credential: bytes
    transports: AuthenticatorTransports = AuthenticatorTransports(0)


class _StatusKind(enum.Enum):
    DEVICE_AVAILABLE = "device available"
    DEVICE_UNAVAILABLE = "device unavailable"
    SUCCESS = "success"


@dataclass(frozen=True)
class StatusUpdate:
    """A progress report about one device."""

    Kind = _StatusKind

    kind: _StatusKind
    dev_info: Optional[U2FDeviceInfo]


def is_valid_transport(transports: AuthenticatorTransports) -> bool:
    """True if no transports are given or USB is among them."""
    return not transports or AuthenticatorTransports.USB in transports


def find_valid_key_handles(
    app_ids: Sequence[bytes],
    key_handles: Sequence[K],
    is_valid: Callable[[bytes, K], bool],
) -> tuple[bytes, list[K]]:
    """Return the first app id with at least one valid key handle, and those handles.

    Falls back to the first app id and no handles.
    """
    for app_id in app_ids:
        valid = [handle for handle in key_handles if is_valid(app_id, handle)]
        if valid:
            return app_id, valid
    return app_ids[0], []


def _send_status(status: Callable[[StatusUpdate], Any], update: StatusUpdate) -> None:
    try:
        status(update)
    except Exception:
        logger.exception("Couldn't send status")


def _keyhandle_matches(dev: U2FDevice, challenge: bytes, application: bytes, credential: bytes) -> bool:
    try:
        return u2f_is_keyhandle_valid(dev, challenge, application, credential)
    except _ATTEMPT_ERRORS:
        return False


def _blink(dev: U2FDevice) -> bool:
    """Ask for user presence with blank data; True once the user touched the device."""
    blank = bytes(PARAMETER_SIZE)
    try:
        u2f_register(dev, blank, blank)
    except _ATTEMPT_ERRORS:
        return False
    return True


class StateMachine:
    """Runs register and sign operations against whatever devices appear.

    ``transaction_factory(timeout, callback, new_device_cb)`` starts the
    device monitoring and returns an object with ``cancel()``;
    ``device_factory(info)`` opens a device from what the monitor found.
    """

    def __init__(
        self,
        transaction_factory: Callable[..., Any],
        device_factory: Callable[[Any], U2FDevice],
    ) -> None:
        self._transaction_factory = transaction_factory
        self._device_factory = device_factory
        self._transaction: Optional[Any] = None

    def _start(self, timeout: float, callback: StateCallback, on_device: Callable[[Any, Callable[[], bool]], None]) -> None:
        cbc = callback.clone()

        def new_device(info: Any, alive: Callable[[], bool]) -> None:
            try:
                dev = self._device_factory(info)
            except OSError:
                return
            try:
                on_device(dev, alive)
            finally:
                close = getattr(dev, "close", None)
                if close is not None:
                    close()

        try:
            self._transaction = self._transaction_factory(timeout, cbc.clone(), new_device)
        except AuthenticatorError as exc:
            cbc.call(exc)

    def register(
        self,
        flags: Any,
        timeout: float,
        challenge: bytes,
        application: bytes,
        key_handles: Sequence[KeyHandle],
        status: Callable[[StatusUpdate], Any],
        callback: StateCallback,
    ) -> None:
        """Register with the first device the user touches.

        The callback receives ``(response, dev_info)`` or an AuthenticatorError.
        """
        self.cancel()

        def on_device(dev: U2FDevice, alive: Callable[[], bool]) -> None:
            if not dev.is_u2f() or not u2f_init_device(dev):
                return
            # Authenticator selection criteria cannot be checked on U2F tokens.
            if flags:
                return

            _send_status(status, StatusUpdate(_StatusKind.DEVICE_AVAILABLE, dev.device_info))

            excluded = any(
                is_valid_transport(handle.transports)
                and _keyhandle_matches(dev, challenge, application, handle.credential)
                for handle in key_handles
            )

            while alive():
                if excluded:
                    if _blink(dev):
                        callback.call(AuthenticatorError(U2FTokenError.INVALID_STATE))
                        break
                else:
                    try:
                        response = u2f_register(dev, challenge, application)
                    except _ATTEMPT_ERRORS:
                        pass
                    else:
                        _send_status(status, StatusUpdate(_StatusKind.SUCCESS, dev.device_info))
                        callback.call((response, dev.device_info))
                        break
                time.sleep(_RETRY_INTERVAL)

            _send_status(status, StatusUpdate(_StatusKind.DEVICE_UNAVAILABLE, dev.device_info))

        self._start(timeout, callback, on_device)

    def sign(
        self,
        flags: Any,
        timeout: float,
        challenge: bytes,
        app_ids: Sequence[bytes],
        key_handles: Sequence[KeyHandle],
        status: Callable[[StatusUpdate], Any],
        callback: StateCallback,
    ) -> None:
        """Sign with the first device holding one of the key handles.

        The callback receives ``(app_id, credential, response, dev_info)``
        or an AuthenticatorError.
        """
        self.cancel()

        def on_device(dev: U2FDevice, alive: Callable[[], bool]) -> None:
            if not dev.is_u2f() or not u2f_init_device(dev):
                return
            # User verification cannot be checked on U2F tokens.
            if flags:
                return

            app_id, valid_handles = find_valid_key_handles(
                app_ids,
                key_handles,
                lambda app, handle: _keyhandle_matches(dev, challenge, app, handle.credential),
            )

            transports = functools.reduce(
                operator.or_,
                (handle.transports for handle in key_handles),
                AuthenticatorTransports(0),
            )
            if not is_valid_transport(transports):
                return

            _send_status(status, StatusUpdate(_StatusKind.DEVICE_AVAILABLE, dev.device_info))

            def attempt() -> bool:
                if not valid_handles:
                    if _blink(dev):
                        callback.call(AuthenticatorError(U2FTokenError.INVALID_STATE))
                        return True
                    return False
                for handle in valid_handles:
                    try:
                        response = u2f_sign(dev, challenge, app_id, handle.credential)
                    except _ATTEMPT_ERRORS:
                        continue
                    _send_status(status, StatusUpdate(_StatusKind.SUCCESS, dev.device_info))
                    callback.call((app_id, handle.credential, response, dev.device_info))
                    return True
                return False

            while alive():
                if attempt():
                    break
                time.sleep(_RETRY_INTERVAL)

            _send_status(status, StatusUpdate(_StatusKind.DEVICE_UNAVAILABLE, dev.device_info))

        self._start(timeout, callback, on_device)

    def cancel(self) -> None:
        """Abort the running operation, if any; blocks until it has stopped."""
        transaction, self._transaction = self._transaction, None
        if transaction is not None:
            transaction.cancel()