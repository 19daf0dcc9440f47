"""U2F devices exposed as fido(4) character devices, and a monitor that finds them."""

from __future__ import annotations

import errno
import logging
import os
import select
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .transaction import RunLoop
from .u2ftypes import CID_BROADCAST, MAX_HID_RPT_SIZE, DeviceError, U2FDevice

logger = logging.getLogger(__name__)

Alive = Callable[[], bool]

_PING_PACKET = bytes([0, 0xFF, 0xFF, 0xFF, 0xFF, 0x81, 0, 1])
_PING_ATTEMPTS = 10
_PING_RESPONSE_SIZE = 256


@dataclass
class FidoDev:
    """An opened fido(4) device node: its file descriptor and path."""

    fd: int
    os_path: str


class FidoDevice(U2FDevice):
    """A U2F HID device reached through an open fido(4) file descriptor."""

    in_rpt_size = MAX_HID_RPT_SIZE
    out_rpt_size = MAX_HID_RPT_SIZE
    ping_timeout = 0.1

    def __init__(self, fido: FidoDev) -> None:
        logger.debug("device found: %r", fido)
        self.path = fido.os_path
        self._fd: Optional[int] = fido.fd
        self.cid = CID_BROADCAST
        self.device_info = None

    @property
    def fd(self) -> int:
        if self._fd is None:
            raise DeviceError(f"device {self.path} is closed")
        return self._fd

    def is_u2f(self) -> bool:
        """True if the device answers a ping.

        The ping also resynchronises the USB data toggle, which some
        systems lose across opening and closing the device.
        """
        try:
            self._ping()
        except OSError as exc:
            logger.debug("device %s is not responding: %s", self.path, exc)
            return False
        logger.debug("device %s is U2F/FIDO", self.path)
        return True

    def _ping(self) -> None:
        for _ in range(_PING_ATTEMPTS):
            if self.write(_PING_PACKET) != len(_PING_PACKET):
                raise DeviceError("device write failed")
            readable, _, _ = select.select([self.fd], [], [], self.ping_timeout)
            if not readable:
                logger.debug("device %s timeout", self.path)
                continue
            self.read(_PING_RESPONSE_SIZE)
            return
        raise DeviceError("no response from device")

    def read(self, size: int) -> bytes:
        return os.read(self.fd, size)

    def write(self, data: bytes) -> int:
        # The first byte is the report number, which the device node does not take.
        return os.write(self.fd, bytes(data[1:])) + 1

    def get_property(self, name: str) -> str:
        raise DeviceError("Not implemented")

    def close(self) -> None:
        """Close the file descriptor, ignoring errors."""
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            os.close(fd)
        except OSError:
            pass
        logger.debug("device %s closed", self.path)

    def __enter__(self) -> "FidoDevice":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FidoDevice):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)


class Monitor:
    """Polls the first few fido(4) units and runs a callback for each new one.

    Each device that can be opened gets its own run loop in which
    ``new_device_cb(fido, alive)`` runs; devices that disappear have their
    loop cancelled.
    """

    device_dir = "/dev/fido"
    unit_count = 10
    poll_interval = 0.5

    def __init__(self, new_device_cb: Callable[[FidoDev, Alive], None]) -> None:
        self._new_device_cb = new_device_cb
        self._runloops: dict[str, RunLoop] = {}

    def run(self, alive: Alive) -> None:
        """Poll for devices until ``alive()`` turns False, then drop every device."""
        try:
            while alive():
                self._scan()
                time.sleep(self.poll_interval)
        finally:
            self._remove_all_devices()

    def _scan(self) -> None:
        for unit in range(self.unit_count):
            path = os.path.join(str(self.device_dir), str(unit))
            if not os.path.exists(path):
                continue
            try:
                fd = os.open(path, os.O_RDWR)
            except OSError as exc:
                if exc.errno == errno.EBUSY:
                    # Present but already in use.
                    continue
                self._remove_device(path)
                continue
            self._add_device(FidoDev(fd=fd, os_path=path))

    def _add_device(self, fido: FidoDev) -> None:
        if fido.os_path in self._runloops:
            os.close(fido.fd)
            return

        callback = self._new_device_cb

        def target(alive: Alive) -> None:
            if alive():
                callback(fido, alive)

        try:
            runloop = RunLoop(target)
        except RuntimeError:
            logger.exception("couldn't start a run loop for %s", fido.os_path)
            os.close(fido.fd)
            return
        self._runloops[fido.os_path] = runloop

    def _remove_device(self, path: str) -> None:
        runloop = self._runloops.pop(path, None)
        if runloop is not None:
            runloop.cancel()

    def _remove_all_devices(self) -> None:
        for path in list(self._runloops):
            self._remove_device(path)