"""U2F HID framing: device interface, packets, init response and APDUs."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

MAX_HID_RPT_SIZE = 64
INIT_HEADER_SIZE = 7
CONT_HEADER_SIZE = 5
INIT_NONCE_SIZE = 8
APDU_HEADER_SIZE = 7
CID_BROADCAST = b"\xff\xff\xff\xff"
MAX_PAYLOAD = 0xFFFF


class DeviceError(OSError):
    """Raised when talking to a U2F device fails."""


def to_hex(data: Iterable[int], joiner: str = "") -> str:
    """Render bytes as lower-case hex pairs separated by ``joiner``."""
    return joiner.join(f"{byte:02x}" for byte in data)


def _trace_hex(data: bytes) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("USB send: %s", to_hex(data))


@dataclass
class U2FDeviceInfo:
    """Identification and version details reported by a device."""

    vendor_name: bytes
    device_name: bytes
    version_interface: int
    version_major: int
    version_minor: int
    version_build: int
    cap_flags: int

    def __str__(self) -> str:
        return (
            f"Vendor: {self.vendor_name.decode('utf-8')}, "
            f"Device: {self.device_name.decode('utf-8')}, "
            f"Interface: {self.version_interface}, "
            f"Firmware: v{self.version_major}.{self.version_minor}.{self.version_build}, "
            f"Capabilities: {to_hex([self.cap_flags], ':')}"
        )


class U2FDevice(abc.ABC):
    """A U2F HID device: report I/O plus the channel id assigned at init."""

    in_rpt_size: int = MAX_HID_RPT_SIZE
    out_rpt_size: int = MAX_HID_RPT_SIZE
    cid: bytes = CID_BROADCAST
    device_info: Optional[U2FDeviceInfo] = None

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """Read one input report of at most ``size`` bytes."""

    @abc.abstractmethod
    def write(self, data: bytes) -> int:
        """Write one output report, prefixed by its report number; return bytes written."""

    @abc.abstractmethod
    def get_property(self, name: str) -> str:
        """Return a device property such as "Manufacturer"; raise DeviceError if unavailable."""

    def in_init_data_size(self) -> int:
        return self.in_rpt_size - INIT_HEADER_SIZE

    def in_cont_data_size(self) -> int:
        return self.in_rpt_size - CONT_HEADER_SIZE

    def out_init_data_size(self) -> int:
        return self.out_rpt_size - INIT_HEADER_SIZE

    def out_cont_data_size(self) -> int:
        return self.out_rpt_size - CONT_HEADER_SIZE


def _read_own_frame(dev: U2FDevice) -> bytes:
    """Read reports until one addressed to the device's channel arrives."""
    frame = dev.read(dev.in_rpt_size)
    while frame[:4] != dev.cid:
        frame = dev.read(dev.in_rpt_size)
    return frame


def _send_frame(dev: U2FDevice, frame: bytearray) -> None:
    _trace_hex(bytes(frame))
    if dev.write(bytes(frame)) != len(frame):
        raise DeviceError("device write failed")


def write_init_packet(dev: U2FDevice, cmd: int, data: bytes) -> int:
    """Send the initialization packet of a message; return how many payload bytes it carried."""
    if len(data) > MAX_PAYLOAD:
        raise DeviceError("payload length > 2^16")

    frame = bytearray(dev.out_rpt_size + 1)
    frame[1:5] = dev.cid
    frame[5] = cmd
    frame[6] = (len(data) >> 8) & 0xFF
    frame[7] = len(data) & 0xFF

    count = min(len(data), dev.out_init_data_size())
    frame[8 : 8 + count] = data[:count]
    _send_frame(dev, frame)
    return count


def read_init_packet(dev: U2FDevice) -> tuple[bytes, int]:
    """Read an initialization packet.

    Returns the payload it carried and the total length of the message.
    """
    frame = _read_own_frame(dev)
    if len(frame) != dev.in_rpt_size:
        raise DeviceError("invalid init packet")

    total = (frame[5] << 8) | frame[6]
    length = min(total, dev.in_init_data_size())
    return bytes(frame[7 : 7 + length]), total


def write_cont_packet(dev: U2FDevice, seq: int, data: bytes) -> int:
    """Send a continuation packet; return how many payload bytes it carried."""
    frame = bytearray(dev.out_rpt_size + 1)
    frame[1:5] = dev.cid
    frame[5] = seq & 0xFF

    count = min(len(data), dev.out_cont_data_size())
    frame[6 : 6 + count] = data[:count]
    _send_frame(dev, frame)
    return count


def read_cont_packet(dev: U2FDevice, seq: int, max_len: int) -> bytes:
    """Read a continuation packet with sequence number ``seq``, returning up to ``max_len`` bytes."""
    frame = _read_own_frame(dev)
    if len(frame) != dev.in_rpt_size:
        raise DeviceError("invalid cont packet")
    if frame[4] != seq:
        raise DeviceError("invalid sequence number")

    length = min(max_len, dev.in_cont_data_size())
    return bytes(frame[5 : 5 + length])


@dataclass(frozen=True)
class InitResponse:
    """Reply to the INIT command: the assigned channel and version details."""

    cid: bytes
    version_interface: int
    version_major: int
    version_minor: int
    version_build: int
    cap_flags: int

    @classmethod
    def parse(cls, data: bytes, nonce: bytes) -> "InitResponse":
        if len(nonce) != INIT_NONCE_SIZE:
            raise ValueError(f"nonce must be {INIT_NONCE_SIZE} bytes")
        if len(data) != INIT_NONCE_SIZE + 9:
            raise DeviceError("invalid init response")
        if bytes(data[:INIT_NONCE_SIZE]) != bytes(nonce):
            raise DeviceError("invalid nonce")

        rest = data[INIT_NONCE_SIZE:]
        return cls(
            cid=bytes(rest[0:4]),
            version_interface=rest[4],
            version_major=rest[5],
            version_minor=rest[6],
            version_build=rest[7],
            cap_flags=rest[8],
        )


def serialize_apdu(ins: int, p1: int, data: bytes = b"") -> bytes:
    """Frame a CTAP1 command as an extended-length APDU.

    CLA and P2 are always zero; Lc is omitted when there is no data, and
    the trailing Le bytes are zero, meaning up to 65536 response bytes.
    """
    if len(data) > MAX_PAYLOAD:
        raise DeviceError("payload length > 2^16")

    data_size = 2 + len(data) if data else 0
    frame = bytearray(APDU_HEADER_SIZE + data_size)
    frame[1] = ins
    frame[2] = p1
    if data:
        frame[5] = (len(data) >> 8) & 0xFF
        frame[6] = len(data) & 0xFF
        frame[7 : 7 + len(data)] = data
    return bytes(frame)