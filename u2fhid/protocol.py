"""CTAP1/U2F commands sent over the U2F HID transport."""

from __future__ import annotations

import itertools
import os

from .u2ftypes import (
    INIT_NONCE_SIZE,
    DeviceError,
    InitResponse,
    U2FDevice,
    U2FDeviceInfo,
    read_cont_packet,
    read_init_packet,
    serialize_apdu,
    write_cont_packet,
    write_init_packet,
)

PARAMETER_SIZE = 32
MAX_KEY_HANDLE_SIZE = 256

# U2FHID transport commands.
U2FHID_PING = 0x81
U2FHID_MSG = 0x83
U2FHID_INIT = 0x86

# CTAP1 instructions.
U2F_REGISTER = 0x01
U2F_AUTHENTICATE = 0x02
U2F_VERSION = 0x03

# CTAP1 control bytes.
U2F_REQUEST_USER_PRESENCE = 0x03
U2F_CHECK_IS_REGISTERED = 0x07

# Status words.
SW_NO_ERROR = b"\x90\x00"
SW_WRONG_LENGTH = b"\x67\x00"
SW_WRONG_DATA = b"\x6a\x80"
SW_CONDITIONS_NOT_SATISFIED = b"\x69\x85"


def _check_parameters(challenge: bytes, application: bytes) -> None:
    if len(challenge) != PARAMETER_SIZE or len(application) != PARAMETER_SIZE:
        raise ValueError("Invalid parameter sizes")


def _authenticate_data(
    challenge: bytes, application: bytes, key_handle: bytes
) -> bytes:
    _check_parameters(challenge, application)
    if len(key_handle) > MAX_KEY_HANDLE_SIZE:
        raise ValueError("Key handle too large")
    # A 256-byte key handle wraps to a zero length byte, as the wire format allows.
    return (
        bytes(challenge)
        + bytes(application)
        + bytes([len(key_handle) & 0xFF])
        + bytes(key_handle)
    )


def _check_status(status: bytes) -> None:
    """Raise DeviceError unless ``status`` is the success status word."""
    if status == SW_NO_ERROR:
        return
    if status == SW_WRONG_DATA:
        raise DeviceError("wrong data")
    if status == SW_WRONG_LENGTH:
        raise DeviceError("wrong length")
    if status == SW_CONDITIONS_NOT_SATISFIED:
        raise DeviceError("conditions not satisfied")
    raise DeviceError(f"failed with status {list(status)}")


def u2f_init_device(dev: U2FDevice) -> bool:
    """Initialize ``dev`` with a random nonce; True if it speaks U2F_V2."""
    nonce = os.urandom(INIT_NONCE_SIZE)
    try:
        init_device(dev, nonce)
    except OSError:
        return False
    try:
        return is_v2_device(dev)
    except OSError:
        return False


def u2f_register(dev: U2FDevice, challenge: bytes, application: bytes) -> bytes:
    """Send a REGISTER request requiring user presence; return the raw response."""
    _check_parameters(challenge, application)
    register_data = bytes(challenge) + bytes(application)
    response, status = send_ctap1(
        dev, U2F_REGISTER, U2F_REQUEST_USER_PRESENCE, register_data
    )
    _check_status(status)
    return response


def u2f_sign(
    dev: U2FDevice, challenge: bytes, application: bytes, key_handle: bytes
) -> bytes:
    """Send an AUTHENTICATE request requiring user presence; return the raw response."""
    sign_data = _authenticate_data(challenge, application, key_handle)
    response, status = send_ctap1(
        dev, U2F_AUTHENTICATE, U2F_REQUEST_USER_PRESENCE, sign_data
    )
    _check_status(status)
    return response


def u2f_is_keyhandle_valid(
    dev: U2FDevice, challenge: bytes, application: bytes, key_handle: bytes
) -> bool:
    """Ask the device whether ``key_handle`` was issued by it for ``application``."""
    sign_data = _authenticate_data(challenge, application, key_handle)
    _, status = send_ctap1(dev, U2F_AUTHENTICATE, U2F_CHECK_IS_REGISTERED, sign_data)
    return status == SW_CONDITIONS_NOT_SATISFIED


def init_device(dev: U2FDevice, nonce: bytes) -> None:
    """Run the INIT handshake, storing the channel id and device info on ``dev``."""
    if len(nonce) != INIT_NONCE_SIZE:
        raise ValueError(f"nonce must be {INIT_NONCE_SIZE} bytes")
    raw = sendrecv(dev, U2FHID_INIT, nonce)
    rsp = InitResponse.parse(raw, nonce)
    dev.cid = rsp.cid

    try:
        vendor = dev.get_property("Manufacturer")
    except OSError:
        vendor = "Unknown Vendor"
    try:
        product = dev.get_property("Product")
    except OSError:
        product = "Unknown Device"

    dev.device_info = U2FDeviceInfo(
        vendor_name=vendor.encode("utf-8"),
        device_name=product.encode("utf-8"),
        version_interface=rsp.version_interface,
        version_major=rsp.version_major,
        version_minor=rsp.version_minor,
        version_build=rsp.version_build,
        cap_flags=rsp.cap_flags,
    )


def is_v2_device(dev: U2FDevice) -> bool:
    """Query the protocol version; True if the device answers "U2F_V2"."""
    data, status = send_ctap1(dev, U2F_VERSION, 0x00, b"")
    if b"\x00" in data:
        raise DeviceError("version string contains a nul byte")
    _check_status(status)
    return data == b"U2F_V2"


def sendrecv(dev: U2FDevice, cmd: int, data: bytes) -> bytes:
    """Send a full U2FHID message and read back the complete reply."""
    count = write_init_packet(dev, cmd, data)
    sequence = itertools.count()
    while count < len(data):
        count += write_cont_packet(dev, next(sequence), data[count:])

    payload, total = read_init_packet(dev)
    received = bytearray(payload)
    sequence = itertools.count()
    while len(received) < total:
        received += read_cont_packet(dev, next(sequence), total - len(received))
    return bytes(received)


def send_ctap1(
    dev: U2FDevice, cmd: int, p1: int, data: bytes
) -> tuple[bytes, bytes]:
    """Send a CTAP1 APDU; return the response body and its two-byte status word."""
    apdu = serialize_apdu(cmd, p1, data)
    response = sendrecv(dev, U2FHID_MSG, apdu)
    if len(response) < 2:
        raise DeviceError("unexpected response")
    return response[:-2], response[-2:]