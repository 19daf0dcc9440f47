"""A software U2F token that answers every request with fixed data."""

from __future__ import annotations

from typing import Any, Sequence

from .u2ftypes import U2FDeviceInfo


class SoftwareU2FToken:
    """Stand-in token for platforms without a real U2F device."""

    def register(
        self,
        flags: Any,
        timeout: int,
        challenge: bytes,
        application: bytes,
        key_handles: Sequence[Any],
    ) -> tuple[bytes, U2FDeviceInfo]:
        """Return a blank 16-byte registration and this token's device info."""
        return bytes(16), self.dev_info()

    def sign(
        self,
        flags: Any,
        timeout: int,
        challenge: bytes,
        app_ids: Sequence[bytes],
        key_handles: Sequence[Any],
    ) -> tuple[bytes, bytes, bytes, U2FDeviceInfo]:
        """Return an empty app id, key handle and signature with the device info."""
        return b"", b"", b"", self.dev_info()

    def dev_info(self) -> U2FDeviceInfo:
        return U2FDeviceInfo(
            vendor_name=b"Mozilla",
            device_name=b"Authenticator Webdriver Token",
            version_interface=0,
            version_major=1,
            version_minor=2,
            version_build=3,
            cap_flags=0,
        )