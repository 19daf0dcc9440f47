"""Virtual test tokens holding credentials, backed by the software token."""

from __future__ import annotations

import bisect
import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from .softtoken import SoftwareU2FToken
from .transaction import AuthenticatorError, U2FTokenError
from .u2ftypes import U2FDeviceInfo

logger = logging.getLogger(__name__)


class TestWireProtocol(enum.Enum):
    """Wire protocol a virtual token speaks."""

    CTAP1 = "ctap1"
    CTAP2 = "ctap2"

    def to_webdriver_string(self) -> str:
        return "ctap1/u2f" if self is TestWireProtocol.CTAP1 else "ctap2"


@dataclass
class TestTokenCredential:
    """A credential stored on a virtual token."""

    credential: bytes
    privkey: bytes
    user_handle: bytes
    sign_count: int
    is_resident_credential: bool
    rp_id: str


@dataclass
class TestToken:
    """A virtual authenticator; only CTAP1 tokens are supported."""

    id: int
    protocol: TestWireProtocol
    transport: str
    is_user_consenting: bool
    has_user_verification: bool
    is_user_verified: bool
    has_resident_key: bool
    u2f_impl: Optional[SoftwareU2FToken] = field(default=None, init=False)
    credentials: list[TestTokenCredential] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        if self.protocol is not TestWireProtocol.CTAP1:
            raise ValueError(f"unsupported protocol {self.protocol.name}")
        self.u2f_impl = SoftwareU2FToken()

    def _position(self, credential: bytes) -> tuple[int, bool]:
        index = bisect.bisect_left(self.credentials, bytes(credential), key=lambda c: c.credential)
        found = index < len(self.credentials) and self.credentials[index].credential == credential
        return index, found

    def insert_credential(
        self,
        credential: bytes,
        privkey: bytes,
        rp_id: str,
        is_resident_credential: bool,
        user_handle: bytes,
        sign_count: int,
    ) -> None:
        """Store a credential, keeping them ordered by id; an existing id is kept as is."""
        index, found = self._position(credential)
        if found:
            return
        self.credentials.insert(
            index,
            TestTokenCredential(
                credential=bytes(credential),
                privkey=bytes(privkey),
                user_handle=bytes(user_handle),
                sign_count=sign_count,
                is_resident_credential=is_resident_credential,
                rp_id=rp_id,
            ),
        )

    def delete_credential(self, credential: bytes) -> bool:
        """Remove the credential with this id; True if there was one."""
        index, found = self._position(credential)
        if not found:
            return False
        logger.debug("Deleting credential at index %d", index)
        del self.credentials[index]
        return True

    def register(self) -> tuple[bytes, U2FDeviceInfo]:
        if self.u2f_impl is None:
            raise AuthenticatorError(U2FTokenError.UNKNOWN)
        return self.u2f_impl.register(0, 10_000, bytes(32), bytes(32), [])

    def sign(self) -> tuple[bytes, bytes, bytes, U2FDeviceInfo]:
        if self.u2f_impl is None:
            raise AuthenticatorError(U2FTokenError.UNKNOWN)
        return self.u2f_impl.sign(0, 10_000, bytes(32), [bytes(32)], [])