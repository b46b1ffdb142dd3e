"""Authenticated principals and per-call session context.

Authentication itself happens outside the engine. What reaches the engine
is a Principal (a role resolved once, carried as a typed value) and a
SessionContext holding the unlocked keys a call needs. Nothing here is
global: every engine entry point receives its session explicitly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from openfinancing.errors import ValidationError
from openfinancing.identity.keys import Keypair, decrypt_keystore
from openfinancing.models.participants import Investor, Recipient


class Role(str, enum.Enum):
    """Closed set of platform roles."""
    INVESTOR = "investor"
    RECIPIENT = "recipient"
    ENTITY = "entity"


@dataclass(frozen=True)
class Principal:
    """A validated identity, already resolved to its database record."""
    role: Role
    index: int
    address: str

    @staticmethod
    def for_investor(investor: Investor) -> Principal:
        return Principal(role=Role.INVESTOR, index=investor.index, address=investor.address)

    @staticmethod
    def for_recipient(recipient: Recipient) -> Principal:
        return Principal(role=Role.RECIPIENT, index=recipient.index, address=recipient.address)

    def require(self, role: Role) -> None:
        if self.role != role:
            raise ValidationError(
                f"Operation requires role {role.value}, principal is {self.role.value}"
            )


@dataclass(frozen=True)
class SessionContext:
    """Unlocked keys and credentials for one engine call.

    platform: the custodial platform identity (receives payments, funds issuers).
    issuer_password: unlocks per-project issuer keystores.
    investor / recipient: present only when the call acts on their behalf.
    """
    platform: Keypair
    issuer_password: str
    investor: Optional[Keypair] = None
    recipient: Optional[Keypair] = None

    def require_investor(self) -> Keypair:
        if self.investor is None:
            raise ValidationError("Session has no unlocked investor key")
        return self.investor

    def require_recipient(self) -> Keypair:
        if self.recipient is None:
            raise ValidationError("Session has no unlocked recipient key")
        return self.recipient


def unlock_investor(investor: Investor, password: str) -> Keypair:
    """Decrypt an investor's stored keystore. The record itself is not modified."""
    keypair = decrypt_keystore(investor.keystore, password)
    if keypair.address != investor.address:
        raise ValidationError(f"Keystore does not match investor {investor.index} address")
    return keypair


def unlock_recipient(recipient: Recipient, password: str) -> Keypair:
    """Decrypt a recipient's stored keystore. The record itself is not modified."""
    keypair = decrypt_keystore(recipient.keystore, password)
    if keypair.address != recipient.address:
        raise ValidationError(f"Keystore does not match recipient {recipient.index} address")
    return keypair
