"""Identity — keypairs, keystores, principals and session context."""

from openfinancing.identity.keys import Keypair, decrypt_keystore, encrypt_keypair
from openfinancing.identity.session import (
    Principal,
    Role,
    SessionContext,
    unlock_investor,
    unlock_recipient,
)

__all__ = [
    "Keypair",
    "decrypt_keystore",
    "encrypt_keypair",
    "Principal",
    "Role",
    "SessionContext",
    "unlock_investor",
    "unlock_recipient",
]
