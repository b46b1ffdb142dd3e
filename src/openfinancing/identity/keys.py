"""Keypairs and encrypted keystores.

Ledger identities are secp256k1 keypairs generated with eth_account.
Signing keys are never persisted in the clear: they are stored as
password-encrypted keystore documents (the standard Web3 Secret Storage
format) and decrypted only into an in-memory Keypair for the duration of
a session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from openfinancing.errors import ValidationError

# Key derivation for new keystores. scrypt is the keystore standard;
# callers that create many throwaway keys (tests, local networks) may
# pass a cheaper kdf/iteration count.
DEFAULT_KDF = "scrypt"


@dataclass(frozen=True)
class Keypair:
    """An unlocked ledger identity. The private key never appears in repr."""
    address: str
    private_key: str = field(repr=False)

    @staticmethod
    def generate() -> Keypair:
        """Create a fresh random keypair."""
        from eth_account import Account

        acct = Account.create()
        return Keypair(address=acct.address, private_key=acct.key.hex())

    @staticmethod
    def from_private_key(private_key: str) -> Keypair:
        from eth_account import Account

        acct = Account.from_key(private_key)
        return Keypair(address=acct.address, private_key=acct.key.hex())


def encrypt_keypair(
    keypair: Keypair,
    password: str,
    kdf: str = DEFAULT_KDF,
    iterations: Optional[int] = None,
) -> dict[str, Any]:
    """Encrypt a keypair's private key into a keystore document."""
    from eth_account import Account

    if not password:
        raise ValidationError("Keystore password must be non-empty")
    return Account.encrypt(keypair.private_key, password, kdf=kdf, iterations=iterations)


def decrypt_keystore(keystore: dict[str, Any], password: str) -> Keypair:
    """Unlock a keystore document.

    Raises:
        ValidationError: if the keystore is missing or the password is wrong.
    """
    from eth_account import Account

    if not keystore:
        raise ValidationError("No keystore stored for this identity")
    try:
        raw = Account.decrypt(keystore, password)
    except ValueError as e:
        raise ValidationError(f"Unable to unlock keystore: {e}") from e
    return Keypair.from_private_key(raw.hex())
