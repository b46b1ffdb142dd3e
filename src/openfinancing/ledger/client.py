"""Ledger client contract — the primitives the engine needs from a ledger.

Any ledger backend (a public network client, a local simulation) must
implement this Protocol. The engine never talks to a backend directly;
it goes through LedgerAdapter, which adds logging and error typing.

Every state-changing primitive returns a transaction reference (the
transaction hash) or raises LedgerError. Balance queries return Decimal.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from openfinancing.identity.keys import Keypair


@runtime_checkable
class LedgerClient(Protocol):
    """Abstract contract for ledger backends."""

    def fund_from_faucet(self, address: str) -> str:
        """Credit native currency to an address (test networks only)."""
        ...

    def send_native(self, source: Keypair, destination: str, amount: Decimal) -> str:
        """Send native currency, creating the destination account if needed."""
        ...

    def native_balance(self, address: str) -> Decimal:
        ...

    def asset_balance(self, address: str, code: str, issuer: Optional[str] = None) -> Decimal:
        """Balance of a token held by an address. Zero if no trust line exists."""
        ...

    def create_trust_line(
        self, holder: Keypair, issuer: str, code: str, limit: Decimal
    ) -> str:
        """Allow holder to receive up to ``limit`` of the issuer's token."""
        ...

    def issue_asset(
        self, issuer: Keypair, code: str, destination: str, amount: Decimal
    ) -> str:
        """Mint ``amount`` of the issuer's token directly to destination."""
        ...

    def transfer_asset(
        self,
        holder: Keypair,
        code: str,
        issuer: str,
        destination: str,
        amount: Decimal,
    ) -> str:
        """Move a held token. Sending to the issuer retires it."""
        ...

    def freeze_issuer(self, issuer: Keypair) -> str:
        """Irreversibly revoke the issuer's ability to sign (and so to mint)."""
        ...

    def is_frozen(self, address: str) -> bool:
        ...
