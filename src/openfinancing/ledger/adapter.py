"""Identity & ledger adapter — the engine's only door to the ledger.

A thin façade over a LedgerClient that:
1. Exposes the operations the engine needs under stable names
   (create-keypair, fund-from-faucet, balances, trust, mint-and-send,
   transfer-to-issuer, freeze).
2. Guarantees a typed failure: anything a backend raises that is not
   already a LedgerError is wrapped in one.
3. Logs every submission with its transaction reference.

All operations are synchronous and block the calling thread.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from openfinancing.errors import LedgerError, ValidationError
from openfinancing.identity.keys import Keypair
from openfinancing.ledger.client import LedgerClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerAdapter:
    """Façade over a LedgerClient.

    Usage:
        adapter = LedgerAdapter(InMemoryLedger(), testnet=True)
        keys = adapter.create_keypair()
        adapter.fund_from_faucet(keys.address)
        tx = adapter.create_trust_line(keys, issuer.address, code, Decimal("1000"))
    """

    def __init__(self, client: LedgerClient, testnet: bool = True) -> None:
        if not isinstance(client, LedgerClient):
            raise TypeError(f"Client must implement LedgerClient, got {type(client)}")
        self._client = client
        self._testnet = testnet

    @property
    def client(self) -> LedgerClient:
        return self._client

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    @staticmethod
    def create_keypair() -> Keypair:
        return Keypair.generate()

    def fund_from_faucet(self, address: str) -> str:
        """Request native currency from the network faucet (test networks only)."""
        if not self._testnet:
            raise ValidationError("Faucet funding is only available on test networks")
        tx = self._call("fund_from_faucet", lambda: self._client.fund_from_faucet(address))
        logger.info("Faucet funded %s, tx %s", address, tx)
        return tx

    def send_native(self, source: Keypair, destination: str, amount: Decimal) -> str:
        tx = self._call(
            "send_native",
            lambda: self._client.send_native(source, destination, amount),
        )
        logger.info("Sent %s native from %s to %s, tx %s",
                    amount, source.address, destination, tx)
        return tx

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_native_balance(self, address: str) -> Decimal:
        return self._call("native_balance", lambda: self._client.native_balance(address))

    def get_asset_balance(
        self, address: str, code: str, issuer: Optional[str] = None
    ) -> Decimal:
        return self._call(
            "asset_balance",
            lambda: self._client.asset_balance(address, code, issuer),
        )

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def create_trust_line(
        self, holder: Keypair, issuer_address: str, code: str, limit: Decimal
    ) -> str:
        tx = self._call(
            "create_trust_line",
            lambda: self._client.create_trust_line(holder, issuer_address, code, limit),
        )
        logger.info("%s trusts %s/%s up to %s, tx %s",
                    holder.address, code, issuer_address, limit, tx)
        return tx

    def mint_and_send(
        self, issuer: Keypair, code: str, destination: str, amount: Decimal
    ) -> str:
        tx = self._call(
            "mint_and_send",
            lambda: self._client.issue_asset(issuer, code, destination, amount),
        )
        logger.info("Minted %s %s to %s, tx %s", amount, code, destination, tx)
        return tx

    def transfer_asset(
        self,
        holder: Keypair,
        code: str,
        issuer_address: str,
        destination: str,
        amount: Decimal,
    ) -> str:
        tx = self._call(
            "transfer_asset",
            lambda: self._client.transfer_asset(
                holder, code, issuer_address, destination, amount
            ),
        )
        logger.info("Transferred %s %s from %s to %s, tx %s",
                    amount, code, holder.address, destination, tx)
        return tx

    def transfer_to_issuer(
        self, holder: Keypair, code: str, issuer_address: str, amount: Decimal
    ) -> str:
        """Return a token to its issuer, retiring it."""
        return self.transfer_asset(holder, code, issuer_address, issuer_address, amount)

    def freeze_issuer(self, issuer: Keypair) -> str:
        tx = self._call("freeze_issuer", lambda: self._client.freeze_issuer(issuer))
        logger.info("Froze issuer %s, tx %s", issuer.address, tx)
        return tx

    def is_frozen(self, address: str) -> bool:
        return self._call("is_frozen", lambda: self._client.is_frozen(address))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _call(operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except LedgerError:
            logger.warning("Ledger %s failed", operation, exc_info=True)
            raise
        except Exception as e:
            logger.warning("Ledger %s failed", operation, exc_info=True)
            raise LedgerError(f"Ledger {operation} failed: {e}") from e
