"""Stablecoin payment collection with balance verification.

The platform account receives every investment in the payment token. A
submitted payment only counts once the platform's own balance has moved:
the collector reads the balance, submits the transfer, waits out the
confirmation delay, reads again and compares the delta with the amount
expected, allowing a configurable tolerance for rounding.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable, Optional

from openfinancing.config import EngineConfig
from openfinancing.errors import (
    InsufficientBalanceError,
    PaymentMismatchError,
    ValidationError,
)
from openfinancing.identity.keys import Keypair
from openfinancing.ledger.adapter import LedgerAdapter

logger = logging.getLogger(__name__)


class PaymentCollector:
    """Moves payment tokens from a payer to the platform and verifies arrival.

    Usage:
        collector = PaymentCollector(adapter, config)
        collector.check_funds(investor.address, amount)
        tx = collector.collect(investor_keys, platform.address, amount)
    """

    def __init__(
        self,
        adapter: LedgerAdapter,
        config: EngineConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._adapter = adapter
        self._config = config
        self._sleep = sleep

    @property
    def token_code(self) -> str:
        return self._config.payment_token_code

    @property
    def token_issuer(self) -> str:
        issuer = self._config.payment_token_issuer
        if not issuer:
            raise ValidationError("No payment token issuer is configured")
        return issuer

    def balance_of(self, address: str) -> Decimal:
        return self._adapter.get_asset_balance(address, self.token_code, self.token_issuer)

    def check_funds(self, address: str, amount: Decimal) -> None:
        """Raise InsufficientBalanceError if the payer cannot cover amount."""
        balance = self.balance_of(address)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{address} holds {balance} {self.token_code}, needs {amount}"
            )

    def collect(
        self,
        payer: Keypair,
        platform_address: str,
        amount: Decimal,
        tolerance: Optional[Decimal] = None,
    ) -> str:
        """Transfer amount to the platform and confirm the platform received it."""
        tolerance = self._config.payment_tolerance if tolerance is None else tolerance
        before = self.balance_of(platform_address)
        tx = self._adapter.transfer_asset(
            payer, self.token_code, self.token_issuer, platform_address, amount
        )
        if self._config.confirmation_delay_seconds:
            self._sleep(self._config.confirmation_delay_seconds)
        after = self.balance_of(platform_address)
        received = after - before
        logger.info("Platform balance moved %s -> %s (expected +%s), tx %s",
                    before, after, amount, tx)
        if received < amount - tolerance:
            raise PaymentMismatchError(
                f"Platform received {received} {self.token_code} for a payment of "
                f"{amount} (tolerance {tolerance}), tx {tx}"
            )
        return tx
