"""Issuer registry — one issuing identity per project or bond.

Each financed project gets its own issuer account. The registry creates it
on first use, stores its signing key encrypted under the issuer password,
and tops up its native reserve from the platform account so it can sign
mint transactions. Bootstrapping is idempotent: an existing keystore is
reused and a reserve that is already in place is not paid again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

from openfinancing.errors import NotFoundError
from openfinancing.identity.keys import (
    DEFAULT_KDF,
    Keypair,
    decrypt_keystore,
    encrypt_keypair,
)
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.persistence.repository import ISSUERS
from openfinancing.persistence.store import EntityStore

logger = logging.getLogger(__name__)

IssuerKey = Union[int, str]


@dataclass(frozen=True)
class IssuerBootstrap:
    """Result of bootstrapping an issuer."""
    address: str
    created: bool
    funding_tx: Optional[str]


class IssuerRegistry:
    """Creates, funds, unlocks and freezes per-project issuers.

    Usage:
        registry = IssuerRegistry(store, adapter, reserve=Decimal("10"))
        boot = registry.bootstrap(7, password, platform_keys)
        issuer = registry.retrieve(7, password)
        registry.freeze(7, password)
    """

    def __init__(
        self,
        store: EntityStore,
        adapter: LedgerAdapter,
        reserve: Decimal,
        kdf: str = DEFAULT_KDF,
        kdf_iterations: Optional[int] = None,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._reserve = reserve
        self._kdf = kdf
        self._kdf_iterations = kdf_iterations

    def exists(self, key: IssuerKey) -> bool:
        return self._store.get(ISSUERS, key) is not None

    def address_of(self, key: IssuerKey) -> str:
        return self._record(key)["address"]

    def init_issuer(self, key: IssuerKey, password: str) -> tuple[str, bool]:
        """Create and store an issuer keypair unless one exists.

        Returns (address, created).
        """
        existing = self._store.get(ISSUERS, key)
        if existing is not None:
            return existing["address"], False
        keypair = self._adapter.create_keypair()
        keystore = encrypt_keypair(
            keypair, password, kdf=self._kdf, iterations=self._kdf_iterations
        )
        self._store.put(ISSUERS, key, {
            "key": str(key),
            "address": keypair.address,
            "keystore": keystore,
        })
        logger.info("Created issuer %s for %s", keypair.address, key)
        return keypair.address, True

    def fund_issuer(self, key: IssuerKey, platform: Keypair) -> Optional[str]:
        """Top the issuer up to its native reserve. Returns the tx, or None if already funded."""
        address = self.address_of(key)
        balance = self._adapter.get_native_balance(address)
        if balance >= self._reserve:
            logger.debug("Issuer %s already holds reserve (%s)", address, balance)
            return None
        return self._adapter.send_native(platform, address, self._reserve - balance)

    def bootstrap(self, key: IssuerKey, password: str, platform: Keypair) -> IssuerBootstrap:
        address, created = self.init_issuer(key, password)
        funding_tx = self.fund_issuer(key, platform)
        return IssuerBootstrap(address=address, created=created, funding_tx=funding_tx)

    def retrieve(self, key: IssuerKey, password: str) -> Keypair:
        """Unlock the issuer's signing key."""
        return decrypt_keystore(self._record(key)["keystore"], password)

    def freeze(self, key: IssuerKey, password: str) -> Optional[str]:
        """Freeze the issuer on the ledger. Returns None if it already is."""
        issuer = self.retrieve(key, password)
        if self._adapter.is_frozen(issuer.address):
            return None
        return self._adapter.freeze_issuer(issuer)

    def _record(self, key: IssuerKey) -> dict[str, Any]:
        record = self._store.get(ISSUERS, key)
        if record is None:
            raise NotFoundError(f"No issuer stored for {key}")
        return record
