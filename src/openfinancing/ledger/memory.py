"""In-memory ledger — a complete simulated network for tests and local runs.

Models the subset of ledger semantics the engine relies on:
- Accounts exist once they hold native currency (faucet or payment).
- A holder must open a trust line (with a limit) before receiving a token.
- An issuer mints by paying its own token; a holder retires a token by
  paying it back to the issuer.
- Freezing an issuer is irreversible: every later transaction signed by it
  is rejected, so no further minting is possible.

Every accepted transaction is appended to ``transactions`` with a
deterministic hash, which lets tests count and inspect ledger calls.
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from openfinancing.errors import LedgerError
from openfinancing.identity.keys import Keypair

TrustKey = tuple[str, str, str]  # (holder, code, issuer)


@dataclass(frozen=True)
class LedgerTransaction:
    """An accepted transaction."""
    tx_hash: str
    kind: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)


class InMemoryLedger:
    """Thread-safe simulated ledger implementing the LedgerClient Protocol.

    Usage:
        ledger = InMemoryLedger(faucet_amount=Decimal("10000"))
        ledger.fund_from_faucet(alice.address)
        ledger.create_trust_line(alice, issuer.address, "USD", Decimal("100"))
        ledger.issue_asset(issuer, "USD", alice.address, Decimal("50"))
    """

    def __init__(self, faucet_amount: Decimal = Decimal("10000")) -> None:
        self._faucet_amount = faucet_amount
        self._lock = threading.RLock()
        self._native: dict[str, Decimal] = {}
        self._trust: dict[TrustKey, Decimal] = {}
        self._balances: dict[TrustKey, Decimal] = {}
        self._frozen: set[str] = set()
        self.transactions: list[LedgerTransaction] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def native_balance(self, address: str) -> Decimal:
        with self._lock:
            return self._native.get(address, Decimal("0"))

    def asset_balance(self, address: str, code: str, issuer: Optional[str] = None) -> Decimal:
        with self._lock:
            if issuer is not None:
                return self._balances.get((address, code, issuer), Decimal("0"))
            return sum(
                (bal for (holder, c, _), bal in self._balances.items()
                 if holder == address and c == code),
                Decimal("0"),
            )

    def trust_limit(self, address: str, code: str, issuer: str) -> Optional[Decimal]:
        with self._lock:
            return self._trust.get((address, code, issuer))

    def is_frozen(self, address: str) -> bool:
        with self._lock:
            return address in self._frozen

    def account_exists(self, address: str) -> bool:
        with self._lock:
            return address in self._native

    @property
    def submitted_count(self) -> int:
        return len(self.transactions)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable copy of the whole ledger state."""
        with self._lock:
            return {
                "faucet_amount": str(self._faucet_amount),
                "native": {a: str(b) for a, b in self._native.items()},
                "trust": [[*k, str(v)] for k, v in self._trust.items()],
                "balances": [[*k, str(v)] for k, v in self._balances.items()],
                "frozen": sorted(self._frozen),
                "transactions": [
                    {"tx_hash": t.tx_hash, "kind": t.kind,
                     "source": t.source, "payload": t.payload}
                    for t in self.transactions
                ],
            }

    @classmethod
    def restore(cls, data: dict[str, Any]) -> InMemoryLedger:
        ledger = cls(faucet_amount=Decimal(data.get("faucet_amount", "10000")))
        ledger._native = {a: Decimal(b) for a, b in data.get("native", {}).items()}
        ledger._trust = {(h, c, i): Decimal(v) for h, c, i, v in data.get("trust", [])}
        ledger._balances = {
            (h, c, i): Decimal(v) for h, c, i, v in data.get("balances", [])
        }
        ledger._frozen = set(data.get("frozen", []))
        ledger.transactions = [LedgerTransaction(**t) for t in data.get("transactions", [])]
        return ledger

    # ------------------------------------------------------------------
    # Native currency
    # ------------------------------------------------------------------

    def fund_from_faucet(self, address: str) -> str:
        with self._lock:
            self._native[address] = self.native_balance(address) + self._faucet_amount
            return self._record("faucet", "faucet", {
                "destination": address,
                "amount": str(self._faucet_amount),
            })

    def send_native(self, source: Keypair, destination: str, amount: Decimal) -> str:
        with self._lock:
            self._check_signer(source)
            self._check_amount(amount)
            available = self.native_balance(source.address)
            if available < amount:
                raise LedgerError(
                    f"Insufficient native balance on {source.address}: "
                    f"{available} < {amount}"
                )
            self._native[source.address] = available - amount
            self._native[destination] = self.native_balance(destination) + amount
            return self._record("send_native", source.address, {
                "destination": destination,
                "amount": str(amount),
            })

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def create_trust_line(
        self, holder: Keypair, issuer: str, code: str, limit: Decimal
    ) -> str:
        with self._lock:
            self._check_signer(holder)
            if limit <= Decimal("0"):
                raise LedgerError(f"Trust limit must be positive, got {limit}")
            key = (holder.address, code, issuer)
            held = self._balances.get(key, Decimal("0"))
            if limit < held:
                raise LedgerError(
                    f"Trust limit {limit} below current holding {held} of {code}"
                )
            self._trust[key] = limit
            self._balances.setdefault(key, Decimal("0"))
            return self._record("trust", holder.address, {
                "issuer": issuer,
                "code": code,
                "limit": str(limit),
            })

    def issue_asset(
        self, issuer: Keypair, code: str, destination: str, amount: Decimal
    ) -> str:
        with self._lock:
            self._check_signer(issuer)
            self._check_amount(amount)
            self._credit(destination, code, issuer.address, amount)
            return self._record("issue", issuer.address, {
                "code": code,
                "destination": destination,
                "amount": str(amount),
            })

    def transfer_asset(
        self,
        holder: Keypair,
        code: str,
        issuer: str,
        destination: str,
        amount: Decimal,
    ) -> str:
        with self._lock:
            if holder.address == issuer:
                return self.issue_asset(holder, code, destination, amount)
            self._check_signer(holder)
            self._check_amount(amount)
            key = (holder.address, code, issuer)
            held = self._balances.get(key, Decimal("0"))
            if held < amount:
                raise LedgerError(
                    f"Insufficient {code} balance on {holder.address}: {held} < {amount}"
                )
            if destination != issuer:
                self._credit(destination, code, issuer, amount)
            self._balances[key] = held - amount
            return self._record("transfer", holder.address, {
                "code": code,
                "issuer": issuer,
                "destination": destination,
                "amount": str(amount),
            })

    def freeze_issuer(self, issuer: Keypair) -> str:
        with self._lock:
            self._check_signer(issuer)
            self._frozen.add(issuer.address)
            return self._record("freeze", issuer.address, {})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _credit(self, destination: str, code: str, issuer: str, amount: Decimal) -> None:
        key = (destination, code, issuer)
        limit = self._trust.get(key)
        if limit is None:
            raise LedgerError(f"{destination} has no trust line for {code} from {issuer}")
        held = self._balances.get(key, Decimal("0"))
        if held + amount > limit:
            raise LedgerError(
                f"Trust limit exceeded for {code} on {destination}: "
                f"{held} + {amount} > {limit}"
            )
        self._balances[key] = held + amount

    def _check_signer(self, keypair: Keypair) -> None:
        if keypair.address in self._frozen:
            raise LedgerError(f"Account {keypair.address} is frozen and cannot sign")
        if keypair.address not in self._native:
            raise LedgerError(f"Account {keypair.address} does not exist on the ledger")

    @staticmethod
    def _check_amount(amount: Decimal) -> None:
        if amount <= Decimal("0"):
            raise LedgerError(f"Amount must be positive, got {amount}")

    def _record(self, kind: str, source: str, payload: dict[str, Any]) -> str:
        canonical = json.dumps(
            {
                "seq": len(self.transactions) + 1,
                "kind": kind,
                "source": source,
                "payload": payload,
            },
            sort_keys=True,
        ).encode("utf-8")
        tx_hash = hashlib.sha256(canonical).hexdigest()
        self.transactions.append(
            LedgerTransaction(tx_hash=tx_hash, kind=kind, source=source, payload=payload)
        )
        return tx_hash
