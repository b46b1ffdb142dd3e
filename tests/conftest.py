"""Shared fixtures for OpenFinancing tests.

Provides a complete local platform on the in-memory ledger:
- a stablecoin issuer and a platform account holding a trust line to it
- engine components wired with zero confirmation delay and inline
  notifications
- helpers to add funded investors, recipients and open projects
- FlakyLedger, an InMemoryLedger that fails chosen operations on demand
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from openfinancing.config import EngineConfig
from openfinancing.engine.issuers import IssuerRegistry
from openfinancing.engine.locks import ProjectLocks
from openfinancing.engine.orchestrator import InvestmentOrchestrator
from openfinancing.engine.payback import PaybackLedger, RepaymentService
from openfinancing.engine.payments import PaymentCollector
from openfinancing.errors import LedgerError
from openfinancing.identity.keys import Keypair
from openfinancing.identity.session import SessionContext
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.ledger.memory import InMemoryLedger
from openfinancing.models.participants import Investor, Recipient
from openfinancing.models.project import Project, ProjectStage
from openfinancing.notify.notifier import LogNotifier, NotificationDispatcher
from openfinancing.oracle import FixedPriceOracle
from openfinancing.persistence.event_log import EventLog
from openfinancing.persistence.repository import INVESTORS, PROJECTS, RECIPIENTS, EntityRepository
from openfinancing.persistence.store import MemoryEntityStore

ISSUER_PASSWORD = "issuer-secret"
FAST_KDF = "pbkdf2"
FAST_ITERATIONS = 2


def fixed_now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FlakyLedger(InMemoryLedger):
    """InMemoryLedger that raises LedgerError on selected submissions.

    ``fail_on("issue_asset")`` makes the next issue_asset call fail once,
    before any state changes.
    """

    def __init__(self, faucet_amount: Decimal = Decimal("10000")) -> None:
        super().__init__(faucet_amount=faucet_amount)
        self._failures: dict[str, int] = {}
        self.calls: dict[str, int] = {}

    def fail_on(self, operation: str, times: int = 1) -> None:
        self._failures[operation] = self._failures.get(operation, 0) + times

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if self._failures.get(operation, 0) > 0:
            self._failures[operation] -= 1
            raise LedgerError(f"injected failure in {operation}")

    def create_trust_line(self, holder, issuer, code, limit):  # type: ignore[override]
        self._maybe_fail("create_trust_line")
        return super().create_trust_line(holder, issuer, code, limit)

    def issue_asset(self, issuer, code, destination, amount):  # type: ignore[override]
        self._maybe_fail("issue_asset")
        return super().issue_asset(issuer, code, destination, amount)

    def transfer_asset(self, holder, code, issuer, destination, amount):  # type: ignore[override]
        self._maybe_fail("transfer_asset")
        return super().transfer_asset(holder, code, issuer, destination, amount)

    def freeze_issuer(self, issuer):  # type: ignore[override]
        self._maybe_fail("freeze_issuer")
        return super().freeze_issuer(issuer)

    def asset_balance(self, address, code, issuer=None):  # type: ignore[override]
        self.calls["asset_balance"] = self.calls.get("asset_balance", 0) + 1
        return super().asset_balance(address, code, issuer)


@dataclass
class Platform:
    """A wired engine over one in-memory ledger and store."""
    ledger: FlakyLedger
    adapter: LedgerAdapter
    store: MemoryEntityStore
    repo: EntityRepository
    config: EngineConfig
    events: EventLog
    notifier: LogNotifier
    dispatcher: NotificationDispatcher
    issuers: IssuerRegistry
    payments: PaymentCollector
    locks: ProjectLocks
    orchestrator: InvestmentOrchestrator
    repayments: RepaymentService
    platform_keys: Keypair
    stable_issuer: Keypair
    keys: dict[str, Keypair] = field(default_factory=dict)

    def session(
        self,
        investor: Optional[Keypair] = None,
        recipient: Optional[Keypair] = None,
    ) -> SessionContext:
        return SessionContext(
            platform=self.platform_keys,
            issuer_password=ISSUER_PASSWORD,
            investor=investor,
            recipient=recipient,
        )

    def add_investor(
        self, name: str = "alice", balance: Decimal = Decimal("5000"),
        email: str = "", notify: bool = False,
    ) -> tuple[Investor, Keypair]:
        keys = Keypair.generate()
        self.ledger.fund_from_faucet(keys.address)
        self.ledger.create_trust_line(
            keys, self.stable_issuer.address, self.config.payment_token_code,
            self.config.payment_token_trust_limit,
        )
        if balance > 0:
            self.ledger.issue_asset(
                self.stable_issuer, self.config.payment_token_code, keys.address, balance
            )
        investor = Investor(
            index=self.repo.next_index(INVESTORS), name=name, address=keys.address,
            email=email, notify=notify,
        )
        self.repo.put_investor(investor)
        self.keys[name] = keys
        return investor, keys

    def add_recipient(
        self, name: str = "school", email: str = "", notify: bool = False
    ) -> tuple[Recipient, Keypair]:
        keys = Keypair.generate()
        self.ledger.fund_from_faucet(keys.address)
        recipient = Recipient(
            index=self.repo.next_index(RECIPIENTS), name=name, address=keys.address,
            email=email, notify=notify,
        )
        self.repo.put_recipient(recipient)
        self.keys[name] = keys
        return recipient, keys

    def add_project(
        self,
        recipient: Recipient,
        total_value: Decimal = Decimal("1000"),
        years: int = 5,
        metadata: str = "solar-roof",
        stage: ProjectStage = ProjectStage.OPEN,
    ) -> Project:
        project = Project(
            index=self.repo.next_index(PROJECTS),
            title=f"Project {metadata}",
            total_value=total_value,
            years=years,
            metadata=metadata,
            recipient_index=recipient.index,
            stage=stage,
            date_initiated=fixed_now(),
        )
        self.repo.put_project(project)
        return project

    def stable_balance(self, address: str) -> Decimal:
        return self.ledger.asset_balance(
            address, self.config.payment_token_code, self.stable_issuer.address
        )


def build_platform(
    oracle_amount: Decimal = Decimal("200"),
    **config_overrides,
) -> Platform:
    ledger = FlakyLedger()
    adapter = LedgerAdapter(ledger, testnet=True)
    stable_issuer = Keypair.generate()
    ledger.fund_from_faucet(stable_issuer.address)

    config = replace(
        EngineConfig(),
        payment_token_issuer=stable_issuer.address,
        confirmation_delay_seconds=0,
        notifications_async=False,
        oracle_amount_due=oracle_amount,
        **config_overrides,
    )
    platform_keys = Keypair.generate()
    ledger.fund_from_faucet(platform_keys.address)
    ledger.create_trust_line(
        platform_keys, stable_issuer.address, config.payment_token_code,
        config.payment_token_trust_limit,
    )

    store = MemoryEntityStore()
    repo = EntityRepository(store)
    events = EventLog()
    notifier = LogNotifier()
    dispatcher = NotificationDispatcher(notifier, asynchronous=False)
    issuers = IssuerRegistry(
        store, adapter, config.issuer_reserve,
        kdf=FAST_KDF, kdf_iterations=FAST_ITERATIONS,
    )
    payments = PaymentCollector(adapter, config)
    locks = ProjectLocks()
    oracle = FixedPriceOracle(config.oracle_amount_due)
    orchestrator = InvestmentOrchestrator(
        repo, adapter, issuers, config, dispatcher,
        event_log=events, locks=locks, payments=payments, clock=fixed_now,
    )
    repayments = RepaymentService(
        repo, PaybackLedger(adapter, oracle), oracle, dispatcher,
        event_log=events, locks=locks, clock=fixed_now,
    )
    return Platform(
        ledger=ledger, adapter=adapter, store=store, repo=repo, config=config,
        events=events, notifier=notifier, dispatcher=dispatcher, issuers=issuers,
        payments=payments, locks=locks, orchestrator=orchestrator,
        repayments=repayments, platform_keys=platform_keys, stable_issuer=stable_issuer,
    )


@pytest.fixture
def platform() -> Platform:
    return build_platform()
