"""Service layer — the single entry point for callers of the financing engine.

Wires the engine components together behind one façade and turns engine
errors into structured results. Every public method returns a
ServiceResult: callers never see an exception for a refused or failed
operation, and the result says whether a retry is safe.

    success=False, retry_safe=True    nothing happened, or the step cursor
                                      lets the same call resume
    success=False, retry_safe=False   ledger and books disagree; an
                                      operator must reconcile first

Amounts cross this boundary as decimal strings (or Decimal) and come back
as strings inside the JSON-serializable data dict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from openfinancing.config import EngineConfig
from openfinancing.engine.funding import FundingStateMachine
from openfinancing.engine.issuers import IssuerRegistry
from openfinancing.engine.locks import ProjectLocks
from openfinancing.engine.orchestrator import InvestmentOrchestrator, new_investment_id
from openfinancing.engine.payback import PaybackLedger, RepaymentService
from openfinancing.engine.payments import PaymentCollector
from openfinancing.errors import (
    FinancingError,
    LedgerError,
    UnderPaymentError,
    ValidationError,
)
from openfinancing.identity.keys import (
    DEFAULT_KDF,
    Keypair,
    decrypt_keystore,
    encrypt_keypair,
)
from openfinancing.identity.session import SessionContext, unlock_investor, unlock_recipient
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.models.assets import AssetRole
from openfinancing.models.bond import ConstructionBond
from openfinancing.models.participants import ContractEntity, EntityKind, Investor, Recipient
from openfinancing.models.project import Project, ProjectStage
from openfinancing.models.serialization import dec
from openfinancing.notify.notifier import LogNotifier, NotificationDispatcher
from openfinancing.oracle import FixedPriceOracle, PriceOracle
from openfinancing.persistence.event_log import EventKind, EventLog
from openfinancing.persistence.repository import (
    ENTITIES,
    INVESTORS,
    PROJECTS,
    RECIPIENTS,
    EntityRepository,
)
from openfinancing.platforms.bonds import BondPlatform

logger = logging.getLogger(__name__)

PLATFORM = "platform"
STABLECOIN = "stablecoin"

Amount = Union[str, Decimal, int]


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    retry_safe: bool = False


def _public(record: dict[str, Any]) -> dict[str, Any]:
    """Strip encrypted key material before a record leaves the service."""
    return {k: v for k, v in record.items() if k != "keystore"}


def _amount(value: Amount, label: str = "amount") -> Decimal:
    try:
        parsed = dec(value)
    except (InvalidOperation, TypeError) as e:
        raise ValidationError(f"Invalid {label}: {value!r}") from e
    if not parsed.is_finite():
        raise ValidationError(f"Invalid {label}: {value!r}")
    return parsed


class FinancingService:
    """Financing engine façade.

    Usage:
        service = FinancingService(repo, LedgerAdapter(InMemoryLedger()), config)
        service.init_platform(platform_password)
        inv = service.register_investor("Alice", "pw", email="a@example.org")
        rec = service.register_recipient("School", "pw")
        proj = service.propose_project("Solar roof", "1000", 5, "roof-42", rec.data["index"])
        service.open_project(proj.data["index"])

        session = service.open_session(platform_password, issuer_password,
                                       investor_index=1, investor_password="pw")
        service.invest(proj.data["index"], 1, rec.data["index"], "1000", session)
    """

    def __init__(
        self,
        repository: EntityRepository,
        adapter: LedgerAdapter,
        config: EngineConfig,
        dispatcher: Optional[NotificationDispatcher] = None,
        event_log: Optional[EventLog] = None,
        oracle: Optional[PriceOracle] = None,
        kdf: str = DEFAULT_KDF,
        kdf_iterations: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repo = repository
        self._adapter = adapter
        self._events = event_log or EventLog()
        self._dispatcher = dispatcher or NotificationDispatcher(
            LogNotifier(), enabled=config.notifications_enabled
        )
        self._oracle = oracle or FixedPriceOracle(config.oracle_amount_due)
        self._kdf = kdf
        self._kdf_iterations = kdf_iterations
        self._sleep = sleep
        self._clock = clock
        self._locks = ProjectLocks()
        self._wire(self._with_local_stablecoin(config))

    def _wire(self, config: EngineConfig) -> None:
        self._config = config
        self._payments = (
            PaymentCollector(self._adapter, config, self._sleep) if self._sleep is not None
            else PaymentCollector(self._adapter, config)
        )
        self._issuers = IssuerRegistry(
            self._repo.store, self._adapter, config.issuer_reserve,
            kdf=self._kdf, kdf_iterations=self._kdf_iterations,
        )
        self._orchestrator = InvestmentOrchestrator(
            self._repo, self._adapter, self._issuers, config, self._dispatcher,
            event_log=self._events, locks=self._locks,
            payments=self._payments, clock=self._clock,
        )
        self._repayments = RepaymentService(
            self._repo, PaybackLedger(self._adapter, self._oracle), self._oracle,
            self._dispatcher, event_log=self._events, locks=self._locks, clock=self._clock,
        )
        self._bonds = BondPlatform(
            self._repo, self._adapter, self._issuers, self._payments, self._dispatcher,
            event_log=self._events, locks=self._locks, clock=self._clock,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def event_log(self) -> EventLog:
        return self._events

    @property
    def repository(self) -> EntityRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Platform and sessions
    # ------------------------------------------------------------------

    def init_platform(self, password: str) -> ServiceResult:
        """Create the custodial platform account, or report the existing one.

        On a test network with no payment token issuer configured, an
        in-house stablecoin issuer is created first and used from then on.
        """
        try:
            existing = self._repo.store.get(PLATFORM, PLATFORM)
            if existing is not None:
                return ServiceResult(success=True, data={
                    "address": existing["address"],
                    "payment_token_issuer": self._config.payment_token_issuer,
                    "created": False,
                })
            if self._config.is_testnet and not self._config.payment_token_issuer:
                self._create_local_stablecoin(password)
            keypair = self._adapter.create_keypair()
            self._fund_and_trust(keypair)
            self._repo.store.put(PLATFORM, PLATFORM, {
                "address": keypair.address,
                "keystore": self._encrypt(keypair, password),
            })
            logger.info("Platform account %s created", keypair.address)
            return ServiceResult(success=True, data={
                "address": keypair.address,
                "payment_token_issuer": self._config.payment_token_issuer,
                "created": True,
            })
        except FinancingError as e:
            return self._failure(e)

    def unlock_platform(self, password: str) -> Keypair:
        record = self._repo.store.get(PLATFORM, PLATFORM)
        if record is None:
            raise ValidationError("Platform account has not been initialised")
        return decrypt_keystore(record["keystore"], password)

    def issue_stablecoin(
        self, investor_index: int, amount: Amount, platform_password: str
    ) -> ServiceResult:
        """Credit an investor with in-house stablecoin (test networks only)."""
        try:
            record = self._repo.store.get(PLATFORM, STABLECOIN)
            if not self._config.is_testnet or record is None:
                raise ValidationError("In-house stablecoin is only available on test networks")
            investor = self._repo.get_investor(investor_index)
            issuer = decrypt_keystore(record["keystore"], platform_password)
            tx = self._adapter.mint_and_send(
                issuer, self._config.payment_token_code, investor.address,
                _amount(amount),
            )
        except FinancingError as e:
            return self._failure(e)
        return ServiceResult(success=True, data={"investor_index": investor_index, "tx_ref": tx})

    def _create_local_stablecoin(self, password: str) -> None:
        issuer = self._adapter.create_keypair()
        self._adapter.fund_from_faucet(issuer.address)
        self._repo.store.put(PLATFORM, STABLECOIN, {
            "address": issuer.address,
            "keystore": self._encrypt(issuer, password),
        })
        logger.info("Created in-house %s issuer %s",
                    self._config.payment_token_code, issuer.address)
        self._wire(self._with_local_stablecoin(self._config))

    def _with_local_stablecoin(self, config: EngineConfig) -> EngineConfig:
        if config.payment_token_issuer or not config.is_testnet:
            return config
        record = self._repo.store.get(PLATFORM, STABLECOIN)
        if record is None:
            return config
        return replace(config, payment_token_issuer=record["address"])

    def open_session(
        self,
        platform_password: str,
        issuer_password: str,
        investor_index: Optional[int] = None,
        investor_password: Optional[str] = None,
        recipient_index: Optional[int] = None,
        recipient_password: Optional[str] = None,
    ) -> SessionContext:
        """Unlock the keys one call needs.

        Raises:
            ValidationError: a record is missing or a password is wrong.
        """
        investor_keys = recipient_keys = None
        if investor_index is not None:
            investor_keys = unlock_investor(
                self._repo.get_investor(investor_index), investor_password or ""
            )
        if recipient_index is not None:
            recipient_keys = unlock_recipient(
                self._repo.get_recipient(recipient_index), recipient_password or ""
            )
        return SessionContext(
            platform=self.unlock_platform(platform_password),
            issuer_password=issuer_password,
            investor=investor_keys,
            recipient=recipient_keys,
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def register_investor(
        self, name: str, password: str, email: str = "", notify: bool = False
    ) -> ServiceResult:
        try:
            if not name.strip():
                raise ValidationError("Investor name must be non-empty")
            keypair = self._adapter.create_keypair()
            investor = Investor(
                index=self._repo.next_index(INVESTORS),
                name=name.strip(),
                address=keypair.address,
                keystore=self._encrypt(keypair, password),
                email=email,
                notify=notify,
            )
            self._fund_and_trust(keypair)
            self._repo.put_investor(investor)
            self._events.record(EventKind.INVESTOR_REGISTERED, f"investor:{investor.index}", {
                "index": investor.index,
                "address": investor.address,
            }, now=self._clock())
            return ServiceResult(success=True, data=_public(investor.to_dict()))
        except FinancingError as e:
            return self._failure(e)

    def register_recipient(
        self, name: str, password: str, email: str = "", notify: bool = False
    ) -> ServiceResult:
        try:
            if not name.strip():
                raise ValidationError("Recipient name must be non-empty")
            keypair = self._adapter.create_keypair()
            recipient = Recipient(
                index=self._repo.next_index(RECIPIENTS),
                name=name.strip(),
                address=keypair.address,
                keystore=self._encrypt(keypair, password),
                email=email,
                notify=notify,
            )
            self._fund_and_trust(keypair)
            self._repo.put_recipient(recipient)
            self._events.record(EventKind.RECIPIENT_REGISTERED, f"recipient:{recipient.index}", {
                "index": recipient.index,
                "address": recipient.address,
            }, now=self._clock())
            return ServiceResult(success=True, data=_public(recipient.to_dict()))
        except FinancingError as e:
            return self._failure(e)

    def register_entity(
        self,
        name: str,
        kind: EntityKind,
        description: str = "",
        email: Optional[str] = None,
    ) -> ServiceResult:
        if not name.strip():
            return ServiceResult(
                success=False, errors=["Entity name must be non-empty"],
                error_code=ValidationError.code, retry_safe=True,
            )
        entity = ContractEntity(
            index=self._repo.next_index(ENTITIES),
            name=name.strip(),
            kind=EntityKind(kind),
            description=description,
            email=email,
        )
        self._repo.put_entity(entity)
        self._events.record(EventKind.ENTITY_REGISTERED, f"entity:{entity.index}", {
            "index": entity.index,
            "kind": entity.kind.value,
        }, now=self._clock())
        return ServiceResult(success=True, data=entity.to_dict())

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def propose_project(
        self,
        title: str,
        total_value: Amount,
        years: int,
        metadata: str,
        recipient_index: int,
        originator_index: Optional[int] = None,
        location: str = "",
        description: str = "",
    ) -> ServiceResult:
        """Create a project in PROPOSED."""
        try:
            self._repo.get_recipient(recipient_index)
            if originator_index is not None:
                self._require_entity(originator_index, EntityKind.ORIGINATOR)
            try:
                project = Project(
                    index=self._repo.next_index(PROJECTS),
                    title=title,
                    total_value=_amount(total_value, "total value"),
                    years=int(years),
                    metadata=metadata,
                    recipient_index=recipient_index,
                    location=location,
                    description=description,
                    originator_index=originator_index,
                    date_initiated=self._clock(),
                )
            except ValueError as e:
                raise ValidationError(str(e)) from e
            self._repo.put_project(project)
            self._events.record(EventKind.PROJECT_PROPOSED, f"project:{project.index}", {
                "index": project.index,
                "total_value": str(project.total_value),
                "recipient_index": recipient_index,
            }, now=self._clock())
            return ServiceResult(success=True, data=project.to_dict())
        except FinancingError as e:
            return self._failure(e)

    def open_project(
        self, project_index: int, contractor_index: Optional[int] = None
    ) -> ServiceResult:
        """PROPOSED → OPEN, when a contractor accepts the project."""
        try:
            if contractor_index is not None:
                self._require_entity(contractor_index, EntityKind.CONTRACTOR)
            with self._locks.hold(("project", project_index)):
                project = self._repo.get_project(project_index)
                FundingStateMachine.open(project)
                project.contractor_index = contractor_index
                self._repo.put_project(project)
            self._events.record(EventKind.PROJECT_OPENED, f"project:{project.index}", {
                "index": project.index,
                "contractor_index": contractor_index,
            }, now=self._clock())
            return ServiceResult(success=True, data=project.to_dict())
        except FinancingError as e:
            return self._failure(e)

    def get_project(self, project_index: int) -> ServiceResult:
        try:
            return ServiceResult(
                success=True, data=self._repo.get_project(project_index).to_dict()
            )
        except FinancingError as e:
            return self._failure(e)

    def list_projects(self, stage: Optional[ProjectStage] = None) -> ServiceResult:
        projects = [
            p.to_dict() for p in self._repo.list_projects()
            if stage is None or p.stage == stage
        ]
        return ServiceResult(success=True, data={"projects": projects})

    # ------------------------------------------------------------------
    # Investment and payback
    # ------------------------------------------------------------------

    def invest(
        self,
        project_index: int,
        investor_index: int,
        recipient_index: int,
        amount: Amount,
        session: SessionContext,
        investment_id: Optional[str] = None,
    ) -> ServiceResult:
        return self._invest(
            project_index, investor_index, recipient_index, amount,
            AssetRole.INVESTOR, session, investment_id,
        )

    def seed_invest(
        self,
        project_index: int,
        investor_index: int,
        recipient_index: int,
        amount: Amount,
        session: SessionContext,
        investment_id: Optional[str] = None,
    ) -> ServiceResult:
        return self._invest(
            project_index, investor_index, recipient_index, amount,
            AssetRole.SEED, session, investment_id,
        )

    def _invest(
        self,
        project_index: int,
        investor_index: int,
        recipient_index: int,
        amount: Amount,
        role: AssetRole,
        session: SessionContext,
        investment_id: Optional[str],
    ) -> ServiceResult:
        investment_id = investment_id or new_investment_id()
        try:
            outcome = self._orchestrator.invest(
                project_index=project_index,
                investor_index=investor_index,
                recipient_index=recipient_index,
                amount=_amount(amount),
                role=role,
                session=session,
                investment_id=investment_id,
            )
        except FinancingError as e:
            return self._failure(e, investment_id=investment_id)
        return ServiceResult(success=True, data={
            "investment_id": investment_id,
            "funded": outcome.funded,
            "tx_refs": dict(outcome.record.tx_refs),
            "project": outcome.project.to_dict(),
        })

    def complete_funding(self, project_index: int, session: SessionContext) -> ServiceResult:
        """Re-run funding completion for a fully raised project. Idempotent."""
        try:
            completed = self._orchestrator.complete_funding(project_index, session)
            project = self._repo.get_project(project_index)
        except FinancingError as e:
            return self._failure(e)
        return ServiceResult(success=True, data={
            "completed": completed,
            "project": project.to_dict(),
        })

    def payback(
        self,
        project_index: int,
        recipient_index: int,
        amount: Amount,
        session: SessionContext,
    ) -> ServiceResult:
        try:
            result = self._repayments.payback(
                project_index, recipient_index, _amount(amount), session
            )
        except FinancingError as e:
            data = {}
            if isinstance(e, UnderPaymentError):
                data["due"] = str(e.due)
                if e.outcome is not None:
                    data["paid"] = str(e.outcome.paid)
                    data["tx_ref"] = e.outcome.tx_ref
            return self._failure(e, **data)
        return ServiceResult(success=True, data={
            "classification": result.outcome.classification.value,
            "paid": str(result.outcome.paid),
            "due": str(result.outcome.due),
            "tx_ref": result.outcome.tx_ref,
            "project": result.project.to_dict(),
        })

    # ------------------------------------------------------------------
    # Bonds
    # ------------------------------------------------------------------

    def new_bond(
        self,
        title: str,
        maturation_date: str,
        security_type: str,
        interest_rate: Amount,
        rating: str,
        bond_issuer: str,
        underwriter: str,
        cost_of_unit: Amount,
        no_of_units: int,
        recipient_index: int,
        **extra: str,
    ) -> ServiceResult:
        try:
            bond = self._bonds.new_bond(
                title=title,
                maturation_date=maturation_date,
                security_type=security_type,
                interest_rate=_amount(interest_rate, "interest rate"),
                rating=rating,
                bond_issuer=bond_issuer,
                underwriter=underwriter,
                cost_of_unit=_amount(cost_of_unit, "unit cost"),
                no_of_units=int(no_of_units),
                recipient_index=recipient_index,
                **extra,
            )
        except FinancingError as e:
            return self._failure(e)
        return ServiceResult(success=True, data=bond.to_dict())

    def invest_in_bond(
        self,
        bond_index: int,
        investor_index: int,
        amount: Amount,
        session: SessionContext,
    ) -> ServiceResult:
        try:
            bond = self._bonds.invest(bond_index, investor_index, _amount(amount), session)
        except FinancingError as e:
            return self._failure(e)
        return ServiceResult(success=True, data=bond.to_dict())

    def get_bond(self, bond_index: int) -> ServiceResult:
        try:
            bond: ConstructionBond = self._repo.get_bond(bond_index)
        except FinancingError as e:
            return self._failure(e)
        return ServiceResult(success=True, data=bond.to_dict())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        projects = self._repo.list_projects()
        by_stage = {stage.value: 0 for stage in ProjectStage}
        for p in projects:
            by_stage[p.stage.value] += 1
        return {
            "network": self._config.network,
            "projects": {"total": len(projects), "by_stage": by_stage},
            "investors": len(self._repo.list_investors()),
            "recipients": len(self._repo.list_recipients()),
            "bonds": len(self._repo.list_bonds()),
            "events": self._events.count,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _encrypt(self, keypair: Keypair, password: str) -> dict[str, Any]:
        return encrypt_keypair(
            keypair, password, kdf=self._kdf, iterations=self._kdf_iterations
        )

    def _fund_and_trust(self, keypair: Keypair) -> None:
        """Give a new account native funds (test networks) and a payment-token trust line."""
        if self._config.is_testnet:
            self._adapter.fund_from_faucet(keypair.address)
        if self._config.payment_token_issuer:
            self._adapter.create_trust_line(
                keypair,
                self._config.payment_token_issuer,
                self._config.payment_token_code,
                self._config.payment_token_trust_limit,
            )

    def _require_entity(self, index: int, kind: EntityKind) -> ContractEntity:
        entity = self._repo.get_entity(index)
        if entity.kind != kind:
            raise ValidationError(
                f"Entity {index} is a {entity.kind.value}, not a {kind.value}"
            )
        return entity

    @staticmethod
    def _failure(error: FinancingError, **data: Any) -> ServiceResult:
        if isinstance(error, LedgerError) and error.step is not None:
            data["step"] = error.step
        logger.warning("%s: %s", error.code, error.message)
        return ServiceResult(
            success=False,
            errors=[error.message],
            data=data,
            error_code=error.code,
            retry_safe=error.retry_safe,
        )
