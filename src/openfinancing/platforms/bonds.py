"""Construction bonds for housing.

A bond is sold in units of fixed cost. An investor buys at most one
unit's worth per call and receives bond tokens one-for-one with the
payment. Bonds have their own issuer, created on the first purchase, and
no debt or payback leg: the raise simply stops at cost_of_unit times
no_of_units.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from openfinancing.assets.resolver import asset_id, resolve_asset_code
from openfinancing.engine.issuers import IssuerRegistry
from openfinancing.engine.locks import ProjectLocks
from openfinancing.engine.payments import PaymentCollector
from openfinancing.errors import ConsistencyError, OverSubscriptionError, ValidationError
from openfinancing.identity.session import SessionContext
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.models.assets import AssetRole
from openfinancing.models.bond import ConstructionBond
from openfinancing.notify.notifier import NotificationDispatcher
from openfinancing.notify.templates import NotificationKind, render
from openfinancing.persistence.event_log import EventKind, EventLog
from openfinancing.persistence.repository import BONDS, EntityRepository

logger = logging.getLogger(__name__)


def bond_issuer_key(index: int) -> str:
    return f"bond-{index}"


def bond_asset_code(bond: ConstructionBond) -> str:
    """Bond token code: the bond prefix over the digest of the bond's terms."""
    return resolve_asset_code(AssetRole.BOND, asset_id(bond.identity_string()))


class BondPlatform:
    """Creates construction bonds and sells bond units.

    Usage:
        bonds = BondPlatform(repo, adapter, issuers, payments, dispatcher)
        bond = bonds.new_bond(title="Block C", maturation_date="2031-06-30", ...)
        bond = bonds.invest(bond.index, investor_index=3, amount=Decimal("100"),
                            session=session)
    """

    def __init__(
        self,
        repository: EntityRepository,
        adapter: LedgerAdapter,
        issuers: IssuerRegistry,
        payments: PaymentCollector,
        dispatcher: NotificationDispatcher,
        event_log: Optional[EventLog] = None,
        locks: Optional[ProjectLocks] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repo = repository
        self._adapter = adapter
        self._issuers = issuers
        self._payments = payments
        self._dispatcher = dispatcher
        self._events = event_log
        self._locks = locks or ProjectLocks()
        self._clock = clock

    def new_bond(
        self,
        title: str,
        maturation_date: str,
        security_type: str,
        interest_rate: Decimal,
        rating: str,
        bond_issuer: str,
        underwriter: str,
        cost_of_unit: Decimal,
        no_of_units: int,
        recipient_index: int,
        **extra: str,
    ) -> ConstructionBond:
        self._repo.get_recipient(recipient_index)
        try:
            bond = ConstructionBond(
                index=self._repo.next_index(BONDS),
                title=title,
                maturation_date=maturation_date,
                security_type=security_type,
                interest_rate=interest_rate,
                rating=rating,
                bond_issuer=bond_issuer,
                underwriter=underwriter,
                cost_of_unit=cost_of_unit,
                no_of_units=no_of_units,
                recipient_index=recipient_index,
                date_initiated=self._clock(),
                **extra,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid bond: {e}") from e
        self._repo.put_bond(bond)
        self._record_event(EventKind.BOND_CREATED, f"bond:{bond.index}", {
            "bond_index": bond.index,
            "title": bond.title,
            "total_value": str(bond.total_value),
        })
        return bond

    def invest(
        self,
        bond_index: int,
        investor_index: int,
        amount: Decimal,
        session: SessionContext,
    ) -> ConstructionBond:
        """Buy up to one unit of a bond."""
        if amount <= Decimal("0"):
            raise ValidationError(f"Investment amount must be positive, got {amount}")

        with self._locks.hold(("bond", bond_index)):
            bond = self._repo.get_bond(bond_index)
            investor = self._repo.get_investor(investor_index)
            investor_keys = session.require_investor()
            if investor_keys.address != investor.address:
                raise ValidationError(
                    f"Session investor key does not belong to investor {investor.index}"
                )
            if amount > bond.cost_of_unit:
                raise ValidationError(
                    f"Amount {amount} exceeds the bond's unit cost {bond.cost_of_unit}"
                )
            if bond.amount_raised + amount > bond.total_value:
                raise OverSubscriptionError(
                    f"Bond {bond.index} has {bond.total_value - bond.amount_raised} left to sell"
                )
            self._payments.check_funds(investor.address, amount)

            key = bond_issuer_key(bond.index)
            boot = self._issuers.bootstrap(key, session.issuer_password, session.platform)
            if bond.issuer_address is None:
                bond.issuer_address = boot.address
            elif bond.issuer_address != boot.address:
                raise ConsistencyError(f"Bond {bond.index} issuer changed")
            code = bond.investor_asset_code or bond_asset_code(bond)
            bond.investor_asset_code = code
            self._repo.put_bond(bond)

            txs = {
                "Payment": self._payments.collect(investor_keys, session.platform.address, amount),
                "Trust line": self._adapter.create_trust_line(
                    investor_keys, bond.issuer_address, code, bond.total_value
                ),
            }
            issuer = self._issuers.retrieve(key, session.issuer_password)
            txs["Tokens issued"] = self._adapter.mint_and_send(
                issuer, code, investor.address, amount
            )

            bond.amount_raised += amount
            if investor.index not in bond.investor_indices:
                bond.investor_indices.append(investor.index)
            self._repo.put_bond(bond)
            with self._locks.hold(("investor", investor.index)):
                current = self._repo.get_investor(investor.index)
                current.amount_invested += amount
                if code not in current.invested_bonds:
                    current.invested_bonds.append(code)
                self._repo.put_investor(current)

            self._record_event(EventKind.BOND_INVESTMENT_BOOKED, f"investor:{investor.index}", {
                "bond_index": bond.index,
                "amount": str(amount),
                "asset_code": code,
                "amount_raised": str(bond.amount_raised),
            })
            logger.info("Investor %s bought %s of bond %s (%s/%s sold)",
                        investor.index, amount, bond.index,
                        bond.amount_raised, bond.total_value)
            if investor.notify:
                self._dispatcher.dispatch(render(
                    NotificationKind.BOND_INVESTMENT, investor.email, bond.index, txs,
                ))
            return bond

    def _record_event(self, kind: EventKind, actor_id: str, payload: dict) -> None:
        if self._events is not None:
            self._events.record(kind, actor_id, payload, now=self._clock())
