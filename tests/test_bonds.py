"""Tests for the construction bond platform — proves unit limits and bond token delivery."""

from decimal import Decimal

import pytest

from conftest import Platform
from openfinancing.errors import NotFoundError, OverSubscriptionError, ValidationError
from openfinancing.engine.issuers import IssuerRegistry
from openfinancing.notify.templates import NotificationKind
from openfinancing.persistence.event_log import EventKind
from openfinancing.platforms.bonds import BondPlatform, bond_asset_code, bond_issuer_key


@pytest.fixture
def bonds(platform: Platform) -> BondPlatform:
    return BondPlatform(
        platform.repo, platform.adapter, platform.issuers, platform.payments,
        platform.dispatcher, event_log=platform.events, locks=platform.locks,
    )


def _bond(platform: Platform, bonds: BondPlatform, units: int = 3):
    recipient, _ = platform.add_recipient()
    return bonds.new_bond(
        title="Block C", maturation_date="2031-06-30", security_type="municipal",
        interest_rate=Decimal("0.05"), rating="AA", bond_issuer="City",
        underwriter="Bank", cost_of_unit=Decimal("100"), no_of_units=units,
        recipient_index=recipient.index, location="Riverside",
    )


class TestNewBond:
    def test_created(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        assert platform.repo.get_bond(bond.index) == bond
        assert bond.location == "Riverside"
        assert platform.events.events(EventKind.BOND_CREATED)

    def test_unknown_recipient(self, bonds: BondPlatform) -> None:
        with pytest.raises(NotFoundError):
            bonds.new_bond(
                title="x", maturation_date="2031", security_type="s",
                interest_rate=Decimal("0"), rating="A", bond_issuer="i",
                underwriter="u", cost_of_unit=Decimal("1"), no_of_units=1,
                recipient_index=9,
            )

    def test_unknown_field(self, platform: Platform, bonds: BondPlatform) -> None:
        recipient, _ = platform.add_recipient()
        with pytest.raises(ValidationError, match="Invalid bond"):
            bonds.new_bond(
                title="x", maturation_date="2031", security_type="s",
                interest_rate=Decimal("0"), rating="A", bond_issuer="i",
                underwriter="u", cost_of_unit=Decimal("1"), no_of_units=1,
                recipient_index=recipient.index, colour="blue",
            )

    def test_code_is_deterministic(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        assert bond_asset_code(bond) == bond_asset_code(platform.repo.get_bond(bond.index))
        assert len(bond_asset_code(bond)) == 12


class TestBondInvest:
    def test_buy_unit(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        investor, keys = platform.add_investor(email="a@example.org", notify=True)

        updated = bonds.invest(bond.index, investor.index, Decimal("100"),
                               platform.session(investor=keys))

        assert updated.amount_raised == Decimal("100")
        assert updated.investor_indices == [investor.index]
        assert updated.issuer_address == platform.issuers.address_of(bond_issuer_key(bond.index))
        assert platform.ledger.asset_balance(
            investor.address, updated.investor_asset_code, updated.issuer_address
        ) == Decimal("100")
        stored = platform.repo.get_investor(investor.index)
        assert stored.invested_bonds == [updated.investor_asset_code]
        assert platform.notifier.sent[-1].kind == NotificationKind.BOND_INVESTMENT

    def test_more_than_one_unit_refused(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        investor, keys = platform.add_investor()
        before = platform.ledger.submitted_count
        with pytest.raises(ValidationError, match="unit cost"):
            bonds.invest(bond.index, investor.index, Decimal("101"),
                         platform.session(investor=keys))
        assert platform.ledger.submitted_count == before

    def test_sold_out(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds, units=1)
        alice, akeys = platform.add_investor("alice")
        bob, bkeys = platform.add_investor("bob")
        bonds.invest(bond.index, alice.index, Decimal("100"), platform.session(investor=akeys))
        with pytest.raises(OverSubscriptionError):
            bonds.invest(bond.index, bob.index, Decimal("1"), platform.session(investor=bkeys))

    def test_insufficient_funds(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        investor, keys = platform.add_investor(balance=Decimal("10"))
        with pytest.raises(ValidationError):
            bonds.invest(bond.index, investor.index, Decimal("50"),
                         platform.session(investor=keys))
        assert not platform.issuers.exists(bond_issuer_key(bond.index))

    def test_same_issuer_for_every_purchase(self, platform: Platform, bonds: BondPlatform) -> None:
        bond = _bond(platform, bonds)
        alice, akeys = platform.add_investor("alice")
        bob, bkeys = platform.add_investor("bob")
        first = bonds.invest(bond.index, alice.index, Decimal("100"),
                             platform.session(investor=akeys))
        second = bonds.invest(bond.index, bob.index, Decimal("50"),
                              platform.session(investor=bkeys))
        assert first.issuer_address == second.issuer_address
        assert second.amount_raised == Decimal("150")
        assert isinstance(platform.issuers, IssuerRegistry)
