"""Tests for data models — proves project, investor and cursor invariants hold."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from openfinancing.errors import ConsistencyError, InvalidStateError
from openfinancing.models.assets import Asset, AssetRole
from openfinancing.models.bond import ConstructionBond
from openfinancing.models.investment import InvestmentRecord, InvestmentStep
from openfinancing.models.participants import ContractEntity, EntityKind, Investor, Recipient
from openfinancing.models.project import PROJECT_TRANSITIONS, Project, ProjectStage
from openfinancing.models.serialization import dec


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _project(**kwargs) -> Project:
    defaults = dict(
        index=1, title="Solar roof", total_value=Decimal("1000"), years=5,
        metadata="roof-42", recipient_index=1,
    )
    defaults.update(kwargs)
    return Project(**defaults)


class TestProjectValidation:
    def test_defaults(self) -> None:
        p = _project()
        assert p.stage == ProjectStage.PROPOSED
        assert p.money_raised == Decimal("0")
        assert p.remaining == Decimal("1000")
        assert not p.is_fully_raised

    @pytest.mark.parametrize("total", [Decimal("0"), Decimal("-5")])
    def test_rejects_non_positive_total(self, total: Decimal) -> None:
        with pytest.raises(ValueError, match="positive"):
            _project(total_value=total)

    def test_rejects_zero_years(self) -> None:
        with pytest.raises(ValueError, match="one year"):
            _project(years=0)

    def test_rejects_blank_metadata(self) -> None:
        with pytest.raises(ValueError, match="metadata"):
            _project(metadata="  ")


class TestProjectTransitions:
    def test_happy_path(self) -> None:
        p = _project()
        for stage in (
            ProjectStage.OPEN,
            ProjectStage.PARTIALLY_FUNDED,
            ProjectStage.FUNDED,
            ProjectStage.IN_REPAYMENT,
            ProjectStage.CLOSED,
        ):
            p.transition_to(stage)
        assert p.stage == ProjectStage.CLOSED

    def test_cannot_skip_to_funded(self) -> None:
        p = _project(stage=ProjectStage.OPEN)
        with pytest.raises(InvalidStateError, match="open → funded"):
            p.transition_to(ProjectStage.FUNDED)

    def test_closed_is_terminal(self) -> None:
        assert PROJECT_TRANSITIONS[ProjectStage.CLOSED] == frozenset()
        p = _project(stage=ProjectStage.CLOSED)
        with pytest.raises(InvalidStateError):
            p.transition_to(ProjectStage.OPEN)

    def test_invalid_state_is_consistency_error(self) -> None:
        with pytest.raises(ConsistencyError):
            _project().transition_to(ProjectStage.CLOSED)


class TestAssetCodes:
    def test_set_once(self) -> None:
        p = _project()
        p.set_asset_code(AssetRole.DEBT, "ABC")
        assert p.asset_code(AssetRole.DEBT) == "ABC"
        assert p.debt_asset_code == "ABC"

    def test_same_code_again_is_fine(self) -> None:
        p = _project()
        p.set_asset_code(AssetRole.INVESTOR, "ABC")
        p.set_asset_code(AssetRole.INVESTOR, "ABC")
        assert p.investor_asset_code == "ABC"

    def test_never_overwritten(self) -> None:
        p = _project()
        p.set_asset_code(AssetRole.PAYBACK, "ABC")
        with pytest.raises(ConsistencyError, match="refusing to overwrite"):
            p.set_asset_code(AssetRole.PAYBACK, "XYZ")
        assert p.payback_asset_code == "ABC"


class TestRecordRaise:
    def test_accumulates(self) -> None:
        p = _project()
        p.record_raise(Decimal("600"), "inv_a")
        p.record_raise(Decimal("400"), "inv_b")
        assert p.money_raised == Decimal("1000")
        assert p.is_fully_raised
        assert p.booked_investments == ["inv_a", "inv_b"]

    def test_rejects_overshoot(self) -> None:
        p = _project()
        p.record_raise(Decimal("900"), "inv_a")
        with pytest.raises(ConsistencyError, match="exceed"):
            p.record_raise(Decimal("101"), "inv_b")
        assert p.money_raised == Decimal("900")

    def test_rejects_same_investment_twice(self) -> None:
        p = _project()
        p.record_raise(Decimal("100"), "inv_a")
        with pytest.raises(ConsistencyError, match="already booked"):
            p.record_raise(Decimal("100"), "inv_a")
        assert p.money_raised == Decimal("100")

    def test_rejects_non_positive(self) -> None:
        with pytest.raises(ValueError):
            _project().record_raise(Decimal("0"), "inv_a")


class TestProjectSerialization:
    def test_round_trip(self) -> None:
        p = _project(
            stage=ProjectStage.IN_REPAYMENT,
            money_raised=Decimal("1000"),
            balance_left=Decimal("800.50"),
            payback_credit=Decimal("12.5"),
            debt_asset_code="D1",
            investor_indices=[3, 4],
            booked_investments=["inv_a"],
            date_funded=_now(),
        )
        restored = Project.from_dict(p.to_dict())
        assert restored == p

    def test_amounts_stored_as_strings(self) -> None:
        data = _project(money_raised=Decimal("10.10")).to_dict()
        assert data["money_raised"] == "10.10"
        assert data["total_value"] == "1000"

    def test_identity_string_ignores_mutable_fields(self) -> None:
        a = _project()
        b = _project(money_raised=Decimal("500"), stage=ProjectStage.OPEN, title="Renamed")
        assert a.identity_string() == b.identity_string()

    def test_identity_string_differs_by_index(self) -> None:
        assert _project(index=1).identity_string() != _project(index=2).identity_string()


class TestInvestor:
    def test_record_investment_once(self) -> None:
        inv = Investor(index=1, name="alice", address="0xabc")
        assert inv.record_investment(Decimal("100"), "CODE", "inv_a") is True
        assert inv.record_investment(Decimal("100"), "CODE", "inv_a") is False
        assert inv.amount_invested == Decimal("100")
        assert inv.invested_assets == ["CODE"]

    def test_round_trip(self) -> None:
        inv = Investor(index=2, name="bob", address="0xdef", email="b@example.org",
                       notify=True, amount_invested=Decimal("5"))
        assert Investor.from_dict(inv.to_dict()) == inv


class TestParticipants:
    def test_recipient_round_trip(self) -> None:
        r = Recipient(index=1, name="school", address="0x1",
                      received_debt_assets=["D"], device_id="dev-1")
        assert Recipient.from_dict(r.to_dict()) == r

    def test_entity_round_trip(self) -> None:
        e = ContractEntity(index=1, name="Builders Ltd", kind=EntityKind.CONTRACTOR)
        assert ContractEntity.from_dict(e.to_dict()) == e


class TestInvestmentRecord:
    def _record(self) -> InvestmentRecord:
        return InvestmentRecord(
            investment_id="inv_1", project_index=1, investor_index=2,
            recipient_index=3, amount=Decimal("100"), role=AssetRole.INVESTOR,
        )

    def test_advance_records_tx(self) -> None:
        r = self._record()
        r.advance(InvestmentStep.PAID, "tx1", now=_now())
        assert r.step == InvestmentStep.PAID
        assert r.tx_refs == {"paid": "tx1"}
        assert r.has_completed(InvestmentStep.BOOTSTRAPPED)
        assert not r.has_completed(InvestmentStep.TRUSTED)

    def test_cannot_move_backwards(self) -> None:
        r = self._record()
        r.advance(InvestmentStep.MINTED)
        with pytest.raises(InvalidStateError):
            r.advance(InvestmentStep.PAID)

    def test_matches(self) -> None:
        r = self._record()
        assert r.matches(1, 2, Decimal("100"), AssetRole.INVESTOR)
        assert not r.matches(1, 2, Decimal("101"), AssetRole.INVESTOR)
        assert not r.matches(1, 2, Decimal("100"), AssetRole.SEED)

    def test_round_trip(self) -> None:
        r = self._record()
        r.advance(InvestmentStep.TRUSTED, "tx", now=_now())
        r.asset_code = "CODE"
        assert InvestmentRecord.from_dict(r.to_dict()) == r


class TestBond:
    def test_total_value(self) -> None:
        bond = ConstructionBond(
            index=1, title="Block C", maturation_date="2031-06-30",
            security_type="municipal", interest_rate=Decimal("0.05"), rating="AA",
            bond_issuer="City", underwriter="Bank", cost_of_unit=Decimal("100"),
            no_of_units=20, recipient_index=1,
        )
        assert bond.total_value == Decimal("2000")
        assert ConstructionBond.from_dict(bond.to_dict()) == bond

    def test_rejects_zero_units(self) -> None:
        with pytest.raises(ValueError):
            ConstructionBond(
                index=1, title="x", maturation_date="2031", security_type="s",
                interest_rate=Decimal("0"), rating="A", bond_issuer="i",
                underwriter="u", cost_of_unit=Decimal("1"), no_of_units=0,
                recipient_index=1,
            )


class TestMisc:
    def test_asset_requires_code_and_issuer(self) -> None:
        with pytest.raises(ValueError):
            Asset(code="", issuer="0x1")
        with pytest.raises(ValueError):
            Asset(code="ABC", issuer="")

    def test_dec_rejects_float(self) -> None:
        with pytest.raises(TypeError):
            dec(1.5)
        assert dec("1.50") == Decimal("1.50")
