"""Tests for FinancingService — proves the façade wires a complete platform and never raises."""

from dataclasses import replace

import pytest

from conftest import FAST_ITERATIONS, FAST_KDF, FlakyLedger
from openfinancing.config import MAINNET, EngineConfig
from openfinancing.errors import ValidationError
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.models.participants import EntityKind
from openfinancing.models.project import ProjectStage
from openfinancing.persistence.event_log import EventKind
from openfinancing.persistence.repository import EntityRepository
from openfinancing.persistence.store import MemoryEntityStore
from openfinancing.service import FinancingService

PLATFORM_PW = "platform-pw"
ISSUER_PW = "issuer-pw"


def _service(ledger=None, **overrides) -> FinancingService:
    config = replace(EngineConfig(), confirmation_delay_seconds=0, **overrides)
    ledger = ledger or FlakyLedger()
    return FinancingService(
        EntityRepository(MemoryEntityStore()),
        LedgerAdapter(ledger, testnet=config.is_testnet),
        config,
        kdf=FAST_KDF,
        kdf_iterations=FAST_ITERATIONS,
        sleep=lambda seconds: None,
    )


class _World:
    """A service with platform, one funded investor, one recipient and an open project."""

    def __init__(self, total: str = "1000", stable: str = "2000") -> None:
        self.ledger = FlakyLedger()
        self.service = _service(self.ledger)
        assert self.service.init_platform(PLATFORM_PW).success
        self.investor = self.service.register_investor("Alice", "alice-pw").data["index"]
        self.recipient = self.service.register_recipient("School", "school-pw").data["index"]
        assert self.service.issue_stablecoin(self.investor, stable, PLATFORM_PW).success
        self.project = self.service.propose_project(
            "Solar roof", total, 5, "roof-42", self.recipient
        ).data["index"]
        assert self.service.open_project(self.project).success

    def session(self, with_recipient: bool = True):
        return self.service.open_session(
            PLATFORM_PW, ISSUER_PW,
            investor_index=self.investor, investor_password="alice-pw",
            recipient_index=self.recipient if with_recipient else None,
            recipient_password="school-pw" if with_recipient else None,
        )


@pytest.fixture
def world() -> _World:
    return _World()


class TestPlatform:
    def test_init_creates_local_stablecoin(self) -> None:
        service = _service()
        assert service.config.payment_token_issuer == ""

        result = service.init_platform(PLATFORM_PW)

        assert result.success
        assert result.data["created"] is True
        assert result.data["payment_token_issuer"]
        assert service.config.payment_token_issuer == result.data["payment_token_issuer"]

    def test_init_is_idempotent(self) -> None:
        service = _service()
        first = service.init_platform(PLATFORM_PW)
        second = service.init_platform(PLATFORM_PW)
        assert second.success
        assert second.data["created"] is False
        assert second.data["address"] == first.data["address"]

    def test_unlock_platform(self) -> None:
        service = _service()
        address = service.init_platform(PLATFORM_PW).data["address"]
        assert service.unlock_platform(PLATFORM_PW).address == address
        with pytest.raises(ValidationError):
            service.unlock_platform("wrong")

    def test_unlock_before_init(self) -> None:
        with pytest.raises(ValidationError, match="not been initialised"):
            _service().unlock_platform(PLATFORM_PW)

    def test_stablecoin_refused_on_mainnet(self) -> None:
        service = _service(network=MAINNET)
        assert service.init_platform(PLATFORM_PW).success
        investor = service.register_investor("Alice", "pw")
        assert investor.success
        result = service.issue_stablecoin(investor.data["index"], "10", PLATFORM_PW)
        assert not result.success
        assert result.error_code == "validation_error"

    def test_status(self, world: _World) -> None:
        status = world.service.status()
        assert status["network"] == "testnet"
        assert status["projects"]["total"] == 1
        assert status["projects"]["by_stage"]["open"] == 1
        assert status["investors"] == 1
        assert status["recipients"] == 1
        assert status["events"] == world.service.event_log.count


class TestParticipants:
    def test_register_investor_hides_keystore(self) -> None:
        service = _service()
        service.init_platform(PLATFORM_PW)
        result = service.register_investor("Alice", "pw", email="a@example.org", notify=True)
        assert result.success
        assert "keystore" not in result.data
        assert result.data["email"] == "a@example.org"
        stored = service.repository.get_investor(result.data["index"])
        assert stored.keystore
        assert service.event_log.events(EventKind.INVESTOR_REGISTERED)

    def test_blank_name_refused(self) -> None:
        result = _service().register_investor("  ", "pw")
        assert not result.success
        assert result.retry_safe

    def test_empty_password_refused(self) -> None:
        result = _service().register_recipient("School", "")
        assert not result.success
        assert result.error_code == "validation_error"

    def test_register_entity(self) -> None:
        service = _service()
        result = service.register_entity("Builders Ltd", EntityKind.CONTRACTOR)
        assert result.success
        assert result.data["kind"] == "contractor"
        assert not service.register_entity("", EntityKind.ORIGINATOR).success


class TestProjects:
    def test_propose_and_open(self, world: _World) -> None:
        project = world.service.get_project(world.project)
        assert project.success
        assert project.data["stage"] == "open"
        assert project.data["total_value"] == "1000"

    def test_open_twice_refused(self, world: _World) -> None:
        result = world.service.open_project(world.project)
        assert not result.success
        assert result.error_code == "invalid_state"
        assert not result.retry_safe

    def test_invalid_total_refused(self, world: _World) -> None:
        for total in ("-5", "abc", "0"):
            result = world.service.propose_project("x", total, 5, "m", world.recipient)
            assert not result.success
            assert result.error_code == "validation_error"

    def test_originator_must_be_originator(self, world: _World) -> None:
        contractor = world.service.register_entity("Builders", EntityKind.CONTRACTOR)
        result = world.service.propose_project(
            "x", "10", 1, "m", world.recipient, originator_index=contractor.data["index"]
        )
        assert not result.success
        assert "not a originator" in result.errors[0]

    def test_open_with_contractor(self, world: _World) -> None:
        contractor = world.service.register_entity("Builders", EntityKind.CONTRACTOR)
        proposed = world.service.propose_project("Well", "500", 2, "well-1", world.recipient)
        result = world.service.open_project(
            proposed.data["index"], contractor_index=contractor.data["index"]
        )
        assert result.success
        assert result.data["contractor_index"] == contractor.data["index"]

    def test_list_projects_by_stage(self, world: _World) -> None:
        world.service.propose_project("Well", "500", 2, "well-1", world.recipient)
        assert len(world.service.list_projects().data["projects"]) == 2
        proposed = world.service.list_projects(ProjectStage.PROPOSED).data["projects"]
        assert [p["title"] for p in proposed] == ["Well"]

    def test_unknown_project(self, world: _World) -> None:
        result = world.service.get_project(42)
        assert not result.success
        assert result.error_code == "not_found"


class TestInvestAndPayback:
    def test_full_cycle(self, world: _World) -> None:
        first = world.service.invest(
            world.project, world.investor, world.recipient, "600", world.session(False)
        )
        assert first.success, first.errors
        assert first.data["funded"] is False
        assert first.data["investment_id"].startswith("inv_")
        assert set(first.data["tx_refs"]) >= {"paid", "trusted", "minted"}

        second = world.service.invest(
            world.project, world.investor, world.recipient, "400", world.session()
        )
        assert second.success, second.errors
        assert second.data["funded"] is True
        assert second.data["project"]["stage"] == "funded"

        paid = world.service.payback(world.project, world.recipient, "200", world.session())
        assert paid.success, paid.errors
        assert paid.data["classification"] == "exact"
        assert paid.data["project"]["balance_left"] == "800"

    def test_seed_invest(self, world: _World) -> None:
        result = world.service.seed_invest(
            world.project, world.investor, world.recipient, "100", world.session(False)
        )
        assert result.success
        assert result.data["project"]["seed_asset_code"]
        assert result.data["project"]["seed_investor_indices"] == [world.investor]

    def test_bad_amount(self, world: _World) -> None:
        result = world.service.invest(
            world.project, world.investor, world.recipient, "lots", world.session()
        )
        assert not result.success
        assert result.error_code == "validation_error"
        assert result.retry_safe
        assert result.data["investment_id"].startswith("inv_")

    def test_over_subscription(self, world: _World) -> None:
        result = world.service.invest(
            world.project, world.investor, world.recipient, "1001", world.session()
        )
        assert result.error_code == "over_subscription"

    def test_ledger_failure_reports_step_and_resumes(self, world: _World) -> None:
        world.ledger.fail_on("issue_asset")
        failed = world.service.invest(
            world.project, world.investor, world.recipient, "500", world.session(False),
            investment_id="inv_cli_1",
        )
        assert not failed.success
        assert failed.error_code == "ledger_error"
        assert failed.retry_safe
        assert failed.data["step"] == "trusted"

        retried = world.service.invest(
            world.project, world.investor, world.recipient, "500", world.session(False),
            investment_id="inv_cli_1",
        )
        assert retried.success, retried.errors
        assert retried.data["project"]["money_raised"] == "500"

    def test_short_payback_refused_before_transfer(self, world: _World) -> None:
        world.service.invest(
            world.project, world.investor, world.recipient, "1000", world.session()
        )
        before = world.ledger.submitted_count
        result = world.service.payback(world.project, world.recipient, "150", world.session())
        assert not result.success
        assert result.error_code == "under_payment"
        assert result.retry_safe
        assert result.data == {"due": "200"}
        assert world.ledger.submitted_count == before

    def test_complete_funding_is_idempotent(self, world: _World) -> None:
        world.service.invest(
            world.project, world.investor, world.recipient, "1000", world.session()
        )
        before = world.ledger.submitted_count
        result = world.service.complete_funding(world.project, world.session())
        assert result.success
        assert result.data["completed"] is False
        assert world.ledger.submitted_count == before

    def test_wrong_investor_password(self, world: _World) -> None:
        with pytest.raises(ValidationError):
            world.service.open_session(
                PLATFORM_PW, ISSUER_PW,
                investor_index=world.investor, investor_password="nope",
            )


class TestBonds:
    def test_create_and_buy(self, world: _World) -> None:
        bond = world.service.new_bond(
            title="Block C", maturation_date="2031-06-30", security_type="municipal",
            interest_rate="0.05", rating="AA", bond_issuer="City", underwriter="Bank",
            cost_of_unit="100", no_of_units=10, recipient_index=world.recipient,
        )
        assert bond.success, bond.errors
        bought = world.service.invest_in_bond(
            bond.data["index"], world.investor, "100", world.session(False)
        )
        assert bought.success, bought.errors
        assert bought.data["amount_raised"] == "100"
        assert world.service.get_bond(bond.data["index"]).data["investor_indices"] == [
            world.investor
        ]

    def test_invalid_bond(self, world: _World) -> None:
        result = world.service.new_bond(
            title="x", maturation_date="2031", security_type="s", interest_rate="0",
            rating="A", bond_issuer="i", underwriter="u", cost_of_unit="0",
            no_of_units=1, recipient_index=world.recipient,
        )
        assert not result.success
        assert result.error_code == "validation_error"
