"""Property tests for the funding invariants — proves a raise never exceeds its target.

Random sequences of investments are replayed against a fresh platform. Every
accepted investment moves money_raised, refused ones move nothing, and the
project is funded exactly when the raise reaches the total.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import build_platform
from openfinancing.errors import OverSubscriptionError, ValidationError
from openfinancing.models.assets import AssetRole
from openfinancing.models.project import ProjectStage

TOTAL = Decimal("1000")

amounts = st.lists(st.integers(min_value=1, max_value=700), min_size=1, max_size=6)


@settings(max_examples=20, deadline=None)
@given(amounts)
def test_raise_bounded_by_total(sequence: list[int]) -> None:
    platform = build_platform()
    investor, ikeys = platform.add_investor(balance=Decimal("5000"))
    recipient, rkeys = platform.add_recipient()
    project = platform.add_project(recipient, total_value=TOTAL, years=2)
    session = platform.session(investor=ikeys, recipient=rkeys)

    expected = Decimal("0")
    for raw in sequence:
        amount = Decimal(raw)
        before = platform.ledger.submitted_count
        if expected == TOTAL or expected + amount > TOTAL:
            refusal = ValidationError if expected == TOTAL else OverSubscriptionError
            with pytest.raises(refusal):
                platform.orchestrator.invest(
                    project.index, investor.index, recipient.index, amount,
                    AssetRole.INVESTOR, session,
                )
            assert platform.ledger.submitted_count == before
        else:
            platform.orchestrator.invest(
                project.index, investor.index, recipient.index, amount,
                AssetRole.INVESTOR, session,
            )
            expected += amount

        stored = platform.repo.get_project(project.index)
        assert stored.money_raised == expected
        assert stored.money_raised <= stored.total_value
        assert (stored.stage == ProjectStage.FUNDED) == (expected == TOTAL)

    stored = platform.repo.get_project(project.index)
    if expected:
        assert platform.ledger.asset_balance(
            investor.address, stored.investor_asset_code, stored.issuer_address
        ) == expected
    assert platform.stable_balance(platform.platform_keys.address) == expected
    assert platform.stable_balance(investor.address) == Decimal("5000") - expected
