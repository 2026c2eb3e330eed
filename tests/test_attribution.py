"""
Tests for sales rep attribution.
"""

import pytest

from conftest import valid_invoice
from pharmacy_rewards.agents.attribution import attribution_agent, resolve_rep_rewards
from pharmacy_rewards.schemas.reference import Pharmacy
from pharmacy_rewards.schemas.scan import ProductLineItem


def _line(points, line="OTC", product="Aspirina"):
    return ProductLineItem(
        product=product,
        quantity=1,
        unit_price=100,
        commission_pct=10,
        points=points,
        line=line,
    )


@pytest.fixture
def pharmacy():
    return Pharmacy(
        id="ph-1",
        name="Farmacia Uno",
        rep_assignments={
            "rep-a": ["OTC"],
            "rep-b": ["OTC", "Vitaminas"],
            "rep-c": ["General"],
        },
    )


def test_every_covering_rep_gets_full_points(pharmacy):
    rewards = resolve_rep_rewards([_line(20)], pharmacy)
    assert rewards == {"rep-a": 20, "rep-b": 20}


def test_uncovered_line_credits_nobody(pharmacy):
    assert resolve_rep_rewards([_line(20, line="Dermo")], pharmacy) == {}


def test_missing_line_uses_default(pharmacy):
    assert resolve_rep_rewards([_line(7, line="")], pharmacy) == {"rep-c": 7}


def test_zero_point_lines_are_skipped(pharmacy):
    assert resolve_rep_rewards([_line(0)], pharmacy) == {}


def test_credits_accumulate_across_lines(pharmacy):
    rewards = resolve_rep_rewards(
        [_line(10), _line(5, line="Vitaminas", product="Vitamina C"), _line(3)],
        pharmacy,
    )
    assert rewards == {"rep-a": 13, "rep-b": 18}


def test_no_pharmacy_no_rewards():
    assert resolve_rep_rewards([_line(10)], None) == {}


def test_pharmacy_without_assignments():
    bare = Pharmacy(id="ph-2", name="Sin Reps", rep_assignments=None)
    assert resolve_rep_rewards([_line(10)], bare) == {}


@pytest.mark.asyncio
async def test_attribution_agent_uses_state_pharmacy(make_state, make_services):
    services = make_services()
    state = make_state(valid_invoice())
    state.pharmacy_id = "ph-carol"
    state.line_items = [_line(10)]

    state = await attribution_agent(state, services)

    assert state.rep_rewards == {"rep-a": 10, "rep-b": 10}
