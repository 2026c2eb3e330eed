"""
Tests for the invoice validation chain.
"""

import pytest

from conftest import valid_invoice
from pharmacy_rewards.agents.validation import (
    has_valid_ncf_prefix,
    parse_invoice_date,
    run_validation_chain,
    validation_agent,
)
from pharmacy_rewards.schemas.reference import UserProfile
from pharmacy_rewards.schemas.scan import ScanStatus
from pharmacy_rewards.store.base import SCANS


def test_ncf_prefixes():
    assert has_valid_ncf_prefix("B0100000001", ("B01", "B02", "E"))
    assert has_valid_ncf_prefix("b0200000001", ("B01", "B02", "E"))
    assert has_valid_ncf_prefix("E310000000001", ("B01", "B02", "E"))
    assert not has_valid_ncf_prefix("B1400000001", ("B01", "B02", "E"))
    assert not has_valid_ncf_prefix(None, ("B01", "B02", "E"))
    assert not has_valid_ncf_prefix("", ("B01", "B02", "E"))


def test_parse_invoice_date():
    assert parse_invoice_date("2026-10-18").isoformat() == "2026-10-18"
    assert parse_invoice_date("18/10/2026") is None
    assert parse_invoice_date("2026-02-30") is None
    assert parse_invoice_date(None) is None


@pytest.mark.asyncio
async def test_valid_invoice_passes(make_state, make_services):
    state = make_state(valid_invoice())

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PROCESSED
    assert state.rejection_reason is None
    assert state.pharmacy_id == "ph-carol"
    assert [r.check for r in state.check_results] == [
        "pharmacy_identified",
        "products_present",
        "ncf_format",
        "ncf_unique",
        "invoice_date",
        "total_amount",
        "pharmacy_authorization",
    ]


@pytest.mark.asyncio
async def test_unidentified_pharmacy_rejected_with_raw_name(make_state, make_services):
    state = make_state(valid_invoice(pharmacyName=None, rawPharmacyName="Farmacia Desconocida"))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert "Farmacia Desconocida" in state.rejection_reason
    assert len(state.check_results) == 1


@pytest.mark.asyncio
async def test_unidentified_pharmacy_without_raw_name(make_state, make_services):
    state = make_state(valid_invoice(pharmacyName="", rawPharmacyName=None))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert "unidentified" in state.rejection_reason


@pytest.mark.asyncio
async def test_no_products_rejected(make_state, make_services):
    state = make_state(valid_invoice(products=[]))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert "No participating products" in state.rejection_reason


@pytest.mark.asyncio
async def test_invalid_ncf_format_is_rejected_not_reviewed(make_state, make_services):
    state = make_state(valid_invoice(ncf="A0100000001"))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert "A0100000001" in state.rejection_reason


@pytest.mark.asyncio
async def test_missing_ncf_rejected(make_state, make_services):
    state = make_state(valid_invoice(ncf=None))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert state.check_results[-1].check == "ncf_format"


@pytest.mark.asyncio
async def test_duplicate_ncf_rejected_across_users(store, make_state, make_services):
    store.put(SCANS, "other-scan", {"userId": "someone-else", "status": "processed", "ncf": "B0100000001"})
    state = make_state(valid_invoice())

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert "Duplicate" in state.rejection_reason
    assert "B0100000001" in state.rejection_reason


@pytest.mark.asyncio
async def test_own_scan_id_is_not_a_duplicate(store, make_state, make_services):
    store.put(SCANS, "scan-1", {"userId": "clerk-1", "status": "uploaded", "ncf": "B0100000001"})
    state = make_state(valid_invoice())

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PROCESSED


@pytest.mark.asyncio
async def test_duplicate_check_not_reached_for_bad_format(make_state, make_services):
    services = make_services()
    state = make_state(valid_invoice(ncf="X123"))

    await run_validation_chain(state, services)

    assert "ncf_unique" not in [r.check for r in state.check_results]


@pytest.mark.asyncio
async def test_future_date_flags_for_review(make_state, make_services):
    state = make_state(valid_invoice(invoiceDate="2026-10-20"))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW
    assert "2026-10-20" in state.rejection_reason


@pytest.mark.asyncio
async def test_today_is_not_future(make_state, make_services):
    state = make_state(valid_invoice(invoiceDate="2026-10-19"))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PROCESSED


@pytest.mark.asyncio
async def test_low_amount_flags_for_review(make_state, make_services):
    state = make_state(valid_invoice(totalAmount=9.99))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW
    assert state.rejection_reason == "Suspiciously low invoice total"


@pytest.mark.asyncio
async def test_missing_amount_flags_for_review(make_state, make_services):
    state = make_state(valid_invoice(totalAmount=None))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW


@pytest.mark.asyncio
async def test_review_gate_keeps_first_reason(make_state, make_services):
    state = make_state(valid_invoice(invoiceDate="not a date", totalAmount=2))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW
    assert state.rejection_reason == "Unreadable invoice date"
    flagged = [r for r in state.check_results if r.is_review_flagged]
    assert [r.check for r in flagged] == ["invoice_date", "total_amount"]


@pytest.mark.asyncio
async def test_review_gate_stops_before_authorization(make_state, make_services):
    outsider = UserProfile(id="clerk-2", role="clerk", assigned_pharmacies=["ph-prados"])
    state = make_state(valid_invoice(totalAmount=1), user=outsider)

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW
    assert "pharmacy_authorization" not in [r.check for r in state.check_results]


@pytest.mark.asyncio
async def test_unassigned_clerk_rejected_even_when_everything_else_passes(make_state, make_services):
    outsider = UserProfile(id="clerk-2", role="clerk", assigned_pharmacies=["ph-prados"])
    state = make_state(valid_invoice(), user=outsider)

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert state.check_results[-1].check == "pharmacy_authorization"
    assert state.pharmacy_id is None


@pytest.mark.asyncio
async def test_legacy_pharmacy_id_authorizes(make_state, make_services):
    legacy = UserProfile(id="clerk-3", role="clerk", pharmacy_id="ph-carol")
    state = make_state(valid_invoice(), user=legacy)

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PROCESSED
    assert state.pharmacy_id == "ph-carol"


@pytest.mark.asyncio
async def test_missing_user_profile_rejected(make_state, make_services):
    state = make_state(valid_invoice(), user=None)

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED


@pytest.mark.asyncio
async def test_pharmacy_name_must_match_exactly(make_state, make_services):
    state = make_state(valid_invoice(pharmacyName="farmacia carol"))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.REJECTED
    assert state.check_results[-1].check == "pharmacy_authorization"


@pytest.mark.asyncio
async def test_configurable_minimum_amount(make_state, make_services):
    services = make_services()
    services.config.MIN_INVOICE_AMOUNT = 1000
    state = make_state(valid_invoice(totalAmount=500))

    state = await validation_agent(state, services)

    assert state.decision == ScanStatus.PENDING_REVIEW


@pytest.mark.asyncio
async def test_gateway_failure_recorded_as_validation_error(make_state, make_services):
    from unittest.mock import AsyncMock, patch

    services = make_services()
    state = make_state(valid_invoice())

    with patch.object(services.gateway, "find_scan_ids_by_ncf", AsyncMock(side_effect=ConnectionError("store down"))):
        state = await validation_agent(state, services)

    assert state.decision is None
    assert "store down" in state.validation_error


@pytest.mark.asyncio
@pytest.mark.parametrize("total", ["NaN", "inf", float("nan")])
async def test_non_finite_amount_flags_for_review(make_state, make_services, total):
    state = make_state(valid_invoice(totalAmount=total))

    state = await validation_agent(state, make_services())

    assert state.decision == ScanStatus.PENDING_REVIEW
    assert state.rejection_reason == "Suspiciously low invoice total"
