"""
Ledger Agent
Persists the pipeline's decision on the scan and moves the counters.

For a processed scan the writes below are issued concurrently and all of them
are awaited before the scan counts as done:
- scan:      status, points, products, ncf, date, pharmacy, rep rewards, expiry
- clerk:     points += total (skipped when 0), scanCount += 1
- pharmacy:  scanCount += 1, monthlyPoints += total, lifetimePoints += total
- each rep:  points += credit, monthlySales += credit

The writes are not one transaction. If any fails, the ones that already landed
stay applied and the caller marks the scan as errored.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional

from pydantic import ValidationError

from pharmacy_rewards.exceptions import LedgerWriteFailure, ReversalError
from pharmacy_rewards.schemas.scan import InvoiceScan, ScanStatus
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.store.base import PHARMACIES, SCANS, USERS
from pharmacy_rewards.utils import add_months
from pharmacy_rewards.utils.logging import setup_logging, log_agent_action, log_decision


logger = setup_logging(__name__)


async def run_concurrently(writes: List[Awaitable[Any]]) -> None:
    """Await every write; raise LedgerWriteFailure if any of them failed."""
    results = await asyncio.gather(*writes, return_exceptions=True)
    errors = [result for result in results if isinstance(result, BaseException)]
    if errors:
        raise LedgerWriteFailure(errors)


def clerk_deltas(points: int, scans: int = 1) -> Dict[str, int]:
    deltas = {"scanCount": scans}
    if points:
        deltas["points"] = points
    return deltas


def pharmacy_deltas(points: int, scans: int = 1) -> Dict[str, int]:
    return {"scanCount": scans, "monthlyPoints": points, "lifetimePoints": points}


def rep_deltas(points: int) -> Dict[str, int]:
    return {"points": points, "monthlySales": points}


def build_processed_update(state: ScanProcessingState, now: datetime, expiration_months: int) -> Dict[str, Any]:
    invoice = state.extracted_invoice
    return {
        "status": ScanStatus.PROCESSED.value,
        "pointsEarned": state.total_points,
        "productsFound": [item.to_document() for item in state.line_items],
        "ncf": invoice.ncf,
        "invoiceDate": invoice.invoice_date,
        "pharmacyId": state.pharmacy_id,
        "salesRepRewards": dict(state.rep_rewards),
        "expiresAt": add_months(now, expiration_months),
        "aiResponse": state.ai_response,
        "processedAt": now,
    }


async def apply_processed_scan(state: ScanProcessingState, services) -> None:
    """Issue the scan write and every counter increment, then join."""
    now = services.now()
    ledger = services.ledger

    writes = [
        ledger.update_scan(
            state.scan_id,
            build_processed_update(state, now, services.config.POINTS_EXPIRATION_MONTHS),
        ),
        ledger.increment(USERS, state.user_id, clerk_deltas(state.total_points)),
        ledger.increment(PHARMACIES, state.pharmacy_id, pharmacy_deltas(state.total_points)),
    ]
    writes.extend(
        ledger.increment(USERS, rep_id, rep_deltas(points))
        for rep_id, points in state.rep_rewards.items()
    )

    await run_concurrently(writes)


async def ledger_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Ledger Agent node (processed scans only).

    Updates state:
    - ledger_applied
    - ledger_error (if applicable)
    """
    logger.info(f"[LedgerAgent] Applying {state.total_points} point(s) for scan {state.scan_id}")

    try:
        await apply_processed_scan(state, services)
    except LedgerWriteFailure as e:
        logger.error(f"[LedgerAgent] {e}")
        state.ledger_error = str(e)
        state.add_reasoning(agent_name="LedgerAgent", message=str(e))
        return state

    state.ledger_applied = True

    log_agent_action(
        logger,
        "LedgerAgent",
        "Ledger updated",
        {
            "user_id": state.user_id,
            "pharmacy_id": state.pharmacy_id,
            "points": state.total_points,
            "reps": len(state.rep_rewards),
        },
        scan_id=state.scan_id,
    )
    state.add_reasoning(
        agent_name="LedgerAgent",
        message=f"Credited {state.total_points} point(s) to clerk {state.user_id} at pharmacy {state.pharmacy_id}.",
        action="ledger_applied",
    )

    return state


async def record_decision_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Persist a rejected or pending_review decision. No counters move.
    """
    log_decision(
        logger,
        state.scan_id,
        state.decision.value,
        state.rejection_reason,
        check=state.check_results[-1].check if state.check_results else None,
    )

    try:
        await services.ledger.update_scan(
            state.scan_id,
            {
                "status": state.decision.value,
                "rejectionReason": state.rejection_reason,
                "aiResponse": state.ai_response,
                "processedAt": services.now(),
            },
        )
    except Exception as e:
        logger.exception(f"[LedgerAgent] Could not record decision: {e}")
        state.ledger_error = str(e) or type(e).__name__
        return state

    state.ledger_applied = True
    return state


async def mark_scan_error(services, scan_id: str, message: str, ai_response: Optional[dict] = None,
                          collection: str = SCANS) -> None:
    """Terminal error status. Keeps the model output for audit when there is one."""
    fields: Dict[str, Any] = {
        "status": ScanStatus.ERROR.value,
        "error": message,
        "processedAt": services.now(),
    }
    if ai_response is not None:
        fields["aiResponse"] = ai_response
    await services.ledger.update_scan(scan_id, fields, collection=collection)


async def reverse_processed_scan(scan_id: str, reason: str, services) -> InvoiceScan:
    """
    Undo a processed scan's ledger effects using the amounts stored on it.

    Counters are decremented by exactly what was credited (pointsEarned and
    salesRepRewards as stored, never recomputed). Counters are not clamped at zero.
    """
    document = await services.gateway.get_scan(scan_id)
    if document is None:
        raise ReversalError(f"Scan {scan_id} not found")

    try:
        scan = InvoiceScan.model_validate({**document, "scanId": scan_id})
    except ValidationError as e:
        raise ReversalError(f"Scan {scan_id} cannot be read for reversal: {e}") from e
    if scan.status != ScanStatus.PROCESSED.value:
        raise ReversalError(f"Only processed scans can be reversed (scan {scan_id} is {scan.status})")

    now = services.now()
    points = scan.points_earned
    ledger = services.ledger

    writes = [
        ledger.update_scan(
            scan_id,
            {
                "status": ScanStatus.REJECTED.value,
                "rejectionReason": reason,
                "reversedAt": now,
            },
        ),
    ]
    if scan.user_id:
        writes.append(ledger.increment(USERS, scan.user_id, clerk_deltas(-points, scans=-1)))
    if scan.pharmacy_id:
        writes.append(ledger.increment(PHARMACIES, scan.pharmacy_id, pharmacy_deltas(-points, scans=-1)))
    writes.extend(
        ledger.increment(USERS, rep_id, rep_deltas(-credit))
        for rep_id, credit in scan.sales_rep_rewards.items()
    )

    await run_concurrently(writes)

    log_agent_action(
        logger,
        "LedgerAgent",
        "Scan reversed",
        {"points": points, "reason": reason, "reps": len(scan.sales_rep_rewards)},
        scan_id=scan_id,
    )

    scan.status = ScanStatus.REJECTED.value
    scan.rejection_reason = reason
    return scan
