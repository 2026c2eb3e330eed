"""
Validation Agent
Runs the ordered invoice checks and classifies the scan as processed,
pending_review or rejected.

CHECK ORDER (later checks rely on earlier ones):
1. Pharmacy identified        -> rejected
2. Products present           -> rejected
3. NCF format                 -> rejected
4. NCF not already used       -> rejected   (assumes 3 passed)
5. Invoice date sane          -> review flag
6. Total amount sane          -> review flag
7. Review gate                -> pending_review with the FIRST flag's reason
8. Pharmacy authorization     -> rejected   (assumes 1 passed)

A rejection stops the chain immediately. Review flags accumulate until the gate.
"""

from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from pharmacy_rewards.schemas.output import CheckResult
from pharmacy_rewards.schemas.scan import ScanStatus
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.utils.logging import setup_logging, log_agent_action


logger = setup_logging(__name__)


Check = Callable[[ScanProcessingState, object], Awaitable[CheckResult]]


def parse_invoice_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD, or None when missing or unparseable."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def has_valid_ncf_prefix(ncf: Optional[str], prefixes: Tuple[str, ...]) -> bool:
    if not ncf:
        return False
    return ncf.strip().upper().startswith(tuple(p.upper() for p in prefixes))


async def check_pharmacy_identified(state: ScanProcessingState, services) -> CheckResult:
    invoice = state.extracted_invoice
    if not invoice.pharmacy_name:
        seen = invoice.raw_pharmacy_name or "unidentified"
        return CheckResult.rejected(
            "pharmacy_identified",
            f'Pharmacy not registered or not identified: "{seen}"',
        )
    return CheckResult.passed("pharmacy_identified")


async def check_products_present(state: ScanProcessingState, services) -> CheckResult:
    if not state.extracted_invoice.products:
        return CheckResult.rejected("products_present", "No participating products found")
    return CheckResult.passed("products_present")


async def check_ncf_format(state: ScanProcessingState, services) -> CheckResult:
    ncf = state.extracted_invoice.ncf
    if not has_valid_ncf_prefix(ncf, services.config.VALID_NCF_PREFIXES):
        return CheckResult.rejected("ncf_format", f"Invalid or unreadable NCF: {ncf}")
    return CheckResult.passed("ncf_format")


async def check_ncf_unique(state: ScanProcessingState, services) -> CheckResult:
    ncf = state.extracted_invoice.ncf
    scan_ids = await services.gateway.find_scan_ids_by_ncf(ncf)
    if any(scan_id != state.scan_id for scan_id in scan_ids):
        return CheckResult.rejected("ncf_unique", f"Duplicate invoice (NCF: {ncf})")
    return CheckResult.passed("ncf_unique")


async def check_invoice_date(state: ScanProcessingState, services) -> CheckResult:
    raw_date = state.extracted_invoice.invoice_date
    invoice_date = parse_invoice_date(raw_date)
    if invoice_date is None:
        return CheckResult.review_flagged("invoice_date", "Unreadable invoice date")

    today = services.now().date()
    if invoice_date > today:
        return CheckResult.review_flagged("invoice_date", f"Future invoice date detected: {raw_date}")
    return CheckResult.passed("invoice_date")


async def check_total_amount(state: ScanProcessingState, services) -> CheckResult:
    total = state.extracted_invoice.total_amount
    if not total or total < services.config.MIN_INVOICE_AMOUNT:
        return CheckResult.review_flagged("total_amount", "Suspiciously low invoice total")
    return CheckResult.passed("total_amount")


async def check_pharmacy_authorization(state: ScanProcessingState, services) -> CheckResult:
    pharmacy = state.find_pharmacy(state.extracted_invoice.pharmacy_name)
    allowed = state.user.allowed_pharmacy_ids() if state.user else set()

    if pharmacy is None or pharmacy.id not in allowed:
        return CheckResult.rejected(
            "pharmacy_authorization",
            f'User is not assigned to pharmacy "{state.extracted_invoice.pharmacy_name}"',
        )
    state.pharmacy_id = pharmacy.id
    return CheckResult.passed("pharmacy_authorization")


# Checks before the review gate, in order
PRE_REVIEW_CHECKS: List[Check] = [
    check_pharmacy_identified,
    check_products_present,
    check_ncf_format,
    check_ncf_unique,
    check_invoice_date,
    check_total_amount,
]

# Checks after the review gate, in order
POST_REVIEW_CHECKS: List[Check] = [
    check_pharmacy_authorization,
]


async def run_validation_chain(state: ScanProcessingState, services) -> CheckResult:
    """
    Fold the checks left to right.

    Returns the deciding result: the first rejection, the first review flag
    (at the gate), or a pass for the whole chain.
    """
    first_flag: Optional[CheckResult] = None

    for check in PRE_REVIEW_CHECKS:
        result = await check(state, services)
        state.check_results.append(result)
        if result.is_rejected:
            return result
        if result.is_review_flagged and first_flag is None:
            first_flag = result

    # Review gate
    if first_flag is not None:
        return first_flag

    for check in POST_REVIEW_CHECKS:
        result = await check(state, services)
        state.check_results.append(result)
        if result.is_rejected:
            return result

    return CheckResult.passed("validation_chain")


async def validation_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Validation Agent node.

    Updates state:
    - check_results
    - decision, rejection_reason
    - pharmacy_id (when authorized)
    - validation_error (if applicable)

    Adds reasoning log entry.
    """
    logger.info(f"[ValidationAgent] Validating scan {state.scan_id}")

    if not state.extracted_invoice:
        state.validation_error = "No extracted invoice to validate"
        return state

    try:
        verdict = await run_validation_chain(state, services)
    except Exception as e:
        logger.exception(f"[ValidationAgent] Unexpected error: {e}")
        state.validation_error = str(e) or type(e).__name__
        state.add_reasoning(
            agent_name="ValidationAgent",
            message=f"Validation could not complete: {e}",
        )
        return state

    if verdict.is_rejected:
        state.decision = ScanStatus.REJECTED
        state.rejection_reason = verdict.reason
    elif verdict.is_review_flagged:
        state.decision = ScanStatus.PENDING_REVIEW
        state.rejection_reason = verdict.reason
    else:
        state.decision = ScanStatus.PROCESSED

    log_agent_action(
        logger,
        "ValidationAgent",
        f"Decision: {state.decision.value}",
        {"check": verdict.check, "reason": verdict.reason},
        scan_id=state.scan_id,
    )

    state.add_reasoning(
        agent_name="ValidationAgent",
        message=f"{len(state.check_results)} check(s) run; decision {state.decision.value}"
                + (f" at {verdict.check}: {verdict.reason}" if verdict.reason else ""),
        action=state.decision.value,
    )

    return state
