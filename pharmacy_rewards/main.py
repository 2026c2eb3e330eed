"""
Main entry points for the pharmacy rewards pipeline.

Each entry point handles one scan per call and is driven by a status-change
event (before/after snapshots of the scan document). A scan that has started
processing always ends in a terminal status; failures become `error`.
"""

import asyncio
import sys
from typing import List, Optional, Tuple

from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.graph import build_scan_graph
from pharmacy_rewards.agents.ledger import mark_scan_error, reverse_processed_scan
from pharmacy_rewards.schemas.output import ProcessingOutcome
from pharmacy_rewards.schemas.reference import Product, Pharmacy, UserProfile
from pharmacy_rewards.schemas.scan import ScanChangeEvent, ScanStatus
from pharmacy_rewards.services import PipelineServices, build_services
from pharmacy_rewards.store.base import IDENTITY_SCANS, SCANS
from pharmacy_rewards.utils.logging import setup_logging
from pharmacy_rewards.utils import dict_to_json_string


logger = setup_logging(__name__)


async def load_reference_data(
    services: PipelineServices,
    user_id: str,
) -> Tuple[List[Product], List[Pharmacy], Optional[UserProfile]]:
    """Fresh read of products, pharmacies and the submitting user."""
    gateway = services.gateway
    products, pharmacies, user = await asyncio.gather(
        gateway.list_products(),
        gateway.list_pharmacies(),
        gateway.get_user(user_id),
    )
    logger.info(f"Context: {len(products)} products, {len(pharmacies)} pharmacies.")
    return products, pharmacies, user


def build_outcome(state: ScanProcessingState) -> ProcessingOutcome:
    """Build final outcome from state."""
    return ProcessingOutcome(
        scan_id=state.scan_id,
        status=state.decision.value if state.decision else None,
        points_earned=state.total_points if state.decision == ScanStatus.PROCESSED else 0,
        rejection_reason=state.rejection_reason,
        pharmacy_id=state.pharmacy_id,
        sales_rep_rewards=state.rep_rewards,
        processing_timestamp=state.processing_timestamp,
    )


def _skipped(services: PipelineServices, scan_id: str, reason: str) -> ProcessingOutcome:
    logger.debug(f"Skipping scan {scan_id}: {reason}")
    return ProcessingOutcome(
        scan_id=scan_id,
        skipped=True,
        skip_reason=reason,
        processing_timestamp=services.now(),
    )


async def _claimable_scan(
    services: PipelineServices,
    scan_id: str,
    event: ScanChangeEvent,
    collection: str,
) -> Tuple[Optional[dict], Optional[str]]:
    """
    The scan document if this event should be processed, else a skip reason.

    The stored status is re-read, then the scan is claimed (uploaded ->
    processing) atomically. Of two deliveries of the same event, concurrent or
    not, exactly one gets past the claim.
    """
    if not event.is_upload_transition():
        return None, f"not an upload transition ({event.previous_status} -> {event.new_status})"

    current = await services.gateway.get_scan(scan_id, collection=collection)
    if current is None:
        return None, "scan not found"

    if current.get("status") != ScanStatus.UPLOADED.value:
        return None, f"scan already {current.get('status')}"

    if not await services.ledger.claim_scan(scan_id, collection=collection):
        return None, "scan already claimed by another run"

    return current, None


async def _fail(
    services: PipelineServices,
    scan_id: str,
    message: str,
    ai_response: Optional[dict] = None,
    collection: str = SCANS,
) -> ProcessingOutcome:
    """Write the terminal error status; a failure to do so is logged."""
    logger.error(f"Error processing scan {scan_id}: {message}")
    try:
        await mark_scan_error(services, scan_id, message, ai_response=ai_response, collection=collection)
    except Exception as e:
        logger.exception(f"Could not mark scan {scan_id} as error: {e}")

    return ProcessingOutcome(
        scan_id=scan_id,
        status=ScanStatus.ERROR.value,
        error=message,
        processing_timestamp=services.now(),
    )


async def process_scan_event(
    scan_id: str,
    event: ScanChangeEvent,
    services: PipelineServices = None,
) -> ProcessingOutcome:
    """
    Process one invoice scan through the pipeline.

    Args:
        scan_id: Id of the scan document
        event: Before/after snapshots of the update that fired
        services: Store, extractor and clock (built from config if omitted)

    Returns:
        ProcessingOutcome describing what happened to the scan
    """
    services = services or build_services()

    try:
        current, skip_reason = await _claimable_scan(services, scan_id, event, SCANS)
    except Exception as e:
        logger.exception(f"Could not claim scan {scan_id}: {e}")
        return await _fail(services, scan_id, str(e) or type(e).__name__)
    if skip_reason:
        return _skipped(services, scan_id, skip_reason)

    user_id = current.get("userId") or event.after.get("userId")
    logger.info(f"Processing scan {scan_id} for user {user_id}")

    if not user_id:
        return await _fail(services, scan_id, "User not found in scan document")

    state: Optional[ScanProcessingState] = None
    try:
        products, pharmacies, user = await load_reference_data(services, user_id)

        state = ScanProcessingState(
            scan_id=scan_id,
            user_id=user_id,
            image_ref=current.get("storagePath"),
            processing_timestamp=services.now(),
            products=products,
            pharmacies=pharmacies,
            user=user,
        )

        graph = build_scan_graph(services)
        result = await graph.ainvoke(state)
        final_state = result if isinstance(result, ScanProcessingState) else ScanProcessingState(**result)

    except Exception as e:
        logger.exception(f"Unexpected error running scan pipeline: {e}")
        return await _fail(
            services,
            scan_id,
            str(e) or type(e).__name__,
            ai_response=state.ai_response if state else None,
        )

    if final_state.error:
        return await _fail(services, scan_id, final_state.error, ai_response=final_state.ai_response)

    logger.debug(final_state.get_agent_reasoning())
    outcome = build_outcome(final_state)
    logger.info(f"Scan {scan_id} complete: {outcome.status} ({outcome.points_earned} points)")

    return outcome


async def process_identity_event(
    scan_id: str,
    event: ScanChangeEvent,
    services: PipelineServices = None,
) -> ProcessingOutcome:
    """
    Read an ID card scan and store the model's fields verbatim.
    No validation chain; the scan ends processed or error.
    """
    services = services or build_services()

    try:
        current, skip_reason = await _claimable_scan(services, scan_id, event, IDENTITY_SCANS)
    except Exception as e:
        logger.exception(f"Could not claim ID scan {scan_id}: {e}")
        return await _fail(services, scan_id, str(e) or type(e).__name__, collection=IDENTITY_SCANS)
    if skip_reason:
        return _skipped(services, scan_id, skip_reason)

    logger.info(f"Processing ID scan {scan_id}")

    try:
        card, raw = await services.extractor.extract_identity(current.get("storagePath"))
        await services.ledger.update_scan(
            scan_id,
            {
                "status": ScanStatus.PROCESSED.value,
                "data": raw,
                "processedAt": services.now(),
            },
            collection=IDENTITY_SCANS,
        )
    except Exception as e:
        logger.exception(f"Error processing ID scan {scan_id}: {e}")
        return await _fail(services, scan_id, str(e) or type(e).__name__, collection=IDENTITY_SCANS)

    logger.info(f"ID scan {scan_id} processed (confidence: {card.confidence})")

    return ProcessingOutcome(
        scan_id=scan_id,
        status=ScanStatus.PROCESSED.value,
        data=raw,
        processing_timestamp=services.now(),
    )


async def reverse_scan(
    scan_id: str,
    reason: str,
    services: PipelineServices = None,
) -> ProcessingOutcome:
    """
    Reject a previously processed scan and take back what it credited.

    Raises:
        ReversalError: the scan does not exist or is not processed
    """
    services = services or build_services()
    scan = await reverse_processed_scan(scan_id, reason, services)

    return ProcessingOutcome(
        scan_id=scan_id,
        status=scan.status,
        points_earned=-scan.points_earned,
        rejection_reason=reason,
        pharmacy_id=scan.pharmacy_id,
        sales_rep_rewards={rep: -points for rep, points in scan.sales_rep_rewards.items()},
        processing_timestamp=services.now(),
    )


def format_output_json(outcome: ProcessingOutcome) -> str:
    """Format outcome as JSON string."""
    return dict_to_json_string(outcome.model_dump())


async def _rerun_uploaded_scan(scan_id: str) -> ProcessingOutcome:
    services = build_services()
    current = await services.gateway.get_scan(scan_id) or {}
    event = ScanChangeEvent(before={"status": ScanStatus.UPLOADING.value}, after=current)
    return await process_scan_event(scan_id, event, services)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        outcome = asyncio.run(_rerun_uploaded_scan(sys.argv[1]))
        print(format_output_json(outcome))
    else:
        print("Usage: python -m pharmacy_rewards.main <scan_id>")
