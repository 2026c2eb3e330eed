"""
FastAPI endpoints that receive scan status-change events.
Can be run with: uvicorn pharmacy_rewards.api:app --reload
"""

from functools import lru_cache

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pharmacy_rewards.exceptions import ReversalError
from pharmacy_rewards.main import process_identity_event, process_scan_event, reverse_scan
from pharmacy_rewards.schemas.scan import ScanChangeEvent
from pharmacy_rewards.services import PipelineServices, build_services
from pharmacy_rewards.config import get_config

app = FastAPI(
    title="Pharmacy Rewards API",
    description="Invoice validation and points attribution for pharmacy clerks",
    version="1.0.0",
)

config = get_config()


@lru_cache(maxsize=1)
def get_services() -> PipelineServices:
    """Services shared by every request (stateless apart from the store)."""
    return build_services(config)


class ReversalRequest(BaseModel):
    reason: str


@app.post("/events/scans/{scan_id}")
async def scan_event_endpoint(
    scan_id: str,
    event: ScanChangeEvent,
    services: PipelineServices = Depends(get_services),
):
    """
    Handle an update of an invoice scan document.

    Returns:
        JSON outcome (skipped, processed, rejected, pending_review or error)
    """
    outcome = await process_scan_event(scan_id, event, services)
    return JSONResponse(content=outcome.model_dump(mode="json"), status_code=200)


@app.post("/events/identity-scans/{scan_id}")
async def identity_event_endpoint(
    scan_id: str,
    event: ScanChangeEvent,
    services: PipelineServices = Depends(get_services),
):
    """Handle an update of an ID card scan document."""
    outcome = await process_identity_event(scan_id, event, services)
    return JSONResponse(content=outcome.model_dump(mode="json"), status_code=200)


@app.post("/scans/{scan_id}/reversal")
async def reversal_endpoint(
    scan_id: str,
    request: ReversalRequest,
    services: PipelineServices = Depends(get_services),
):
    """Reject a processed scan and take back its points."""
    try:
        outcome = await reverse_scan(scan_id, request.reason, services)
    except ReversalError as e:
        return JSONResponse(
            content={
                "error": str(e),
                "message": "Scan cannot be reversed",
            },
            status_code=409,
        )
    return JSONResponse(content=outcome.model_dump(mode="json"), status_code=200)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/config")
async def get_config_endpoint():
    """Get current configuration (sanitized)."""
    return {
        "llm_provider": config.LLM_PROVIDER,
        "llm_model": config.LLM_MODEL,
        "store_backend": config.STORE_BACKEND,
        "min_invoice_amount": config.MIN_INVOICE_AMOUNT,
        "valid_ncf_prefixes": list(config.VALID_NCF_PREFIXES),
        "points_expiration_months": config.POINTS_EXPIRATION_MONTHS,
        "pharmacy_timezone": config.PHARMACY_TIMEZONE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
