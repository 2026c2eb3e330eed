"""
Shared state object for the scan processing pipeline.
Every agent reads from and writes to this state as the scan moves through the graph.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from pharmacy_rewards.schemas.invoice import ExtractedInvoice
from pharmacy_rewards.schemas.reference import Product, Pharmacy, UserProfile
from pharmacy_rewards.schemas.scan import ProductLineItem, ScanStatus
from pharmacy_rewards.schemas.output import CheckResult


class ReasoningLogEntry(BaseModel):
    """A single entry in the agent reasoning log."""
    timestamp: datetime
    agent_name: str
    message: str
    action: Optional[str] = None


class ScanProcessingState(BaseModel):
    """
    Mutable state for one invoice scan.

    Each agent:
    1. Reads relevant state
    2. Performs its task
    3. Updates state with results
    4. Adds reasoning log entry
    """

    # Workflow identification
    scan_id: str
    user_id: str
    image_ref: Optional[str] = None  # storage path or URI of the invoice photo
    processing_timestamp: datetime

    # Reference data, read once per invocation
    products: List[Product] = Field(default_factory=list)
    pharmacies: List[Pharmacy] = Field(default_factory=list)
    user: Optional[UserProfile] = None

    # Extraction phase
    extracted_invoice: Optional[ExtractedInvoice] = None
    ai_response: Optional[Dict[str, Any]] = None
    extraction_error: Optional[str] = None

    # Validation phase
    check_results: List[CheckResult] = Field(default_factory=list)
    decision: Optional[ScanStatus] = None  # processed, rejected, pending_review
    rejection_reason: Optional[str] = None
    pharmacy_id: Optional[str] = None
    validation_error: Optional[str] = None

    # Points and attribution phase
    line_items: List[ProductLineItem] = Field(default_factory=list)
    total_points: int = 0
    rep_rewards: Dict[str, int] = Field(default_factory=dict)

    # Ledger phase
    ledger_applied: bool = False
    ledger_error: Optional[str] = None

    # Reasoning and audit trail
    reasoning_log: List[ReasoningLogEntry] = Field(default_factory=list)

    def add_reasoning(
        self,
        agent_name: str,
        message: str,
        action: Optional[str] = None
    ) -> None:
        """Add an entry to the reasoning log."""
        self.reasoning_log.append(
            ReasoningLogEntry(
                timestamp=datetime.now(timezone.utc),
                agent_name=agent_name,
                message=message,
                action=action,
            )
        )

    @property
    def error(self) -> Optional[str]:
        """The first stage error, if any stage failed."""
        return self.extraction_error or self.validation_error or self.ledger_error

    def find_pharmacy(self, name: Optional[str]) -> Optional[Pharmacy]:
        """Exact-name lookup; fuzzy matching is the extraction model's job."""
        if not name:
            return None
        return next((p for p in self.pharmacies if p.name == name), None)

    def find_product(self, name: Optional[str]) -> Optional[Product]:
        if not name:
            return None
        return next((p for p in self.products if p.name == name), None)

    def get_agent_reasoning(self) -> str:
        """Get a human-readable summary of the agent reasoning."""
        if not self.reasoning_log:
            return "No reasoning available."

        return "\n".join(f"[{entry.agent_name}] {entry.message}" for entry in self.reasoning_log)
