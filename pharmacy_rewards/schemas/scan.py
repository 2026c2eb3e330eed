"""
Scan records and the status-change events that trigger processing.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from pharmacy_rewards.schemas.base import DocumentModel


class ScanStatus(str, Enum):
    """Lifecycle of a scan record."""
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"  # claimed by one pipeline run
    PROCESSED = "processed"
    REJECTED = "rejected"
    PENDING_REVIEW = "pending_review"
    ERROR = "error"


class ProductLineItem(DocumentModel):
    """
    A matched invoice line and the points it earned.

    Older scans stored only product, quantity and points; the other fields
    default so those documents still load.
    """
    product: str
    quantity: float = 1.0
    unit_price: float = 0.0
    commission_pct: float = 0.0
    points: int = 0
    line: str = "General"


class InvoiceScan(DocumentModel):
    """An invoice scan as stored in the `scans` collection."""
    scan_id: Optional[str] = None
    user_id: Optional[str] = None
    storage_path: Optional[str] = None
    status: str = ScanStatus.UPLOADING.value
    pharmacy_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    error: Optional[str] = None
    ai_response: Optional[Dict[str, Any]] = None
    points_earned: int = 0
    products_found: List[ProductLineItem] = Field(default_factory=list)
    ncf: Optional[str] = None
    invoice_date: Optional[str] = None
    expires_at: Optional[datetime] = None
    sales_rep_rewards: Dict[str, int] = Field(default_factory=dict)
    processed_at: Optional[datetime] = None

    @field_validator("points_earned", mode="before")
    @classmethod
    def _points_or_zero(cls, value: Any) -> Any:
        return value or 0

    @field_validator("sales_rep_rewards", mode="before")
    @classmethod
    def _rewards_or_empty(cls, value: Any) -> Any:
        return value or {}

    @field_validator("products_found", mode="before")
    @classmethod
    def _products_or_empty(cls, value: Any) -> Any:
        return value or []


class ScanChangeEvent(BaseModel):
    """Before/after snapshots of a scan document, delivered on every update."""
    before: Dict[str, Any] = Field(default_factory=dict)
    after: Dict[str, Any] = Field(default_factory=dict)

    @property
    def previous_status(self) -> Optional[str]:
        return (self.before or {}).get("status")

    @property
    def new_status(self) -> Optional[str]:
        return (self.after or {}).get("status")

    def is_upload_transition(self) -> bool:
        """True only for the update that moved the scan into `uploaded`."""
        return (
            self.new_status == ScanStatus.UPLOADED.value
            and self.previous_status != ScanStatus.UPLOADED.value
        )
