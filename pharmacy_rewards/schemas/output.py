"""
Output schemas: validation step results and the per-invocation outcome.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class CheckOutcome(str, Enum):
    """Result tag of a single validation step."""
    PASSED = "passed"
    REJECTED = "rejected"
    REVIEW_FLAGGED = "review_flagged"


class CheckResult(BaseModel):
    """
    Passed | Rejected(reason) | ReviewFlagged(reason).

    The validation chain folds these left to right; see agents/validation.py.
    """
    check: str
    outcome: CheckOutcome
    reason: Optional[str] = None

    @classmethod
    def passed(cls, check: str) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.PASSED)

    @classmethod
    def rejected(cls, check: str, reason: str) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.REJECTED, reason=reason)

    @classmethod
    def review_flagged(cls, check: str, reason: str) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.REVIEW_FLAGGED, reason=reason)

    @property
    def is_rejected(self) -> bool:
        return self.outcome == CheckOutcome.REJECTED

    @property
    def is_review_flagged(self) -> bool:
        return self.outcome == CheckOutcome.REVIEW_FLAGGED


class ProcessingOutcome(BaseModel):
    """What a single pipeline invocation did to one scan."""
    scan_id: str
    status: Optional[str] = None  # final status written, None when skipped
    skipped: bool = False
    skip_reason: Optional[str] = None
    points_earned: int = 0
    rejection_reason: Optional[str] = None
    error: Optional[str] = None
    pharmacy_id: Optional[str] = None
    sales_rep_rewards: Dict[str, int] = Field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None  # identity-card fields
    processing_timestamp: datetime

    model_config = {
        "json_schema_extra": {
            "example": {
                "scan_id": "scan-123",
                "status": "processed",
                "skipped": False,
                "points_earned": 10,
                "pharmacy_id": "ph-carol",
                "sales_rep_rewards": {"rep-a": 10},
                "processing_timestamp": "2026-10-19T10:30:00Z",
            }
        }
    }
