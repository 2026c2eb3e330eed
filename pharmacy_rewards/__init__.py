"""
Pharmacy Rewards invoice pipeline
"""

__version__ = "1.0.0"
__description__ = "Invoice validation and points attribution for pharmacy clerk loyalty"

from pharmacy_rewards.main import (
    process_scan_event,
    process_identity_event,
    reverse_scan,
)
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.schemas.output import ProcessingOutcome

__all__ = [
    "process_scan_event",
    "process_identity_event",
    "reverse_scan",
    "ScanProcessingState",
    "ProcessingOutcome",
]
