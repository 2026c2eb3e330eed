"""
Failure types raised by the pipeline stages.
"""

from typing import List


class ExtractionFailure(ValueError):
    """The vision model could not produce a usable invoice record."""


class LedgerWriteFailure(RuntimeError):
    """One or more of the concurrent ledger writes failed."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        messages = "; ".join(str(error) or type(error).__name__ for error in self.errors)
        super().__init__(f"Ledger update failed ({len(self.errors)} write(s)): {messages}")


class ReversalError(ValueError):
    """A scan cannot be reversed in its current state."""
