"""
Reference data: products, pharmacies and user profiles.
Read-only from the pipeline's point of view.
"""

from typing import Any, Dict, List, Optional, Set
from pydantic import Field, field_validator

from pharmacy_rewards.schemas.base import DocumentModel


class Product(DocumentModel):
    """A participating product and how it earns points."""
    id: Optional[str] = None
    name: str
    keywords: List[str] = Field(default_factory=list)
    line: str = "General"
    commission: float = Field(default=0.0, ge=0.0, le=100.0)  # percent of sale value
    points: float = 0.0  # legacy flat points per unit, used only when commission == 0
    status: str = "active"  # active, inactive

    @field_validator("line", mode="before")
    @classmethod
    def _default_line(cls, value: Any) -> str:
        return value or "General"

    @field_validator("commission", "points", mode="before")
    @classmethod
    def _number_or_zero(cls, value: Any) -> float:
        try:
            return float(value or 0)
        except (TypeError, ValueError):
            return 0.0

    @property
    def is_active(self) -> bool:
        return self.status != "inactive"


class Pharmacy(DocumentModel):
    """A registered pharmacy and the sales reps covering each product line there."""
    id: str
    name: str
    rep_assignments: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("rep_assignments", mode="before")
    @classmethod
    def _assignments_or_empty(cls, value: Any) -> Dict[str, List[str]]:
        return value or {}

    def reps_for_line(self, line: str) -> List[str]:
        """Rep ids whose assignment at this pharmacy includes the line."""
        return [rep_id for rep_id, lines in self.rep_assignments.items() if line in (lines or [])]


class UserProfile(DocumentModel):
    """A clerk or sales rep profile."""
    id: str
    name: Optional[str] = None
    role: Optional[str] = None  # clerk, salesRep, manager, director
    pharmacy_id: Optional[str] = None  # legacy single pharmacy
    assigned_pharmacies: List[str] = Field(default_factory=list)
    points: int = 0
    scan_count: int = 0

    @field_validator("assigned_pharmacies", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> List[str]:
        return value or []

    def allowed_pharmacy_ids(self) -> Set[str]:
        """Pharmacies this user may bank invoices for."""
        allowed = set(self.assigned_pharmacies)
        if self.pharmacy_id:
            allowed.add(self.pharmacy_id)
        return allowed
