"""
Invoice schema and data models.
Represents the structured data the vision model reads off an invoice photo.
"""

import math
from typing import Annotated, Any, List, Optional
from pydantic import BeforeValidator, Field, field_validator

from pharmacy_rewards.schemas.base import DocumentModel


def _lenient_number(value: Any) -> Optional[float]:
    """Model output is loosely typed; anything non-numeric (NaN and inf included) becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value).replace(",", "").strip())
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _lenient_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


LenientNumber = Annotated[Optional[float], BeforeValidator(_lenient_number)]
LenientText = Annotated[Optional[str], BeforeValidator(_lenient_text)]


class ExtractedProduct(DocumentModel):
    """A registered product the model found on the invoice."""
    name: LenientText = None
    quantity: LenientNumber = None
    unit_price: LenientNumber = None


class ExtractedInvoice(DocumentModel):
    """
    Invoice fields as returned by the extraction step.

    pharmacy_name is either an exact registered pharmacy name or None;
    raw_pharmacy_name is what the model actually read.
    """
    pharmacy_name: LenientText = None
    raw_pharmacy_name: LenientText = None
    ncf: LenientText = None
    invoice_date: LenientText = None  # YYYY-MM-DD as printed, unvalidated
    total_amount: LenientNumber = None
    products: List[ExtractedProduct] = Field(default_factory=list)
    confidence: LenientText = None  # high, medium, low (informational only)

    @field_validator("products", mode="before")
    @classmethod
    def _products_list(cls, value: Any) -> list:
        if not value:
            return []
        if not isinstance(value, list):
            raise ValueError("products must be a list")
        return [item for item in value if isinstance(item, dict)]


class IdentityCard(DocumentModel):
    """Fields read off a national ID card (cedula)."""
    name: LenientText = None
    id_number: LenientText = None
    confidence: LenientText = None
