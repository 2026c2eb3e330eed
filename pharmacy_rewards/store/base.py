"""
Storage interfaces used by the pipeline.

The pipeline never touches a database handle directly: it reads reference data
through a ReferenceDataGateway and mutates scans and counters through a
LedgerWriter. Both are passed in explicitly (see pharmacy_rewards.services).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pharmacy_rewards.schemas.reference import Product, Pharmacy, UserProfile


SCANS = "scans"
IDENTITY_SCANS = "identity_scans"
USERS = "users"
PHARMACIES = "pharmacies"
PRODUCTS = "products"


class ReferenceDataGateway(ABC):
    """Read side. Every call hits the backing store; nothing is cached."""

    @abstractmethod
    async def list_products(self) -> List[Product]:
        """All products, active and inactive."""

    @abstractmethod
    async def list_pharmacies(self) -> List[Pharmacy]:
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def get_scan(self, scan_id: str, collection: str = SCANS) -> Optional[Dict[str, Any]]:
        """Raw scan document, or None if it does not exist."""

    @abstractmethod
    async def find_scan_ids_by_ncf(self, ncf: str) -> List[str]:
        """Ids of every invoice scan carrying this NCF, system wide."""


class LedgerWriter(ABC):
    """Write side. Counter updates must be atomic increments, not read-modify-write."""

    @abstractmethod
    async def claim_scan(self, scan_id: str, collection: str = SCANS) -> bool:
        """
        Move the scan from `uploaded` to `processing` in one atomic step.

        Returns False when the scan is missing or no longer `uploaded`, i.e.
        another run already claimed it.
        """

    @abstractmethod
    async def update_scan(self, scan_id: str, fields: Dict[str, Any], collection: str = SCANS) -> None:
        """Merge fields into an existing scan document."""

    @abstractmethod
    async def increment(self, collection: str, doc_id: str, deltas: Dict[str, int]) -> None:
        """Atomically add each delta (may be negative) to the named numeric fields."""
