"""
In-memory document store.
Used by the tests and for running the pipeline locally without Firestore.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from pharmacy_rewards.schemas.reference import Product, Pharmacy, UserProfile
from pharmacy_rewards.schemas.scan import ScanStatus
from pharmacy_rewards.store.base import (
    LedgerWriter,
    ReferenceDataGateway,
    PHARMACIES,
    PRODUCTS,
    SCANS,
    USERS,
)


class InMemoryStore(ReferenceDataGateway, LedgerWriter):
    """Collections of plain dict documents keyed by id."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    # Seeding

    def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(document)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self.collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def add_product(self, product: Product) -> None:
        doc_id = product.id or product.name
        self.put(PRODUCTS, doc_id, product.to_document())

    def add_pharmacy(self, pharmacy: Pharmacy) -> None:
        self.put(PHARMACIES, pharmacy.id, pharmacy.to_document())

    def add_user(self, user: UserProfile) -> None:
        self.put(USERS, user.id, user.to_document())

    # ReferenceDataGateway

    async def list_products(self) -> List[Product]:
        return [
            Product.model_validate({**doc, "id": doc_id})
            for doc_id, doc in self.collections.get(PRODUCTS, {}).items()
        ]

    async def list_pharmacies(self) -> List[Pharmacy]:
        return [
            Pharmacy.model_validate({**doc, "id": doc_id})
            for doc_id, doc in self.collections.get(PHARMACIES, {}).items()
        ]

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        doc = self.get(USERS, user_id)
        if doc is None:
            return None
        return UserProfile.model_validate({**doc, "id": user_id})

    async def get_scan(self, scan_id: str, collection: str = SCANS) -> Optional[Dict[str, Any]]:
        return self.get(collection, scan_id)

    async def find_scan_ids_by_ncf(self, ncf: str) -> List[str]:
        return [
            doc_id
            for doc_id, doc in self.collections.get(SCANS, {}).items()
            if doc.get("ncf") == ncf
        ]

    # LedgerWriter

    async def claim_scan(self, scan_id: str, collection: str = SCANS) -> bool:
        async with self._lock:
            doc = self.collections.get(collection, {}).get(scan_id)
            if doc is None or doc.get("status") != ScanStatus.UPLOADED.value:
                return False
            doc["status"] = ScanStatus.PROCESSING.value
            return True

    async def update_scan(self, scan_id: str, fields: Dict[str, Any], collection: str = SCANS) -> None:
        async with self._lock:
            doc = self.collections.get(collection, {}).get(scan_id)
            if doc is None:
                raise LookupError(f"No document to update: {collection}/{scan_id}")
            doc.update(copy.deepcopy(fields))

    async def increment(self, collection: str, doc_id: str, deltas: Dict[str, int]) -> None:
        async with self._lock:
            doc = self.collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise LookupError(f"No document to update: {collection}/{doc_id}")
            for field, delta in deltas.items():
                doc[field] = (doc.get(field) or 0) + delta
