"""
Firestore-backed store.
Uses the firebase-admin async client; counters use server-side Increment transforms.
"""

from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import firestore, firestore_async
from google.cloud.firestore_v1.async_transaction import async_transactional
from google.cloud.firestore_v1.base_query import FieldFilter

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
from pharmacy_rewards.utils.logging import setup_logging


logger = setup_logging(__name__)


def get_firebase_app(project_id: Optional[str] = None) -> firebase_admin.App:
    """Return the default Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        options = {"projectId": project_id} if project_id else None
        logger.info(f"Initializing Firebase app (project: {project_id or 'default'})")
        return firebase_admin.initialize_app(options=options)


class FirestoreStore(ReferenceDataGateway, LedgerWriter):
    """Reads and writes the collections the mobile and admin apps share."""

    def __init__(self, client=None, project_id: Optional[str] = None):
        self.client = client or firestore_async.client(get_firebase_app(project_id))

    async def list_products(self) -> List[Product]:
        snapshots = await self.client.collection(PRODUCTS).get()
        return [Product.model_validate({**snap.to_dict(), "id": snap.id}) for snap in snapshots]

    async def list_pharmacies(self) -> List[Pharmacy]:
        snapshots = await self.client.collection(PHARMACIES).get()
        return [Pharmacy.model_validate({**snap.to_dict(), "id": snap.id}) for snap in snapshots]

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        snap = await self.client.collection(USERS).document(user_id).get()
        if not snap.exists:
            return None
        return UserProfile.model_validate({**snap.to_dict(), "id": snap.id})

    async def get_scan(self, scan_id: str, collection: str = SCANS) -> Optional[Dict[str, Any]]:
        snap = await self.client.collection(collection).document(scan_id).get()
        return snap.to_dict() if snap.exists else None

    async def find_scan_ids_by_ncf(self, ncf: str) -> List[str]:
        query = self.client.collection(SCANS).where(filter=FieldFilter("ncf", "==", ncf))
        snapshots = await query.get()
        return [snap.id for snap in snapshots]

    async def claim_scan(self, scan_id: str, collection: str = SCANS) -> bool:
        scan_ref = self.client.collection(collection).document(scan_id)

        @async_transactional
        async def txn_claim(txn) -> bool:
            snap = await scan_ref.get(transaction=txn)
            if not snap.exists:
                return False
            existing = snap.to_dict() or {}
            # Idempotent: anything past `uploaded` was claimed by another run.
            if existing.get("status") != ScanStatus.UPLOADED.value:
                return False
            txn.update(scan_ref, {"status": ScanStatus.PROCESSING.value})
            return True

        return await txn_claim(self.client.transaction())

    async def update_scan(self, scan_id: str, fields: Dict[str, Any], collection: str = SCANS) -> None:
        await self.client.collection(collection).document(scan_id).update(fields)

    async def increment(self, collection: str, doc_id: str, deltas: Dict[str, int]) -> None:
        await self.client.collection(collection).document(doc_id).update(
            {field: firestore.Increment(delta) for field, delta in deltas.items()}
        )
