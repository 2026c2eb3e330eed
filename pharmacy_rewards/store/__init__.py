"""
Document store backends.
"""

from pharmacy_rewards.store.base import LedgerWriter, ReferenceDataGateway
from pharmacy_rewards.store.memory import InMemoryStore


def build_store(config):
    """Create the store selected by STORE_BACKEND."""
    if config.STORE_BACKEND == "memory":
        return InMemoryStore()

    # Imported lazily so the memory backend works without Firebase credentials
    from pharmacy_rewards.store.firestore import FirestoreStore
    return FirestoreStore(project_id=config.FIREBASE_PROJECT_ID)


__all__ = [
    "InMemoryStore",
    "LedgerWriter",
    "ReferenceDataGateway",
    "build_store",
]
