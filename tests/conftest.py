"""
Shared fixtures: a seeded in-memory store, a fake extractor and a fixed clock.
"""

import asyncio
import os

os.environ["ENV"] = "test"

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from pharmacy_rewards.config import TestConfig
from pharmacy_rewards.schemas.invoice import ExtractedInvoice, IdentityCard
from pharmacy_rewards.schemas.reference import Product, Pharmacy, UserProfile
from pharmacy_rewards.schemas.scan import ScanChangeEvent
from pharmacy_rewards.services import PipelineServices
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.store.memory import InMemoryStore
from pharmacy_rewards.store.base import SCANS


FIXED_NOW = datetime(2026, 10, 19, 10, 30, tzinfo=ZoneInfo("America/Santo_Domingo"))


class FakeExtractor:
    """Stands in for the vision model; returns canned JSON."""

    def __init__(self, invoice_data=None, identity_data=None, error=None, delay=0):
        self.invoice_data = invoice_data
        self.identity_data = identity_data
        self.error = error
        self.delay = delay
        self.calls = 0

    async def extract_invoice(self, image_ref, products, pharmacies):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return ExtractedInvoice.model_validate(self.invoice_data), dict(self.invoice_data)

    async def extract_identity(self, image_ref):
        self.calls += 1
        if self.error:
            raise self.error
        return IdentityCard.model_validate(self.identity_data), dict(self.identity_data)


def valid_invoice(**overrides):
    """Extraction result that passes every check for clerk-1 at Farmacia Carol."""
    data = {
        "pharmacyName": "Farmacia Carol",
        "rawPharmacyName": "FARMACIA CAROL SRL",
        "ncf": "B0100000001",
        "invoiceDate": "2026-10-18",
        "totalAmount": 500,
        "products": [{"name": "Aspirina", "quantity": 2, "unitPrice": 50}],
        "confidence": "high",
    }
    data.update(overrides)
    return data


def upload_event(**after):
    return ScanChangeEvent(
        before={"status": "uploading"},
        after={"status": "uploaded", **after},
    )


@pytest.fixture
def sample_products():
    return [
        Product(id="p-aspirina", name="Aspirina", line="OTC", commission=10, points=5),
        Product(id="p-vitc", name="Vitamina C", line="Vitaminas", commission=0, points=5),
        Product(id="p-jarabe", name="Jarabe Tos", line="OTC", commission=50, status="inactive"),
        Product(id="p-gel", name="Gel Antibacterial", line=None, commission=20),
    ]


@pytest.fixture
def sample_pharmacies():
    return [
        Pharmacy(
            id="ph-carol",
            name="Farmacia Carol",
            rep_assignments={"rep-a": ["OTC"], "rep-b": ["OTC", "Vitaminas"]},
        ),
        Pharmacy(id="ph-prados", name="Farmacia Los Prados"),
    ]


@pytest.fixture
def clerk():
    return UserProfile(id="clerk-1", name="Ana", role="clerk", assigned_pharmacies=["ph-carol"])


@pytest.fixture
def store(sample_products, sample_pharmacies, clerk):
    store = InMemoryStore()
    for product in sample_products:
        store.add_product(product)
    for pharmacy in sample_pharmacies:
        store.add_pharmacy(pharmacy)
    store.add_user(clerk)
    store.add_user(UserProfile(id="rep-a", role="salesRep", assigned_pharmacies=["ph-carol"]))
    store.add_user(UserProfile(id="rep-b", role="salesRep", assigned_pharmacies=["ph-carol"]))
    store.put(SCANS, "scan-1", {
        "userId": "clerk-1",
        "storagePath": "invoices/clerk-1/scan-1.jpg",
        "status": "uploaded",
    })
    return store


@pytest.fixture
def make_services(store):
    """Build services around the seeded store with the given extraction result."""
    def _make(invoice_data=None, identity_data=None, error=None, clock=None, delay=0):
        return PipelineServices(
            gateway=store,
            ledger=store,
            extractor=FakeExtractor(invoice_data, identity_data, error, delay),
            config=TestConfig(),
            clock=clock or (lambda: FIXED_NOW),
        )
    return _make


@pytest.fixture
def make_state(sample_products, sample_pharmacies, clerk):
    """Pipeline state as it looks right after a successful extraction."""
    def _make(invoice_data, scan_id="scan-1", user=clerk):
        return ScanProcessingState(
            scan_id=scan_id,
            user_id=user.id if user else "clerk-1",
            image_ref=f"invoices/{scan_id}.jpg",
            processing_timestamp=FIXED_NOW,
            products=sample_products,
            pharmacies=sample_pharmacies,
            user=user,
            extracted_invoice=ExtractedInvoice.model_validate(invoice_data),
            ai_response=dict(invoice_data),
        )
    return _make
