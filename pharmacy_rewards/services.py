"""
Explicit dependencies of one pipeline run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pharmacy_rewards.agents.extraction import InvoiceExtractor
from pharmacy_rewards.config import Config, get_config
from pharmacy_rewards.store import build_store
from pharmacy_rewards.store.base import LedgerWriter, ReferenceDataGateway


@dataclass
class PipelineServices:
    """Everything the agents need from the outside world."""
    gateway: ReferenceDataGateway
    ledger: LedgerWriter
    extractor: InvoiceExtractor
    config: Config = field(default_factory=get_config)
    clock: Optional[Callable[[], datetime]] = None

    def now(self) -> datetime:
        """Current time in the pharmacies' timezone."""
        if self.clock is not None:
            return self.clock()
        return datetime.now(ZoneInfo(self.config.PHARMACY_TIMEZONE))


def build_services(config: Config = None) -> PipelineServices:
    """Wire the configured store and extractor together."""
    config = config or get_config()
    store = build_store(config)
    return PipelineServices(
        gateway=store,
        ledger=store,
        extractor=InvoiceExtractor(settings=config),
        config=config,
    )
