"""Port interfaces for adapters."""

from core.ports.broker import BrokerPort
from core.ports.ingestion_store import IngestionStore
from core.ports.token_provider import TokenProvider

__all__ = ["BrokerPort", "IngestionStore", "TokenProvider"]
