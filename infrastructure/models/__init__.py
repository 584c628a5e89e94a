"""Infrastructure models package exports."""
from .base import Base, metadata
from .ledger import LedgerEntryModel

__all__ = [
    "Base",
    "metadata",
    "LedgerEntryModel",
]
