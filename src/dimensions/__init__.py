"""
Dimension resolution: stores, the cached resolver and pending-entry review.
"""

from .postgres_store import PostgresDimensionStore
from .resolver import DimensionResolution, DimensionResolver, enrichment_status
from .review import PendingReviewService
from .store import DimensionStore, InMemoryDimensionStore, PendingEntryClosed, normalize_code

__all__ = [
    "DimensionStore",
    "InMemoryDimensionStore",
    "PostgresDimensionStore",
    "PendingEntryClosed",
    "DimensionResolver",
    "DimensionResolution",
    "PendingReviewService",
    "enrichment_status",
    "normalize_code",
]
