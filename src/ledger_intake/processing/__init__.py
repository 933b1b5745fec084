"""
Processing stages after parsing: normalize, deduplicate, materialize.
"""

from .deduplication import DeduplicationEngine
from .materializer import AUTO_CATEGORY, ExpenseMaterializer, MaterializationResult
from .merchant_categories import resolve_category
from .merchants import extract_merchant, normalize_merchant
from .normalizer import Normalizer
from .subscriptions import SubscriptionCatalog

__all__ = [
    "AUTO_CATEGORY",
    "DeduplicationEngine",
    "ExpenseMaterializer",
    "MaterializationResult",
    "Normalizer",
    "SubscriptionCatalog",
    "extract_merchant",
    "normalize_merchant",
    "resolve_category",
]
