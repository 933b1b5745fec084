"""
Known subscription merchants.

A membership hit marks a materialized ledger entry as recurring so the
downstream subscription detector picks it up.
"""

from collections.abc import Iterable
from typing import Optional

SUBSCRIPTION_MERCHANTS = (
    "netflix",
    "spotify",
    "apple music",
    "youtube",
    "amazon prime",
    "dstv",
    "gotv",
    "startimes",
    "icloud",
    "google",
    "microsoft",
    "dropbox",
    "adobe",
    "canva",
    "notion",
    "figma",
    "github",
    "linkedin",
    "twitter",
    "medium",
    "coursera",
    "udemy",
    "skillshare",
    "headspace",
    "calm",
    "strava",
    "gympass",
)

# Reverse containment ("prime" inside "amazon prime") needs a real word
MIN_REVERSE_MATCH = 3


class SubscriptionCatalog:
    """Membership test over normalized merchant keys."""

    def __init__(self, merchants: Optional[Iterable[str]] = None):
        self.merchants = tuple(m.lower() for m in (merchants or SUBSCRIPTION_MERCHANTS))

    def is_known_subscription(self, normalized_merchant: Optional[str]) -> bool:
        """Substring match in either direction."""
        if not normalized_merchant:
            return False
        merchant = normalized_merchant.lower().strip()
        if not merchant:
            return False
        for known in self.merchants:
            if known in merchant:
                return True
            if len(merchant) >= MIN_REVERSE_MATCH and merchant in known:
                return True
        return False
