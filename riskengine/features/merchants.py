"""Merchant risk reference data.

Merchants are resolved by id first, then by name. Name lookups use thefuzz
so that small spelling and ordering differences in the merchant name
("Spotfy" vs "Spotify", "Merchant Unknown" vs "Unknown Merchant") still resolve
to the reference entry:
  - fuzz.ratio(): overall character-level string similarity
  - fuzz.token_sort_ratio(): handles reordered tokens

Unknown merchants fall back to a fixed default profile.
"""

import re
from typing import Dict, List, Optional, Tuple

from thefuzz import fuzz

from riskengine.models import MerchantProfile

DEFAULT_FRAUD_RATE = 0.08
DEFAULT_AVG_AMOUNT = 100.0

DEFAULT_MERCHANTS: List[MerchantProfile] = [
    MerchantProfile(merchant_id="amazon", name="Amazon", fraud_rate_30d=0.02, avg_amount=150),
    MerchantProfile(merchant_id="steam", name="Steam", fraud_rate_30d=0.05, avg_amount=60),
    MerchantProfile(merchant_id="nike", name="Nike", fraud_rate_30d=0.03, avg_amount=200),
    MerchantProfile(merchant_id="apple", name="Apple", fraud_rate_30d=0.01, avg_amount=500),
    MerchantProfile(merchant_id="spotify", name="Spotify", fraud_rate_30d=0.02, avg_amount=10),
    MerchantProfile(merchant_id="unknown", name="Unknown Merchant", fraud_rate_30d=0.15, avg_amount=100),
]


def _normalize_name(name: str) -> str:
    """Lowercase, strip, and collapse multiple spaces."""
    return re.sub(r"\s+", " ", name.strip().lower())


class MerchantDirectory:
    """Static merchant-risk lookup table."""

    def __init__(
        self,
        merchants: Optional[List[MerchantProfile]] = None,
        fuzzy_threshold: int = 90,
    ) -> None:
        if merchants is None:
            merchants = DEFAULT_MERCHANTS
        self.fuzzy_threshold = fuzzy_threshold
        self._by_id: Dict[str, MerchantProfile] = {m.merchant_id: m for m in merchants}
        self._by_name: Dict[str, MerchantProfile] = {
            _normalize_name(m.name): m for m in merchants
        }

    def lookup(
        self,
        merchant_name: str,
        merchant_id: Optional[str] = None,
    ) -> Optional[MerchantProfile]:
        """Resolve a merchant by id, exact name, then fuzzy name match."""
        if merchant_id is not None and merchant_id in self._by_id:
            return self._by_id[merchant_id]

        normalized = _normalize_name(merchant_name)
        if normalized in self._by_name:
            return self._by_name[normalized]

        best: Optional[Tuple[int, MerchantProfile]] = None
        for known_name, profile in self._by_name.items():
            score = max(
                fuzz.ratio(normalized, known_name),
                fuzz.token_sort_ratio(normalized, known_name),
            )
            if score >= self.fuzzy_threshold and (best is None or score > best[0]):
                best = (score, profile)

        return best[1] if best else None

    def risk(self, merchant_name: str, merchant_id: Optional[str] = None) -> Tuple[float, float]:
        """Return (fraud_rate_30d, avg_amount), using defaults for unknown merchants."""
        profile = self.lookup(merchant_name, merchant_id)
        if profile is None:
            return DEFAULT_FRAUD_RATE, DEFAULT_AVG_AMOUNT
        return profile.fraud_rate_30d, profile.avg_amount
