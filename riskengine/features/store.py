"""Feature store: turns a transaction plus customer history into features.

Extraction is a pure function of the transaction and the customer's
history as it stood before the transaction; it never mutates history.
`record` must be called exactly once per transaction after extraction.
Time windows are measured from the transaction's own timestamp.

Field groups:
  - basic: amount, amount_log, hour_of_day, day_of_week, is_weekend
  - user: account age, 24h / 7d counts, 30d average, frequency, first-txn flag
  - velocity: amount ratio vs average, minutes since last transaction
  - device/location: pass-through from a DeviceSignalProvider
  - merchant: fraud rate and average amount from the merchant directory
  - payment method: base risk score and crypto flag
"""

import logging
import math
import threading
from datetime import timedelta
from typing import Dict, List, Optional

from riskengine.features.merchants import MerchantDirectory
from riskengine.features.providers import (
    AccountAgeProvider,
    DeviceSignalProvider,
    HashedAccountAgeProvider,
    PassThroughDeviceProvider,
)
from riskengine.models import FeatureVector, HistoryEntry, TransactionRequest
from riskengine.storage.memory import HistoryStore

logger = logging.getLogger(__name__)

PAYMENT_METHOD_RISK: Dict[str, float] = {
    "crypto": 0.6,
    "credit_card": 0.3,
    "debit_card": 0.25,
    "bank_transfer": 0.2,
}
UNKNOWN_PAYMENT_METHOD_RISK = 0.5

# Static priors (gradient-boosting style split importance); sums to 1.0
FEATURE_IMPORTANCE: Dict[str, float] = {
    "amount_ratio_vs_avg": 0.15,
    "user_txn_count_24h": 0.12,
    "merchant_fraud_rate_30d": 0.11,
    "amount_log": 0.10,
    "time_since_last_txn_minutes": 0.09,
    "user_age_days": 0.08,
    "payment_method_risk_score": 0.08,
    "is_crypto": 0.07,
    "device_age_days": 0.06,
    "ip_country_match": 0.05,
    "billing_shipping_match": 0.04,
    "is_first_transaction": 0.03,
    "hour_of_day": 0.02,
}

TXN_COUNT_24H_CAP = 10
TXN_COUNT_7D_CAP = 50
TXN_FREQUENCY_CAP = 5  # transactions per day
AMOUNT_RATIO_CAP = 5
MINUTES_SINCE_LAST_CAP = 1440  # one day
AMOUNT_SCALE = 1000
DAYS_PER_YEAR = 365


def _js_day_of_week(weekday: int) -> int:
    """Convert Python's Monday=0 weekday to Sunday=0 .. Saturday=6."""
    return (weekday + 1) % 7


class FeatureStore:
    """Owns customer histories and derives feature vectors from them."""

    def __init__(
        self,
        merchants: Optional[MerchantDirectory] = None,
        device_provider: Optional[DeviceSignalProvider] = None,
        account_age_provider: Optional[AccountAgeProvider] = None,
        history: Optional[HistoryStore] = None,
    ) -> None:
        self.merchants = merchants or MerchantDirectory()
        self.device_provider = device_provider or PassThroughDeviceProvider()
        self.account_age_provider = account_age_provider or HashedAccountAgeProvider()
        self.history = history or HistoryStore()
        # Account age is looked up once per customer and reused
        self._account_ages: Dict[str, float] = {}
        self._account_ages_lock = threading.Lock()

    def extract(self, transaction: TransactionRequest) -> FeatureVector:
        """Build the feature vector for a transaction from current history."""
        key = transaction.customer_key
        history = self.history.get(key)

        features = {}
        features.update(self._basic_features(transaction))
        features.update(self._user_features(transaction, history))
        features.update(self._velocity_features(transaction, history))
        features.update(self._device_features(transaction))
        features.update(self._merchant_features(transaction))
        features.update(self._payment_method_features(transaction))

        vector = FeatureVector(**features)
        logger.debug("Features for %s: %s", transaction.transaction_id, vector)
        return vector

    def extract_batch(self, transactions: List[TransactionRequest]) -> List[FeatureVector]:
        return [self.extract(tx) for tx in transactions]

    def record(self, transaction: TransactionRequest) -> None:
        """Append the transaction to its customer's history."""
        entry = HistoryEntry(
            transaction_id=transaction.transaction_id,
            amount=transaction.amount,
            currency=transaction.currency,
            timestamp=transaction.timestamp,
            payment_method=transaction.payment_method,
            merchant_name=transaction.merchant_name,
        )
        self.history.append(transaction.customer_key, entry)

    def customer_history(self, customer_id: Optional[str]) -> List[HistoryEntry]:
        key = customer_id.strip() if customer_id and customer_id.strip() else "anonymous"
        return self.history.get(key)

    def feature_importance(self) -> Dict[str, float]:
        return dict(FEATURE_IMPORTANCE)

    # ------------------------------------------------------------------
    # Feature groups
    # ------------------------------------------------------------------

    def _basic_features(self, transaction: TransactionRequest) -> Dict[str, float]:
        ts = transaction.timestamp
        day = _js_day_of_week(ts.weekday())
        return {
            "amount": transaction.amount,
            "amount_log": math.log1p(transaction.amount),
            "hour_of_day": ts.hour / 24,
            "day_of_week": day / 7,
            "is_weekend": 1.0 if day in (0, 6) else 0.0,
        }

    def _user_features(
        self,
        transaction: TransactionRequest,
        history: List[HistoryEntry],
    ) -> Dict[str, float]:
        age_days = self._account_age(transaction.customer_key)
        count_24h = self._count_since(history, transaction, timedelta(hours=24))
        count_7d = self._count_since(history, transaction, timedelta(days=7))
        avg_30d = self._average_amount(history, transaction, timedelta(days=30))
        frequency = count_7d / 7

        return {
            "user_age_days": age_days / DAYS_PER_YEAR,
            "user_txn_count_24h": min(count_24h, TXN_COUNT_24H_CAP) / TXN_COUNT_24H_CAP,
            "user_txn_count_7d": min(count_7d, TXN_COUNT_7D_CAP) / TXN_COUNT_7D_CAP,
            "user_avg_amount_30d": avg_30d / AMOUNT_SCALE,
            "user_txn_frequency": min(frequency, TXN_FREQUENCY_CAP) / TXN_FREQUENCY_CAP,
            "is_first_transaction": 1.0 if not history else 0.0,
        }

    def _velocity_features(
        self,
        transaction: TransactionRequest,
        history: List[HistoryEntry],
    ) -> Dict[str, float]:
        if not history:
            return {
                "amount_ratio_vs_avg": 1.0,
                "time_since_last_txn_minutes": 1.0,
            }

        avg_amount = self._average_amount(history, transaction, timedelta(days=30))
        ratio = transaction.amount / avg_amount if avg_amount > 0 else 1.0

        last = history[-1]
        minutes_since_last = (transaction.timestamp - last.timestamp).total_seconds() / 60
        # Out-of-order arrivals count as simultaneous
        minutes_since_last = max(minutes_since_last, 0.0)

        return {
            "amount_ratio_vs_avg": min(ratio, AMOUNT_RATIO_CAP) / AMOUNT_RATIO_CAP,
            "time_since_last_txn_minutes": (
                min(minutes_since_last, MINUTES_SINCE_LAST_CAP) / MINUTES_SINCE_LAST_CAP
            ),
        }

    def _device_features(self, transaction: TransactionRequest) -> Dict[str, float]:
        signals = self.device_provider.signals_for(transaction)
        return {
            "device_age_days": signals.device_age_days / DAYS_PER_YEAR,
            "ip_country_match": 1.0 if signals.ip_country_match else 0.0,
            "billing_shipping_match": 1.0 if signals.billing_shipping_match else 0.0,
        }

    def _merchant_features(self, transaction: TransactionRequest) -> Dict[str, float]:
        fraud_rate, avg_amount = self.merchants.risk(
            transaction.merchant_name, transaction.merchant_id
        )
        return {
            "merchant_fraud_rate_30d": fraud_rate,
            "merchant_avg_amount": avg_amount / AMOUNT_SCALE,
        }

    def _payment_method_features(self, transaction: TransactionRequest) -> Dict[str, float]:
        method = transaction.payment_method
        return {
            "payment_method_risk_score": PAYMENT_METHOD_RISK.get(
                method, UNKNOWN_PAYMENT_METHOD_RISK
            ),
            "is_crypto": 1.0 if method == "crypto" else 0.0,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _account_age(self, customer_key: str) -> float:
        with self._account_ages_lock:
            if customer_key not in self._account_ages:
                self._account_ages[customer_key] = (
                    self.account_age_provider.account_age_days(customer_key)
                )
            return self._account_ages[customer_key]

    @staticmethod
    def _count_since(
        history: List[HistoryEntry],
        transaction: TransactionRequest,
        window: timedelta,
    ) -> int:
        cutoff = transaction.timestamp - window
        return sum(1 for entry in history if entry.timestamp > cutoff)

    @staticmethod
    def _average_amount(
        history: List[HistoryEntry],
        transaction: TransactionRequest,
        window: timedelta,
    ) -> float:
        cutoff = transaction.timestamp - window
        amounts = [entry.amount for entry in history if entry.timestamp > cutoff]
        if not amounts:
            return 0.0
        return sum(amounts) / len(amounts)
