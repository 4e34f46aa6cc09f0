"""Tests for feature extraction and history recording."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from riskengine.errors import StateInconsistencyError
from riskengine.features.providers import (
    AccountAgeProvider,
    HashedAccountAgeProvider,
    PassThroughDeviceProvider,
)
from riskengine.features.store import FEATURE_IMPORTANCE, FeatureStore
from riskengine.models import DeviceSignals, FeatureVector
from riskengine.storage.memory import HistoryStore
from tests.conftest import BASE_TS, make_transaction, record_history


class TestBasicFeatures:
    def test_amount_features(self, feature_store):
        features = feature_store.extract(make_transaction(amount=100.0))
        assert features.amount == 100.0
        assert features.amount_log == pytest.approx(math.log1p(100.0))

    def test_time_features_weekday(self, feature_store):
        features = feature_store.extract(make_transaction())
        assert features.hour_of_day == pytest.approx(0.5)
        assert features.day_of_week == pytest.approx(3 / 7)
        assert features.is_weekend == 0.0

    def test_saturday_is_weekend(self, feature_store):
        saturday = datetime(2026, 2, 21, 23, 0, tzinfo=timezone.utc)
        features = feature_store.extract(make_transaction(timestamp=saturday))
        assert features.day_of_week == pytest.approx(6 / 7)
        assert features.hour_of_day == pytest.approx(23 / 24)
        assert features.is_weekend == 1.0

    def test_sunday_is_day_zero(self, feature_store):
        sunday = datetime(2026, 2, 22, 0, 0, tzinfo=timezone.utc)
        features = feature_store.extract(make_transaction(timestamp=sunday))
        assert features.day_of_week == 0.0
        assert features.hour_of_day == 0.0
        assert features.is_weekend == 1.0

    def test_amount_log_monotonic(self, feature_store):
        logs = [
            feature_store.extract(make_transaction(amount=a)).amount_log
            for a in (1.0, 10.0, 100.0, 5000.0)
        ]
        assert logs == sorted(logs)
        assert len(set(logs)) == len(logs)


class TestFirstTransaction:
    def test_sentinels(self, feature_store):
        features = feature_store.extract(make_transaction())
        assert features.is_first_transaction == 1.0
        assert features.user_txn_count_24h == 0.0
        assert features.user_txn_count_7d == 0.0
        assert features.user_avg_amount_30d == 0.0
        assert features.user_txn_frequency == 0.0
        assert features.amount_ratio_vs_avg == 1.0
        assert features.time_since_last_txn_minutes == 1.0


class TestHistoryFeatures:
    def test_windows(self, feature_store):
        record_history(feature_store, "newbie", [
            (60, 50.0),
            (2 * 24 * 60, 100.0),
            (10 * 24 * 60, 150.0),
        ])
        features = feature_store.extract(make_transaction(amount=200.0))

        assert features.is_first_transaction == 0.0
        assert features.user_txn_count_24h == pytest.approx(1 / 10)
        assert features.user_txn_count_7d == pytest.approx(2 / 50)
        assert features.user_avg_amount_30d == pytest.approx(100.0 / 1000)
        assert features.user_txn_frequency == pytest.approx((2 / 7) / 5)
        assert features.amount_ratio_vs_avg == pytest.approx(2.0 / 5)
        assert features.time_since_last_txn_minutes == pytest.approx(60 / 1440)

    def test_window_boundary_excluded(self, feature_store):
        record_history(feature_store, "newbie", [(24 * 60, 50.0)])
        features = feature_store.extract(make_transaction())
        assert features.user_txn_count_24h == 0.0
        assert features.user_txn_count_7d == pytest.approx(1 / 50)

    def test_counts_capped(self, feature_store):
        record_history(feature_store, "newbie", [(m, 10.0) for m in range(1, 16)])
        features = feature_store.extract(make_transaction())
        assert features.user_txn_count_24h == 1.0

    def test_amount_ratio_capped(self, feature_store):
        record_history(feature_store, "newbie", [(60, 10.0)])
        features = feature_store.extract(make_transaction(amount=1000.0))
        assert features.amount_ratio_vs_avg == 1.0

    def test_no_recent_amounts_ratio_guard(self, feature_store):
        record_history(feature_store, "newbie", [(40 * 24 * 60, 10.0)])
        features = feature_store.extract(make_transaction(amount=1000.0))
        assert features.user_avg_amount_30d == 0.0
        assert features.amount_ratio_vs_avg == pytest.approx(1.0 / 5)

    def test_time_since_last_capped(self, feature_store):
        record_history(feature_store, "newbie", [(2 * 24 * 60, 10.0)])
        features = feature_store.extract(make_transaction())
        assert features.time_since_last_txn_minutes == 1.0

    def test_time_since_last_strictly_decreasing_below_cap(self, feature_store):
        record_history(feature_store, "a", [(60, 10.0)])
        record_history(feature_store, "b", [(30, 10.0)])
        older = feature_store.extract(make_transaction(customer="a"))
        newer = feature_store.extract(make_transaction(customer="b"))
        assert newer.time_since_last_txn_minutes < older.time_since_last_txn_minutes

    def test_out_of_order_arrival_clamped(self, feature_store):
        feature_store.record(make_transaction(tx_id="later", timestamp=BASE_TS + timedelta(hours=1)))
        features = feature_store.extract(make_transaction(tx_id="earlier"))
        assert features.time_since_last_txn_minutes == 0.0


class TestExtractionPurity:
    def test_idempotent(self, feature_store):
        record_history(feature_store, "newbie", [(60, 50.0)])
        tx = make_transaction(amount=75.0)
        assert feature_store.extract(tx) == feature_store.extract(tx)

    def test_does_not_mutate_history(self, feature_store):
        feature_store.extract(make_transaction())
        assert feature_store.customer_history("newbie") == []

    def test_extract_batch_uses_same_history(self, feature_store):
        txs = [make_transaction(tx_id=f"tx-{i}") for i in range(3)]
        vectors = feature_store.extract_batch(txs)
        assert all(v.is_first_transaction == 1.0 for v in vectors)

    def test_vector_has_fixed_shape(self, feature_store):
        features = feature_store.extract(make_transaction())
        assert list(features.model_dump().keys()) == list(FeatureVector.model_fields.keys())
        assert len(FeatureVector.model_fields) == 20


class TestRecord:
    def test_record_appends(self, feature_store):
        feature_store.record(make_transaction(tx_id="tx-1"))
        history = feature_store.customer_history("newbie")
        assert [e.transaction_id for e in history] == ["tx-1"]

    def test_record_twice_rejected(self, feature_store):
        feature_store.record(make_transaction(tx_id="tx-1"))
        with pytest.raises(StateInconsistencyError):
            feature_store.record(make_transaction(tx_id="tx-1"))

    def test_history_bounded(self, feature_store):
        for i in range(1001):
            feature_store.record(make_transaction(
                tx_id=f"tx-{i}",
                timestamp=BASE_TS + timedelta(seconds=i),
            ))
        history = feature_store.customer_history("newbie")
        assert len(history) == 1000
        assert history[0].transaction_id == "tx-1"

    def test_missing_customer_uses_anonymous(self, feature_store):
        feature_store.record(make_transaction(tx_id="tx-1", customer=None))
        feature_store.record(make_transaction(tx_id="tx-2", customer="  "))
        assert len(feature_store.customer_history(None)) == 2
        assert len(feature_store.customer_history("anonymous")) == 2


class TestAccountAge:
    def test_profile_age(self, feature_store):
        features = feature_store.extract(make_transaction(customer="established"))
        assert features.user_age_days == pytest.approx(400 / 365)

    def test_age_cached_per_customer(self):
        class CountingProvider(AccountAgeProvider):
            calls = 0

            def account_age_days(self, customer_key):
                CountingProvider.calls += 1
                return 100.0 * CountingProvider.calls

        store = FeatureStore(account_age_provider=CountingProvider())
        first = store.extract(make_transaction(tx_id="tx-1"))
        second = store.extract(make_transaction(tx_id="tx-2"))
        assert first.user_age_days == second.user_age_days
        assert CountingProvider.calls == 1

    def test_hashed_age_is_stable(self):
        provider = HashedAccountAgeProvider()
        age = provider.account_age_days("customer-42")
        assert age == provider.account_age_days("customer-42")
        assert 0 <= age < 365 * 3


class TestDeviceAndPaymentFeatures:
    def test_fixed_device_signals(self, feature_store):
        features = feature_store.extract(make_transaction())
        assert features.device_age_days == pytest.approx(0.5)
        assert features.ip_country_match == 1.0
        assert features.billing_shipping_match == 1.0

    def test_pass_through_device_signals(self):
        store = FeatureStore(device_provider=PassThroughDeviceProvider(), history=HistoryStore())
        device = DeviceSignals(device_age_days=3.65, ip_country_match=False, billing_shipping_match=True)
        features = store.extract(make_transaction(device=device))
        assert features.device_age_days == pytest.approx(0.01)
        assert features.ip_country_match == 0.0
        assert features.billing_shipping_match == 1.0

    def test_pass_through_defaults(self):
        store = FeatureStore(device_provider=PassThroughDeviceProvider())
        features = store.extract(make_transaction())
        assert features.device_age_days == pytest.approx(180 / 365)
        assert features.ip_country_match == 1.0

    def test_crypto(self, feature_store):
        features = feature_store.extract(make_transaction(payment_method="Crypto"))
        assert features.payment_method_risk_score == 0.6
        assert features.is_crypto == 1.0

    def test_card(self, feature_store):
        features = feature_store.extract(make_transaction(payment_method="credit_card"))
        assert features.payment_method_risk_score == 0.3
        assert features.is_crypto == 0.0

    def test_unknown_method(self, feature_store):
        features = feature_store.extract(make_transaction(payment_method="paypal"))
        assert features.payment_method_risk_score == 0.5

    def test_merchant_features(self, feature_store):
        features = feature_store.extract(make_transaction(merchant="Amazon"))
        assert features.merchant_fraud_rate_30d == 0.02
        assert features.merchant_avg_amount == pytest.approx(0.15)

    def test_unknown_merchant(self, feature_store):
        features = feature_store.extract(make_transaction(merchant="Corner Shop"))
        assert features.merchant_fraud_rate_30d == 0.08
        assert features.merchant_avg_amount == pytest.approx(0.1)


class TestFeatureImportance:
    def test_sums_to_one(self, feature_store):
        assert sum(feature_store.feature_importance().values()) == pytest.approx(1.0)

    def test_returns_copy(self, feature_store):
        table = feature_store.feature_importance()
        table["amount_ratio_vs_avg"] = 0.0
        assert FEATURE_IMPORTANCE["amount_ratio_vs_avg"] == 0.15
