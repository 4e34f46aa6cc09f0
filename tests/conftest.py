"""Shared fixtures for the test suite."""

import math
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from riskengine.features.merchants import MerchantDirectory
from riskengine.features.providers import FixedDeviceProvider, ProfileAccountAgeProvider
from riskengine.features.store import FeatureStore
from riskengine.main import app
from riskengine.models import (
    DeviceSignals,
    FeatureVector,
    ModelPrediction,
    ScorerConfig,
    TransactionRequest,
)
from riskengine.scoring.coordinator import PipelineCoordinator
from riskengine.scoring.explainer import Explainer
from riskengine.scoring.optimizer import DecisionOptimizer
from riskengine.scoring.scorer import Scorer
from riskengine.storage.memory import HistoryStore, PredictionLog

# A Wednesday, noon UTC
BASE_TS = datetime(2026, 2, 18, 12, 0, tzinfo=timezone.utc)

ACCOUNT_AGES = {
    "established": 400.0,
    "newbie": 10.0,
}


@pytest.fixture
def device_signals():
    return DeviceSignals(
        device_age_days=182.5,
        ip_country_match=True,
        billing_shipping_match=True,
    )


@pytest.fixture
def history():
    return HistoryStore()


@pytest.fixture
def feature_store(device_signals, history):
    return FeatureStore(
        merchants=MerchantDirectory(),
        device_provider=FixedDeviceProvider(device_signals),
        account_age_provider=ProfileAccountAgeProvider(ACCOUNT_AGES, default_days=10.0),
        history=history,
    )


@pytest.fixture
def scorer(feature_store):
    return Scorer(feature_store, ScorerConfig())


@pytest.fixture
def explainer(scorer):
    return Explainer(scorer.feature_importance)


@pytest.fixture
def optimizer():
    return DecisionOptimizer()


@pytest.fixture
def coordinator(feature_store, scorer, explainer, optimizer):
    return PipelineCoordinator(
        feature_store=feature_store,
        scorer=scorer,
        explainer=explainer,
        optimizer=optimizer,
        prediction_log=PredictionLog(),
        model_variants={"v2": ScorerConfig(false_decline_weight=1.0)},
    )


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def make_transaction(
    tx_id="tx-1",
    amount=100.0,
    customer="newbie",
    payment_method="credit_card",
    merchant="Amazon",
    timestamp=BASE_TS,
    merchant_id=None,
    device=None,
) -> TransactionRequest:
    return TransactionRequest(
        transaction_id=tx_id,
        amount=amount,
        currency="USD",
        timestamp=timestamp,
        payment_method=payment_method,
        merchant_name=merchant,
        merchant_id=merchant_id,
        customer_id=customer,
        device=device,
    )


def record_history(feature_store, customer, entries):
    """Record (minutes_before_base, amount) pairs, oldest first."""
    ordered = sorted(entries, key=lambda item: -item[0])
    for idx, (minutes_before, amount) in enumerate(ordered):
        feature_store.record(make_transaction(
            tx_id=f"{customer}-hist-{idx}",
            amount=amount,
            customer=customer,
            timestamp=BASE_TS - timedelta(minutes=minutes_before),
        ))


def make_features(**overrides) -> FeatureVector:
    values = {
        "amount": 100.0,
        "amount_log": math.log1p(100.0),
        "hour_of_day": 0.5,
        "day_of_week": 3 / 7,
        "is_weekend": 0.0,
        "user_age_days": 0.2,
        "user_txn_count_24h": 0.0,
        "user_txn_count_7d": 0.0,
        "user_avg_amount_30d": 0.0,
        "user_txn_frequency": 0.0,
        "is_first_transaction": 1.0,
        "amount_ratio_vs_avg": 1.0,
        "time_since_last_txn_minutes": 1.0,
        "device_age_days": 0.5,
        "ip_country_match": 1.0,
        "billing_shipping_match": 1.0,
        "merchant_fraud_rate_30d": 0.02,
        "merchant_avg_amount": 0.15,
        "payment_method_risk_score": 0.3,
        "is_crypto": 0.0,
    }
    values.update(overrides)
    return FeatureVector(**values)


def make_prediction(
    decision="decline",
    fraud_probability=0.5,
    false_decline_risk=0.0,
    confidence=0.7,
    adjusted_score=None,
    tx_id="tx-1",
    features=None,
) -> ModelPrediction:
    if adjusted_score is None:
        adjusted_score = fraud_probability
    return ModelPrediction(
        transaction_id=tx_id,
        risk_score=math.floor(adjusted_score * 100 + 0.5),
        fraud_probability=fraud_probability,
        false_decline_risk=false_decline_risk,
        adjusted_score=adjusted_score,
        decision=decision,
        confidence=confidence,
        features=features or make_features(ip_country_match=0.0),
        timestamp=BASE_TS,
    )
