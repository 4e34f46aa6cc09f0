"""Tests for feature attribution and explanations."""

import pytest

from riskengine.features.store import FEATURE_IMPORTANCE
from riskengine.scoring.explainer import BASE_VALUE, Explainer, display_name
from tests.conftest import make_features


@pytest.fixture
def explainer():
    return Explainer(FEATURE_IMPORTANCE)


class TestContributions:
    def test_formula(self, explainer):
        shap = explainer.contributions(make_features(), 0.65)
        # 0.15 * (1.0 - 0.5) * (0.65 - 0.15)
        assert shap["amount_ratio_vs_avg"] == pytest.approx(0.0375)

    def test_default_importance_and_normal(self, explainer):
        shap = explainer.contributions(make_features(), 0.65)
        assert shap["day_of_week"] == pytest.approx(0.01 * (3 / 7 - 0.5) * 0.5)

    def test_covers_every_field(self, explainer):
        features = make_features()
        shap = explainer.contributions(features, 0.65)
        assert set(shap) == set(features.model_dump())

    def test_zero_at_base_value(self, explainer):
        shap = explainer.contributions(make_features(), BASE_VALUE)
        assert all(value == 0 for value in shap.values())

    def test_sign_flips_below_base_value(self, explainer):
        above = explainer.contributions(make_features(), 0.65)
        below = explainer.contributions(make_features(), 0.05)
        assert above["amount_ratio_vs_avg"] > 0
        assert below["amount_ratio_vs_avg"] < 0

    def test_deterministic(self, explainer):
        features = make_features()
        assert explainer.explain(features, 0.65) == explainer.explain(features, 0.65)


class TestExplain:
    def test_top_features_ranked(self, explainer):
        explanation = explainer.explain(make_features(), 0.65)
        top = explanation.top_features
        assert [item.feature for item in top] == [
            "amount",
            "amount_log",
            "amount_ratio_vs_avg",
            "time_since_last_txn_minutes",
            "is_crypto",
        ]
        importances = [item.importance for item in top]
        assert importances == sorted(importances, reverse=True)

    def test_top_features_consistent_with_shap_values(self, explainer):
        explanation = explainer.explain(make_features(), 0.65)
        for item in explanation.top_features:
            assert item.contribution == explanation.shap_values[item.feature]
            assert item.importance == abs(item.contribution)
            assert item.impact == ("increase" if item.contribution > 0 else "decrease")

    def test_factor_texts(self, explainer):
        explanation = explainer.explain(make_features(), 0.65)
        assert explanation.risk_factors == [
            "High transaction amount ($100)",
            "Transaction amount significantly above user average",
            "Very quick successive transactions",
        ]
        assert explanation.protective_factors == ["Traditional reversible payment method"]

    def test_features_without_text_skipped(self, explainer):
        explanation = explainer.explain(make_features(), 0.65)
        texts = len(explanation.risk_factors) + len(explanation.protective_factors)
        assert texts == len(explanation.top_features) - 1

    def test_amount_formatting(self, explainer):
        explanation = explainer.explain(make_features(amount=5000.0), 0.65)
        assert "High transaction amount ($5,000)" in explanation.risk_factors

    def test_top_k(self):
        explanation = Explainer(FEATURE_IMPORTANCE, top_k=3).explain(make_features(), 0.65)
        assert len(explanation.top_features) == 3


class TestDecisionPath:
    def test_high_risk(self, explainer):
        features = make_features(
            merchant_fraud_rate_30d=0.15,
            amount_ratio_vs_avg=0.8,
            user_age_days=0.05,
            ip_country_match=0.0,
            device_age_days=0.01,
        )
        assert explainer.decision_path(features, 0.75) == [
            "High-risk merchant detected",
            "Amount significantly above average",
            "New user account",
            "Location mismatch detected",
            "New device fingerprint",
            "HIGH RISK: Recommend decline",
        ]

    def test_medium_risk(self, explainer):
        path = explainer.decision_path(make_features(amount_ratio_vs_avg=0.2), 0.5)
        assert path == ["Established user", "MEDIUM RISK: Recommend manual review"]

    def test_low_risk_boundary(self, explainer):
        path = explainer.decision_path(make_features(), 0.4)
        assert path[-1] == "LOW RISK: Approve transaction"

    def test_attached_to_explanation(self, explainer):
        features = make_features(amount_ratio_vs_avg=0.2)
        explanation = explainer.explain(features, 0.5)
        assert explanation.decision_path == explainer.decision_path(features, 0.5)


class TestChartData:
    def test_display_names_and_limit(self, explainer):
        shap = explainer.contributions(make_features(), 0.65)
        chart = Explainer.chart_data(shap, limit=3)
        assert [row["feature"] for row in chart] == [
            "Raw Amount",
            "Transaction Amount",
            "Amount vs Average",
        ]
        assert all(row["direction"] == "risk" for row in chart)

    def test_unknown_feature_name_passthrough(self):
        assert display_name("something_else") == "something_else"
        assert display_name("is_crypto") == "Crypto Payment"
