"""Additive feature attribution for fraud predictions.

Each feature's contribution is

    importance(feature) * (value - normal(feature)) * (p - BASE_VALUE)

This is a Shapley-style, order-independent approximation, not an exact
Shapley computation: contributions are deterministic for a given
(features, probability) pair, but their sum only loosely tracks
p - BASE_VALUE. Positive contributions increase risk, negative ones
decrease it.
"""

from typing import Dict, List, Optional, Tuple

from riskengine.models import FeatureContribution, FeatureVector, RiskExplanation

BASE_VALUE = 0.15
TOP_FEATURES_COUNT = 5
DEFAULT_IMPORTANCE = 0.01
DEFAULT_NORMAL_VALUE = 0.5

# Typical ("normal") value of each feature; deviations from it drive attribution
NORMAL_VALUES: Dict[str, float] = {
    "amount_log": 0.4,
    "user_age_days": 0.3,
    "user_txn_count_24h": 0.1,
    "user_txn_count_7d": 0.2,
    "amount_ratio_vs_avg": 0.5,
    "time_since_last_txn_minutes": 0.3,
    "merchant_fraud_rate_30d": 0.03,
    "payment_method_risk_score": 0.3,
    "device_age_days": 0.4,
    "ip_country_match": 1.0,
    "billing_shipping_match": 1.0,
}

# feature -> (risk wording, protective wording)
FACTOR_TEXT: Dict[str, Tuple[str, str]] = {
    "amount_log": (
        "High transaction amount (${amount:,.0f})",
        "Normal transaction amount for user",
    ),
    "amount_ratio_vs_avg": (
        "Transaction amount significantly above user average",
        "Transaction amount consistent with history",
    ),
    "user_age_days": (
        "New user account (higher risk)",
        "Established user account (lower risk)",
    ),
    "user_txn_count_24h": (
        "Multiple transactions in short time (velocity)",
        "Normal transaction frequency",
    ),
    "user_txn_count_7d": (
        "High transaction volume this week",
        "Low transaction volume (controlled spending)",
    ),
    "time_since_last_txn_minutes": (
        "Very quick successive transactions",
        "Reasonable time between transactions",
    ),
    "merchant_fraud_rate_30d": (
        "Merchant with elevated fraud rate",
        "Trusted merchant with low fraud rate",
    ),
    "payment_method_risk_score": (
        "High-risk payment method selected",
        "Low-risk payment method",
    ),
    "is_crypto": (
        "Cryptocurrency payment (irreversible)",
        "Traditional reversible payment method",
    ),
    "device_age_days": (
        "New or unrecognized device",
        "Known and trusted device",
    ),
    "ip_country_match": (
        "IP location mismatch with billing country",
        "IP location matches billing address",
    ),
    "billing_shipping_match": (
        "Billing and shipping addresses do not match",
        "Billing and shipping addresses match",
    ),
    "is_first_transaction": (
        "First transaction for this user",
        "Returning customer with history",
    ),
    "hour_of_day": (
        "Transaction at unusual hour (late night)",
        "Transaction during normal business hours",
    ),
    "is_weekend": (
        "Weekend transaction pattern",
        "Weekday transaction (normal pattern)",
    ),
}

DISPLAY_NAMES: Dict[str, str] = {
    "amount": "Raw Amount",
    "amount_log": "Transaction Amount",
    "amount_ratio_vs_avg": "Amount vs Average",
    "user_age_days": "Account Age",
    "user_txn_count_24h": "24h Transaction Count",
    "user_txn_count_7d": "7d Transaction Count",
    "user_avg_amount_30d": "30d Average Amount",
    "user_txn_frequency": "Transaction Frequency",
    "time_since_last_txn_minutes": "Time Since Last Txn",
    "device_age_days": "Device Age",
    "ip_country_match": "IP-Country Match",
    "billing_shipping_match": "Address Match",
    "merchant_fraud_rate_30d": "Merchant Fraud Rate",
    "merchant_avg_amount": "Merchant Avg Amount",
    "payment_method_risk_score": "Payment Method Risk",
    "is_crypto": "Crypto Payment",
    "is_first_transaction": "First Transaction",
    "hour_of_day": "Transaction Hour",
    "day_of_week": "Day of Week",
    "is_weekend": "Weekend Transaction",
}


def display_name(feature: str) -> str:
    return DISPLAY_NAMES.get(feature, feature)


class Explainer:
    """Turns a prediction into ranked contributions and readable factors."""

    def __init__(
        self,
        feature_importance: Dict[str, float],
        base_value: float = BASE_VALUE,
        top_k: int = TOP_FEATURES_COUNT,
    ) -> None:
        self.feature_importance = dict(feature_importance)
        self.base_value = base_value
        self.top_k = top_k

    def explain(self, features: FeatureVector, fraud_probability: float) -> RiskExplanation:
        shap_values = self.contributions(features, fraud_probability)
        top_features = self._top_features(features, shap_values)

        risk_factors: List[str] = []
        protective_factors: List[str] = []
        for item in top_features:
            text = self._factor_text(item.feature, features, item.impact)
            if text is None:
                continue
            if item.impact == "increase":
                risk_factors.append(text)
            else:
                protective_factors.append(text)

        return RiskExplanation(
            top_features=top_features,
            risk_factors=risk_factors,
            protective_factors=protective_factors,
            shap_values=shap_values,
            decision_path=self.decision_path(features, fraud_probability),
        )

    def contributions(self, features: FeatureVector, fraud_probability: float) -> Dict[str, float]:
        """Per-feature contribution for every field of the vector."""
        strength = fraud_probability - self.base_value
        values: Dict[str, float] = {}
        for name, value in features.model_dump().items():
            importance = self.feature_importance.get(name, DEFAULT_IMPORTANCE)
            deviation = value - NORMAL_VALUES.get(name, DEFAULT_NORMAL_VALUE)
            values[name] = importance * deviation * strength
        return values

    def _top_features(
        self,
        features: FeatureVector,
        shap_values: Dict[str, float],
    ) -> List[FeatureContribution]:
        ranked = sorted(shap_values.items(), key=lambda item: abs(item[1]), reverse=True)
        return [
            FeatureContribution(
                feature=name,
                value=getattr(features, name),
                contribution=contribution,
                impact="increase" if contribution > 0 else "decrease",
                importance=abs(contribution),
            )
            for name, contribution in ranked[: self.top_k]
        ]

    @staticmethod
    def _factor_text(feature: str, features: FeatureVector, impact: str) -> Optional[str]:
        wording = FACTOR_TEXT.get(feature)
        if wording is None:
            return None
        risk_text, protective_text = wording
        if impact == "increase":
            return risk_text.format(amount=features.amount)
        return protective_text

    def decision_path(self, features: FeatureVector, prediction: float) -> List[str]:
        """Descriptive rule-ordered narrative; not used for decisioning."""
        path: List[str] = []

        if features.merchant_fraud_rate_30d > 0.1:
            path.append("High-risk merchant detected")

        if features.amount_ratio_vs_avg > 0.7:
            path.append("Amount significantly above average")

        if features.user_age_days < 0.1:
            path.append("New user account")
        else:
            path.append("Established user")

        if features.ip_country_match == 0:
            path.append("Location mismatch detected")

        if features.device_age_days < 0.05:
            path.append("New device fingerprint")

        if prediction > 0.7:
            path.append("HIGH RISK: Recommend decline")
        elif prediction > 0.4:
            path.append("MEDIUM RISK: Recommend manual review")
        else:
            path.append("LOW RISK: Approve transaction")

        return path

    @staticmethod
    def chart_data(shap_values: Dict[str, float], limit: int = 10) -> List[Dict[str, object]]:
        """Largest contributions with display names, for dashboards."""
        ranked = sorted(shap_values.items(), key=lambda item: abs(item[1]), reverse=True)
        return [
            {
                "feature": display_name(name),
                "value": value,
                "direction": "risk" if value > 0 else "protective",
            }
            for name, value in ranked[:limit]
        ]
