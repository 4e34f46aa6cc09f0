"""Ensemble fraud scorer.

Scoring chain for one feature vector:
  1. fraud probability = sigmoid(sum(learning_rate * tree(features)))
     followed by rule-based adjustments, applied in order:
       - crypto payment with amount ratio > 0.8        x1.3 (capped at 1)
       - first transaction with log-amount > 0.7       x1.2 (capped at 1)
       - account age > 0.5 with 7d count > 0.3         x0.8
  2. false-decline risk from additive rules (capped at 1)
  3. adjusted score = p * (1 - weight * false_decline_risk)
  4. decision from the configured approve/decline thresholds
  5. confidence from history depth, score clarity, and location checks

The score is deterministic: same features -> same prediction.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from riskengine.errors import ConfigurationError, ValidationError
from riskengine.features.store import FeatureStore
from riskengine.models import (
    Decision,
    FeatureVector,
    ModelMetrics,
    ModelPrediction,
    OutcomeLabel,
    ScorerConfig,
    TransactionRequest,
)
from riskengine.scoring.metrics import compute_model_metrics
from riskengine.scoring.trees import TreeNode, build_ensemble

# Fields that are not normalized to [0, 1]; they only need to be finite and >= 0
UNBOUNDED_FEATURES = {
    "amount",
    "amount_log",
    "user_age_days",
    "user_avg_amount_30d",
    "merchant_avg_amount",
    "device_age_days",
}


def validate_features(features: FeatureVector) -> None:
    """Reject non-finite or out-of-range feature values."""
    for name, value in features.model_dump().items():
        if not math.isfinite(value):
            raise ValidationError(f"Feature '{name}' is not finite: {value}")
        if name in UNBOUNDED_FEATURES:
            if value < 0:
                raise ValidationError(f"Feature '{name}' is negative: {value}")
        elif not 0.0 <= value <= 1.0:
            raise ValidationError(f"Feature '{name}' outside [0, 1]: {value}")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scorer:
    """Fixed-structure ensemble scorer behind a stable predict() contract."""

    def __init__(
        self,
        feature_store: FeatureStore,
        config: Optional[ScorerConfig] = None,
        name: str = "v1",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or ScorerConfig()
        self.feature_store = feature_store
        self.name = name
        self.clock = clock

        if self.config.approve_threshold >= self.config.decline_threshold:
            raise ConfigurationError(
                f"approve_threshold ({self.config.approve_threshold}) must be "
                f"below decline_threshold ({self.config.decline_threshold})"
            )

        self.feature_importance: Dict[str, float] = feature_store.feature_importance()
        if not self.feature_importance:
            raise ConfigurationError("Feature importance table is empty")
        self.trees: List[TreeNode] = build_ensemble(
            self.config.num_trees, list(self.feature_importance.keys())
        )
        self._check_tree_features()

    def _check_tree_features(self) -> None:
        known_fields = set(FeatureVector.model_fields)
        referenced = set()
        for tree in self.trees:
            referenced |= tree.referenced_features()

        unknown = referenced - known_fields
        if unknown:
            raise ConfigurationError(f"Trees split on unknown features: {sorted(unknown)}")

        missing = referenced - set(self.feature_importance)
        if missing:
            raise ConfigurationError(
                f"Feature importance table is missing tree features: {sorted(missing)}"
            )

    # ------------------------------------------------------------------
    # Scoring chain
    # ------------------------------------------------------------------

    def predict_probability(self, features: FeatureVector) -> float:
        validate_features(features)
        total = sum(self.config.learning_rate * tree.predict(features) for tree in self.trees)
        probability = 1 / (1 + math.exp(-total))
        return self.apply_rules(probability, features)

    @staticmethod
    def apply_rules(probability: float, features: FeatureVector) -> float:
        adjusted = probability

        # High-risk combination: irreversible payment well above the usual amount
        if features.is_crypto == 1 and features.amount_ratio_vs_avg > 0.8:
            adjusted = min(adjusted * 1.3, 1.0)

        # First transaction with a large amount
        if features.is_first_transaction == 1 and features.amount_log > 0.7:
            adjusted = min(adjusted * 1.2, 1.0)

        # Protective: established and active customer
        if features.user_age_days > 0.5 and features.user_txn_count_7d > 0.3:
            adjusted = adjusted * 0.8

        return _clamp(adjusted)

    @staticmethod
    def predict_false_decline_risk(features: FeatureVector, fraud_probability: float) -> float:
        risk = 0.0

        # Established customer making a large purchase
        if features.user_age_days > 0.4 and features.amount_log > 0.6:
            risk += 0.3

        # Moderate increase over the customer's average
        if 0.5 < features.amount_ratio_vs_avg < 0.9:
            risk += 0.2

        if features.ip_country_match == 1 and features.billing_shipping_match == 1:
            risk += 0.3

        # Active customer
        if features.user_txn_frequency > 0.4:
            risk += 0.2

        # Borderline fraud probability
        if 0.3 < fraud_probability < 0.6:
            risk += 0.3

        return min(risk, 1.0)

    def adjust_for_false_decline(
        self,
        fraud_probability: float,
        false_decline_risk: float,
        weight: Optional[float] = None,
    ) -> float:
        if weight is None:
            weight = self.config.false_decline_weight
        return _clamp(fraud_probability * (1 - weight * false_decline_risk))

    def decide(self, adjusted_score: float) -> Decision:
        if adjusted_score < self.config.approve_threshold:
            return "approve"
        if adjusted_score < self.config.decline_threshold:
            return "review"
        return "decline"

    @staticmethod
    def confidence(features: FeatureVector, score: float) -> float:
        confidence = 0.7

        # Enough history to judge
        if features.user_age_days > 0.3 and features.user_txn_count_7d > 0.2:
            confidence += 0.15

        # Score far from the decision band
        if score < 0.2 or score > 0.7:
            confidence += 0.1

        if features.ip_country_match == 1 and features.billing_shipping_match == 1:
            confidence += 0.05

        return min(confidence, 1.0)

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict_features(self, transaction_id: str, features: FeatureVector) -> ModelPrediction:
        """Run the scoring chain on an already extracted feature vector."""
        fraud_probability = self.predict_probability(features)
        false_decline_risk = self.predict_false_decline_risk(features, fraud_probability)
        adjusted_score = self.adjust_for_false_decline(fraud_probability, false_decline_risk)

        return ModelPrediction(
            transaction_id=transaction_id,
            risk_score=math.floor(adjusted_score * 100 + 0.5),
            fraud_probability=fraud_probability,
            false_decline_risk=false_decline_risk,
            adjusted_score=adjusted_score,
            decision=self.decide(adjusted_score),
            confidence=self.confidence(features, adjusted_score),
            features=features,
            timestamp=self.clock(),
        )

    def predict(self, transaction: TransactionRequest) -> ModelPrediction:
        """Extract features from current history and score the transaction.

        The explanation is left empty; the pipeline coordinator fills it in.
        """
        features = self.feature_store.extract(transaction)
        return self.predict_features(transaction.transaction_id, features)

    def batch_predict(self, transactions: List[TransactionRequest]) -> List[ModelPrediction]:
        return [self.predict(tx) for tx in transactions]

    def metrics(
        self,
        labelled: Optional[List[Tuple[ModelPrediction, OutcomeLabel]]] = None,
    ) -> ModelMetrics:
        return compute_model_metrics(labelled or [])
