"""Risk assessment orchestrator.

Runs one transaction through the pipeline in order:
  1. Validation (rejected before any state is touched)
  2. Feature extraction from the customer's pre-transaction history
  3. Scoring
  4. Explanation
  5. Decision optimization

Then records the transaction in the customer's history and logs the
prediction. Steps 2-5 and the history update run under the customer's lock,
so concurrent assessments for the same customer are serialized while
different customers proceed in parallel.
"""

import logging
import math
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from riskengine.errors import (
    FeatureExtractionError,
    OptimizationError,
    RiskEngineError,
    ScoringError,
    StateInconsistencyError,
    ValidationError,
)
from riskengine.features.store import FeatureStore
from riskengine.models import (
    ABTestResponse,
    AssessmentResponse,
    BatchResponse,
    BatchSummary,
    ModelMetrics,
    ModelPrediction,
    OptimizationResult,
    OutcomeLabel,
    RealTimeStats,
    ScorerConfig,
    ThresholdResult,
    TransactionRequest,
)
from riskengine.scoring.explainer import Explainer
from riskengine.scoring.optimizer import DecisionOptimizer
from riskengine.scoring.scorer import Scorer
from riskengine.storage.memory import PredictionLog

logger = logging.getLogger(__name__)

# Failures a stage can hit on malformed data; anything else propagates as-is
STAGE_FAILURES = (ArithmeticError, LookupError, TypeError, ValueError)

AGREEMENT_POINTS = 5


def validate_transaction(transaction: TransactionRequest) -> None:
    """Re-check invariants pydantic enforces, for objects built without validation."""
    if not transaction.transaction_id:
        raise ValidationError("transaction_id is required")
    if not isinstance(transaction.amount, (int, float)) or not math.isfinite(transaction.amount):
        raise ValidationError(f"amount must be a finite number: {transaction.amount!r}")
    if transaction.amount <= 0:
        raise ValidationError(f"amount must be positive: {transaction.amount}")
    if not transaction.currency:
        raise ValidationError("currency is required")
    if transaction.timestamp is None:
        raise ValidationError("timestamp is required")


class PipelineCoordinator:
    """Orchestrates feature extraction, scoring, explanation and optimization."""

    def __init__(
        self,
        feature_store: FeatureStore,
        scorer: Scorer,
        explainer: Explainer,
        optimizer: DecisionOptimizer,
        prediction_log: Optional[PredictionLog] = None,
        model_variants: Optional[Dict[str, ScorerConfig]] = None,
        max_workers: int = 4,
    ) -> None:
        self.feature_store = feature_store
        self.scorer = scorer
        self.explainer = explainer
        self.optimizer = optimizer
        self.prediction_log = prediction_log or PredictionLog()
        self.max_workers = max_workers
        self._variant_configs: Dict[str, ScorerConfig] = dict(model_variants or {})
        self._variants: Dict[str, Scorer] = {}
        self._variants_lock = threading.Lock()

    def assess_risk(self, transaction: TransactionRequest) -> AssessmentResponse:
        """Assess a single transaction and record it in the customer's history."""
        try:
            validate_transaction(transaction)
        except ValidationError:
            logger.warning("Rejected transaction %s", transaction.transaction_id)
            raise

        tx_id = transaction.transaction_id
        key = transaction.customer_key

        with self.feature_store.history.lock_for(key):
            try:
                features = self.feature_store.extract(transaction)
            except RiskEngineError:
                raise
            except STAGE_FAILURES as exc:
                logger.exception("Feature extraction failed for %s", tx_id)
                raise FeatureExtractionError(tx_id, str(exc)) from exc

            try:
                prediction = self.scorer.predict_features(tx_id, features)
                explanation = self.explainer.explain(features, prediction.fraud_probability)
                prediction = prediction.model_copy(update={"explanation": explanation})
            except ValidationError as exc:
                # Out-of-range features mean a collaborator misbehaved, not a bad request
                logger.error("Invalid features for %s: %s", tx_id, exc)
                raise ScoringError(tx_id, str(exc)) from exc
            except RiskEngineError:
                raise
            except STAGE_FAILURES as exc:
                logger.exception("Scoring failed for %s", tx_id)
                raise ScoringError(tx_id, str(exc)) from exc

            try:
                optimization = self.optimizer.optimize(transaction, prediction)
            except RiskEngineError:
                raise
            except STAGE_FAILURES as exc:
                logger.exception("Optimization failed for %s", tx_id)
                raise OptimizationError(tx_id, str(exc)) from exc

            # Only a fully assessed transaction becomes part of the history
            self.feature_store.record(transaction)
            self.prediction_log.append(prediction)

        logger.info(
            "Assessed %s: decision=%s optimized=%s risk_score=%d",
            tx_id, prediction.decision, optimization.optimized_decision, prediction.risk_score,
        )
        return AssessmentResponse(prediction=prediction, optimization=optimization)

    def batch_assess_risk(self, transactions: List[TransactionRequest]) -> BatchResponse:
        """Assess many transactions; output order matches input order.

        Transactions for the same customer run sequentially in timestamp
        order; different customers run concurrently.
        """
        seen = set()
        for tx in transactions:
            validate_transaction(tx)
            key = (tx.customer_key, tx.transaction_id)
            if key in seen:
                raise ValidationError(
                    f"Duplicate transaction {tx.transaction_id} in batch for customer '{key[0]}'"
                )
            seen.add(key)
            if self.feature_store.history.contains(*key):
                raise StateInconsistencyError(
                    f"Transaction {tx.transaction_id} already recorded for customer '{key[0]}'"
                )

        groups: Dict[str, List[Tuple[int, TransactionRequest]]] = defaultdict(list)
        for idx, tx in enumerate(transactions):
            groups[tx.customer_key].append((idx, tx))

        results: List[Optional[AssessmentResponse]] = [None] * len(transactions)

        def run_group(items: List[Tuple[int, TransactionRequest]]) -> None:
            for idx, tx in sorted(items, key=lambda item: (item[1].timestamp, item[0])):
                results[idx] = self.assess_risk(tx)

        if groups:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                # list() surfaces the first exception raised by any group
                list(pool.map(run_group, groups.values()))

        predictions = [r.prediction for r in results]
        optimizations = [r.optimization for r in results]
        return BatchResponse(
            predictions=predictions,
            optimizations=optimizations,
            summary=self._summarize(optimizations),
        )

    @staticmethod
    def _summarize(optimizations: List[OptimizationResult]) -> BatchSummary:
        decisions = [o.optimized_decision for o in optimizations]
        return BatchSummary(
            total=len(decisions),
            approved=decisions.count("approve"),
            review=decisions.count("review"),
            declined=decisions.count("decline"),
        )

    # ------------------------------------------------------------------
    # Model variants
    # ------------------------------------------------------------------

    def variant(self, name: str) -> Scorer:
        """Scorer for a named variant; unknown names get the default config."""
        if name == self.scorer.name:
            return self.scorer
        with self._variants_lock:
            if name not in self._variants:
                config = self._variant_configs.get(name, ScorerConfig())
                self._variants[name] = Scorer(self.feature_store, config, name=name)
            return self._variants[name]

    def replace_scorer(self, config: ScorerConfig) -> Scorer:
        """Swap in a scorer built from `config` (raises ConfigurationError)."""
        scorer = Scorer(self.feature_store, config, name=self.scorer.name)
        self.scorer = scorer
        logger.info("Scorer '%s' reconfigured: %s", scorer.name, config)
        return scorer

    def ab_test(
        self,
        transaction: TransactionRequest,
        model_a: str,
        model_b: str,
    ) -> ABTestResponse:
        """Score one transaction with two variants without recording it."""
        validate_transaction(transaction)
        with self.feature_store.history.lock_for(transaction.customer_key):
            prediction_a = self.variant(model_a).predict(transaction)
            prediction_b = self.variant(model_b).predict(transaction)

        return ABTestResponse(
            prediction_a=prediction_a,
            prediction_b=prediction_b,
            recommendation=self._compare(prediction_a, prediction_b),
        )

    @staticmethod
    def _compare(a: ModelPrediction, b: ModelPrediction) -> str:
        if abs(a.risk_score - b.risk_score) < AGREEMENT_POINTS:
            return "Models agree (similar scores)"
        if a.confidence > b.confidence:
            return (
                f"Model A more confident ({a.confidence * 100:.1f}% "
                f"vs {b.confidence * 100:.1f}%)"
            )
        return (
            f"Model B more confident ({b.confidence * 100:.1f}% "
            f"vs {a.confidence * 100:.1f}%)"
        )

    # ------------------------------------------------------------------
    # Introspection and feedback
    # ------------------------------------------------------------------

    def get_model_metrics(self) -> ModelMetrics:
        return self.scorer.metrics(self.prediction_log.labelled())

    def get_feature_importance(self) -> Dict[str, float]:
        return dict(self.scorer.feature_importance)

    def prediction_history(self, limit: int = 100) -> List[ModelPrediction]:
        return self.prediction_log.recent(limit)

    def explanation_chart(self, transaction_id: str, limit: int = 10) -> Optional[List[Dict[str, object]]]:
        """Chart rows for a logged prediction; None if it is not in the log."""
        prediction = self.prediction_log.find(transaction_id)
        if prediction is None or prediction.explanation is None:
            return None
        return self.explainer.chart_data(prediction.explanation.shap_values, limit)

    def get_real_time_stats(self) -> RealTimeStats:
        predictions = self.prediction_log.recent()
        total = len(predictions)
        if total == 0:
            return RealTimeStats(
                total_predictions=0,
                approval_rate=0.0,
                avg_risk_score=0.0,
                false_decline_rate=0.0,
            )

        approved = sum(1 for p in predictions if p.decision == "approve")
        return RealTimeStats(
            total_predictions=total,
            approval_rate=approved / total * 100,
            avg_risk_score=sum(p.risk_score for p in predictions) / total,
            false_decline_rate=sum(p.false_decline_risk for p in predictions) / total * 100,
        )

    def record_outcome(self, label: OutcomeLabel) -> bool:
        """Attach ground truth to a logged prediction; False if unknown."""
        return self.prediction_log.add_label(label)

    def optimize_thresholds(self) -> ThresholdResult:
        """Search decision thresholds over the labelled prediction log."""
        labelled = self.prediction_log.labelled()
        return self.optimizer.optimize_thresholds(
            [prediction for prediction, _ in labelled],
            [label.is_fraud for _, label in labelled],
            default_approve=self.scorer.config.approve_threshold,
            default_decline=self.scorer.config.decline_threshold,
        )
