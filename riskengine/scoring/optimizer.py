"""Expected-value decision optimizer.

Overrides the scorer's threshold decision when the economics favour it:

    EV = (1 - p) * amount - p * (amount + chargeback_cost)

  - approve stays approve
  - decline -> review   when false-decline risk > 0.6 and EV > 0
  - decline -> approve  when false-decline risk > 0.8 and p < 0.4
    (checked second, so it wins when both match)
  - review  -> approve  when p < 0.35 and confidence > 0.8
  - review  -> decline  when p > 0.7
"""

import logging
from typing import List, Optional, Sequence

from riskengine.errors import ValidationError
from riskengine.models import (
    Decision,
    ModelPrediction,
    OptimizationMetrics,
    OptimizationResult,
    OptimizerConfig,
    OutcomeLabel,
    ThresholdResult,
    TransactionRequest,
)

logger = logging.getLogger(__name__)

APPROVE_GRID = [0.2, 0.25, 0.3, 0.35, 0.4]
DECLINE_GRID = [0.5, 0.55, 0.6, 0.65, 0.7]

# Heuristic split used when no ground truth is available
ESTIMATED_RECOVERY_SHARE = 0.8
ESTIMATED_FRAUD_SHARE = 0.2
ESTIMATED_FD_RATE_BEFORE = 0.05
ESTIMATED_FD_RATE_AFTER = 0.02
ESTIMATED_FRAUD_RISK_INCREASE = 0.005


class DecisionOptimizer:
    """Revenue-aware override of the scorer's decision."""

    def __init__(self, config: Optional[OptimizerConfig] = None) -> None:
        self.config = config or OptimizerConfig()

    def expected_value(
        self,
        amount: float,
        fraud_probability: float,
        chargeback_cost: Optional[float] = None,
    ) -> float:
        if chargeback_cost is None:
            chargeback_cost = self.config.chargeback_cost
        revenue_if_legit = (1 - fraud_probability) * amount
        loss_if_fraud = fraud_probability * (amount + chargeback_cost)
        return revenue_if_legit - loss_if_fraud

    def optimize(
        self,
        transaction: TransactionRequest,
        prediction: ModelPrediction,
    ) -> OptimizationResult:
        expected_value = self.expected_value(transaction.amount, prediction.fraud_probability)
        optimized = self._optimized_decision(prediction, expected_value)

        if optimized != prediction.decision:
            logger.debug(
                "Override for %s: %s -> %s",
                prediction.transaction_id, prediction.decision, optimized,
            )

        return OptimizationResult(
            original_decision=prediction.decision,
            optimized_decision=optimized,
            confidence=prediction.confidence,
            reasoning=self._reasoning(prediction, expected_value, optimized),
            expected_value=expected_value,
            potential_revenue=transaction.amount if expected_value > 0 else 0.0,
            risk_tolerance=self.config.risk_tolerance,
        )

    def batch_optimize(
        self,
        transactions: Sequence[TransactionRequest],
        predictions: Sequence[ModelPrediction],
    ) -> List[OptimizationResult]:
        if len(transactions) != len(predictions):
            raise ValidationError("transactions and predictions must be aligned")
        return [self.optimize(tx, pred) for tx, pred in zip(transactions, predictions)]

    @staticmethod
    def _optimized_decision(prediction: ModelPrediction, expected_value: float) -> Decision:
        original = prediction.decision
        fd_risk = prediction.false_decline_risk
        p = prediction.fraud_probability
        decision = original

        if original == "decline":
            if fd_risk > 0.6 and expected_value > 0:
                decision = "review"
            if fd_risk > 0.8 and p < 0.4:
                decision = "approve"

        elif original == "review":
            if p < 0.35 and prediction.confidence > 0.8:
                decision = "approve"
            elif p > 0.7:
                decision = "decline"

        return decision

    @staticmethod
    def _reasoning(
        prediction: ModelPrediction,
        expected_value: float,
        optimized: Decision,
    ) -> List[str]:
        original = prediction.decision
        reasoning = [
            f"Original model decision: {original.upper()}",
            f"Fraud probability: {prediction.fraud_probability * 100:.1f}%",
            f"False decline risk: {prediction.false_decline_risk * 100:.1f}%",
        ]

        if expected_value > 0:
            reasoning.append(f"Positive expected value: ${expected_value:.2f}")
        else:
            reasoning.append(f"Negative expected value: ${expected_value:.2f}")

        if optimized == original:
            reasoning.append(f"Decision confirmed: {optimized.upper()}")
        elif original == "decline" and optimized == "approve":
            reasoning.append(
                "Changed to APPROVE: High false decline risk detected, "
                "likely legitimate transaction"
            )
        elif original == "decline" and optimized == "review":
            reasoning.append(
                "Changed to REVIEW: Uncertain, recommend manual verification "
                "to avoid false decline"
            )
        elif original == "review" and optimized == "approve":
            reasoning.append("Changed to APPROVE: Low fraud risk with high confidence")
        elif original == "review" and optimized == "decline":
            reasoning.append("Changed to DECLINE: High fraud probability")

        features = prediction.features
        if features.user_age_days > 0.4:
            reasoning.append("Established user account (trust signal)")
        if features.user_txn_count_7d > 0.3:
            reasoning.append("Active user with transaction history")
        if features.ip_country_match == 1 and features.billing_shipping_match == 1:
            reasoning.append("Location and address verification passed")

        return reasoning

    # ------------------------------------------------------------------
    # Threshold search
    # ------------------------------------------------------------------

    def simulate_net_revenue(
        self,
        predictions: Sequence[ModelPrediction],
        outcomes: Sequence[bool],
        approve_threshold: float,
        decline_threshold: float,
        amounts: Optional[Sequence[float]] = None,
    ) -> float:
        """Net revenue had the given thresholds been applied to past predictions."""
        cost = self.config.chargeback_cost
        review_rate = self.config.review_approval_rate
        net = 0.0

        for idx, prediction in enumerate(predictions):
            is_fraud = outcomes[idx]
            amount = amounts[idx] if amounts is not None else self.config.avg_transaction_value

            if prediction.adjusted_score < approve_threshold:
                net += -(amount + cost) if is_fraud else amount
            elif prediction.adjusted_score < decline_threshold:
                # Reviews are assumed to end in approval review_rate of the time
                if is_fraud:
                    net -= (amount + cost) * (1 - review_rate)
                else:
                    net += amount * review_rate
            # Declined: no revenue, no loss

        return net

    def optimize_thresholds(
        self,
        predictions: Sequence[ModelPrediction],
        outcomes: Sequence[bool],
        amounts: Optional[Sequence[float]] = None,
        default_approve: float = 0.3,
        default_decline: float = 0.6,
    ) -> ThresholdResult:
        """Grid-search the approve/decline thresholds maximizing net revenue."""
        if len(predictions) != len(outcomes):
            raise ValidationError("predictions and outcomes must be aligned")
        if amounts is not None and len(amounts) != len(predictions):
            raise ValidationError("amounts must be aligned with predictions")

        if not predictions:
            return ThresholdResult(
                approve_threshold=default_approve,
                decline_threshold=default_decline,
                net_revenue=0.0,
                samples=0,
            )

        best: Optional[ThresholdResult] = None
        for approve in APPROVE_GRID:
            for decline in DECLINE_GRID:
                net = self.simulate_net_revenue(predictions, outcomes, approve, decline, amounts)
                if best is None or net > best.net_revenue:
                    best = ThresholdResult(
                        approve_threshold=approve,
                        decline_threshold=decline,
                        net_revenue=net,
                        samples=len(predictions),
                    )

        logger.info(
            "Threshold search over %d predictions: approve=%.2f decline=%.2f net=%.2f",
            best.samples, best.approve_threshold, best.decline_threshold, best.net_revenue,
        )
        return best

    # ------------------------------------------------------------------
    # Business metrics
    # ------------------------------------------------------------------

    def calculate_optimization_metrics(
        self,
        results: Sequence[OptimizationResult],
        labels: Optional[Sequence[OutcomeLabel]] = None,
    ) -> OptimizationMetrics:
        """Measure override impact against ground truth, or estimate it."""
        if labels is None:
            return self._estimate_metrics(results)
        if len(labels) != len(results):
            raise ValidationError("labels must be aligned with results")

        fd_before = 0
        fd_after = 0
        recovered = 0.0
        new_losses = 0.0

        for result, label in zip(results, labels):
            if result.original_decision == "decline" and not label.is_fraud:
                fd_before += 1
            if result.optimized_decision == "decline" and not label.is_fraud:
                fd_after += 1

            newly_approved = (
                result.original_decision != "approve"
                and result.optimized_decision == "approve"
            )
            if newly_approved and not label.is_fraud:
                recovered += result.potential_revenue
            if (
                result.original_decision == "decline"
                and result.optimized_decision == "approve"
                and label.is_fraud
            ):
                new_losses += result.potential_revenue + self.config.chargeback_cost

        total = len(results)
        if total == 0:
            return OptimizationMetrics(
                false_decline_rate_before=0.0,
                false_decline_rate_after=0.0,
                false_decline_reduction=0.0,
                revenue_recovered=0.0,
                new_fraud_losses=0.0,
                fraud_risk_increase=0.0,
                net_benefit=0.0,
                estimated=False,
            )

        rate_before = fd_before / total
        rate_after = fd_after / total
        return OptimizationMetrics(
            false_decline_rate_before=rate_before,
            false_decline_rate_after=rate_after,
            false_decline_reduction=rate_before - rate_after,
            revenue_recovered=recovered,
            new_fraud_losses=new_losses,
            fraud_risk_increase=new_losses / (total * self.config.avg_transaction_value),
            net_benefit=recovered - new_losses,
            estimated=False,
        )

    @staticmethod
    def _estimate_metrics(results: Sequence[OptimizationResult]) -> OptimizationMetrics:
        """Heuristic figures: 80% of newly approved revenue assumed recovered."""
        newly_approved_revenue = sum(
            r.potential_revenue
            for r in results
            if r.original_decision != "approve" and r.optimized_decision == "approve"
        )
        recovered = newly_approved_revenue * ESTIMATED_RECOVERY_SHARE
        losses = newly_approved_revenue * ESTIMATED_FRAUD_SHARE

        return OptimizationMetrics(
            false_decline_rate_before=ESTIMATED_FD_RATE_BEFORE,
            false_decline_rate_after=ESTIMATED_FD_RATE_AFTER,
            false_decline_reduction=ESTIMATED_FD_RATE_BEFORE - ESTIMATED_FD_RATE_AFTER,
            revenue_recovered=recovered,
            new_fraud_losses=losses,
            fraud_risk_increase=ESTIMATED_FRAUD_RISK_INCREASE,
            net_benefit=recovered - losses,
            estimated=True,
        )
