"""Model quality metrics from labelled prediction history.

A prediction counts as flagged (positive) when the scorer declined it.
Without any labelled predictions the scorer's reference figures are
reported instead, marked by `labelled_predictions == 0`.
"""

from typing import List, Tuple

from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)

from riskengine.models import ModelMetrics, ModelPrediction, OutcomeLabel

REFERENCE_METRICS = ModelMetrics(
    accuracy=0.96,
    precision=0.89,
    recall=0.92,
    f1_score=0.905,
    auc=0.98,
    false_positive_rate=0.04,
    false_negative_rate=0.08,
    false_decline_rate=0.02,
    labelled_predictions=0,
)


def _safe_ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def compute_model_metrics(
    labelled: List[Tuple[ModelPrediction, OutcomeLabel]],
) -> ModelMetrics:
    """Compute classification metrics for predictions with known outcomes."""
    if not labelled:
        return REFERENCE_METRICS

    y_true = [label.is_fraud for _, label in labelled]
    y_pred = [prediction.decision == "decline" for prediction, _ in labelled]
    scores = [prediction.adjusted_score for prediction, _ in labelled]

    tn, fp, fn, tp = (
        int(v) for v in confusion_matrix(y_true, y_pred, labels=[False, True]).ravel()
    )

    # AUC is undefined with a single class; report an uninformative 0.5
    if len(set(y_true)) < 2:
        auc = 0.5
    else:
        auc = float(roc_auc_score(y_true, scores))

    return ModelMetrics(
        accuracy=float(accuracy_score(y_true, y_pred)),
        precision=float(precision_score(y_true, y_pred, zero_division=0)),
        recall=float(recall_score(y_true, y_pred, zero_division=0)),
        f1_score=float(f1_score(y_true, y_pred, zero_division=0)),
        auc=auc,
        false_positive_rate=_safe_ratio(fp, fp + tn),
        false_negative_rate=_safe_ratio(fn, fn + tp),
        # Legitimate transactions that were declined, over all labelled ones
        false_decline_rate=_safe_ratio(fp, len(labelled)),
        labelled_predictions=len(labelled),
    )
