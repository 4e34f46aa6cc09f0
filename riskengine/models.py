"""Pydantic models for the risk-scoring pipeline and its API."""

import math
from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Decision = Literal["approve", "review", "decline"]


class DeviceSignals(BaseModel):
    """Device fingerprint and geolocation signals supplied by an upstream provider."""
    device_age_days: float = Field(ge=0, allow_inf_nan=False)
    ip_country_match: bool
    billing_shipping_match: bool


class TransactionRequest(BaseModel):
    """Incoming payment transaction to be assessed."""
    transaction_id: str = Field(min_length=1)
    amount: float = Field(gt=0, allow_inf_nan=False)
    currency: str = Field(min_length=1)
    timestamp: datetime
    payment_method: str
    merchant_name: str
    merchant_id: Optional[str] = None
    customer_id: Optional[str] = None
    device: Optional[DeviceSignals] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_epoch_millis(cls, value):
        # Numeric timestamps are epoch milliseconds
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if not math.isfinite(value):
                raise ValueError("timestamp must be finite")
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError("timestamp out of range") from exc
        return value

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("payment_method")
    @classmethod
    def _lower_payment_method(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def customer_key(self) -> str:
        """History bucket for this transaction; missing customers share one."""
        if self.customer_id is None or not self.customer_id.strip():
            return "anonymous"
        return self.customer_id.strip()


class FeatureVector(BaseModel):
    """Fixed-shape feature vector derived for a single transaction."""
    model_config = ConfigDict(frozen=True)

    # Basic transaction features
    amount: float
    amount_log: float
    hour_of_day: float
    day_of_week: float
    is_weekend: float

    # User behaviour
    user_age_days: float
    user_txn_count_24h: float
    user_txn_count_7d: float
    user_avg_amount_30d: float
    user_txn_frequency: float
    is_first_transaction: float

    # Velocity
    amount_ratio_vs_avg: float
    time_since_last_txn_minutes: float

    # Device / location
    device_age_days: float
    ip_country_match: float
    billing_shipping_match: float

    # Merchant
    merchant_fraud_rate_30d: float
    merchant_avg_amount: float

    # Payment method
    payment_method_risk_score: float
    is_crypto: float


class FeatureContribution(BaseModel):
    """Attribution of part of a prediction to one feature."""
    feature: str
    value: float  # feature value the contribution was computed from
    contribution: float
    impact: Literal["increase", "decrease"]
    importance: float  # |contribution|


class RiskExplanation(BaseModel):
    """Ranked per-feature attributions plus human-readable factors."""
    top_features: list[FeatureContribution]
    risk_factors: list[str]
    protective_factors: list[str]
    shap_values: Dict[str, float]
    decision_path: list[str] = []


class ModelPrediction(BaseModel):
    """Full scoring record for one transaction."""
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    risk_score: int  # 0-100, adjusted_score * 100 rounded
    fraud_probability: float
    false_decline_risk: float
    adjusted_score: float
    decision: Decision
    confidence: float
    features: FeatureVector
    explanation: Optional[RiskExplanation] = None
    timestamp: datetime


class OptimizationResult(BaseModel):
    """Outcome of the expected-value decision optimizer."""
    original_decision: Decision
    optimized_decision: Decision
    confidence: float
    reasoning: list[str]
    expected_value: float
    potential_revenue: float
    risk_tolerance: float


class AssessmentResponse(BaseModel):
    """Result of assessing a single transaction."""
    prediction: ModelPrediction
    optimization: OptimizationResult


class BatchRequest(BaseModel):
    """A batch of transactions to assess."""
    transactions: list[TransactionRequest]


class BatchSummary(BaseModel):
    """Decision counts for a batch run (after optimization)."""
    total: int
    approved: int
    review: int
    declined: int


class BatchResponse(BaseModel):
    """Predictions and optimizations aligned with the request order."""
    predictions: list[ModelPrediction]
    optimizations: list[OptimizationResult]
    summary: BatchSummary


class ABTestRequest(BaseModel):
    """Score one transaction with two named model variants."""
    model_config = ConfigDict(protected_namespaces=())

    transaction: TransactionRequest
    model_a: str = "v1"
    model_b: str = "v2"


class ABTestResponse(BaseModel):
    """Predictions from two model variants and which one to prefer."""
    prediction_a: ModelPrediction
    prediction_b: ModelPrediction
    recommendation: str


class ModelMetrics(BaseModel):
    """Classification quality of the scorer."""
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    auc: float
    false_positive_rate: float
    false_negative_rate: float
    false_decline_rate: float
    labelled_predictions: int = 0  # 0 means the static reference figures are reported


class RealTimeStats(BaseModel):
    """Aggregates over the rolling prediction log."""
    total_predictions: int
    approval_rate: float  # percent
    avg_risk_score: float
    false_decline_rate: float  # percent, mean false-decline risk


class OutcomeLabel(BaseModel):
    """Ground truth for a previously assessed transaction."""
    transaction_id: str
    is_fraud: bool
    is_false_decline: bool = False


class ThresholdResult(BaseModel):
    """Best approve/decline thresholds found by the grid search."""
    approve_threshold: float
    decline_threshold: float
    net_revenue: float
    samples: int


class OptimizationMetricsRequest(BaseModel):
    """Optimization results with optional aligned ground truth."""
    results: list[OptimizationResult]
    labels: Optional[list[OutcomeLabel]] = None


class OptimizationMetrics(BaseModel):
    """Business impact of decision overrides."""
    false_decline_rate_before: float
    false_decline_rate_after: float
    false_decline_reduction: float
    revenue_recovered: float
    new_fraud_losses: float
    fraud_risk_increase: float
    net_benefit: float
    estimated: bool  # True when no ground truth was supplied


class HistoryEntry(BaseModel):
    """A transaction retained in a customer's rolling history."""
    transaction_id: str
    amount: float
    currency: str
    timestamp: datetime
    payment_method: str
    merchant_name: str


class MerchantProfile(BaseModel):
    """Risk reference data for one merchant."""
    merchant_id: str
    name: str
    fraud_rate_30d: float = Field(ge=0, le=1)
    avg_amount: float = Field(ge=0)


class ScorerConfig(BaseModel):
    """Ensemble shape and decision thresholds for a scorer instance."""
    num_trees: int = Field(default=100, ge=1)
    learning_rate: float = Field(default=0.1, gt=0)
    # Training hyperparameters of the reference model; the fixed ensemble ignores them
    max_depth: int = 6
    min_samples_leaf: int = 10
    false_decline_weight: float = Field(default=0.3, ge=0, le=1)
    approve_threshold: float = Field(default=0.3, ge=0, le=1)
    decline_threshold: float = Field(default=0.6, ge=0, le=1)


class OptimizerConfig(BaseModel):
    """Economics used by the decision optimizer."""
    risk_tolerance: float = 0.5
    avg_transaction_value: float = Field(default=150, gt=0)
    chargeback_cost: float = Field(default=25, ge=0)
    review_approval_rate: float = Field(default=0.7, ge=0, le=1)


class StoreConfig(BaseModel):
    """Bounds for in-memory state and neutral collaborator defaults."""
    history_limit: int = Field(default=1000, ge=1)
    prediction_log_limit: int = Field(default=1000, ge=1)
    default_device_age_days: float = Field(default=180, ge=0)


class PipelineConfig(BaseModel):
    """Top-level service configuration, loaded from data/pipeline_config.json."""
    model_config = ConfigDict(protected_namespaces=())

    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    model_variants: Dict[str, ScorerConfig] = Field(
        default_factory=lambda: {"v1": ScorerConfig()}
    )
    log_level: str = "INFO"
