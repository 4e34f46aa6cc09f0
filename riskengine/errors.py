"""Error taxonomy for the risk-scoring pipeline.

Validation and configuration problems are raised before any state is
touched. Stage failures carry the name of the stage that failed so the
caller can choose to fail the transaction open or closed; the pipeline
never substitutes a default decision on its own.
"""


class RiskEngineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(RiskEngineError):
    """A transaction or feature vector is malformed."""


class ConfigurationError(RiskEngineError):
    """A component was constructed with an inconsistent configuration."""


class StateInconsistencyError(RiskEngineError):
    """An internal invariant was violated (programming error)."""


class AssessmentError(RiskEngineError):
    """A pipeline stage failed while assessing a transaction."""

    stage = "assessment"

    def __init__(self, transaction_id: str, detail: str) -> None:
        super().__init__(f"{self.stage} failed for {transaction_id}: {detail}")
        self.transaction_id = transaction_id
        self.detail = detail


class FeatureExtractionError(AssessmentError):
    stage = "feature_extraction"


class ScoringError(AssessmentError):
    stage = "scoring"


class OptimizationError(AssessmentError):
    stage = "optimization"
