"""Payment Risk Scoring API.

Real-time fraud risk assessment for payment transactions. Derives
features from each customer's rolling history, scores them with a fixed
tree ensemble, explains the score per feature, and applies a
revenue-aware override to reduce false declines.

Run with:
    python3 -m uvicorn riskengine.main:app --host 0.0.0.0 --port 8000
"""

import json
import logging
from pathlib import Path
from typing import Dict, List

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from riskengine.errors import (
    AssessmentError,
    ConfigurationError,
    StateInconsistencyError,
    ValidationError,
)
from riskengine.features.merchants import MerchantDirectory
from riskengine.features.providers import PassThroughDeviceProvider
from riskengine.features.store import FeatureStore
from riskengine.models import DeviceSignals, MerchantProfile, PipelineConfig
from riskengine.routes import assessment, customers, model, optimizer, stats
from riskengine.scoring.coordinator import PipelineCoordinator
from riskengine.scoring.explainer import Explainer
from riskengine.scoring.optimizer import DecisionOptimizer
from riskengine.scoring.scorer import Scorer
from riskengine.storage.memory import HistoryStore, PredictionLog

# Reference data lives next to the package, independent of the working directory
DATA_DIR = Path(__file__).parent.parent / "data"

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Payment Risk Scoring API",
    description=(
        "Real-time fraud risk assessment with per-feature explanations "
        "and expected-value decision optimization."
    ),
    version="1.0.0",
)


def load_config() -> PipelineConfig:
    """Load pipeline configuration (or use defaults)."""
    config_path = DATA_DIR / "pipeline_config.json"
    if config_path.exists():
        with open(config_path, "r") as f:
            return PipelineConfig(**json.load(f))
    return PipelineConfig()


def load_merchants() -> MerchantDirectory:
    """Load the merchant risk table (or use the built-in one)."""
    merchants_path = DATA_DIR / "merchant_risk.json"
    if merchants_path.exists():
        with open(merchants_path, "r") as f:
            merchants: List[MerchantProfile] = [
                MerchantProfile(**entry) for entry in json.load(f)
            ]
        return MerchantDirectory(merchants)
    return MerchantDirectory()


def build_coordinator(config: PipelineConfig, merchants: MerchantDirectory) -> PipelineCoordinator:
    """Wire the pipeline components from configuration."""
    device_provider = PassThroughDeviceProvider(
        DeviceSignals(
            device_age_days=config.store.default_device_age_days,
            ip_country_match=True,
            billing_shipping_match=True,
        )
    )
    feature_store = FeatureStore(
        merchants=merchants,
        device_provider=device_provider,
        history=HistoryStore(config.store.history_limit),
    )
    scorer = Scorer(feature_store, config.scorer, name="v1")
    return PipelineCoordinator(
        feature_store=feature_store,
        scorer=scorer,
        explainer=Explainer(scorer.feature_importance),
        optimizer=DecisionOptimizer(config.optimizer),
        prediction_log=PredictionLog(config.store.prediction_log_limit),
        model_variants=config.model_variants,
    )


@app.on_event("startup")
async def startup() -> None:
    """Load reference data and initialize the risk pipeline."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())

    merchants = load_merchants()
    coordinator = build_coordinator(config, merchants)

    # Attach to app state for dependency injection in routes
    app.state.coordinator = coordinator
    app.state.config = config
    logger.info("Risk pipeline ready (scorer=%s)", coordinator.scorer.name)


def _error_body(exc: Exception, error: str) -> Dict[str, str]:
    return {"error": error, "detail": str(exc)}


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content=_error_body(exc, "validation_error"))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_error_body(exc, "configuration_error"))


@app.exception_handler(StateInconsistencyError)
async def state_error_handler(request: Request, exc: StateInconsistencyError) -> JSONResponse:
    return JSONResponse(status_code=409, content=_error_body(exc, "state_inconsistency"))


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    body = _error_body(exc, "assessment_failed")
    body["stage"] = exc.stage
    body["transaction_id"] = exc.transaction_id
    return JSONResponse(status_code=500, content=body)


# Mount all API routers
app.include_router(assessment.router)
app.include_router(model.router)
app.include_router(stats.router)
app.include_router(customers.router)
app.include_router(optimizer.router)


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "healthy"}
