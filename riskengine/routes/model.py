"""Model introspection and scorer configuration endpoints."""

from typing import Dict

from fastapi import APIRouter, Request

from riskengine.models import ModelMetrics, ScorerConfig

router = APIRouter(prefix="/api/model")


@router.get("/metrics", response_model=ModelMetrics)
async def get_model_metrics(request: Request) -> ModelMetrics:
    """Metrics over labelled predictions, or reference figures without labels."""
    return request.app.state.coordinator.get_model_metrics()


@router.get("/feature-importance", response_model=Dict[str, float])
async def get_feature_importance(request: Request) -> Dict[str, float]:
    """Return the global feature importance table."""
    return request.app.state.coordinator.get_feature_importance()


@router.get("/config", response_model=ScorerConfig)
async def get_scorer_config(request: Request) -> ScorerConfig:
    """Return the active scorer configuration."""
    return request.app.state.coordinator.scorer.config


@router.put("/config", response_model=ScorerConfig)
async def update_scorer_config(
    new_config: ScorerConfig,
    request: Request,
) -> ScorerConfig:
    """Replace the scorer configuration.

    The new scorer is built before it is swapped in, so an inconsistent
    configuration is rejected (400) and the running scorer is kept.
    """
    scorer = request.app.state.coordinator.replace_scorer(new_config)
    request.app.state.config.scorer = new_config
    return scorer.config
