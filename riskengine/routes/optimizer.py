"""Decision optimizer endpoints."""

from fastapi import APIRouter, Request

from riskengine.models import (
    OptimizationMetrics,
    OptimizationMetricsRequest,
    ThresholdResult,
)

router = APIRouter(prefix="/api/optimizer")


@router.post("/thresholds", response_model=ThresholdResult)
async def optimize_thresholds(request: Request) -> ThresholdResult:
    """Grid-search approve/decline thresholds over labelled predictions.

    The result is a recommendation; apply it through PUT /api/model/config.
    """
    return request.app.state.coordinator.optimize_thresholds()


@router.post("/metrics", response_model=OptimizationMetrics)
async def optimization_metrics(
    body: OptimizationMetricsRequest,
    request: Request,
) -> OptimizationMetrics:
    """Measure override impact; estimated when no labels are supplied."""
    optimizer = request.app.state.coordinator.optimizer
    return optimizer.calculate_optimization_metrics(body.results, body.labels)
