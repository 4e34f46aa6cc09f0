"""Monitoring endpoints over the rolling prediction log."""

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query, Request

from riskengine.models import ModelPrediction, OutcomeLabel, RealTimeStats

router = APIRouter(prefix="/api")


@router.get("/stats", response_model=RealTimeStats)
async def get_real_time_stats(request: Request) -> RealTimeStats:
    """Totals, approval rate, average risk score and false-decline rate."""
    return request.app.state.coordinator.get_real_time_stats()


@router.get("/predictions", response_model=List[ModelPrediction])
async def get_prediction_history(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
) -> List[ModelPrediction]:
    """Return the most recent predictions, oldest first."""
    return request.app.state.coordinator.prediction_history(limit)


@router.get("/predictions/{transaction_id}/chart")
async def get_explanation_chart(
    transaction_id: str,
    request: Request,
    limit: int = Query(default=10, ge=1, le=20),
) -> List[Dict[str, Any]]:
    """Largest feature contributions of a logged prediction, with display names."""
    chart = request.app.state.coordinator.explanation_chart(transaction_id, limit)
    if chart is None:
        raise HTTPException(
            status_code=404,
            detail=f"No logged prediction for transaction {transaction_id}",
        )
    return chart


@router.post("/outcomes")
async def record_outcome(label: OutcomeLabel, request: Request) -> Dict[str, str]:
    """Attach ground truth (fraud or legitimate) to a logged prediction."""
    if not request.app.state.coordinator.record_outcome(label):
        raise HTTPException(
            status_code=404,
            detail=f"No logged prediction for transaction {label.transaction_id}",
        )
    return {"status": "recorded", "transaction_id": label.transaction_id}
