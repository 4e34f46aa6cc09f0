"""Risk assessment endpoints for single, batch and A/B-tested transactions."""

from fastapi import APIRouter, Request

from riskengine.models import (
    ABTestRequest,
    ABTestResponse,
    AssessmentResponse,
    BatchRequest,
    BatchResponse,
    TransactionRequest,
)
from riskengine.scoring.coordinator import PipelineCoordinator

router = APIRouter(prefix="/api")


def _get_coordinator(request: Request) -> PipelineCoordinator:
    """Retrieve the pipeline coordinator from application state."""
    return request.app.state.coordinator


@router.post("/assess", response_model=AssessmentResponse)
async def assess_transaction(
    transaction: TransactionRequest,
    request: Request,
) -> AssessmentResponse:
    """Assess a single transaction and record it in the customer's history."""
    coordinator = _get_coordinator(request)
    return coordinator.assess_risk(transaction)


@router.post("/assess/batch", response_model=BatchResponse)
async def assess_batch(
    batch: BatchRequest,
    request: Request,
) -> BatchResponse:
    """Assess a batch of transactions.

    Results are aligned with the request order. The summary counts the
    final (optimized) decisions.
    """
    coordinator = _get_coordinator(request)
    return coordinator.batch_assess_risk(batch.transactions)


@router.post("/ab-test", response_model=ABTestResponse)
async def ab_test(
    body: ABTestRequest,
    request: Request,
) -> ABTestResponse:
    """Score a transaction with two model variants without recording it."""
    coordinator = _get_coordinator(request)
    return coordinator.ab_test(body.transaction, body.model_a, body.model_b)
