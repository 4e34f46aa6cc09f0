"""Customer history lookup endpoint."""

from typing import List

from fastapi import APIRouter, Request

from riskengine.models import HistoryEntry

router = APIRouter(prefix="/api")


@router.get("/customers/{customer_id}/history", response_model=List[HistoryEntry])
async def get_customer_history(
    customer_id: str,
    request: Request,
) -> List[HistoryEntry]:
    """Get the rolling transaction history for a customer, oldest first.

    Transactions submitted without a customer id are grouped under
    "anonymous". URL-encoded ids are automatically decoded by FastAPI.
    """
    coordinator = request.app.state.coordinator
    return coordinator.feature_store.customer_history(customer_id)
