"""Trigger rule events.

Upstream data imports report here when a dataset has finished changing,
which starts (or restarts) the settling window of the armed compound
rules watching it.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.dependencies import get_trigger_evaluator
from triggers.evaluator import TriggerEvaluator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/triggers", tags=["triggers"])


# ─── Schemas ───

class DataSettledRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    dataset_id: str = Field(..., min_length=1)


@router.post("/data-settled", response_model=dict[str, Any])
async def data_settled(
    body: DataSettledRequest,
    evaluator: TriggerEvaluator = Depends(get_trigger_evaluator),
) -> dict[str, Any]:
    """Record a data change for the compound rules watching a dataset."""
    rules = await evaluator.record_data_settled(body.tenant_id, body.dataset_id)
    return {"rules": rules}
