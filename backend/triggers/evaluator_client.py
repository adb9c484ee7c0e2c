"""Data-condition evaluator client.

The predicate over tenant data is evaluated by an external
collaborator. The scheduler only relies on the ConditionEvaluator
contract: a match flag, a matched row count and a period key that
stays the same for the whole logical period (so the dispatcher's
idempotency key fires the rule once per period).
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

from core.exceptions import ConditionEvaluationError
from triggers.base import ConditionResult, ConditionSpec

logger = structlog.get_logger(__name__)


class ConditionEvaluator(ABC):
    """Abstract data-condition evaluator."""

    @abstractmethod
    async def evaluate(self, condition: ConditionSpec, tenant_id: str) -> ConditionResult:
        """Evaluate ``condition`` for ``tenant_id``.

        Raises:
            ConditionEvaluationError: if the evaluation could not be performed
        """
        ...


class HttpConditionEvaluator(ConditionEvaluator):
    """Evaluates conditions through the external predicate service.

    Request:   POST {base_url}/evaluate
               {"tenant_id": "...", "condition": {...ConditionSpec...}}
    Response:  {"matched": true, "matched_row_count": 3, "period_key": "2026-10"}
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def evaluate(self, condition: ConditionSpec, tenant_id: str) -> ConditionResult:
        payload = {"tenant_id": tenant_id, "condition": condition.to_dict()}
        url = f"{self.base_url}/evaluate"

        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=self._headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ConditionEvaluationError(
                f"Condition service returned {exc.response.status_code} "
                f"for dataset {condition.dataset_id}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ConditionEvaluationError(
                f"Condition service unreachable or invalid response: {exc}"
            ) from exc

        return _parse_result(data)


def _parse_result(data) -> ConditionResult:
    if not isinstance(data, dict) or "matched" not in data:
        raise ConditionEvaluationError("Condition service response missing 'matched'")
    try:
        matched_row_count = int(data.get("matched_row_count") or 0)
    except (TypeError, ValueError) as exc:
        raise ConditionEvaluationError(
            f"Invalid matched_row_count: {data.get('matched_row_count')!r}"
        ) from exc
    period_key = data.get("period_key")
    return ConditionResult(
        matched=bool(data["matched"]),
        matched_row_count=matched_row_count,
        period_key=str(period_key) if period_key else None,
    )
