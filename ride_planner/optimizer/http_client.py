"""ride_planner/optimizer/http_client.py — Remote optimization service backend.

POSTs the camelCase request payload to ``OPTIMIZER_SERVICE_URL`` and parses
the ordered step list out of the response.  Both a bare JSON array and the
``{"success": true, "steps": [...]}`` envelope are accepted.
"""
import logging
from typing import List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from ride_planner.optimizer.contract import (
    OptimizationError,
    OptimizationRequest,
    RawStep,
    RouteOptimizationClient,
)

logger = logging.getLogger(__name__)

_STEPS_ADAPTER = TypeAdapter(List[RawStep])


def parse_steps(payload) -> List[RawStep]:
    """Extract and validate the step list from a decoded response body.

    Raises:
        OptimizationError: if the body is not a step list (or an envelope
            holding one) or any step fails validation.
    """
    if isinstance(payload, dict):
        if payload.get("success") is False:
            raise OptimizationError(f"Optimizer reported failure: {payload.get('error')}")
        payload = payload.get("steps")
    if not isinstance(payload, list):
        raise OptimizationError("Optimizer response does not contain a step list")
    try:
        return _STEPS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise OptimizationError(f"Malformed optimizer response: {exc.error_count()} invalid field(s)") from exc


class HttpRouteOptimizer(RouteOptimizationClient):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ValueError("OPTIMIZER_SERVICE_URL is not configured.")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            headers=headers,
            transport=transport,
        )

    async def optimize(self, request: OptimizationRequest) -> List[RawStep]:
        logger.info(
            "Calling optimization service: url=%s stops=%d departure=%s",
            self.base_url,
            len(request.stops),
            request.departure_time,
        )
        try:
            response = await self._client.post(self.base_url, json=request.to_payload())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise OptimizationError(f"Optimization service request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise OptimizationError("Optimization service returned invalid JSON") from exc

        steps = parse_steps(payload)
        logger.info("Optimization service returned %d steps", len(steps))
        return steps

    async def aclose(self) -> None:
        await self._client.aclose()
