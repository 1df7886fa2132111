from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ...core.logging import get_logger
from ...services.aggregator import NodeAggregator

router = APIRouter(prefix="/api/pnodes", tags=["pnodes"])
logger = get_logger(__name__)


def _get_aggregator(request: Request) -> NodeAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if isinstance(aggregator, NodeAggregator):
        return aggregator
    logger.error("NodeAggregator not configured on application state")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Aggregator unavailable")


@router.get("", summary="List pNodes with derived metrics")
async def list_pnodes(request: Request) -> JSONResponse:
    """Return the filtered, sorted and paginated pNode list.

    Query parameters: ``limit`` (1-1000), ``offset`` (>= 0), ``status``,
    ``sortBy`` and ``sortOrder``. Errors use the same envelope with
    ``success: false``.
    """
    aggregator = _get_aggregator(request)
    outcome = await aggregator.handle(dict(request.query_params))
    return JSONResponse(status_code=outcome.status_code, content=outcome.body.to_json_dict())
