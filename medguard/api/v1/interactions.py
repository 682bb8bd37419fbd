"""
Drug interaction endpoints.

Interaction checks always return the pipeline's result artifact. A request
rejected as invalid input still carries that artifact, with status 400.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from medguard.agents.orchestrator import InteractionOrchestrator
from medguard.core.cache import CacheService, get_cache_service
from medguard.core.exceptions import ValidationError
from medguard.core.logging import get_logger
from medguard.core.rate_limit import limiter
from medguard.dependencies import get_orchestrator
from medguard.schemas.clinical import NormalizedDrug
from medguard.schemas.common import CacheStatsResponse, ErrorResponse
from medguard.schemas.interaction import (
    BatchCheckRequest,
    BatchCheckResponse,
    InteractionCheckRequest,
    InteractionCheckResponse,
    NormalizeRequest,
)

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/interactions/check",
    response_model=InteractionCheckResponse,
    responses={400: {"model": InteractionCheckResponse}},
    summary="Check Drug Interactions",
)
@limiter.limit("60/minute")
async def check_interactions(
    request: Request,
    body: InteractionCheckRequest,
    orchestrator: InteractionOrchestrator = Depends(get_orchestrator),
):
    """
    Check every pair in a drug list and grade the combined risk.

    Args:
        body: Drug names and an optional patient id.

    Returns:
        Risk level, explanation, recommendations and the per-pair
        interactions behind them.
    """
    logger.info(
        f"Interaction check requested for {len(body.drugs)} drugs",
        extra={"patient_id": body.patient_id}
    )

    result = await orchestrator.check_interaction(body.drugs, body.patient_id)

    if result.error_type == ValidationError.error_type:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(mode="json")
        )
    return result


@router.post(
    "/interactions/batch",
    response_model=BatchCheckResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Batch Check Drug Interactions",
)
@limiter.limit("10/minute")
async def check_interactions_batch(
    request: Request,
    body: BatchCheckRequest,
    orchestrator: InteractionOrchestrator = Depends(get_orchestrator),
) -> BatchCheckResponse:
    """
    Run several independent checks concurrently.

    Always 200 for a well-formed batch; per-item failures are reported in
    the item and counted in ``failed``.
    """
    logger.info(f"Batch check requested for {len(body.requests)} items")
    return await orchestrator.check_batch(body.requests)


@router.post(
    "/drugs/normalize",
    response_model=NormalizedDrug,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Normalize Drug Name",
)
@limiter.limit("100/minute")
async def normalize_drug(
    request: Request,
    body: NormalizeRequest,
    orchestrator: InteractionOrchestrator = Depends(get_orchestrator),
) -> NormalizedDrug:
    """Resolve one free-text drug name to its RxNorm concept."""
    return await orchestrator.normalize_drug(body.drug_name)


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(cache: CacheService = Depends(get_cache_service)):
    """Entry counts per prefix and hit/miss totals."""
    return CacheStatsResponse(**cache.stats())
