from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from src.api.dependencies import get_chain, get_scheduler, get_services
from src.domain.models import SEGMENT_PATTERN, SortField, StatsQuery
from src.services.fallback_chain import FallbackChain
from src.services.refresh_scheduler import RefreshScheduler
from src.startup import StatsServices

router = APIRouter(prefix="/stats")


@router.get("/civilizations")
async def civilizations(
    request: Request,
    patch: Optional[str] = Query(default=None, pattern=SEGMENT_PATTERN),
    leaderboard: Optional[str] = Query(default=None, pattern=SEGMENT_PATTERN),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    sort: SortField = "rank",
    min_games: Optional[int] = Query(default=None, ge=0),
    chain: FallbackChain = Depends(get_chain),
):
    query = StatsQuery(
        path=request.url.path,
        partition=patch,
        leaderboard=leaderboard,
        limit=limit,
        offset=offset,
        sort=sort,
        min_games=min_games,
    )
    return await chain.resolve(query)


@router.get("/partitions")
async def partitions(
    request: Request, services: StatsServices = Depends(get_services)
):
    return await services.partitions(request.url.path)


@router.post("/refresh/{partition}", status_code=202)
async def trigger_refresh(
    partition: str,
    background: BackgroundTasks,
    scheduler: RefreshScheduler = Depends(get_scheduler),
):
    background.add_task(scheduler.trigger, partition)
    return {"partition": partition, "accepted": True}


@router.get("/refresh/{partition}")
async def refresh_status(
    partition: str, scheduler: RefreshScheduler = Depends(get_scheduler)
):
    job = scheduler.last_job(partition)
    return {
        "partition": partition,
        "state": scheduler.state(partition).value,
        "last_job": job.model_dump(mode="json") if job else None,
    }
