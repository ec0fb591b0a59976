from fastapi import Depends, Request
from src.services.fallback_chain import FallbackChain
from src.services.refresh_scheduler import RefreshScheduler
from src.startup import StatsServices


def get_services(request: Request) -> StatsServices:
    return request.app.state.services  # type: ignore[return-value]


def get_chain(services: StatsServices = Depends(get_services)) -> FallbackChain:
    return services.chain


def get_scheduler(
    services: StatsServices = Depends(get_services),
) -> RefreshScheduler:
    return services.scheduler
