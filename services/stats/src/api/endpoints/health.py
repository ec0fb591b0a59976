from fastapi import APIRouter, Request, Response

router = APIRouter()


@router.get("/healthz")
async def healthz(request: Request):
    # The read path is fail-open, so a degraded Redis does not fail liveness.
    health = request.app.state.services.health
    return {"status": "ok", "redis": health.state.value}


@router.get("/readyz")
async def readyz(request: Request):
    if request.app.state.ready_event.is_set():
        return {"status": "ready"}
    return Response(status_code=503, content="not ready")
