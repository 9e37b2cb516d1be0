from fastapi import APIRouter, Request

from vm_monitor.models.health import HealthStatus

router = APIRouter()


@router.get("/status", response_model=HealthStatus, summary="Service health")
async def health_status(request: Request) -> HealthStatus:
    """
    Return liveness plus the sampling loop counters.

    `skipped` and `last_error` are the only place where skipped ticks become
    visible; subscribers themselves just see no event for that tick.
    """
    runtime = request.app.state.runtime
    state = runtime.scheduler.state
    return HealthStatus(
        subscribers=runtime.subscriptions.count,
        ticks=state.ticks,
        published=state.published,
        skipped=state.skipped,
        last_error=state.last_error,
    )
