from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from helpdesk.metrics import metrics_registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def export_metrics() -> str:
    """Prometheus text exposition of the in-process counters."""

    return metrics_registry.render_prometheus()
