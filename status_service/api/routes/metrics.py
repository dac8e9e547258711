from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from status_service.metrics import PROMETHEUS_CONTENT_TYPE, PrometheusExporter, metrics_registry

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", response_class=PlainTextResponse, summary="Prometheus scrape endpoint")
async def scrape_metrics(request: Request) -> PlainTextResponse:
    registry = getattr(request.app.state, "metrics_registry", None) or metrics_registry
    payload = PrometheusExporter(registry).build_payload()
    return PlainTextResponse(payload, media_type=PROMETHEUS_CONTENT_TYPE)
