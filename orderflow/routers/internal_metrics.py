from __future__ import annotations

from fastapi import APIRouter

from orderflow.core.metrics import flow_metrics, request_metrics

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics():
    return {"requests": request_metrics.snapshot(), "flow": flow_metrics.snapshot()}
