"""Operational endpoints: health and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tenantsearch.api.deps import get_backend
from tenantsearch.container import SearchBackend
from tenantsearch.obs import health

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health_endpoint(backend: SearchBackend = Depends(get_backend)) -> JSONResponse:
	status_code, payload = await health.readiness(backend.pools, backend.redis)
	return JSONResponse(status_code=status_code, content=payload)


@router.get("/health/live")
async def liveness_endpoint() -> dict:
	return await health.liveness()


@router.get("/metrics")
async def metrics_endpoint() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
