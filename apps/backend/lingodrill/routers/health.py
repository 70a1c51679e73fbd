from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..metrics import registry

router = APIRouter(tags=["health"])


@router.get("/healthz")
def health_check() -> dict[str, str]:
    """Liveness/readiness check. コンテナの疎通確認用。"""
    return {"status": "ok"}


@router.get("/metrics")
def metrics() -> JSONResponse:
    """パス別のリクエスト数・エラー数・p95 レイテンシを返す。"""
    return JSONResponse(content={"paths": registry.snapshot()})
