from fastapi import FastAPI, HTTPException, Response, status
from fastapi.responses import JSONResponse

from core.env_utils import load_dotenv_if_available
from core.logging import setup_logging

load_dotenv_if_available()
setup_logging()

from web import routers  # noqa: E402

try:  # pragma: no cover - optional dependency
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
except ImportError:  # pragma: no cover
    CONTENT_TYPE_LATEST = "text/plain"
    generate_latest = None

app = FastAPI(
    title="Entitlement Sync API",
    description="Keeps user entitlements in sync with Stripe subscription lifecycle events.",
    version="0.1.0",
)


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Basic liveness response."""
    return {"status": "ok", "message": "Entitlement Sync API is running."}


@app.get("/healthz", include_in_schema=False)
def cloud_run_health_check():
    """Lightweight Cloud Run friendly health probe."""
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


@app.get("/metrics", include_in_schema=False)
def prometheus_metrics():
    """Expose Prometheus metrics."""
    if generate_latest is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "metrics.unavailable", "message": "prometheus_client is not installed"},
        )
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(routers.billing.router, prefix="/api/v1")
app.include_router(routers.health.router, prefix="/api/v1")
