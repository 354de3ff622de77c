import logging
import time

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.collections import router as collections_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Agency billing anchor engine")
register_error_handlers(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    labels = {"method": request.method, "path": path, "status": str(response.status_code)}
    REQUEST_COUNT.labels(**labels).inc()
    REQUEST_LATENCY.labels(**labels).observe(time.perf_counter() - started)
    return response


app.include_router(collections_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
