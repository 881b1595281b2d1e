from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.crm import router as crm_router
from app.config import settings
from app.container import container
from app.db import SessionLocal
from app.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title="omni_inbox API")


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(crm_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _start_inbox():
    registry = container.connector_registry()
    logger.info("inbox_platforms_available platforms=%s", ",".join(p.value for p in registry.available()))
    if not settings.sync_recover_on_startup:
        return
    db = SessionLocal()
    try:
        container.sync_orchestrator().recover_abandoned(db)
    finally:
        db.close()


@app.on_event("shutdown")
def _stop_inbox():
    container.sync_orchestrator().shutdown(wait=False)
    container.connector_registry().reset()
