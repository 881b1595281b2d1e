from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect
from starlette.responses import Response

from app.api.deps import get_db, get_inbox_service, get_sync_orchestrator
from app.logging import get_logger
from app.schemas.crm.inbox import (
    SendMessageRequest,
    SendMessageResponse,
    SyncJobRead,
    SyncStartResponse,
    WebhookResultRead,
)
from app.services.crm.inbox.clients.base import PlatformClientError
from app.services.crm.inbox.errors import InboxError
from app.services.crm.inbox.service import InboxService
from app.services.crm.inbox.sync import SyncOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/crm/inbox", tags=["crm-inbox"])


# --------------------------------------------------------------------------
# Webhooks
# --------------------------------------------------------------------------


@router.get("/webhooks/{platform_type}")
def verify_webhook(
    platform_type: str,
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    service: InboxService = Depends(get_inbox_service),
):
    """Echo the challenge of a platform subscription handshake."""
    try:
        challenge = service.verify_subscription(platform_type, hub_mode, hub_verify_token, hub_challenge)
    except InboxError as exc:
        logger.warning("webhook_verify_failed platform=%s reason=%s", platform_type, exc.code)
        return Response(status_code=status.HTTP_403_FORBIDDEN)
    logger.info("webhook_verified platform=%s", platform_type)
    return Response(content=challenge, media_type="text/plain")


@router.post("/webhooks/{platform_type}", response_model=WebhookResultRead)
async def receive_webhook(
    platform_type: str,
    request: Request,
    db: Session = Depends(get_db),
    service: InboxService = Depends(get_inbox_service),
):
    try:
        body = await request.body()
    except ClientDisconnect:
        logger.warning("webhook_client_disconnect platform=%s", platform_type)
        # Body was not fully read; let the platform retry.
        return Response(status_code=500)
    try:
        result = await run_in_threadpool(service.handle_webhook, db, platform_type, body, request.headers)
    except InboxError as exc:
        logger.warning("webhook_rejected platform=%s code=%s detail=%s", platform_type, exc.code, exc.detail)
        raise exc.to_http_exception() from exc
    return WebhookResultRead(
        platform_type=result.platform_type,
        received=result.received,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
    )


# --------------------------------------------------------------------------
# Outbound
# --------------------------------------------------------------------------


@router.post("/send", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    service: InboxService = Depends(get_inbox_service),
):
    try:
        receipt = service.send_message(db, payload.customer_id, payload.platform_type, payload.content)
    except InboxError as exc:
        raise exc.to_http_exception() from exc
    except PlatformClientError as exc:
        logger.warning("send_message_failed platform=%s error=%s", payload.platform_type.value, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return SendMessageResponse(message_id=receipt.message_id, external_message_id=receipt.external_message_id)


# --------------------------------------------------------------------------
# Sync jobs
# --------------------------------------------------------------------------


@router.post(
    "/platforms/{platform_link_id}/sync",
    response_model=SyncStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_sync(
    platform_link_id: str,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        sync_id = orchestrator.start_sync(db, platform_link_id)
    except InboxError as exc:
        raise exc.to_http_exception() from exc
    return SyncStartResponse(sync_id=sync_id)


@router.get("/platforms/{platform_link_id}/sync", response_model=list[SyncJobRead])
def sync_history(
    platform_link_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return orchestrator.get_sync_history(db, platform_link_id, limit=limit, offset=offset)


@router.get("/sync/{sync_id}", response_model=SyncJobRead)
def sync_status(
    sync_id: str,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        return orchestrator.get_sync_status(db, sync_id)
    except InboxError as exc:
        raise exc.to_http_exception() from exc


@router.post("/sync/{sync_id}/cancel")
def cancel_sync(
    sync_id: str,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return {"sync_id": sync_id, "cancelled": orchestrator.cancel_sync(db, sync_id)}
