from fastapi import APIRouter

from app.api.crm.inbox import router as inbox_router

router = APIRouter(tags=["crm"])
router.include_router(inbox_router)

__all__ = ["router"]
