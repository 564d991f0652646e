from fastapi import APIRouter, HTTPException, Request
from utils import log

from .auctions import router as auctions_router
from .transactions import router as transactions_router
from .webhooks import router as webhooks_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(auctions_router)
router.include_router(transactions_router)
router.include_router(webhooks_router)


@router.get("/health", tags=["health"])
async def route_health(request: Request):
    """Liveness plus a storage round-trip."""
    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            await store.check_connection()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Storage unavailable")
    return {"status": "ok"}
