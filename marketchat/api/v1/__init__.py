from fastapi import APIRouter

from .conversations import router as conversations_router
from .realtime import router as realtime_router

api_router = APIRouter()

# ========== Chat ================================
api_router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])

# ========== Change notification =================
api_router.include_router(realtime_router, prefix="/realtime", tags=["realtime"])
