import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from marketchat.api.v1 import api_router
from marketchat.core.errors import ChatError
from marketchat.core.redis import close_redis
from marketchat.core.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("marketchat")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DATABASE_AUTO_CREATE:
        from marketchat.db.base import Base
        from marketchat.db import models_registry  # noqa: F401
        from marketchat.db.session import engine

        Base.metadata.create_all(bind=engine)
        logger.info("[DB] tables ensured")
    try:
        yield
    finally:
        await close_redis()


app = FastAPI(title="Marketplace Chat API", version="1.0.0", lifespan=lifespan)

app.include_router(api_router, prefix="/v1")


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(OperationalError)
async def store_error_handler(request: Request, exc: OperationalError):
    logger.error(f"[Store] unhandled operational error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "StoreUnavailable", "detail": "store unavailable"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}
