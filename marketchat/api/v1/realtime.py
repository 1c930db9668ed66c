# file: marketchat/api/v1/realtime.py

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError

from marketchat.core.redis import open_pubsub
from marketchat.core.settings import settings
from marketchat.services.realtime_service import user_channel

router = APIRouter()
logger = logging.getLogger("realtime_api")

WS_UNAUTHORIZED = 4401
WS_REALTIME_DISABLED = 4503
WS_RELAY_FAILED = 1011


async def _forward(pubsub, websocket: WebSocket):
    async for message in pubsub.listen():
        if message.get("type") == "message":
            await websocket.send_text(message["data"])


async def _drain(websocket: WebSocket):
    # inbound frames are keep-alives only
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """
    Relays the viewer's change events (user:{id} channel) to the socket.
    Events may repeat; clients dedupe by message id. When the relay loses
    Redis the socket is closed with 1011 so the client falls back to polling.
    """
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    if not settings.REALTIME_ENABLED:
        await websocket.close(code=WS_REALTIME_DISABLED)
        return

    channel = user_channel(user_id)
    try:
        pubsub = await open_pubsub(channel)
    except (RedisError, OSError) as e:
        logger.error(f"[Realtime] subscribe failed: user_id={user_id}: {e}")
        await websocket.close(code=WS_RELAY_FAILED)
        return

    await websocket.accept()
    logger.info(f"[Realtime] connected: user_id={user_id}")

    forward_task = asyncio.create_task(_forward(pubsub, websocket))
    receive_task = asyncio.create_task(_drain(websocket))
    try:
        await asyncio.wait({forward_task, receive_task}, return_when=asyncio.FIRST_COMPLETED)

        if receive_task.done():
            logger.info(f"[Realtime] disconnected: user_id={user_id}")
        else:
            error = None if forward_task.cancelled() else forward_task.exception()
            logger.error(f"[Realtime] relay stopped: user_id={user_id}: {error!r}")
            receive_task.cancel()
            await websocket.close(code=WS_RELAY_FAILED)
    finally:
        for task in (forward_task, receive_task):
            task.cancel()
        await asyncio.gather(forward_task, receive_task, return_exceptions=True)
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"[Realtime] pubsub cleanup failed: user_id={user_id}: {e}")
