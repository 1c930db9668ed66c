# file: marketchat/services/realtime_service.py

import json
import logging

from redis.exceptions import RedisError

from marketchat.core.redis import publish
from marketchat.core.settings import settings
from marketchat.models.conversations import Conversation
from marketchat.schemas.messages import MessageWithSender

logger = logging.getLogger("realtime_service")


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


# ============================================================
# Publishers
# ============================================================

class RedisEventPublisher:
    enabled = True

    async def publish(self, user_ids, event: dict) -> None:
        """
        Best-effort fan-out: clients that miss an event catch up by polling.
        """
        payload = json.dumps(event, default=str)
        for user_id in user_ids:
            try:
                await publish(user_channel(user_id), payload)
            except (RedisError, OSError) as e:
                logger.warning(f"[Realtime] publish failed: user_id={user_id} type={event.get('type')}: {e}")


class NullEventPublisher:
    enabled = False

    async def publish(self, user_ids, event: dict) -> None:
        return


_redis_publisher = RedisEventPublisher()
_null_publisher = NullEventPublisher()


def get_publisher():
    return _redis_publisher if settings.REALTIME_ENABLED else _null_publisher


# ============================================================
# Events
# ============================================================

async def notify_conversation_created(publisher, conv: Conversation) -> None:
    await publisher.publish(
        conv.participants(),
        {
            "type": "conversation.created",
            "conversation_id": conv.id,
            "customer_id": conv.customer_id,
            "seller_id": conv.seller_id,
        },
    )


async def notify_message_created(publisher, conv: Conversation, message: MessageWithSender) -> None:
    # the sender's other devices need it too
    await publisher.publish(
        conv.participants(),
        {
            "type": "message.created",
            "conversation_id": conv.id,
            "message": message.model_dump(mode="json"),
        },
    )


async def notify_messages_read(publisher, conv: Conversation, reader_id: str, message_ids: list[str]) -> None:
    """
    Tells the other party which of its messages were read. Only the ids the
    UPDATE flipped are listed, so later messages stay unread on their side.
    """
    if not message_ids:
        return
    await publisher.publish(
        [conv.other_participant(reader_id)],
        {
            "type": "messages.read",
            "conversation_id": conv.id,
            "reader_id": reader_id,
            "message_ids": list(message_ids),
            "count": len(message_ids),
        },
    )
