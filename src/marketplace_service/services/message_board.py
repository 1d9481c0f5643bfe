"""Messaging between the parties of a contract's conversation."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from marketplace_service.logging import get_logger
from marketplace_service.services.clock import now_iso

if TYPE_CHECKING:
    from marketplace_service.services.conversation_store import ConversationStore
    from marketplace_service.services.notifier import NotificationFanout

MAX_CONTENT_LENGTH = 2000
MESSAGE_TYPES = frozenset({"text", "file"})


def _public_message(message: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in message.items() if key != "deleted_at"}


class MessageBoard:
    """
    Conversation reads and message posting for conversation participants.

    New messages are pushed as ``new_message`` events to every participant's
    live connections, the sender's included, so other open sessions of the
    sender stay in step.
    """

    def __init__(self, conversations: ConversationStore, notifier: NotificationFanout) -> None:
        self._conversations = conversations
        self._notifier = notifier
        self._logger = get_logger(__name__)

    async def _load_for_participant(self, conversation_id: str, actor_id: str) -> dict[str, Any]:
        conversation = await self._conversations.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("CONVERSATION_NOT_FOUND", "Conversation not found")
        if actor_id not in conversation["participants"]:
            raise AuthorizationError("Only conversation participants can access it")
        return conversation

    async def list_conversations(self, user_id: str) -> dict[str, Any]:
        """List the caller's conversations with their last message and unread count."""
        conversations = await self._conversations.list_for_participant(user_id)
        for conversation in conversations:
            latest = await self._conversations.latest_message(conversation["conversation_id"])
            conversation["last_message"] = _public_message(latest) if latest else None
            conversation["unread_count"] = await self._conversations.count_unread(
                conversation["conversation_id"], user_id
            )
        return {"conversations": conversations}

    async def get_conversation(
        self,
        conversation_id: str,
        actor_id: str,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        """
        Fetch a page of messages, oldest first within the page.

        Page 1 holds the newest messages. Reading moves the caller's read
        mark up to the newest live message.
        """
        conversation = await self._load_for_participant(conversation_id, actor_id)
        offset = (page - 1) * limit
        newest_first = await self._conversations.list_messages(conversation_id, limit, offset)
        total = await self._conversations.count_messages(conversation_id)

        latest = await self._conversations.latest_message(conversation_id)
        if latest is not None:
            await self._conversations.mark_read(conversation_id, actor_id, latest["created_at"])

        return {
            "conversation": conversation,
            "messages": [_public_message(m) for m in reversed(newest_first)],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def post_message(
        self,
        conversation_id: str,
        actor_id: str,
        content: object,
        message_type: object = "text",
    ) -> dict[str, Any]:
        """Post a message and push it to the conversation's participants."""
        conversation = await self._load_for_participant(conversation_id, actor_id)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required")
        content = content.strip()
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"content must be at most {MAX_CONTENT_LENGTH} characters")
        if not isinstance(message_type, str) or message_type not in MESSAGE_TYPES:
            raise ValidationError(f"type must be one of {sorted(MESSAGE_TYPES)}")

        message: dict[str, Any] = {
            "message_id": f"msg-{uuid.uuid4()}",
            "conversation_id": conversation_id,
            "sender_id": actor_id,
            "content": content,
            "type": message_type,
            "created_at": now_iso(),
            "deleted_at": None,
        }
        await self._conversations.insert_message(message)
        await self._conversations.mark_read(conversation_id, actor_id, message["created_at"])

        public = _public_message(message)
        for participant in conversation["participants"]:
            await self._notifier.push(participant, "new_message", public)

        self._logger.info(
            "Message posted",
            extra={"conversation_id": conversation_id, "message_id": message["message_id"]},
        )
        return public

    async def delete_message(self, message_id: str, actor_id: str) -> dict[str, Any]:
        """Soft-delete a message on behalf of its sender."""
        message = await self._conversations.get_message(message_id)
        if message is None or message["deleted_at"] is not None:
            raise NotFoundError("MESSAGE_NOT_FOUND", "Message not found")
        if message["sender_id"] != actor_id:
            raise AuthorizationError("Only the sender can delete a message")

        deleted = await self._conversations.soft_delete_message(message_id, now_iso())
        if deleted == 0:
            raise NotFoundError("MESSAGE_NOT_FOUND", "Message not found")

        conversation = await self._conversations.get_conversation(message["conversation_id"])
        if conversation is not None:
            for participant in conversation["participants"]:
                await self._notifier.push(
                    participant,
                    "message_deleted",
                    {"conversation_id": message["conversation_id"], "message_id": message_id},
                )
        return {"message_id": message_id, "deleted": True}
