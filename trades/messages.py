from __future__ import annotations

import logging
from typing import Any, List, Optional

import config
from guardrails import rate_limiter as rate_limits
from guardrails import sanitizer
from schema import COLLECTION_MESSAGES, new_id, normalize_user_id

from .blocks import is_blocked_between
from .errors import (
    INVALID_ID,
    NOT_PARTICIPANT,
    SELF_MESSAGE,
    STORE_UNAVAILABLE,
    USER_BLOCKED,
    StoreError,
    TradeError,
    ValidationError,
)
from .models import Message, parse_message, serialize_message, utc_now_iso
from .negotiation_store import load_trade_or_404, trade_id_or_400
from .store import RecordStore, eq

logger = logging.getLogger(__name__)


def _uid(value: Any, field: str) -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {field: value}) from exc


class MessageService:
    def __init__(self, store: RecordStore, limiter: Optional[rate_limits.RateLimiter] = None) -> None:
        self._store = store
        self._limiter = limiter or rate_limits.RateLimiter()

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        trade_id: Optional[str] = None,
    ) -> Message:
        sender = _uid(sender_id, "sender_id")
        receiver = _uid(receiver_id, "receiver_id")
        if sender == receiver:
            raise ValidationError(SELF_MESSAGE, "Cannot message yourself", {"user_id": sender})

        tid = None
        if trade_id is not None:
            trade = await load_trade_or_404(self._store, trade_id)
            if not trade.is_participant(sender) or trade.counterparty(sender) != receiver:
                raise ValidationError(
                    NOT_PARTICIPANT,
                    "Trade messages go between the two parties of the trade",
                    {"trade_id": trade.trade_id, "sender_id": sender, "receiver_id": receiver},
                )
            tid = trade.trade_id

        if await is_blocked_between(self._store, sender, receiver):
            raise ValidationError(USER_BLOCKED, "Messaging is blocked between these users", {"receiver_id": receiver})

        rate_limits.enforce_message_limit(self._limiter, sender)
        text = sanitizer.require_clean_text(content, config.MESSAGE_SANITIZER, field="content")

        message = Message(
            message_id=new_id(),
            sender_id=sender,
            receiver_id=receiver,
            content=text,
            trade_id=tid,
            created_at=utc_now_iso(),
        )
        try:
            await self._store.insert(COLLECTION_MESSAGES, serialize_message(message))
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to send message", {"error": str(exc)}) from exc
        logger.debug("[MESSAGE_SENT] trade_id=%s sender=%s", tid, sender)
        return message

    async def list_conversation(self, trade_id: str) -> List[Message]:
        """Messages attached to one trade, oldest first."""
        tid = trade_id_or_400(trade_id)
        rows = await self._store.select(COLLECTION_MESSAGES, [eq("trade_id", tid)], order_by="created_at")
        return [parse_message(row) for row in rows]

    async def delete_conversation(self, trade_id: str) -> int:
        tid = trade_id_or_400(trade_id)
        deleted = 0
        for row in await self._store.select(COLLECTION_MESSAGES, [eq("trade_id", tid)]):
            if await self._store.delete(COLLECTION_MESSAGES, row["id"]):
                deleted += 1
        logger.info("[CONVERSATION_DELETED] trade_id=%s messages=%s", tid, deleted)
        return deleted
