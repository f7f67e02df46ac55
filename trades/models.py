from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from schema import (
    COL_ID,
    ITEM_COL_OWNER_ID,
    TRADE_COL_ADDITIONAL_OFFERED,
    TRADE_COL_ADDITIONAL_WANTED,
    TRADE_COL_CREATED_AT,
    TRADE_COL_OFFERED_ITEM_ID,
    TRADE_COL_RECEIVER_ID,
    TRADE_COL_SENDER_ID,
    TRADE_COL_STATUS,
    TRADE_COL_WANTED_ITEM_ID,
    normalize_id,
    normalize_item_id,
    normalize_item_ids,
    normalize_user_id,
)

from .errors import INVALID_RECORD, ValidationError


class TradeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "TradeStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(INVALID_RECORD, f"Unknown trade status {value!r}", {"status": value})


# Pending/accepted trades hold their items; everything else is history.
COMMITTED_STATUSES: FrozenSet[TradeStatus] = frozenset({TradeStatus.PENDING, TradeStatus.ACCEPTED})


def utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


@dataclass(frozen=True)
class Item:
    item_id: str
    owner_id: str
    title: str = ""
    category: str = ""
    condition: str = ""
    description: str = ""
    created_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class TradeOffer:
    trade_id: str
    sender_id: str
    receiver_id: str
    offered_item_id: str
    wanted_item_id: str
    additional_offered_item_ids: Tuple[str, ...] = ()
    additional_wanted_item_ids: Tuple[str, ...] = ()
    status: TradeStatus = TradeStatus.PENDING
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None
    note: Optional[str] = None
    parent_trade_id: Optional[str] = None
    sender_confirmed_completion: bool = False
    receiver_confirmed_completion: bool = False

    @property
    def all_offered_ids(self) -> Tuple[str, ...]:
        return (self.offered_item_id,) + tuple(self.additional_offered_item_ids)

    @property
    def all_wanted_ids(self) -> Tuple[str, ...]:
        return (self.wanted_item_id,) + tuple(self.additional_wanted_item_ids)

    @property
    def all_item_ids(self) -> FrozenSet[str]:
        return frozenset(self.all_offered_ids) | frozenset(self.all_wanted_ids)

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.sender_id, self.receiver_id)

    @property
    def is_active(self) -> bool:
        return self.status in COMMITTED_STATUSES

    @property
    def is_bundle(self) -> bool:
        return bool(self.additional_offered_item_ids or self.additional_wanted_item_ids)

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterparty(self, user_id: str) -> str:
        if user_id == self.sender_id:
            return self.receiver_id
        if user_id == self.receiver_id:
            return self.sender_id
        raise ValueError(f"{user_id} is not part of trade {self.trade_id}")


@dataclass(frozen=True)
class Review:
    review_id: str
    reviewer_id: str
    reviewed_id: str
    trade_id: str
    rating: int
    comment: str = ""
    created_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class Message:
    message_id: str
    sender_id: str
    receiver_id: str
    content: str
    trade_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)


# ----------------------------------------------------------------------------
# Record <-> model
# ----------------------------------------------------------------------------


def _require(raw: Mapping[str, Any], key: str) -> Any:
    value = raw.get(key)
    if value is None or value == "":
        raise ValidationError(INVALID_RECORD, f"Missing {key} in record", dict(raw))
    return value


def _id_list(raw: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    values = raw.get(key) or []
    if not isinstance(values, (list, tuple)):
        raise ValidationError(INVALID_RECORD, f"{key} must be a list", dict(raw))
    try:
        return normalize_item_ids(values)
    except ValueError as exc:
        raise ValidationError(INVALID_RECORD, str(exc), dict(raw)) from exc


def parse_trade(raw: Mapping[str, Any]) -> TradeOffer:
    if not isinstance(raw, Mapping):
        raise ValidationError(INVALID_RECORD, "Trade record must be an object", raw)
    try:
        return TradeOffer(
            trade_id=normalize_id(_require(raw, COL_ID), kind="trade_id"),
            sender_id=normalize_user_id(_require(raw, TRADE_COL_SENDER_ID)),
            receiver_id=normalize_user_id(_require(raw, TRADE_COL_RECEIVER_ID)),
            offered_item_id=normalize_item_id(_require(raw, TRADE_COL_OFFERED_ITEM_ID)),
            wanted_item_id=normalize_item_id(_require(raw, TRADE_COL_WANTED_ITEM_ID)),
            additional_offered_item_ids=_id_list(raw, TRADE_COL_ADDITIONAL_OFFERED),
            additional_wanted_item_ids=_id_list(raw, TRADE_COL_ADDITIONAL_WANTED),
            status=TradeStatus.parse(_require(raw, TRADE_COL_STATUS)),
            created_at=str(_require(raw, TRADE_COL_CREATED_AT)),
            updated_at=raw.get("updated_at"),
            note=raw.get("note"),
            parent_trade_id=raw.get("parent_trade_id"),
            sender_confirmed_completion=bool(raw.get("sender_confirmed_completion", False)),
            receiver_confirmed_completion=bool(raw.get("receiver_confirmed_completion", False)),
        )
    except ValueError as exc:
        raise ValidationError(INVALID_RECORD, str(exc), dict(raw)) from exc


def serialize_trade(trade: TradeOffer) -> Dict[str, Any]:
    return {
        COL_ID: trade.trade_id,
        TRADE_COL_SENDER_ID: trade.sender_id,
        TRADE_COL_RECEIVER_ID: trade.receiver_id,
        TRADE_COL_OFFERED_ITEM_ID: trade.offered_item_id,
        TRADE_COL_WANTED_ITEM_ID: trade.wanted_item_id,
        TRADE_COL_ADDITIONAL_OFFERED: list(trade.additional_offered_item_ids),
        TRADE_COL_ADDITIONAL_WANTED: list(trade.additional_wanted_item_ids),
        TRADE_COL_STATUS: trade.status.value,
        TRADE_COL_CREATED_AT: trade.created_at,
        "updated_at": trade.updated_at,
        "note": trade.note,
        "parent_trade_id": trade.parent_trade_id,
        "sender_confirmed_completion": trade.sender_confirmed_completion,
        "receiver_confirmed_completion": trade.receiver_confirmed_completion,
    }


def parse_item(raw: Mapping[str, Any]) -> Item:
    try:
        return Item(
            item_id=normalize_item_id(_require(raw, COL_ID)),
            owner_id=normalize_user_id(_require(raw, ITEM_COL_OWNER_ID)),
            title=str(raw.get("title") or ""),
            category=str(raw.get("category") or ""),
            condition=str(raw.get("condition") or ""),
            description=str(raw.get("description") or ""),
            created_at=str(raw.get("created_at") or utc_now_iso()),
        )
    except ValueError as exc:
        raise ValidationError(INVALID_RECORD, str(exc), dict(raw)) from exc


def serialize_item(item: Item) -> Dict[str, Any]:
    return {
        COL_ID: item.item_id,
        ITEM_COL_OWNER_ID: item.owner_id,
        "title": item.title,
        "category": item.category,
        "condition": item.condition,
        "description": item.description,
        "created_at": item.created_at,
    }


def parse_review(raw: Mapping[str, Any]) -> Review:
    return Review(
        review_id=str(_require(raw, COL_ID)),
        reviewer_id=str(_require(raw, "reviewer_id")),
        reviewed_id=str(_require(raw, "reviewed_id")),
        trade_id=str(_require(raw, "trade_id")),
        rating=int(_require(raw, "rating")),
        comment=str(raw.get("comment") or ""),
        created_at=str(raw.get("created_at") or ""),
    )


def serialize_review(review: Review) -> Dict[str, Any]:
    return {
        COL_ID: review.review_id,
        "reviewer_id": review.reviewer_id,
        "reviewed_id": review.reviewed_id,
        "trade_id": review.trade_id,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": review.created_at,
    }


def parse_message(raw: Mapping[str, Any]) -> Message:
    return Message(
        message_id=str(_require(raw, COL_ID)),
        sender_id=str(_require(raw, "sender_id")),
        receiver_id=str(_require(raw, "receiver_id")),
        content=str(raw.get("content") or ""),
        trade_id=raw.get("trade_id"),
        created_at=str(raw.get("created_at") or ""),
    )


def serialize_message(message: Message) -> Dict[str, Any]:
    return {
        COL_ID: message.message_id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "trade_id": message.trade_id,
        "content": message.content,
        "created_at": message.created_at,
    }
