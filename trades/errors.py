from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class TradeError(Exception):
    code: str
    message: str
    details: Optional[Any] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.code, self.message)


class ValidationError(TradeError):
    """Bad preconditions: self-trade, empty sides, items not owned."""


class ConflictError(TradeError):
    """An item is already pledged, or a unique record already exists."""


class NotFoundError(TradeError):
    pass


class StateError(TradeError):
    """Illegal status transition or operation for the current trade status."""


class StoreError(TradeError):
    """The record store could not be reached or failed mid-operation."""


@dataclass
class RateLimitError(TradeError):
    retry_after: float = 0.0

    @property
    def user_message(self) -> str:
        return self.message


@dataclass
class SanitizationError(TradeError):
    reason: str = ""

    @property
    def user_message(self) -> str:
        return self.reason or self.message


@dataclass
class CascadeIncompleteError(TradeError):
    cancelled_count: int = 0
    failed_trade_ids: tuple = ()


# validation
SELF_TRADE = "SELF_TRADE"
EMPTY_OFFER = "EMPTY_OFFER"
EMPTY_REQUEST = "EMPTY_REQUEST"
DUPLICATE_ITEM = "DUPLICATE_ITEM"
ITEM_ON_BOTH_SIDES = "ITEM_ON_BOTH_SIDES"
ITEM_NOT_OWNED = "ITEM_NOT_OWNED"
MIXED_OWNERS = "MIXED_OWNERS"
INVALID_ID = "INVALID_ID"
INVALID_RECORD = "INVALID_RECORD"
NOT_PARTICIPANT = "NOT_PARTICIPANT"
NOT_RECEIVER = "NOT_RECEIVER"
NOT_ITEM_OWNER = "NOT_ITEM_OWNER"
MISSING_TITLE = "MISSING_TITLE"
USER_BLOCKED = "USER_BLOCKED"
SELF_REVIEW = "SELF_REVIEW"
INVALID_RATING = "INVALID_RATING"
REVIEWEE_NOT_PARTICIPANT = "REVIEWEE_NOT_PARTICIPANT"
SELF_MESSAGE = "SELF_MESSAGE"

# conflict
ITEM_BUSY = "ITEM_BUSY"
ITEM_UNAVAILABLE = "ITEM_UNAVAILABLE"
ALREADY_REVIEWED = "ALREADY_REVIEWED"
DUPLICATE_RECORD = "DUPLICATE_RECORD"

# not found
TRADE_NOT_FOUND = "TRADE_NOT_FOUND"
ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
RECORD_NOT_FOUND = "RECORD_NOT_FOUND"

# state
ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
NO_COMPLETED_TRADE = "NO_COMPLETED_TRADE"

# guardrails
RATE_LIMITED = "RATE_LIMITED"
CONTENT_REJECTED = "CONTENT_REJECTED"

# store
STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
CASCADE_INCOMPLETE = "CASCADE_INCOMPLETE"


USER_MESSAGES = {
    SELF_TRADE: "You can't trade with yourself.",
    EMPTY_OFFER: "Pick at least one of your items to offer.",
    EMPTY_REQUEST: "Pick at least one item you want.",
    DUPLICATE_ITEM: "An item was selected twice.",
    ITEM_ON_BOTH_SIDES: "An item can't be both offered and requested.",
    ITEM_NOT_OWNED: "One of the selected items doesn't belong to the right person.",
    MIXED_OWNERS: "All requested items must belong to the same person.",
    INVALID_ID: "That id is not valid.",
    INVALID_RECORD: "Stored data for this trade is unreadable.",
    NOT_PARTICIPANT: "You're not part of this trade.",
    NOT_RECEIVER: "Only the person who received this offer can do that.",
    NOT_ITEM_OWNER: "Only the owner can remove this item.",
    MISSING_TITLE: "Give your item a title.",
    USER_BLOCKED: "You can't trade with this user.",
    SELF_REVIEW: "You can't review yourself.",
    INVALID_RATING: "Ratings go from 1 to 5 stars.",
    REVIEWEE_NOT_PARTICIPANT: "You can only review your trade partner.",
    SELF_MESSAGE: "You can't message yourself.",
    ITEM_BUSY: "One of your items is already promised in another trade.",
    ITEM_UNAVAILABLE: "That item is no longer available.",
    ALREADY_REVIEWED: "You already reviewed this trade.",
    DUPLICATE_RECORD: "That already exists.",
    TRADE_NOT_FOUND: "That trade no longer exists.",
    ITEM_NOT_FOUND: "That item no longer exists.",
    RECORD_NOT_FOUND: "Not found.",
    ILLEGAL_TRANSITION: "This trade can't be changed anymore.",
    NO_COMPLETED_TRADE: "You can only review after a completed trade.",
    STORE_UNAVAILABLE: "Couldn't reach the server. Please try again.",
    CASCADE_INCOMPLETE: "Some trades couldn't be cancelled. Please try again.",
}
