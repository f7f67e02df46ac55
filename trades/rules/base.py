from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional, Protocol

from ..blocks import is_blocked_between
from ..busy import busy_item_ids
from ..items import ItemDirectory
from ..offers import OfferDraft
from ..store import RecordStore


@dataclass
class OfferContext:
    """Everything the offer rules read, fetched once before validation."""

    store: RecordStore
    sender_inventory: FrozenSet[str]
    receiver_inventory: FrozenSet[str]
    sender_busy: FrozenSet[str]
    receiver_busy: FrozenSet[str]
    blocked: bool = False
    excluding_trade_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


class Rule(Protocol):
    rule_id: str
    priority: int
    enabled: bool

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        ...


async def build_offer_context(
    store: RecordStore,
    draft: OfferDraft,
    *,
    excluding_trade_id: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> OfferContext:
    """Prefetch inventories, busy sets and block state for both parties.

    excluding_trade_id leaves one trade out of both busy sets; a counter-offer
    passes the trade it replaces so its items can be pledged again.
    """
    items = ItemDirectory(store)
    return OfferContext(
        store=store,
        sender_inventory=await items.owned_item_ids(draft.sender_id),
        receiver_inventory=await items.owned_item_ids(draft.receiver_id),
        sender_busy=await busy_item_ids(store, draft.sender_id, excluding_trade_id),
        receiver_busy=await busy_item_ids(store, draft.receiver_id, excluding_trade_id),
        blocked=await is_blocked_between(store, draft.sender_id, draft.receiver_id),
        excluding_trade_id=excluding_trade_id,
        extra=dict(extra) if extra else {},
    )
