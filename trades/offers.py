from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

from schema import normalize_item_ids, normalize_user_id

from .errors import EMPTY_OFFER, EMPTY_REQUEST, INVALID_ID, MIXED_OWNERS, ValidationError
from .models import Item, TradeOffer, TradeStatus, utc_now_iso


@dataclass(frozen=True)
class OfferDraft:
    """A proposed trade before it is validated and stored.

    Item id tuples keep the caller's order and duplicates; the first id on
    each side becomes the primary item of the stored trade.
    """

    sender_id: str
    receiver_id: str
    offered_item_ids: Tuple[str, ...]
    wanted_item_ids: Tuple[str, ...]
    note: Optional[str] = None
    parent_trade_id: Optional[str] = None

    @property
    def all_item_ids(self) -> Tuple[str, ...]:
        return tuple(self.offered_item_ids) + tuple(self.wanted_item_ids)


def build_offer_draft(
    sender_id: Any,
    receiver_id: Any,
    offered_item_ids: Iterable[Any],
    wanted_item_ids: Iterable[Any],
    *,
    note: Optional[str] = None,
    parent_trade_id: Optional[str] = None,
) -> OfferDraft:
    try:
        sender = normalize_user_id(sender_id)
        receiver = normalize_user_id(receiver_id)
        offered = normalize_item_ids(offered_item_ids)
        wanted = normalize_item_ids(wanted_item_ids)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc)) from exc
    return OfferDraft(
        sender_id=sender,
        receiver_id=receiver,
        offered_item_ids=offered,
        wanted_item_ids=wanted,
        note=note,
        parent_trade_id=parent_trade_id,
    )


def draft_from_items(
    sender_id: Any,
    offered_items: Sequence[Item],
    wanted_items: Sequence[Item],
    *,
    note: Optional[str] = None,
) -> OfferDraft:
    """Build a draft from resolved items; the receiver is the owner of the wanted items."""
    if not wanted_items:
        raise ValidationError(EMPTY_REQUEST, "No wanted items selected")
    if not offered_items:
        raise ValidationError(EMPTY_OFFER, "No offered items selected")
    owners = {item.owner_id for item in wanted_items}
    if len(owners) != 1:
        raise ValidationError(
            MIXED_OWNERS,
            "Wanted items belong to different owners",
            {"owners": sorted(owners)},
        )
    return build_offer_draft(
        sender_id,
        next(iter(owners)),
        [item.item_id for item in offered_items],
        [item.item_id for item in wanted_items],
        note=note,
    )


def draft_to_trade(draft: OfferDraft, trade_id: str, created_at: Optional[str] = None) -> TradeOffer:
    if not draft.offered_item_ids:
        raise ValidationError(EMPTY_OFFER, "Offer has no items")
    if not draft.wanted_item_ids:
        raise ValidationError(EMPTY_REQUEST, "Offer requests no items")
    return TradeOffer(
        trade_id=trade_id,
        sender_id=draft.sender_id,
        receiver_id=draft.receiver_id,
        offered_item_id=draft.offered_item_ids[0],
        wanted_item_id=draft.wanted_item_ids[0],
        additional_offered_item_ids=tuple(draft.offered_item_ids[1:]),
        additional_wanted_item_ids=tuple(draft.wanted_item_ids[1:]),
        status=TradeStatus.PENDING,
        created_at=created_at or utc_now_iso(),
        note=draft.note,
        parent_trade_id=draft.parent_trade_id,
    )
