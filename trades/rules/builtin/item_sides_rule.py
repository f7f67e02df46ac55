from __future__ import annotations

from dataclasses import dataclass

from ...errors import EMPTY_OFFER, EMPTY_REQUEST, ValidationError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class ItemSidesRule:
    rule_id: str = "item_sides"
    priority: int = 20
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        if not draft.offered_item_ids:
            raise ValidationError(EMPTY_OFFER, "Offer must include at least one item", {"sender_id": draft.sender_id})
        if not draft.wanted_item_ids:
            raise ValidationError(
                EMPTY_REQUEST,
                "Offer must request at least one item",
                {"receiver_id": draft.receiver_id},
            )
