from __future__ import annotations

from dataclasses import dataclass

from ...errors import ITEM_NOT_OWNED, ValidationError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class OwnershipRule:
    rule_id: str = "ownership"
    priority: int = 40
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        # Missing items are reported the same way: they are not in anyone's inventory.
        not_sender = [i for i in draft.offered_item_ids if i not in ctx.sender_inventory]
        if not_sender:
            raise ValidationError(
                ITEM_NOT_OWNED,
                "Offered items not owned by sender",
                {"item_ids": not_sender, "owner_id": draft.sender_id, "side": "offered"},
            )
        not_receiver = [i for i in draft.wanted_item_ids if i not in ctx.receiver_inventory]
        if not_receiver:
            raise ValidationError(
                ITEM_NOT_OWNED,
                "Wanted items not owned by receiver",
                {"item_ids": not_receiver, "owner_id": draft.receiver_id, "side": "wanted"},
            )
