from __future__ import annotations

from dataclasses import dataclass

from ...errors import ITEM_BUSY, ConflictError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class BusyItemRule:
    rule_id: str = "busy_item"
    priority: int = 60
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        busy = sorted(set(draft.offered_item_ids) & ctx.sender_busy)
        if busy:
            raise ConflictError(
                ITEM_BUSY,
                "Offered items are already pledged in another trade",
                {"item_ids": busy, "owner_id": draft.sender_id},
            )
