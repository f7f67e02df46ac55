from __future__ import annotations

from dataclasses import dataclass

from ...errors import ITEM_UNAVAILABLE, ConflictError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class WantedAvailabilityRule:
    """Wanted items already committed by their owner in an accepted trade."""

    rule_id: str = "wanted_availability"
    priority: int = 70
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        unavailable = sorted(set(draft.wanted_item_ids) & ctx.receiver_busy)
        if unavailable:
            raise ConflictError(
                ITEM_UNAVAILABLE,
                "Wanted items are no longer available",
                {"item_ids": unavailable, "owner_id": draft.receiver_id},
            )
