from __future__ import annotations

from dataclasses import dataclass

from ...errors import DUPLICATE_ITEM, ITEM_ON_BOTH_SIDES, ValidationError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class DuplicateItemRule:
    rule_id: str = "duplicate_item"
    priority: int = 30
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        for side, ids in (("offered", draft.offered_item_ids), ("wanted", draft.wanted_item_ids)):
            seen: set[str] = set()
            for item_id in ids:
                if item_id in seen:
                    raise ValidationError(
                        DUPLICATE_ITEM,
                        "Duplicate item in offer",
                        {"item_id": item_id, "side": side},
                    )
                seen.add(item_id)

        both = sorted(set(draft.offered_item_ids) & set(draft.wanted_item_ids))
        if both:
            raise ValidationError(
                ITEM_ON_BOTH_SIDES,
                "Item appears on both sides of the offer",
                {"item_ids": both},
            )
