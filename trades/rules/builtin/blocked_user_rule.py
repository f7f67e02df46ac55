from __future__ import annotations

from dataclasses import dataclass

from ...errors import USER_BLOCKED, ValidationError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class BlockedUserRule:
    rule_id: str = "blocked_user"
    priority: int = 50
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        if ctx.blocked:
            raise ValidationError(
                USER_BLOCKED,
                "One of the parties has blocked the other",
                {"sender_id": draft.sender_id, "receiver_id": draft.receiver_id},
            )
