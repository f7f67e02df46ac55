from __future__ import annotations

from dataclasses import dataclass

from ...errors import SELF_TRADE, ValidationError
from ...offers import OfferDraft
from ..base import OfferContext


@dataclass
class ParticipantsRule:
    rule_id: str = "participants"
    priority: int = 10
    enabled: bool = True

    def validate(self, draft: OfferDraft, ctx: OfferContext) -> None:
        if draft.sender_id == draft.receiver_id:
            raise ValidationError(
                SELF_TRADE,
                "Sender and receiver must differ",
                {"user_id": draft.sender_id},
            )
