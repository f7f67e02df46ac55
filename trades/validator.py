from __future__ import annotations

from typing import Optional

from .offers import OfferDraft
from .rules import OfferContext, RuleRegistry, build_offer_context, validate_all
from .store import RecordStore


async def validate_offer(
    store: RecordStore,
    draft: OfferDraft,
    *,
    excluding_trade_id: Optional[str] = None,
    registry: Optional[RuleRegistry] = None,
) -> OfferContext:
    """Validate a draft against fresh store state. Raises TradeError on the first failing rule."""
    ctx = await build_offer_context(store, draft, excluding_trade_id=excluding_trade_id)
    validate_all(draft, ctx, registry)
    return ctx
