from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from .errors import ILLEGAL_TRANSITION, StateError
from .models import TradeStatus

TRANSITIONS: Dict[TradeStatus, FrozenSet[TradeStatus]] = {
    TradeStatus.PENDING: frozenset(
        {TradeStatus.ACCEPTED, TradeStatus.REJECTED, TradeStatus.COUNTERED, TradeStatus.CANCELLED}
    ),
    TradeStatus.ACCEPTED: frozenset({TradeStatus.COMPLETED, TradeStatus.CANCELLED, TradeStatus.COUNTERED}),
    TradeStatus.REJECTED: frozenset(),
    TradeStatus.COUNTERED: frozenset(),
    TradeStatus.COMPLETED: frozenset(),
    TradeStatus.CANCELLED: frozenset(),
}


def can_transition(current: TradeStatus, target: TradeStatus) -> bool:
    return target in TRANSITIONS.get(TradeStatus.parse(current), frozenset())


def is_terminal(status: TradeStatus) -> bool:
    return not TRANSITIONS.get(TradeStatus.parse(status))


def ensure_transition(current: TradeStatus, target: TradeStatus, *, trade_id: Optional[str] = None) -> None:
    current = TradeStatus.parse(current)
    target = TradeStatus.parse(target)
    if not can_transition(current, target):
        raise StateError(
            ILLEGAL_TRANSITION,
            f"Cannot move trade from {current.value} to {target.value}",
            {
                "trade_id": trade_id,
                "from_status": current.value,
                "to_status": target.value,
                "allowed": sorted(s.value for s in TRANSITIONS[current]),
            },
        )
