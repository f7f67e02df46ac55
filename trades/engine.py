"""Negotiation engine: offers, responses, counter-offers, completion and item removal.

Every operation re-reads the records it acts on; the engine holds no trade
state between calls. Two clients mutating the same trade at once resolve by
write order on the status field (last write wins); the busy-item checks are
what keep an item from being pledged twice.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import config
from guardrails import rate_limiter as rate_limits
from guardrails import sanitizer
from schema import COLLECTION_ITEMS, new_id, normalize_item_id, normalize_item_ids, normalize_user_id

from . import busy, interests
from .blocks import block_user, is_blocked_between, unblock_user
from .errors import (
    CASCADE_INCOMPLETE,
    INVALID_ID,
    ITEM_BUSY,
    ITEM_NOT_FOUND,
    MISSING_TITLE,
    NOT_ITEM_OWNER,
    NOT_PARTICIPANT,
    NOT_RECEIVER,
    STORE_UNAVAILABLE,
    USER_BLOCKED,
    CascadeIncompleteError,
    ConflictError,
    NotFoundError,
    StoreError,
    TradeError,
    ValidationError,
)
from .items import ItemDirectory
from .messages import MessageService
from .models import COMMITTED_STATUSES, Item, TradeOffer, TradeStatus, serialize_item, utc_now_iso
from .negotiation_store import insert_trade, load_trade_or_404, patch_trade, select_trades, write_status
from .offers import OfferDraft, build_offer_draft, draft_from_items, draft_to_trade
from .progression import EVENT_TRADE_COMPLETED, ProgressionDispatcher, ProgressionNotifier
from .reviews import ReviewGate
from .rules import RuleRegistry
from .state_machine import ensure_transition
from .store import RecordStore, contains, eq, in_
from .transaction_log import append_status_change, list_trade_history
from .validator import validate_offer

logger = logging.getLogger(__name__)

_COMMITTED_VALUES = tuple(sorted(s.value for s in COMMITTED_STATUSES))


@dataclass(frozen=True)
class CounterOfferResult:
    original: TradeOffer
    counter: TradeOffer


class CompletionResult(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    TRADE_COMPLETED = "trade_completed"


@dataclass(frozen=True)
class CascadeResult:
    cancelled_trade_ids: Tuple[str, ...] = ()
    failed_trade_ids: Tuple[str, ...] = ()

    @property
    def cancelled_count(self) -> int:
        return len(self.cancelled_trade_ids)

    @property
    def complete(self) -> bool:
        return not self.failed_trade_ids


@dataclass(frozen=True)
class ItemDeletionResult:
    item_id: str
    cancelled_count: int
    cancelled_trade_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class HydratedTrade:
    trade: TradeOffer
    offered_items: Tuple[Item, ...]
    wanted_items: Tuple[Item, ...]
    missing_item_ids: Tuple[str, ...] = ()


def _uid(value: Any, field: str = "user_id") -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {field: value}) from exc


def _item_ids(values: Iterable[Any]) -> List[str]:
    try:
        return list(normalize_item_ids(values))
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"item_ids": values}) from exc


def _require_participant(trade: TradeOffer, user_id: str) -> None:
    if not trade.is_participant(user_id):
        raise ValidationError(
            NOT_PARTICIPANT,
            "User is not part of this trade",
            {"trade_id": trade.trade_id, "user_id": user_id},
        )


def _require_receiver(trade: TradeOffer, user_id: str) -> None:
    if user_id != trade.receiver_id:
        raise ValidationError(
            NOT_RECEIVER,
            "Only the receiver of this offer can do that",
            {"trade_id": trade.trade_id, "user_id": user_id},
        )


class TradeEngine:
    def __init__(
        self,
        store: RecordStore,
        *,
        notifier: Optional[ProgressionNotifier] = None,
        rate_limiter: Optional[rate_limits.RateLimiter] = None,
        registry: Optional[RuleRegistry] = None,
    ) -> None:
        self.store = store
        self.items = ItemDirectory(store)
        self.progression = ProgressionDispatcher(notifier)
        self.rate_limiter = rate_limiter or rate_limits.RateLimiter()
        self.registry = registry
        self.reviews = ReviewGate(store, self.progression)
        self.messages = MessageService(store, self.rate_limiter)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def add_item(
        self,
        owner_id: str,
        title: str,
        *,
        category: str = "",
        condition: str = "",
        description: str = "",
        item_id: Optional[str] = None,
    ) -> Item:
        owner = _uid(owner_id, "owner_id")
        clean_title = sanitizer.sanitize_for_display(title or "").strip()
        if not clean_title:
            raise ValidationError(MISSING_TITLE, "Item title is required", {"owner_id": owner})
        try:
            iid = normalize_item_id(item_id) if item_id is not None else new_id()
        except ValueError as exc:
            raise ValidationError(INVALID_ID, str(exc), {"item_id": item_id}) from exc
        item = Item(
            item_id=iid,
            owner_id=owner,
            title=clean_title,
            category=category or "",
            condition=condition or "",
            description=sanitizer.sanitize_for_display(description or ""),
            created_at=utc_now_iso(),
        )
        try:
            await self.store.insert(COLLECTION_ITEMS, serialize_item(item))
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to save item", {"error": str(exc)}) from exc
        logger.info("[ITEM_CREATED] item_id=%s owner=%s", item.item_id, owner)
        return item

    async def list_owned_items(self, user_id: str) -> List[Item]:
        return await self.items.list_owned_items(user_id)

    async def available_items(self, user_id: str) -> List[Item]:
        """Owned items that are not pledged in any committed trade."""
        owned = await self.items.list_owned_items(user_id)
        locked = await self.busy_item_ids(user_id)
        return [item for item in owned if item.item_id not in locked]

    async def busy_item_ids(self, user_id: str, excluding_trade_id: Optional[str] = None) -> FrozenSet[str]:
        return await busy.busy_item_ids(self.store, _uid(user_id), excluding_trade_id)

    async def is_item_busy(self, item_id: str) -> bool:
        return await busy.is_item_busy(self.store, item_id)

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def _clean_note(self, note: Optional[str]) -> Optional[str]:
        if note is None or not note.strip():
            return None
        return sanitizer.require_clean_text(note, config.OFFER_NOTE_SANITIZER, field="note")

    async def _submit_draft(
        self,
        draft: OfferDraft,
        *,
        source: str,
        excluding_trade_id: Optional[str] = None,
    ) -> TradeOffer:
        # Guardrails first: nothing below runs for a throttled or rejected note.
        rate_limits.enforce_offer_limit(self.rate_limiter, draft.sender_id)
        draft = dataclasses.replace(draft, note=self._clean_note(draft.note))

        await validate_offer(
            self.store,
            draft,
            excluding_trade_id=excluding_trade_id,
            registry=self.registry,
        )
        trade = await insert_trade(self.store, draft_to_trade(draft, new_id(), utc_now_iso()))
        logger.info(
            "[TRADE_CREATED] trade_id=%s sender=%s receiver=%s offered=%s wanted=%s source=%s",
            trade.trade_id,
            trade.sender_id,
            trade.receiver_id,
            list(trade.all_offered_ids),
            list(trade.all_wanted_ids),
            source,
        )
        await append_status_change(
            self.store,
            trade,
            None,
            TradeStatus.PENDING,
            actor_id=trade.sender_id,
            source=source,
            at=trade.created_at,
        )
        await self._note_interest(trade.sender_id, trade.wanted_item_id)
        return trade

    async def create_offer(
        self,
        sender_id: str,
        receiver_id: str,
        offered_item_ids: Iterable[str],
        wanted_item_ids: Iterable[str],
        note: Optional[str] = None,
    ) -> TradeOffer:
        draft = build_offer_draft(sender_id, receiver_id, offered_item_ids, wanted_item_ids, note=note)
        return await self._submit_draft(draft, source="create_offer")

    async def send_offer(
        self,
        sender_id: str,
        wanted_item_id: str,
        offered_item_id: str,
        note: Optional[str] = None,
    ) -> TradeOffer:
        return await self.send_multi_item_offer(sender_id, [wanted_item_id], [offered_item_id], note=note)

    async def send_multi_item_offer(
        self,
        sender_id: str,
        wanted_item_ids: Sequence[str],
        offered_item_ids: Sequence[str],
        note: Optional[str] = None,
    ) -> TradeOffer:
        """Offer items for someone's listings; the receiver is whoever owns the wanted items."""
        wanted_ids = _item_ids(wanted_item_ids)
        offered_ids = _item_ids(offered_item_ids)
        found = await self.items.get_items(wanted_ids + offered_ids)
        missing = [i for i in wanted_ids + offered_ids if i not in found]
        if missing:
            raise NotFoundError(ITEM_NOT_FOUND, "Item not found", {"item_ids": missing})
        draft = draft_from_items(
            sender_id,
            [found[i] for i in offered_ids],
            [found[i] for i in wanted_ids],
            note=note,
        )
        return await self._submit_draft(draft, source="send_offer")

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def get_trade(self, trade_id: str) -> TradeOffer:
        return await load_trade_or_404(self.store, trade_id)

    async def respond(self, user_id: str, trade_id: str, accept: bool) -> TradeOffer:
        uid = _uid(user_id)
        trade = await load_trade_or_404(self.store, trade_id)
        _require_receiver(trade, uid)
        target = TradeStatus.ACCEPTED if accept else TradeStatus.REJECTED
        ensure_transition(trade.status, target, trade_id=trade.trade_id)

        if accept:
            if await is_blocked_between(self.store, trade.sender_id, trade.receiver_id):
                raise ValidationError(USER_BLOCKED, "Trade partner is blocked", {"trade_id": trade.trade_id})
            # Accepting pledges the wanted items; they must not already be pledged elsewhere.
            locked = await busy.busy_item_ids(self.store, uid, excluding_trade_id=trade.trade_id)
            clash = sorted(set(trade.all_wanted_ids) & locked)
            if clash:
                raise ConflictError(
                    ITEM_BUSY,
                    "Requested items are already pledged in another trade",
                    {"trade_id": trade.trade_id, "item_ids": clash},
                )

        return await write_status(self.store, trade, target, actor_id=uid, source="respond")

    async def counter_offer(
        self,
        user_id: str,
        trade_id: str,
        offered_item_ids: Iterable[str],
        wanted_item_ids: Iterable[str],
        note: Optional[str] = None,
    ) -> CounterOfferResult:
        """Replace an open trade with a new proposal from its receiver.

        The new offer swaps roles (the original receiver becomes the sender)
        and is validated with busy sets that leave the original trade out.
        Writes are ordered insert-then-supersede; if marking the original as
        countered fails, the new offer is cancelled again before re-raising.
        """
        uid = _uid(user_id)
        original = await load_trade_or_404(self.store, trade_id)
        _require_receiver(original, uid)
        ensure_transition(original.status, TradeStatus.COUNTERED, trade_id=original.trade_id)

        draft = build_offer_draft(
            uid,
            original.sender_id,
            offered_item_ids,
            wanted_item_ids,
            note=note,
            parent_trade_id=original.trade_id,
        )
        counter = await self._submit_draft(draft, source="counter_offer", excluding_trade_id=original.trade_id)

        try:
            superseded = await write_status(
                self.store,
                original,
                TradeStatus.COUNTERED,
                actor_id=uid,
                source="counter_offer",
            )
        except Exception:
            logger.error(
                "[COUNTER_SUPERSEDE_FAILED] original=%s counter=%s; cancelling counter",
                original.trade_id,
                counter.trade_id,
            )
            try:
                await write_status(
                    self.store,
                    counter,
                    TradeStatus.CANCELLED,
                    actor_id=uid,
                    source="counter_compensation",
                )
            except Exception:
                logger.exception("[COUNTER_COMPENSATION_FAILED] counter=%s", counter.trade_id)
            raise

        return CounterOfferResult(original=superseded, counter=counter)

    async def cancel(self, user_id: str, trade_id: str) -> TradeOffer:
        uid = _uid(user_id)
        trade = await load_trade_or_404(self.store, trade_id)
        _require_participant(trade, uid)
        return await write_status(self.store, trade, TradeStatus.CANCELLED, actor_id=uid, source="cancel")

    async def complete(self, user_id: str, trade_id: str) -> TradeOffer:
        uid = _uid(user_id)
        trade = await load_trade_or_404(self.store, trade_id)
        _require_participant(trade, uid)
        completed = await write_status(self.store, trade, TradeStatus.COMPLETED, actor_id=uid, source="complete")
        self.progression.publish(EVENT_TRADE_COMPLETED, completed)
        return completed

    async def confirm_completion(self, user_id: str, trade_id: str) -> CompletionResult:
        """Two-phase completion: each party confirms; the second confirmation completes the trade."""
        uid = _uid(user_id)
        trade = await load_trade_or_404(self.store, trade_id)
        _require_participant(trade, uid)

        if await is_blocked_between(self.store, trade.sender_id, trade.receiver_id):
            raise ValidationError(USER_BLOCKED, "Trade partner is blocked", {"trade_id": trade.trade_id})
        if trade.status == TradeStatus.COMPLETED:
            return CompletionResult.TRADE_COMPLETED
        ensure_transition(trade.status, TradeStatus.COMPLETED, trade_id=trade.trade_id)

        is_sender = uid == trade.sender_id
        own_flag = "sender_confirmed_completion" if is_sender else "receiver_confirmed_completion"
        if getattr(trade, own_flag):
            return CompletionResult.ALREADY_CONFIRMED

        updated = await patch_trade(self.store, trade.trade_id, {own_flag: True, "updated_at": utc_now_iso()})
        logger.info("[TRADE_COMPLETION_CONFIRMED] trade_id=%s user=%s", trade.trade_id, uid)
        if not (updated.sender_confirmed_completion and updated.receiver_confirmed_completion):
            return CompletionResult.CONFIRMED

        completed = await write_status(
            self.store, updated, TradeStatus.COMPLETED, actor_id=uid, source="confirm_completion"
        )
        self.progression.publish(EVENT_TRADE_COMPLETED, completed)
        return CompletionResult.TRADE_COMPLETED

    async def completion_status(self, user_id: str, trade_id: str) -> Dict[str, bool]:
        uid = _uid(user_id)
        trade = await load_trade_or_404(self.store, trade_id)
        _require_participant(trade, uid)
        is_sender = uid == trade.sender_id
        return {
            "user_confirmed": trade.sender_confirmed_completion if is_sender else trade.receiver_confirmed_completion,
            "partner_confirmed": trade.receiver_confirmed_completion if is_sender else trade.sender_confirmed_completion,
            "is_complete": trade.status == TradeStatus.COMPLETED,
        }

    # ------------------------------------------------------------------
    # Item removal cascade
    # ------------------------------------------------------------------

    async def _active_trades_for_item(self, item_id: str) -> List[TradeOffer]:
        committed = in_("status", _COMMITTED_VALUES)
        queries = [
            [eq("offered_item_id", item_id), committed],
            [eq("wanted_item_id", item_id), committed],
            [contains("additional_offered_ids", item_id), committed],
            [contains("additional_wanted_ids", item_id), committed],
        ]
        seen: Dict[str, TradeOffer] = {}
        for filters in queries:
            for trade in await select_trades(self.store, filters, order_by="created_at", descending=False):
                seen.setdefault(trade.trade_id, trade)
        return list(seen.values())

    async def cancel_trades_for_item(self, item_id: str, *, actor_id: Optional[str] = None) -> CascadeResult:
        """Cancel every pending/accepted trade that references item_id on either side.

        Not atomic: each trade is cancelled on its own and failures are
        collected. Re-running only touches trades that are still active.
        """
        cancelled: List[str] = []
        failed: List[str] = []
        for trade in await self._active_trades_for_item(item_id):
            try:
                await write_status(
                    self.store,
                    trade,
                    TradeStatus.CANCELLED,
                    actor_id=actor_id,
                    source="item_deleted",
                )
            except Exception:
                logger.exception("[CASCADE_CANCEL_FAILED] item_id=%s trade_id=%s", item_id, trade.trade_id)
                failed.append(trade.trade_id)
            else:
                cancelled.append(trade.trade_id)
        return CascadeResult(cancelled_trade_ids=tuple(cancelled), failed_trade_ids=tuple(failed))

    async def delete_item(self, owner_id: str, item_id: str) -> ItemDeletionResult:
        owner = _uid(owner_id, "owner_id")
        item = await self.items.get_item(item_id)
        if item is None:
            raise NotFoundError(ITEM_NOT_FOUND, "Item not found", {"item_id": item_id})
        if item.owner_id != owner:
            raise ValidationError(
                NOT_ITEM_OWNER,
                "Only the owner can delete an item",
                {"item_id": item.item_id, "owner_id": item.owner_id},
            )

        cascade = await self.cancel_trades_for_item(item.item_id, actor_id=owner)
        if not cascade.complete:
            raise CascadeIncompleteError(
                CASCADE_INCOMPLETE,
                "Some trades referencing the item could not be cancelled; item kept",
                {
                    "item_id": item.item_id,
                    "cancelled_trade_ids": list(cascade.cancelled_trade_ids),
                    "failed_trade_ids": list(cascade.failed_trade_ids),
                },
                cancelled_count=cascade.cancelled_count,
                failed_trade_ids=cascade.failed_trade_ids,
            )

        try:
            await self.store.delete(COLLECTION_ITEMS, item.item_id)
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to delete item", {"item_id": item.item_id, "error": str(exc)}) from exc
        logger.info("[ITEM_DELETED] item_id=%s cancelled_trades=%s", item.item_id, cascade.cancelled_count)
        return ItemDeletionResult(
            item_id=item.item_id,
            cancelled_count=cascade.cancelled_count,
            cancelled_trade_ids=cascade.cancelled_trade_ids,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_incoming_offers(self, user_id: str) -> List[TradeOffer]:
        uid = _uid(user_id)
        return await select_trades(self.store, [eq("receiver_id", uid), eq("status", TradeStatus.PENDING.value)])

    async def list_sent_offers(self, user_id: str) -> List[TradeOffer]:
        uid = _uid(user_id)
        return await select_trades(self.store, [eq("sender_id", uid), eq("status", TradeStatus.PENDING.value)])

    async def list_active_trades(self, user_id: str) -> List[TradeOffer]:
        """Accepted and completed trades for the user, newest first."""
        uid = _uid(user_id)
        statuses = in_("status", (TradeStatus.ACCEPTED.value, TradeStatus.COMPLETED.value))
        trades = await select_trades(self.store, [eq("sender_id", uid), statuses])
        trades += await select_trades(self.store, [eq("receiver_id", uid), statuses])
        return sorted(trades, key=lambda t: t.created_at, reverse=True)

    async def latest_trade_with(
        self,
        user_id: str,
        partner_id: str,
        statuses: Optional[Iterable[TradeStatus]] = None,
    ) -> Optional[TradeOffer]:
        uid, pid = _uid(user_id), _uid(partner_id, "partner_id")
        wanted = statuses or (TradeStatus.PENDING, TradeStatus.ACCEPTED, TradeStatus.COMPLETED)
        status_filter = in_("status", tuple(TradeStatus.parse(s).value for s in wanted))
        trades = await select_trades(self.store, [eq("sender_id", uid), eq("receiver_id", pid), status_filter])
        trades += await select_trades(self.store, [eq("sender_id", pid), eq("receiver_id", uid), status_filter])
        if not trades:
            return None
        return max(trades, key=lambda t: t.created_at)

    async def hydrate_trades(self, trades: Sequence[TradeOffer]) -> List[HydratedTrade]:
        """Attach item records to trades with one batched item fetch."""
        if not trades:
            return []
        all_ids = set()
        for trade in trades:
            all_ids.update(trade.all_item_ids)
        found = await self.items.get_items(all_ids)
        out: List[HydratedTrade] = []
        for trade in trades:
            missing = tuple(i for i in trade.all_offered_ids + trade.all_wanted_ids if i not in found)
            out.append(
                HydratedTrade(
                    trade=trade,
                    offered_items=tuple(found[i] for i in trade.all_offered_ids if i in found),
                    wanted_items=tuple(found[i] for i in trade.all_wanted_ids if i in found),
                    missing_item_ids=missing,
                )
            )
        return out

    async def trade_history(self, trade_id: str) -> List[Dict[str, Any]]:
        trade = await load_trade_or_404(self.store, trade_id)
        return await list_trade_history(self.store, trade.trade_id)

    # ------------------------------------------------------------------
    # Block list
    # ------------------------------------------------------------------

    async def block_user(self, blocker_id: str, blocked_id: str) -> Dict[str, Any]:
        return await block_user(self.store, blocker_id, blocked_id)

    async def unblock_user(self, blocker_id: str, blocked_id: str) -> bool:
        return await unblock_user(self.store, blocker_id, blocked_id)

    # ------------------------------------------------------------------
    # Interests
    # ------------------------------------------------------------------

    async def _note_interest(self, user_id: str, item_id: str) -> None:
        # An offer stands even when its interest mark can't be written.
        try:
            await interests.save_interest(self.store, user_id, item_id)
        except TradeError as exc:
            logger.warning("[INTEREST_SAVE_FAILED] user=%s item_id=%s code=%s", user_id, item_id, exc.code)

    async def mark_interested(self, user_id: str, item_id: str) -> Item:
        uid = _uid(user_id)
        rate_limits.enforce_like_limit(self.rate_limiter, uid)
        item = await self.items.get_item(item_id)
        if item is None:
            raise NotFoundError(ITEM_NOT_FOUND, "Item not found", {"item_id": item_id})
        await interests.save_interest(self.store, uid, item.item_id)
        logger.info("[ITEM_INTEREST_MARKED] user=%s item_id=%s", uid, item.item_id)
        return item

    async def remove_interest(self, user_id: str, item_id: str) -> bool:
        return await interests.remove_interest(self.store, _uid(user_id), item_id)

    async def list_interested_items(self, user_id: str) -> List[Item]:
        """Marked items that still exist, newest mark first."""
        ids = await interests.interested_item_ids(self.store, _uid(user_id))
        found = await self.items.get_items(ids)
        return [found[i] for i in ids if i in found]
