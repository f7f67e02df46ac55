from __future__ import annotations

import dataclasses
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
from trades.engine import HydratedTrade, TradeEngine
from trades.errors import (
    ConflictError,
    NotFoundError,
    RateLimitError,
    SanitizationError,
    StateError,
    StoreError,
    TradeError,
)
from trades.models import Item, TradeOffer, serialize_item, serialize_trade
from trades.store import SqliteRecordStore

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Pydantic request models
# -------------------------------------------------------------------------
class ItemCreateRequest(BaseModel):
    owner_id: str
    title: str
    category: str = ""
    condition: str = ""
    description: str = ""


class OfferCreateRequest(BaseModel):
    sender_id: str
    receiver_id: str
    offered_item_ids: List[str] = Field(default_factory=list)
    wanted_item_ids: List[str] = Field(default_factory=list)
    note: Optional[str] = None


class RespondRequest(BaseModel):
    user_id: str
    accept: bool


class CounterOfferRequest(BaseModel):
    user_id: str
    offered_item_ids: List[str] = Field(default_factory=list)
    wanted_item_ids: List[str] = Field(default_factory=list)
    note: Optional[str] = None


class TradeActionRequest(BaseModel):
    user_id: str


class ReviewSubmitRequest(BaseModel):
    reviewer_id: str
    reviewed_id: str
    trade_id: Optional[str] = None
    rating: int
    comment: Optional[str] = None


class MessageSendRequest(BaseModel):
    sender_id: str
    receiver_id: str
    content: str
    trade_id: Optional[str] = None


class BlockRequest(BaseModel):
    blocker_id: str
    blocked_id: str


class InterestRequest(BaseModel):
    user_id: str


# -------------------------------------------------------------------------
# Error / payload helpers
# -------------------------------------------------------------------------
def _status_for(error: TradeError) -> int:
    if isinstance(error, RateLimitError):
        return 429
    if isinstance(error, SanitizationError):
        return 422
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ConflictError, StateError)):
        return 409
    if isinstance(error, StoreError):
        return 503
    return 400


def _trade_error_response(error: TradeError) -> JSONResponse:
    payload = {
        "ok": False,
        "error": {
            "code": error.code,
            "message": error.user_message,
            "details": error.details,
        },
    }
    headers = None
    if isinstance(error, RateLimitError):
        headers = {"Retry-After": str(max(1, math.ceil(error.retry_after)))}
    status = _status_for(error)
    if status >= 500:
        logger.error("[API_STORE_ERROR] %s", error)
    return JSONResponse(status_code=status, content=payload, headers=headers)


def _trade_out(trade: TradeOffer) -> Dict[str, Any]:
    out = serialize_trade(trade)
    out["trade_id"] = trade.trade_id
    return out


def _item_out(item: Item) -> Dict[str, Any]:
    out = serialize_item(item)
    out["item_id"] = item.item_id
    return out


def _hydrated_out(h: HydratedTrade) -> Dict[str, Any]:
    return {
        "trade": _trade_out(h.trade),
        "offered_items": [_item_out(i) for i in h.offered_items],
        "wanted_items": [_item_out(i) for i in h.wanted_items],
        "missing_item_ids": list(h.missing_item_ids),
    }


def _engine(request: Request) -> TradeEngine:
    return request.app.state.engine


router = APIRouter(prefix="/api")


@router.get("/health")
async def health():
    return {"ok": True}


# -------------------------------------------------------------------------
# Items
# -------------------------------------------------------------------------
@router.post("/items")
async def api_item_create(req: ItemCreateRequest, request: Request):
    try:
        item = await _engine(request).add_item(
            req.owner_id,
            req.title,
            category=req.category,
            condition=req.condition,
            description=req.description,
        )
        return {"ok": True, "item": _item_out(item)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/items")
async def api_items_owned(user_id: str, request: Request):
    try:
        items = await _engine(request).list_owned_items(user_id)
        return {"ok": True, "items": [_item_out(i) for i in items]}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/items/available")
async def api_items_available(user_id: str, request: Request):
    try:
        items = await _engine(request).available_items(user_id)
        return {"ok": True, "items": [_item_out(i) for i in items]}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/busy-items")
async def api_busy_items(user_id: str, request: Request, excluding_trade_id: Optional[str] = None):
    try:
        ids = await _engine(request).busy_item_ids(user_id, excluding_trade_id)
        return {"ok": True, "item_ids": sorted(ids)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/items/{item_id}/interest")
async def api_item_interest(item_id: str, req: InterestRequest, request: Request):
    try:
        item = await _engine(request).mark_interested(req.user_id, item_id)
        return {"ok": True, "item": _item_out(item)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.delete("/items/{item_id}/interest")
async def api_item_interest_remove(item_id: str, user_id: str, request: Request):
    try:
        removed = await _engine(request).remove_interest(user_id, item_id)
        return {"ok": True, "removed": removed}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/items/interested")
async def api_items_interested(user_id: str, request: Request):
    try:
        items = await _engine(request).list_interested_items(user_id)
        return {"ok": True, "items": [_item_out(i) for i in items]}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.delete("/items/{item_id}")
async def api_item_delete(item_id: str, owner_id: str, request: Request):
    try:
        result = await _engine(request).delete_item(owner_id, item_id)
        return {
            "ok": True,
            "item_id": result.item_id,
            "cancelled_count": result.cancelled_count,
            "cancelled_trade_ids": list(result.cancelled_trade_ids),
        }
    except TradeError as exc:
        return _trade_error_response(exc)


# -------------------------------------------------------------------------
# Offers / trades
# -------------------------------------------------------------------------
@router.post("/offers")
async def api_offer_create(req: OfferCreateRequest, request: Request):
    try:
        trade = await _engine(request).create_offer(
            req.sender_id,
            req.receiver_id,
            req.offered_item_ids,
            req.wanted_item_ids,
            note=req.note,
        )
        return {"ok": True, "trade": _trade_out(trade)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/trades/{trade_id}")
async def api_trade_get(trade_id: str, request: Request):
    engine = _engine(request)
    try:
        trade = await engine.get_trade(trade_id)
        hydrated = await engine.hydrate_trades([trade])
        return {"ok": True, **_hydrated_out(hydrated[0])}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/trades/{trade_id}/respond")
async def api_trade_respond(trade_id: str, req: RespondRequest, request: Request):
    try:
        trade = await _engine(request).respond(req.user_id, trade_id, req.accept)
        return {"ok": True, "trade": _trade_out(trade)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/trades/{trade_id}/counter")
async def api_trade_counter(trade_id: str, req: CounterOfferRequest, request: Request):
    try:
        result = await _engine(request).counter_offer(
            req.user_id,
            trade_id,
            req.offered_item_ids,
            req.wanted_item_ids,
            note=req.note,
        )
        return {"ok": True, "original": _trade_out(result.original), "counter": _trade_out(result.counter)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/trades/{trade_id}/cancel")
async def api_trade_cancel(trade_id: str, req: TradeActionRequest, request: Request):
    try:
        trade = await _engine(request).cancel(req.user_id, trade_id)
        return {"ok": True, "trade": _trade_out(trade)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/trades/{trade_id}/complete")
async def api_trade_complete(trade_id: str, req: TradeActionRequest, request: Request):
    try:
        trade = await _engine(request).complete(req.user_id, trade_id)
        return {"ok": True, "trade": _trade_out(trade)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/trades/{trade_id}/confirm")
async def api_trade_confirm(trade_id: str, req: TradeActionRequest, request: Request):
    try:
        result = await _engine(request).confirm_completion(req.user_id, trade_id)
        return {"ok": True, "result": result.value}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/trades/{trade_id}/history")
async def api_trade_history(trade_id: str, request: Request):
    try:
        return {"ok": True, "history": await _engine(request).trade_history(trade_id)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/offers/incoming")
async def api_offers_incoming(user_id: str, request: Request):
    engine = _engine(request)
    try:
        trades = await engine.list_incoming_offers(user_id)
        return {"ok": True, "trades": [_hydrated_out(h) for h in await engine.hydrate_trades(trades)]}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/trades/active")
async def api_trades_active(user_id: str, request: Request):
    engine = _engine(request)
    try:
        trades = await engine.list_active_trades(user_id)
        return {"ok": True, "trades": [_hydrated_out(h) for h in await engine.hydrate_trades(trades)]}
    except TradeError as exc:
        return _trade_error_response(exc)


# -------------------------------------------------------------------------
# Reviews
# -------------------------------------------------------------------------
@router.get("/trades/{trade_id}/can-review")
async def api_can_review(trade_id: str, reviewer_id: str, request: Request):
    try:
        reason = await _engine(request).reviews.review_block_reason(reviewer_id, trade_id)
        return {"ok": True, "can_review": reason is None, "reason": reason}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/reviews")
async def api_review_submit(req: ReviewSubmitRequest, request: Request):
    try:
        review = await _engine(request).reviews.submit_review(
            req.reviewer_id,
            req.reviewed_id,
            req.trade_id,
            req.rating,
            req.comment,
        )
        return {"ok": True, "review": dataclasses.asdict(review)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/users/{user_id}/reviews")
async def api_reviews_for_user(user_id: str, request: Request):
    gate = _engine(request).reviews
    try:
        reviews = await gate.reviews_for_user(user_id)
        summary = await gate.rating_summary(user_id)
        return {
            "ok": True,
            "reviews": [dataclasses.asdict(r) for r in reviews],
            "summary": dataclasses.asdict(summary),
        }
    except TradeError as exc:
        return _trade_error_response(exc)


# -------------------------------------------------------------------------
# Messages / blocks
# -------------------------------------------------------------------------
@router.post("/messages")
async def api_message_send(req: MessageSendRequest, request: Request):
    try:
        message = await _engine(request).messages.send_message(
            req.sender_id,
            req.receiver_id,
            req.content,
            trade_id=req.trade_id,
        )
        return {"ok": True, "message": dataclasses.asdict(message)}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.get("/trades/{trade_id}/messages")
async def api_messages_list(trade_id: str, request: Request):
    try:
        messages = await _engine(request).messages.list_conversation(trade_id)
        return {"ok": True, "messages": [dataclasses.asdict(m) for m in messages]}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.post("/blocks")
async def api_block(req: BlockRequest, request: Request):
    try:
        await _engine(request).block_user(req.blocker_id, req.blocked_id)
        return {"ok": True}
    except TradeError as exc:
        return _trade_error_response(exc)


@router.delete("/blocks")
async def api_unblock(blocker_id: str, blocked_id: str, request: Request):
    try:
        removed = await _engine(request).unblock_user(blocker_id, blocked_id)
        return {"ok": True, "removed": removed}
    except TradeError as exc:
        return _trade_error_response(exc)


# -------------------------------------------------------------------------
# FastAPI app
# -------------------------------------------------------------------------
def create_app(engine: Optional[TradeEngine] = None) -> FastAPI:
    app = FastAPI(title="Barter trade server")
    app.state.engine = engine

    @app.on_event("startup")
    async def _startup_init_engine() -> None:
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if app.state.engine is None:
            # SQLite file is the single source of truth; schema is created on first open.
            app.state.engine = TradeEngine(SqliteRecordStore(config.MARKET_DB_PATH))
            logger.info("[SERVER_STARTED] db=%s", config.MARKET_DB_PATH)

    @app.on_event("shutdown")
    async def _shutdown_drain() -> None:
        engine_ = app.state.engine
        if engine_ is not None:
            await engine_.progression.drain()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
