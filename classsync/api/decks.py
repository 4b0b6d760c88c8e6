from __future__ import annotations

from fastapi import APIRouter, Request

from classsync.schema.records import DeckRecord
from classsync.schema.session import DeckResponse

router = APIRouter(tags=["decks"])


@router.post("/decks", response_model=DeckResponse)
async def put_deck(payload: DeckRecord, request: Request) -> DeckResponse:
    ctx = request.app.state.ctx
    await ctx.put_deck(payload)
    return DeckResponse(ok=True, deck_id=payload.deck_id, total_items=payload.total_items)


@router.get("/decks/{deck_id}", response_model=DeckRecord)
async def get_deck(deck_id: str, request: Request) -> DeckRecord:
    ctx = request.app.state.ctx
    return await ctx.get_deck(deck_id)
