"""Aggregated query endpoints (search, category, detail, play)."""

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from vodhub.domain.entities import AggregatedResult
from vodhub.interfaces.app_state import AppState

router = APIRouter(tags=["query"])


def _respond(result: AggregatedResult) -> JSONResponse:
    return JSONResponse(content=result.to_dict())


@router.get("/search")
async def search(
    request: Request,
    q: str = Query(..., description="Search keyword."),
    quick: bool = Query(default=False, description="Only quick-searchable sites."),
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return _respond(await state.aggregator.search(q, quick=quick))


@router.get("/category/{category_id}")
async def category(
    request: Request,
    category_id: str,
    page: int = Query(default=1, ge=1),
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return _respond(await state.aggregator.list_category(category_id, page))


@router.get("/detail")
async def detail(
    request: Request,
    id: str = Query(..., description="Item id as returned by search/category."),
    site: str | None = Query(default=None, description="Restrict to one site."),
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return _respond(await state.aggregator.resolve_detail(id, site))


@router.get("/play")
async def play(
    request: Request,
    id: str = Query(..., description="Episode/play id from a detail record."),
    site: str | None = Query(default=None, description="Restrict to one site."),
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return _respond(await state.aggregator.resolve_playable(id, site))
