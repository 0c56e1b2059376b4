"""Result cache endpoints."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from vodhub.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def stats(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return JSONResponse(content=state.cache.stats())


@router.delete("")
async def clear(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    await state.cache.clear()
    log.info("cache_cleared_via_api")
    return JSONResponse(content={"status": "cleared"})
