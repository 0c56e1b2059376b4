"""Site registry endpoints: listing, enable/disable, probe, health reset."""

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vodhub.interfaces.app_state import AppState

router = APIRouter(prefix="/sites", tags=["sites"])


class EnabledBody(BaseModel):
    enabled: bool


@router.get("")
async def list_sites(request: Request) -> JSONResponse:
    """Return every registered site with its health."""
    state = cast(AppState, request.app.state)
    sites = state.registry.snapshot()
    return JSONResponse(content={"sites": sites, "count": len(sites)})


@router.put("/{key}/enabled")
async def set_enabled(request: Request, key: str, body: EnabledBody) -> JSONResponse:
    state = cast(AppState, request.app.state)
    entry = await state.registry.set_enabled(key, body.enabled)
    return JSONResponse(content=entry.to_dict())


@router.post("/{key}/probe")
async def probe(request: Request, key: str) -> JSONResponse:
    """Run the site's cheapest capability and report resulting health."""
    state = cast(AppState, request.app.state)
    entry = await state.registry.probe(key)
    return JSONResponse(content=entry.to_dict())


@router.post("/{key}/reset")
async def reset(request: Request, key: str) -> JSONResponse:
    state = cast(AppState, request.app.state)
    entry = await state.registry.reset_health(key)
    return JSONResponse(content=entry.to_dict())
