"""Config endpoints: refresh and the config source list."""

from __future__ import annotations

from typing import Optional, cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vodhub.interfaces.app_state import AppState

router = APIRouter(prefix="/config", tags=["config"])


class RefreshBody(BaseModel):
    url: Optional[str] = None


class SourceBody(BaseModel):
    url: str
    name: Optional[str] = None
    priority: Optional[int] = None
    active: bool = True


class ActiveBody(BaseModel):
    active: bool


@router.post("/refresh")
async def refresh(request: Request, body: Optional[RefreshBody] = None) -> JSONResponse:
    """Fetch, parse and apply the config document.

    Without a body url the primary active source is used, then the
    configured default. Network failures answer 502, unusable documents
    422; in both cases the registry is left untouched.
    """
    state = cast(AppState, request.app.state)
    url = state.config_service.current_url(body.url if body is not None else None)
    if not url:
        return JSONResponse(
            status_code=400,
            content={
                "error": "no_config_url",
                "detail": "no url given, no active source and none configured",
            },
        )
    report = await state.config_service.refresh(url)
    return JSONResponse(content=report.to_dict())


@router.get("/sources")
async def list_sources(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    sources = [s.to_dict() for s in state.config_sources.sources()]
    primary = state.config_sources.primary()
    return JSONResponse(
        content={
            "sources": sources,
            "count": len(sources),
            "primary": primary.id if primary is not None else None,
        }
    )


@router.post("/sources", status_code=201)
async def add_source(request: Request, body: SourceBody) -> JSONResponse:
    """Register a config source; duplicate urls answer 409."""
    state = cast(AppState, request.app.state)
    source = await state.config_sources.add(
        body.url, name=body.name, priority=body.priority, active=body.active
    )
    return JSONResponse(status_code=201, content=source.to_dict())


@router.delete("/sources/{source_id}")
async def remove_source(request: Request, source_id: str) -> JSONResponse:
    """Forget a source. Sites it registered stay until the next refresh."""
    state = cast(AppState, request.app.state)
    source = await state.config_sources.remove(source_id)
    return JSONResponse(content=source.to_dict())


@router.put("/sources/{source_id}/active")
async def set_active(request: Request, source_id: str, body: ActiveBody) -> JSONResponse:
    state = cast(AppState, request.app.state)
    source = await state.config_sources.set_active(source_id, body.active)
    return JSONResponse(content=source.to_dict())


@router.post("/sources/{source_id}/check")
async def check_source(request: Request, source_id: str) -> JSONResponse:
    """Fetch and parse the source without applying it; report its health."""
    state = cast(AppState, request.app.state)
    source = await state.config_service.check_source(source_id)
    return JSONResponse(content=source.to_dict())
