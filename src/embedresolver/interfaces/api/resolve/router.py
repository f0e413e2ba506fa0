"""Embed page resolution endpoints."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from embedresolver.domain.entities import ResolutionRequest
from embedresolver.infrastructure.resolver.url_codec import decode_base64url
from embedresolver.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["resolve"])

MISSING_TARGET_MESSAGE = "missing url or u64 parameter"
MAX_CANDIDATES = 20

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class CandidatesBody(BaseModel):
    """Request body for multi-candidate resolution."""

    candidates: list[str] = Field(min_length=1, max_length=MAX_CANDIDATES)
    referer: str | None = None


def _json(content: dict[str, Any], *, cache_hit: bool | None = None) -> JSONResponse:
    headers = dict(CORS_HEADERS)
    if cache_hit is not None:
        headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    return JSONResponse(content=content, headers=headers)


def _preflight() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


@router.options("/resolve")
async def resolve_preflight() -> Response:
    return _preflight()


@router.get("/resolve")
async def resolve(
    request: Request,
    u64: str | None = None,
    url: str | None = None,
    referer: str | None = None,
    debug: str | None = None,
) -> JSONResponse:
    """Resolve one embed page into ranked playable sources.

    ``u64`` (base64url) takes precedence over the raw ``url`` parameter.
    The body is always a ``ResolutionResult``; failures are ``ok: false``.
    """
    target = decode_base64url(u64) if u64 else (url or "")
    if not target:
        return _json({"ok": False, "urls": [], "message": MISSING_TARGET_MESSAGE})

    state = cast(AppState, request.app.state)
    response = await state.resolve_uc.execute(
        ResolutionRequest(
            target_url=target,
            referer=referer or None,
            debug=(debug or "").lower() in _TRUTHY,
        )
    )
    return _json(response.to_dict(), cache_hit=response.cache_hit)


@router.options("/resolve/candidates")
async def resolve_candidates_preflight() -> Response:
    return _preflight()


@router.post("/resolve/candidates")
async def resolve_candidates(request: Request, body: CandidatesBody) -> JSONResponse:
    """Resolve the first working embed page out of several candidates."""
    state = cast(AppState, request.app.state)
    response = await state.resolve_uc.resolve_candidates(
        body.candidates, referer=body.referer or None
    )
    return _json(response.to_dict())
