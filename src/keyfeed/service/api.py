"""HTTP surface of the signaling service."""

from __future__ import annotations

import json
from logging import getLogger

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from keyfeed import __version__
from keyfeed.adapters.signaling.schema import (
    AnnounceRequest,
    AnnounceResponse,
    ConflictResponse,
    ErrorResponse,
    HealthResponse,
    LookupResponse,
    StatsResponse,
)
from keyfeed.domain.errors import SequenceConflict, ValidationError, VerificationFailure
from keyfeed.domain.model import Announcement, is_owner_key

from .registry import AnnouncementRegistry

log = getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


def create_app(registry: AnnouncementRegistry | None = None) -> FastAPI:
    """Build the signaling app around ``registry`` (a fresh in-memory one by default)."""

    app = FastAPI(title="keyfeed signaling service", version=__version__)
    app.state.registry = registry or AnnouncementRegistry()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    def _registry(request: Request) -> AnnouncementRegistry:
        return request.app.state.registry

    @app.post("/announce", response_model=AnnounceResponse)
    async def announce(request: Request) -> JSONResponse:
        try:
            body = json.loads(await request.body())
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _error(400, "Invalid JSON")
        try:
            payload = AnnounceRequest.model_validate(body)
        except PydanticValidationError:
            return _error(400, "Missing required fields")

        announcement = Announcement(
            owner_key=payload.public_key,
            pointer=payload.manifest_infohash,
            seq=payload.seq,
            signature=payload.signature,
        )
        try:
            entry = _registry(request).register(announcement)
        except ValidationError as exc:
            return _error(400, str(exc))
        except VerificationFailure as exc:
            log.warning("Rejected announce for %s...: %s", payload.public_key[:16], exc)
            return _error(403, str(exc))
        except SequenceConflict as exc:
            conflict = ConflictResponse(error=str(exc), current_seq=exc.current_seq)
            return JSONResponse(conflict.model_dump(by_alias=True), status_code=409)
        return JSONResponse(AnnounceResponse(seq=entry.seq).model_dump())

    @app.get("/lookup/{public_key}", response_model=LookupResponse)
    async def lookup(public_key: str, request: Request) -> JSONResponse:
        if not is_owner_key(public_key):
            return _error(400, "Invalid public key format")
        entry = _registry(request).lookup(public_key)
        if entry is None:
            return _error(404, "Not found")
        response = LookupResponse(
            public_key=entry.public_key,
            manifest_infohash=entry.manifest_infohash,
            seq=entry.seq,
            updated_at=entry.updated_at,
            signature=entry.signature,
        )
        return JSONResponse(response.model_dump(by_alias=True))

    @app.get("/stats", response_model=StatsResponse)
    async def stats(request: Request) -> StatsResponse:
        return StatsResponse(entries=len(_registry(request)))

    @app.get("/", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        return HealthResponse(entries=len(_registry(request)))

    return app
