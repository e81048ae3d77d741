"""Entry point for the FastAPI-powered hero pool service."""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import Database
from .models import HeroPoolPayload, media_type_for_kind, normalize_kind
from .policy import PolicyStore
from .services.catalog import CatalogRepository
from .services.hero_pipeline import HeroPipelineService
from .services.tmdb import TMDBClient
from .utils import absolute_artwork_url, now_ms

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

FORCE_VALUES = {"1", "true", "yes", "force"}
MIN_CACHE_SECONDS = 60
DISCONNECT_POLL_SECONDS = 0.5

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb = TMDBClient(settings, tmdb_http_client)
    if not tmdb.is_enabled():
        logger.info("TMDB access token not configured; hero pools use local metadata only")
    hero_pipeline = HeroPipelineService(
        settings,
        PolicyStore(settings.hero_policy_path),
        CatalogRepository(database.session_factory),
        database.session_factory,
        tmdb,
    )

    app.state.hero_pipeline = hero_pipeline
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Curated hero pools for the media catalog",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_hero_pipeline(app: FastAPI) -> HeroPipelineService:
    service = getattr(app.state, "hero_pipeline", None)
    if not isinstance(service, HeroPipelineService):
        raise RuntimeError("Hero pipeline not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/hero/{kind}")
    async def hero_pool(request: Request, kind: str) -> JSONResponse:
        service = get_hero_pipeline(fastapi_app)
        force = _is_truthy(request.query_params.get("force")) or _is_truthy(
            request.query_params.get("refresh")
        )
        try:
            async with disconnect_watch(request) as cancel_event:
                payload = await service.get_pool(
                    kind, force=force, cancel_event=cancel_event
                )
        except Exception as exc:
            logger.exception("Failed to build hero pool for %s", kind)
            raise HTTPException(
                status_code=500, detail="Failed to build hero pool"
            ) from exc

        body = serialize_pool(payload, str(request.base_url))
        max_age = max(
            MIN_CACHE_SECONDS, math.ceil((payload.expires_at - now_ms()) / 1000)
        )
        return JSONResponse(
            body, headers={"Cache-Control": f"public, max-age={max_age}"}
        )


def serialize_pool(payload: HeroPoolPayload, base_url: str) -> dict[str, Any]:
    """Render the payload with artwork references turned into absolute URLs."""

    body = payload.to_response()
    media_type = media_type_for_kind(normalize_kind(payload.kind))
    for item in body.get("items", []):
        backdrops: list[str] = []
        for value in item.get("backdrops") or []:
            url = absolute_artwork_url(value, media_type, base_url)
            if url and url not in backdrops:
                backdrops.append(url)
        item["backdrops"] = backdrops
        item["poster"] = absolute_artwork_url(item.get("poster"), media_type, base_url)
    return body


def _is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in FORCE_VALUES


async def _watch_disconnect(request: Request, event: asyncio.Event) -> None:
    while not event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling hero enrichment")
            event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@asynccontextmanager
async def disconnect_watch(request: Request):
    """Yield an event that is set once the client goes away."""

    event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, event))
    try:
        yield event
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
