from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, AsyncIterator

from fastapi import BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shortener.cache import connect_redis
from shortener.clicks import BufferedClickRecorder, ClickRecorder
from shortener.codes import code_generator
from shortener.config import Settings, settings as default_settings
from shortener.errors import InvalidInput, ShortenerError
from shortener.schemas import (
    BatchItemError,
    HealthResponse,
    ShortenRequest,
    ShortenResponse,
    StatsResponse,
)
from shortener.service import (
    Allocation,
    allocate,
    build_short_url,
    get_stats,
    lookup_original_url,
    shorten_batch,
)
from shortener.store import MappingStore

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("shortener.access")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    The store must be up before serving: StorageUnavailable raised here
    aborts startup. Everything opened here is closed on shutdown, which
    uvicorn also runs on SIGINT/SIGTERM.
    """
    config: Settings = app.state.settings
    store = MappingStore.connect(config)

    redis_client = connect_redis(config.redis_url) if config.redis_url else None
    if redis_client is not None:
        clicks: ClickRecorder = BufferedClickRecorder(store, redis_client)
    else:
        clicks = ClickRecorder(store)

    app.state.store = store
    app.state.redis = redis_client
    app.state.clicks = clicks
    logger.info("URL shortener ready, base domain %s", config.base_domain)
    try:
        yield
    finally:
        logger.info("Shutting down")
        if redis_client is not None:
            redis_client.close()
        store.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> MappingStore:
    return request.app.state.store


def get_clicks(request: Request) -> ClickRecorder:
    return request.app.state.clicks


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body = {"error": HTTPStatus(status_code).phrase, "message": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def to_response(allocation: Allocation, config: Settings) -> ShortenResponse:
    code = allocation.mapping.short_code
    return ShortenResponse(
        original_url=allocation.mapping.original_url,
        short_url=build_short_url(config.base_domain, code),
        short_code=code,
    )


def create_app(config: Settings | None = None) -> FastAPI:
    app = FastAPI(title="URL Shortener", lifespan=lifespan)
    app.state.settings = config or default_settings

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        access_logger.info(
            "%s %s %s %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.exception_handler(ShortenerError)
    async def shortener_error_handler(request: Request, exc: ShortenerError):
        if exc.status_code >= 500:
            logger.error("%s at %s: %s", type(exc).__name__, request.url.path, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error at %s: %s", request.url.path, exc.errors())
        return error_response(400, "Invalid request data", errors=jsonable_errors(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error at %s: %s", request.url.path, exc, exc_info=exc)
        return error_response(500, "An unexpected error occurred")

    @app.get("/health", response_model=HealthResponse)
    def health(
        store: MappingStore = Depends(get_store),
        config: Settings = Depends(get_settings),
    ) -> HealthResponse:
        store.ping()
        return HealthResponse(
            status="ok",
            service="url-shortener",
            base_domain=config.base_domain,
            timestamp=datetime.now(timezone.utc),
        )

    @app.get("/api/shorten", response_model=ShortenResponse)
    def shorten_from_query(
        url: str | None = None,
        store: MappingStore = Depends(get_store),
        config: Settings = Depends(get_settings),
    ) -> ShortenResponse:
        if not url:
            raise InvalidInput("URL parameter is required")
        return shorten_one(url, store, config)

    @app.post("/api/shorten", response_model=ShortenResponse)
    def shorten_from_body(
        payload: ShortenRequest,
        store: MappingStore = Depends(get_store),
        config: Settings = Depends(get_settings),
    ) -> ShortenResponse:
        return shorten_one(payload.url, store, config)

    @app.post(
        "/api/shorten/batch",
        response_model=list[ShortenResponse | BatchItemError],
        response_model_exclude_none=True,
    )
    def shorten_many(
        urls: Any = Body(...),
        store: MappingStore = Depends(get_store),
        config: Settings = Depends(get_settings),
    ) -> list[ShortenResponse | BatchItemError]:
        outcomes = shorten_batch(
            store,
            urls,
            max_batch_size=config.max_batch_size,
            max_attempts=config.max_allocation_attempts,
            max_length=config.max_url_length,
            generate=code_generator(config.code_length),
        )
        results: list[ShortenResponse | BatchItemError] = []
        for outcome in outcomes:
            if outcome.allocation is not None:
                results.append(to_response(outcome.allocation, config))
            else:
                raw = outcome.original_url
                results.append(
                    BatchItemError(
                        error=outcome.error,
                        original_url=raw if isinstance(raw, str) and raw else None,
                    )
                )
        return results

    @app.get("/api/stats/{code}", response_model=StatsResponse)
    def stats(
        code: str,
        store: MappingStore = Depends(get_store),
        clicks: ClickRecorder = Depends(get_clicks),
        config: Settings = Depends(get_settings),
    ) -> StatsResponse:
        row = get_stats(store, code, clicks, code_length=config.code_length)
        return StatsResponse(
            original_url=row.original_url,
            short_code=row.short_code,
            created_at=row.created_at,
            access_count=row.access_count,
        )

    # Catch-all single segment: must stay last.
    @app.get("/{code}")
    def redirect(
        code: str,
        request: Request,
        background_tasks: BackgroundTasks,
        store: MappingStore = Depends(get_store),
        clicks: ClickRecorder = Depends(get_clicks),
        config: Settings = Depends(get_settings),
    ) -> RedirectResponse:
        long_url = lookup_original_url(
            store,
            code,
            code_length=config.code_length,
            cache=request.app.state.redis,
            ttl_seconds=config.cache_ttl_seconds,
        )
        # Runs after the response is sent; never raises.
        background_tasks.add_task(clicks.record, code)
        return RedirectResponse(url=long_url, status_code=302)

    return app


def shorten_one(url: str, store: MappingStore, config: Settings) -> ShortenResponse:
    allocation = allocate(
        store,
        url,
        max_attempts=config.max_allocation_attempts,
        max_length=config.max_url_length,
        generate=code_generator(config.code_length),
    )
    return to_response(allocation, config)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


app = create_app()
