from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from pydantic import AnyUrl, TypeAdapter, ValidationError
from redis import Redis
from redis.exceptions import RedisError

from shortener.cache import cache_key_for_code
from shortener.clicks import ClickRecorder
from shortener.codes import DEFAULT_CODE_LENGTH, code_generator, is_valid_code
from shortener.errors import (
    AllocationExhausted,
    ConflictError,
    InvalidInput,
    NotFound,
)
from shortener.models import MAX_URL_LENGTH, UrlMapping
from shortener.store import MappingStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10

_any_url = TypeAdapter(AnyUrl)

# Schemes that run code in the browser instead of navigating somewhere
BLOCKED_SCHEMES = frozenset({"javascript", "vbscript", "data"})


@dataclass(frozen=True)
class Allocation:
    mapping: UrlMapping
    is_new: bool

    @property
    def short_code(self) -> str:
        return self.mapping.short_code


@dataclass(frozen=True)
class BatchOutcome:
    original_url: Any
    allocation: Allocation | None = None
    error: str | None = None


@dataclass(frozen=True)
class Stats:
    original_url: str
    short_code: str
    created_at: datetime
    access_count: int


def build_short_url(base_domain: str, code: str) -> str:
    return f"{base_domain.rstrip('/')}/{code}"


def normalize_url(original_url: Any, max_length: int = MAX_URL_LENGTH) -> str:
    """
    Trim surrounding whitespace and check the result is an absolute URL of
    at most `max_length` characters whose scheme is not script-bearing. The
    trimmed string is returned as-is; pydantic's normalized form is only
    used for validation.
    """
    if not isinstance(original_url, str) or not original_url.strip():
        raise InvalidInput("URL is required")

    url = original_url.strip()
    if len(url) > max_length:
        raise InvalidInput(f"URL exceeds maximum length ({max_length} characters)")

    try:
        parsed = _any_url.validate_python(url)
    except ValidationError:
        raise InvalidInput("Invalid URL format") from None

    if parsed.scheme.lower() in BLOCKED_SCHEMES:
        raise InvalidInput(f"URL scheme {parsed.scheme!r} is not allowed")

    return url


def allocate(
    store: MappingStore,
    original_url: Any,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    max_length: int = MAX_URL_LENGTH,
    generate: Callable[[], str] | None = None,
) -> Allocation:
    """
    Return the existing mapping for `original_url` or create one.

    Each attempt draws one candidate code. A candidate already in the store
    burns the attempt. An insert rejected by the unique constraints means
    someone else got there first: re-check by URL and hand back the winner's
    row, otherwise the code lost a race and the attempt is burned too.
    """
    url = normalize_url(original_url, max_length)
    if generate is None:
        generate = code_generator(DEFAULT_CODE_LENGTH)

    existing = store.find_by_url(url)
    if existing is not None:
        return Allocation(existing, is_new=False)

    for attempt in range(1, max_attempts + 1):
        candidate = generate()
        if store.find_by_code(candidate) is not None:
            logger.debug("Code collision on %s (attempt %d/%d)", candidate, attempt, max_attempts)
            continue

        try:
            row = store.insert(url, candidate)
        except ConflictError:
            existing = store.find_by_url(url)
            if existing is not None:
                logger.debug("Lost insert race for %s, using %s", url, existing.short_code)
                return Allocation(existing, is_new=False)
            logger.debug("Code %s taken concurrently (attempt %d/%d)", candidate, attempt, max_attempts)
            continue

        logger.info("Allocated %s for %s", row.short_code, url)
        return Allocation(row, is_new=True)

    logger.error("No unique code after %d attempts for %s", max_attempts, url)
    raise AllocationExhausted(
        f"Failed to generate a unique code after {max_attempts} attempts"
    )


def resolve(store: MappingStore, code: Any, *, code_length: int = DEFAULT_CODE_LENGTH) -> UrlMapping:
    if not is_valid_code(code, code_length):
        raise InvalidInput("Invalid short code format")

    row = store.find_by_code(code)
    if row is None:
        raise NotFound("Short URL not found")
    return row


def lookup_original_url(
    store: MappingStore,
    code: Any,
    *,
    code_length: int = DEFAULT_CODE_LENGTH,
    cache: Redis | None = None,
    ttl_seconds: int = 86400,
) -> str:
    """
    Redirect hot path:
      1) Redis cache lookup
      2) store fallback
      3) cache warm-up
    Mappings never change, so a cached URL is never stale. Redis being down
    only costs the cache.
    """
    if not is_valid_code(code, code_length):
        raise InvalidInput("Invalid short code format")

    if cache is not None:
        try:
            cached = cache.get(cache_key_for_code(code))
        except RedisError:
            logger.warning("Redis cache read failed for %s", code, exc_info=True)
            cached = None
        if cached:
            return cached

    row = resolve(store, code, code_length=code_length)

    if cache is not None:
        try:
            cache.setex(cache_key_for_code(code), ttl_seconds, row.original_url)
        except RedisError:
            logger.warning("Redis cache write failed for %s", code, exc_info=True)

    return row.original_url


def validate_batch(urls: Any, max_batch_size: int) -> list:
    if not isinstance(urls, list):
        raise InvalidInput("Request body must be an array of URLs")
    if not urls:
        raise InvalidInput("At least one URL is required")
    if len(urls) > max_batch_size:
        raise InvalidInput(f"Maximum batch size is {max_batch_size} URLs")
    return urls


def shorten_batch(
    store: MappingStore,
    urls: Any,
    *,
    max_batch_size: int = 50,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    max_length: int = MAX_URL_LENGTH,
    generate: Callable[[], str] | None = None,
) -> list[BatchOutcome]:
    """
    One outcome per input item, in input order. A failing item never stops
    the others.
    """
    outcomes: list[BatchOutcome] = []
    for raw in validate_batch(urls, max_batch_size):
        try:
            allocation = allocate(
                store,
                raw,
                max_attempts=max_attempts,
                max_length=max_length,
                generate=generate,
            )
        except InvalidInput as e:
            outcomes.append(BatchOutcome(original_url=raw, error=e.message))
            continue
        except Exception:
            logger.exception("Error processing URL %r", raw)
            outcomes.append(BatchOutcome(original_url=raw, error="Internal Server Error"))
            continue

        outcomes.append(
            BatchOutcome(original_url=allocation.mapping.original_url, allocation=allocation)
        )
    return outcomes


def get_stats(
    store: MappingStore,
    code: Any,
    clicks: ClickRecorder | None = None,
    *,
    code_length: int = DEFAULT_CODE_LENGTH,
) -> Stats:
    """
    Stats shows the stored access_count plus increments still buffered in
    Redis (not yet flushed by the worker).
    """
    row = resolve(store, code, code_length=code_length)
    pending = clicks.pending(row.short_code) if clicks is not None else 0
    return Stats(
        original_url=row.original_url,
        short_code=row.short_code,
        created_at=row.created_at,
        access_count=row.access_count + pending,
    )
