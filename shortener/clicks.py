from __future__ import annotations

import logging

from redis import Redis
from redis.exceptions import RedisError

from shortener.cache import click_key_for_code
from shortener.store import MappingStore

logger = logging.getLogger(__name__)


class ClickRecorder:
    """
    Writes access counts straight to the store. `record` runs off the
    response path and never raises: a lost increment is tolerated, a failed
    redirect is not.
    """

    def __init__(self, store: MappingStore):
        self.store = store

    def record(self, code: str) -> None:
        try:
            self.store.increment_access(code)
        except Exception:
            logger.exception("Error updating access count for %s", code)

    def pending(self, code: str) -> int:
        return 0


class BufferedClickRecorder(ClickRecorder):
    """
    Async-click design:
    Fast path increments a Redis counter only.
    `shortener.worker` flushes click:* counts into the store in batches.
    """

    def __init__(self, store: MappingStore, redis_client: Redis):
        super().__init__(store)
        self.redis = redis_client

    def record(self, code: str) -> None:
        try:
            self.redis.incr(click_key_for_code(code))
        except RedisError:
            logger.exception("Error buffering click for %s", code)

    def pending(self, code: str) -> int:
        """
        Increments not yet flushed by the worker, so stats stay near real time.
        """
        try:
            val = self.redis.get(click_key_for_code(code))
        except RedisError:
            logger.warning("Cannot read pending clicks for %s", code, exc_info=True)
            return 0
        if val is None:
            return 0
        try:
            return int(val)
        except ValueError:
            return 0
