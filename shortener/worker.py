from __future__ import annotations

import logging
import signal
import time

from redis import Redis

from shortener.cache import CLICK_PREFIX, code_from_click_key, connect_redis
from shortener.config import Settings, settings
from shortener.log_config import configure_logging
from shortener.store import MappingStore

logger = logging.getLogger("shortener.worker")


def flush_clicks_once(redis_client: Redis, store: MappingStore) -> int:
    """
    Scan Redis for click:* keys, atomically read+clear their counts,
    then apply the increments to the store. A count the store rejects is
    added back to its Redis counter, so no click is dropped.
    """
    keys = list(redis_client.scan_iter(match=f"{CLICK_PREFIX}*", count=500))
    if not keys:
        return 0

    # GETDEL so increments landing after the read start a fresh counter
    pipe = redis_client.pipeline()
    for k in keys:
        pipe.getdel(k)
    counts = pipe.execute()

    flushed = 0
    for key, val in zip(keys, counts):
        if val is None:
            continue
        try:
            delta = int(val)
        except ValueError:
            logger.warning("Dropping non-integer click counter %s=%r", key, val)
            continue
        if delta <= 0:
            continue

        try:
            store.increment_access(code_from_click_key(key), delta)
        except Exception:
            # Put the clicks back for the next pass
            logger.exception("Failed to apply %d clicks for %s, restoring counter", delta, key)
            redis_client.incrby(key, delta)
            continue
        flushed += delta

    return flushed


def run(config: Settings) -> None:
    if not config.redis_url:
        raise SystemExit("REDIS_URL is not set; clicks are written directly, nothing to flush")

    store = MappingStore.connect(config)
    redis_client = connect_redis(config.redis_url)
    logger.info("starting flush loop every %ss", config.flush_interval_seconds)
    try:
        while True:
            try:
                n = flush_clicks_once(redis_client, store)
                if n:
                    logger.info("flushed %d clicks to the store", n)
            except Exception:
                logger.exception("error during flush")
            time.sleep(config.flush_interval_seconds)
    except KeyboardInterrupt:
        logger.info("worker stopped")
    finally:
        redis_client.close()
        store.close()


def _stop(signum, frame):
    raise KeyboardInterrupt


def main() -> None:
    configure_logging(settings.log_level)
    signal.signal(signal.SIGTERM, _stop)
    run(settings)


if __name__ == "__main__":
    main()
