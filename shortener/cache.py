from redis import Redis


def connect_redis(url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True)

def cache_key_for_code(code: str) -> str:
    return f"code:{code}"

CLICK_PREFIX = "click:"

def click_key_for_code(code: str) -> str:
    return f"{CLICK_PREFIX}{code}"

def code_from_click_key(key: str) -> str:
    return key[len(CLICK_PREFIX) :]
