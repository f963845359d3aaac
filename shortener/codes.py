from __future__ import annotations

import secrets
import string
from functools import partial
from typing import Callable

# URL-safe: A-Z a-z 0-9 - _ (64 symbols)
ALPHABET = string.ascii_letters + string.digits + "-_"
_ALPHABET_SET = frozenset(ALPHABET)

DEFAULT_CODE_LENGTH = 6


def generate_code(length: int = DEFAULT_CODE_LENGTH, alphabet: str = ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def code_generator(length: int = DEFAULT_CODE_LENGTH) -> Callable[[], str]:
    return partial(generate_code, length)


def is_valid_code(code: object, length: int = DEFAULT_CODE_LENGTH) -> bool:
    """
    Cheap shape check done before any lookup touches the store.
    """
    if not isinstance(code, str) or len(code) != length:
        return False
    return all(ch in _ALPHABET_SET for ch in code)
