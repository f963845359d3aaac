# tests/test_allocation.py
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from shortener.codes import is_valid_code
from shortener.errors import AllocationExhausted, ConflictError, InvalidInput, NotFound
from shortener.service import allocate, normalize_url, resolve, shorten_batch
from shortener.store import MappingStore


class CountingGenerator:
    def __init__(self, *codes):
        self.codes = list(codes)
        self.calls = 0

    def __call__(self):
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


def test_allocate_is_idempotent(store):
    first = allocate(store, "https://example.com/a")
    second = allocate(store, "https://example.com/a")

    assert first.is_new is True
    assert second.is_new is False
    assert first.short_code == second.short_code
    assert store.count() == 1


def test_allocate_trims_before_dedup(store):
    first = allocate(store, "  https://example.com/a\n")
    second = allocate(store, "https://example.com/a")
    assert first.mapping.original_url == "https://example.com/a"
    assert first.short_code == second.short_code


def test_dedup_is_exact_match(store):
    plain = allocate(store, "https://example.com/a")
    slashed = allocate(store, "https://example.com/a/")
    upper = allocate(store, "https://example.com/A")
    assert len({plain.short_code, slashed.short_code, upper.short_code}) == 3


def test_round_trip(store):
    allocation = allocate(store, " https://example.com/round/trip?x=1 ")
    row = resolve(store, allocation.short_code)
    assert row.original_url == "https://example.com/round/trip?x=1"


def test_distinct_urls_get_distinct_codes(store):
    codes = [allocate(store, f"https://example.com/page/{i}").short_code for i in range(200)]
    assert len(set(codes)) == 200
    assert all(is_valid_code(code, 6) for code in codes)


def test_url_length_boundary(store):
    prefix = "https://example.com/"
    exact = prefix + "a" * (2048 - len(prefix))
    assert len(exact) == 2048
    assert allocate(store, exact).is_new

    with pytest.raises(InvalidInput, match="maximum length"):
        allocate(store, exact + "a")


@pytest.mark.parametrize(
    "bad",
    [None, "", "   ", "not-a-url", "example.com/path", "javascript:alert(1)", "data:text/html,hi", 42],
)
def test_invalid_urls_rejected(store, bad):
    with pytest.raises(InvalidInput):
        allocate(store, bad)
    assert store.count() == 0


@pytest.mark.parametrize("url", ["ftp://example.com/f", "ws://example.com/socket", "http://localhost:8080/x"])
def test_other_absolute_schemes_accepted(store, url):
    allocation = allocate(store, url)
    assert allocation.mapping.original_url == url


def test_normalize_url_messages():
    with pytest.raises(InvalidInput, match="URL is required"):
        normalize_url("")
    with pytest.raises(InvalidInput, match="Invalid URL format"):
        normalize_url("not-a-url")
    with pytest.raises(InvalidInput, match="not allowed"):
        normalize_url("javascript:alert(1)")


def test_collision_retries_with_new_code(store):
    store.insert("https://example.com/taken", "AAAAAA")
    generate = CountingGenerator("AAAAAA", "AAAAAA", "BBBBBB")

    allocation = allocate(store, "https://example.com/new", generate=generate)

    assert allocation.short_code == "BBBBBB"
    assert generate.calls == 3


def test_always_colliding_generator_exhausts_after_exact_attempts(store):
    store.insert("https://example.com/taken", "AAAAAA")
    generate = CountingGenerator("AAAAAA")

    with pytest.raises(AllocationExhausted):
        allocate(store, "https://example.com/new", generate=generate)

    assert generate.calls == 10
    assert store.count() == 1


def test_attempt_bound_is_configurable(store):
    store.insert("https://example.com/taken", "AAAAAA")
    generate = CountingGenerator("AAAAAA")

    with pytest.raises(AllocationExhausted):
        allocate(store, "https://example.com/new", max_attempts=3, generate=generate)
    assert generate.calls == 3


class UrlRaceStore(MappingStore):
    """Another writer stores the same URL between the code check and our insert."""

    def __init__(self, engine):
        super().__init__(engine)
        self.raced = False

    def insert(self, original_url, short_code):
        if not self.raced:
            self.raced = True
            super().insert(original_url, "WINNER")
        return super().insert(original_url, short_code)


class CodeRaceStore(MappingStore):
    """Every candidate code is claimed by someone else right before our insert."""

    def __init__(self, engine):
        super().__init__(engine)
        self.inserts = 0

    def insert(self, original_url, short_code):
        self.inserts += 1
        raise ConflictError(f"code {short_code} taken")


def test_insert_conflict_on_url_returns_winner(store):
    racing = UrlRaceStore(store.engine)
    generate = CountingGenerator("cand01")

    allocation = allocate(racing, "https://example.com/race", generate=generate)

    assert allocation.is_new is False
    assert allocation.short_code == "WINNER"
    assert generate.calls == 1
    assert store.count() == 1


def test_insert_conflict_on_code_consumes_attempts(store):
    racing = CodeRaceStore(store.engine)
    generate = CountingGenerator("cand01", "cand02", "cand03", "cand04")

    with pytest.raises(AllocationExhausted):
        allocate(racing, "https://example.com/race", max_attempts=4, generate=generate)

    assert generate.calls == 4
    assert racing.inserts == 4


def test_concurrent_allocations_converge(store):
    url = "https://example.com/concurrent"
    workers = 8
    barrier = threading.Barrier(workers)

    def shorten(_):
        barrier.wait()
        return allocate(store, url)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(shorten, range(workers)))

    assert len({r.short_code for r in results}) == 1
    assert sum(r.is_new for r in results) == 1
    assert store.count() == 1


def test_concurrent_distinct_urls_all_unique(store):
    urls = [f"https://example.com/parallel/{i}" for i in range(40)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda u: allocate(store, u), urls))

    assert len({r.short_code for r in results}) == 40
    assert store.count() == 40


def test_resolve_rejects_malformed_codes(store):
    for bad in ["abc", "abcdefg", "abc$ef", "", None]:
        with pytest.raises(InvalidInput):
            resolve(store, bad)


def test_resolve_unknown_code(store):
    with pytest.raises(NotFound):
        resolve(store, "zzzzzz")


def test_batch_isolates_bad_items_and_keeps_order(store):
    outcomes = shorten_batch(
        store,
        ["https://example.com/1", "not-a-url", "https://example.com/2"],
    )

    assert len(outcomes) == 3
    assert outcomes[0].allocation is not None
    assert outcomes[0].original_url == "https://example.com/1"
    assert outcomes[1].allocation is None
    assert outcomes[1].error == "Invalid URL format"
    assert outcomes[1].original_url == "not-a-url"
    assert outcomes[2].allocation is not None
    assert outcomes[2].original_url == "https://example.com/2"
    assert store.count() == 2


def test_batch_repeated_url_reuses_code(store):
    outcomes = shorten_batch(store, ["https://example.com/x", "https://example.com/x"])
    assert outcomes[0].allocation.short_code == outcomes[1].allocation.short_code
    assert outcomes[0].allocation.is_new and not outcomes[1].allocation.is_new


class BrokenLookupStore(MappingStore):
    def find_by_url(self, original_url):
        if "boom" in original_url:
            raise RuntimeError("disk on fire")
        return super().find_by_url(original_url)


def test_batch_isolates_internal_failures(store):
    broken = BrokenLookupStore(store.engine)
    outcomes = shorten_batch(broken, ["https://example.com/boom", "https://example.com/ok"])

    assert outcomes[0].error == "Internal Server Error"
    assert outcomes[1].allocation is not None


@pytest.mark.parametrize(
    "urls,message",
    [
        ([], "At least one URL is required"),
        ({"url": "https://example.com"}, "must be an array"),
        (["https://example.com/x"] * 51, "Maximum batch size is 50"),
    ],
)
def test_batch_rejected_before_processing(store, urls, message):
    with pytest.raises(InvalidInput, match=message):
        shorten_batch(store, urls, max_batch_size=50)
    assert store.count() == 0
