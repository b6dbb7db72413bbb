"""Tests for the in-process edge cache."""

from conftest import ManualClock
from pillary_gateway.resolver.edge_cache import MEDIA, META, EdgeCache


def make_cache(clock, **kwargs):
    options = dict(
        max_entries=3,
        max_body_bytes=16,
        meta_ttl=60,
        media_ttl=100,
        media_stale_ttl=50,
        not_found_ttl=10,
        server_error_ttl=5,
    )
    options.update(kwargs)
    return EdgeCache(clock=clock, **options)


def test_cache_key_bypasses_range_and_conditionals():
    assert EdgeCache.cache_key("https://gw/a", {"Accept": "video/*"}) == "https://gw/a|video/*"
    assert EdgeCache.cache_key("https://gw/a", {"Range": "bytes=0-1"}) is None
    assert EdgeCache.cache_key("https://gw/a", {"If-None-Match": '"x"'}) is None
    assert EdgeCache.cache_key("https://gw/a", {"if-modified-since": "Tue, 01 Jan 2030 00:00:00 GMT"}) is None


def test_ttl_by_status_and_class():
    cache = make_cache(ManualClock())
    assert cache.ttl_for(200, META) == (60, 0)
    assert cache.ttl_for(200, MEDIA) == (100, 50)
    assert cache.ttl_for(404, META) == (10, 0)
    assert cache.ttl_for(503, MEDIA) == (5, 0)
    assert cache.ttl_for(301, META) == (0, 0)


def test_entries_expire():
    clock = ManualClock()
    cache = make_cache(clock)
    assert cache.put("k", 404, {}, b"", META)

    assert cache.get("k").status == 404
    clock.advance(10)
    assert cache.get("k") is None
    assert cache.hits == 1 and cache.misses == 1


def test_oversized_and_uncacheable_bodies_are_skipped():
    cache = make_cache(ManualClock())
    assert not cache.put("big", 200, {}, b"x" * 17, MEDIA)
    assert not cache.put("redirect", 302, {}, b"", META)
    assert not cache.put(None, 200, {}, b"ok", META)
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted():
    cache = make_cache(ManualClock())
    for key in ("a", "b", "c"):
        cache.put(key, 200, {}, b"1", META)
    cache.get("a")
    cache.put("d", 200, {}, b"1", META)

    assert cache.get("b") is None
    assert cache.get("a") is not None
    assert len(cache) == 3


def test_stale_window_only_for_media_successes():
    clock = ManualClock()
    cache = make_cache(clock)
    cache.put("video", 200, {"content-type": "video/mp4"}, b"v", MEDIA)
    cache.put("meta", 200, {}, b"{}", META)

    clock.advance(120)
    assert cache.get("video") is None
    assert cache.get_stale("video").body == b"v"
    assert cache.get_stale("meta") is None

    clock.advance(40)
    assert cache.get_stale("video") is None


def test_failure_does_not_displace_servable_stale_copy():
    clock = ManualClock()
    cache = make_cache(clock)
    cache.put("video", 200, {}, b"v", MEDIA)
    clock.advance(120)

    assert not cache.put("video", 503, {}, b"", MEDIA)
    assert cache.get_stale("video").status == 200


def test_total_body_bytes_are_bounded():
    cache = make_cache(ManualClock(), max_entries=10, max_total_bytes=20)
    cache.put("a", 200, {}, b"a" * 8, MEDIA)
    cache.put("b", 200, {}, b"b" * 8, MEDIA)
    cache.get("a")
    cache.put("c", 200, {}, b"c" * 8, MEDIA)

    assert cache.get("b") is None
    assert cache.get("a") is not None and cache.get("c") is not None
    assert cache.total_bytes == 16

    cache.put("a", 200, {}, b"a" * 4, MEDIA)
    assert cache.total_bytes == 12
    assert cache.stats()["bytes"] == 12


def test_body_larger_than_total_budget_is_skipped():
    cache = make_cache(ManualClock(), max_total_bytes=4)
    assert not cache.put("big", 200, {}, b"x" * 8, MEDIA)
    assert cache.total_bytes == 0
