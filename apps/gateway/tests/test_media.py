"""Tests for range parsing and mirror-first media serving."""

import pytest

from conftest import GATEWAYS, json_url
from pillary_gateway.media.mirror import thumb_key, video_key
from pillary_gateway.media.ranges import parse_range

VIDEO = bytes(range(250)) * 4


async def body_of(response):
    if response.body is not None:
        return response.body
    return b"".join([chunk async for chunk in response.stream])


@pytest.mark.parametrize(
    "header, expected",
    [
        ("bytes=0-99", (0, 99)),
        ("bytes=900-", (900, 999)),
        ("bytes=-100", (900, 999)),
        ("bytes=990-5000", (990, 999)),
        ("bytes=-5000", (0, 999)),
        ("bytes=1000-1001", None),
        ("bytes=50-10", None),
        ("bytes=0-1,5-6", None),
        ("items=0-1", None),
        ("bytes=-0", None),
        (None, None),
    ],
)
def test_parse_range(header, expected):
    assert parse_range(header, 1000) == expected


@pytest.mark.asyncio
async def test_mirror_hit_serves_partial_content(services, storage, upstream):
    storage.seed(video_key("med", 7), VIDEO, "video/mp4")

    response = await services.media.serve_video(7, "med", {"Range": "bytes=0-99"})

    assert response.status == 206
    assert response.headers["content-range"] == "bytes 0-99/1000"
    assert response.headers["content-length"] == "100"
    assert response.headers["accept-ranges"] == "bytes"
    assert await body_of(response) == VIDEO[:100]
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_mirror_hit_full_body(services, storage):
    storage.seed(video_key("high", 7), VIDEO, "video/mp4")

    response = await services.media.serve_video(7, "high", {})

    assert response.status == 200
    assert response.headers["content-length"] == "1000"
    assert "Range" in response.headers["vary"]
    assert await body_of(response) == VIDEO


@pytest.mark.asyncio
async def test_mirror_hit_honors_if_none_match(services, storage):
    storage.seed(thumb_key(3), b"png-bytes", "image/png")
    etag = storage.etag(b"png-bytes")

    response = await services.media.serve_thumb(3, {"If-None-Match": etag})

    assert response.status == 304
    assert response.stream is None


@pytest.mark.asyncio
async def test_miss_streams_upstream_and_backfills_mirror(services, storage, upstream):
    upstream.add(json_url(GATEWAYS[0], 7), body={"name": "Pillary #7"})
    upstream.add(f"{GATEWAYS[0]}/ipfs/bafymed/7.mp4", body=VIDEO, headers={"content-type": "video/mp4"})

    response = await services.media.serve_video(7, "med", {})

    assert response.status == 200
    assert response.headers["cache-control"].startswith("public, max-age=86400")
    assert await body_of(response) == VIDEO
    await services.spawner.drain()
    assert storage.objects[video_key("med", 7)] == (VIDEO, "video/mp4")


@pytest.mark.asyncio
async def test_partial_upstream_schedules_full_backfill(services, storage, upstream):
    upstream.add(json_url(GATEWAYS[0], 7), body={"name": "Pillary #7"})
    upstream.add(f"{GATEWAYS[0]}/ipfs/bafymed/7.mp4", body=VIDEO, headers={"content-type": "video/mp4"})

    response = await services.media.serve_video(7, "med", {"Range": "bytes=0-0"})

    assert response.status == 206
    assert await body_of(response) == VIDEO[:1]
    await services.spawner.drain()
    assert storage.objects[video_key("med", 7)][0] == VIDEO


@pytest.mark.asyncio
async def test_thumb_falls_back_through_gateways(services, storage, upstream):
    upstream.add(json_url(GATEWAYS[0], 3), body={"image": "ipfs://bafyimg/3.png"})
    upstream.add(f"{GATEWAYS[1]}/ipfs/bafyimg/3.png", body=b"png-bytes")

    response = await services.media.serve_thumb(3, {})

    assert response.status == 200
    assert await body_of(response) == b"png-bytes"
    assert upstream.urls()[-2:] == [f"{GATEWAYS[0]}/ipfs/bafyimg/3.png", f"{GATEWAYS[1]}/ipfs/bafyimg/3.png"]
    await services.spawner.drain()
    assert storage.objects[thumb_key(3)][0] == b"png-bytes"


@pytest.mark.asyncio
async def test_out_of_range_index_is_not_found(services, upstream):
    response = await services.media.serve_video(10_000, "med", {})
    assert response.status == 404
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_metadata_failure_is_bad_gateway(services):
    response = await services.media.serve_thumb(11, {})
    assert response.status == 502


@pytest.mark.asyncio
async def test_no_candidates_is_not_found(services, upstream):
    upstream.add(json_url(GATEWAYS[0], 12), body={"name": "no media"})
    response = await services.media.serve_thumb(12, {})
    assert response.status == 404


@pytest.mark.asyncio
async def test_unreachable_media_is_bad_gateway(services, storage, upstream):
    upstream.add(json_url(GATEWAYS[0], 14), body={"image": "ipfs://bafyimg/14.png"})

    response = await services.media.serve_thumb(14, {})

    assert response.status == 502
    await services.spawner.drain()
    assert storage.puts == []


@pytest.mark.asyncio
async def test_miss_passes_conditional_headers_and_relays_304(services, storage, upstream):
    video_url = f"{GATEWAYS[0]}/ipfs/bafymed/7.mp4"
    upstream.add(json_url(GATEWAYS[0], 7), body={"name": "Pillary #7"})
    upstream.add(video_url, status=304, headers={"etag": '"v1"'})
    conditional = {"If-None-Match": '"v1"', "If-Modified-Since": "Tue, 01 Jan 2030 00:00:00 GMT"}

    response = await services.media.serve_video(7, "med", conditional)

    assert response.status == 304
    assert response.headers["etag"] == '"v1"'
    sent = next(h for url, h, _ in upstream.calls if url == video_url)
    assert sent["if-none-match"] == '"v1"'
    assert sent["if-modified-since"] == conditional["If-Modified-Since"]
    response.discard()
    await services.spawner.drain()
    assert storage.puts == []


@pytest.mark.asyncio
async def test_unread_miss_still_backfills_mirror(services, storage, upstream):
    upstream.add(json_url(GATEWAYS[0], 3), body={"image": "ipfs://bafyimg/3.png"})
    upstream.add(f"{GATEWAYS[0]}/ipfs/bafyimg/3.png", body=b"png-bytes", headers={"content-type": "image/png"})

    response = await services.media.serve_thumb(3, {})
    assert response.status == 200
    response.discard()
    await services.spawner.drain()

    assert storage.puts == [thumb_key(3)]
    assert storage.objects[thumb_key(3)] == (b"png-bytes", "image/png")
    assert services.media.stats()["backfillsInFlight"] == 0


@pytest.mark.asyncio
async def test_cancelled_backfill_leaves_no_inflight_key(services):
    services.media._schedule_backfill(video_key("med", 5), ["ipfs://bafymed/5.mp4"], "video/*")
    assert services.media.stats()["backfillsInFlight"] == 1

    await services.spawner.shutdown()

    assert services.media.stats()["backfillsInFlight"] == 0
