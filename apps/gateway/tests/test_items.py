"""Tests for metadata/status joins and batch resolution."""

import asyncio
import time

import pytest

from conftest import GATEWAYS, json_url
from pillary_gateway.exceptions import InvalidRange, NotReachable
from pillary_gateway.items import (
    META,
    STATUS,
    ItemResolver,
    marketplace_links,
    normalize_rarity,
    resolve_market,
    resolve_mint,
    resolve_tier,
    resolve_traits,
)
from pillary_gateway.services import assemble
from pillary_gateway.sidemaps import SideMapCache


class StubResolver:
    """Serves documents from a dict with per-index latency; listed indices fail."""

    def __init__(self, docs=None, failing=(), latency=None):
        self.docs = docs or {}
        self.failing = set(failing)
        self.latency = latency or (lambda index: 0)

    async def resolve_json(self, path):
        index = int(path.split(".")[0])
        await asyncio.sleep(self.latency(index))
        if index in self.failing:
            raise NotReachable(path, len(GATEWAYS), "HTTP 504")
        return self.docs.get(index, {"name": f"Pillary #{index}"})


def test_resolve_mint_priority():
    mint_map = {"7": "MapMint"}
    assert resolve_mint({"mint": "TopMint", "properties": {"mint": "PropMint"}}, mint_map, 7) == "TopMint"
    assert resolve_mint({"properties": {"mint": "PropMint"}}, mint_map, 7) == "PropMint"
    assert resolve_mint({"attributes": [{"trait_type": "Mint", "value": "AttrMint"}]}, mint_map, 7) == "AttrMint"
    assert resolve_mint({"mint": ""}, mint_map, 7) == "MapMint"
    assert resolve_mint({}, {}, 7) is None


def test_tier_prefers_top_level_then_attribute():
    assert resolve_tier({"tier": "Gold", "attributes": [{"trait_type": "tier", "value": "Silver"}]}) == "gold"
    assert resolve_tier({"attributes": [{"trait_type": "TIER", "value": "Silver"}]}) == "silver"
    assert resolve_tier({}) is None


def test_market_requires_mint():
    assert resolve_market({"market": "magiceden"}, minted=False, listed=True) == "none"
    assert resolve_market({"market": "magiceden"}, minted=True, listed=True) == "magiceden"
    assert resolve_market({}, minted=True, listed=True) == "unknown"
    assert resolve_market({}, minted=True, listed=False) == "none"


def test_traits_and_rarity():
    meta = {
        "Digit": 3,
        "attributes": [
            {"trait_type": "Axis", "value": "true"},
            {"trait_type": "MatchingPair", "value": "false"},
            {"trait_type": "rarity_score", "value": 25},
        ],
    }
    traits = resolve_traits(meta)
    assert traits["digit"] == 3
    assert traits["axis"] is True
    assert traits["pair"] is False
    assert traits["rarityScore"] == 25
    assert traits["rarity"] == pytest.approx(0.25)


def test_normalize_rarity_clamps():
    assert normalize_rarity(150, 0, 100) == 1.0
    assert normalize_rarity(-5, 0, 100) == 0.0
    assert normalize_rarity("n/a", 0, 100) is None
    assert normalize_rarity(True, 0, 100) is None


def test_marketplace_links():
    assert marketplace_links(None, "inpi") == {"magicEdenCollection": "https://magiceden.io/marketplace/inpi"}
    links = marketplace_links("MintXYZ", "inpi")
    assert links["magicEdenItem"] == "https://magiceden.io/item-details/MintXYZ"
    assert links["okxNftItem"].endswith("/MintXYZ")


@pytest.mark.asyncio
async def test_status_joins_mint_and_sales_maps(upstream, storage):
    now_ms = int(time.time() * 1000)
    storage.seed_json("mint-map.json", {"42": "MintXYZ"})
    storage.seed_json("sales-24h.json", {"MintXYZ": now_ms - 3_600_000})
    upstream.add(json_url(GATEWAYS[0], 42), body={"name": "Pillary #42", "tier": "Gold"})

    services = assemble(upstream, storage)
    record = await services.items.get_status(42)

    assert record.index == 42
    assert record.minted is True
    assert record.mint == "MintXYZ"
    assert record.sold24h is True
    assert record.tier == "gold"
    assert record.market == "none"


@pytest.mark.asyncio
async def test_status_degrades_to_side_maps_when_metadata_unreachable(storage):
    storage.seed_json("mint-map.json", {"5": "MintFive"})
    items = ItemResolver(StubResolver(failing={5}), SideMapCache(storage))

    record = await items.get_status(5)

    assert record.minted is True
    assert record.mint == "MintFive"
    assert record.tier is None
    assert record.verified is False


@pytest.mark.asyncio
async def test_meta_adds_links_and_traits(storage):
    storage.seed_json("mint-map.json", {"3": "MintThree"})
    items = ItemResolver(StubResolver({3: {"name": "Pillary #3", "symbol": "INPI"}}), SideMapCache(storage))

    meta = await items.get_meta(3)

    assert meta["index"] == 3
    assert meta["name"] == "Pillary #3"
    assert meta["mint"] == "MintThree"
    assert meta["links"]["magicEdenItem"].endswith("/MintThree")
    assert set(meta["traits"]) == {"digit", "axis", "pair", "rarityScore", "rarity"}


@pytest.mark.asyncio
async def test_meta_rejects_non_object_documents():
    items = ItemResolver(StubResolver({4: ["not", "a", "dict"]}), SideMapCache(None))
    failed = await items.get_meta_safe(4)
    assert failed["index"] == 4
    assert "error" in failed


@pytest.mark.asyncio
async def test_status_batch_is_index_ordered():
    # later indices finish first
    resolver = StubResolver(failing={13}, latency=lambda i: (20 - i) * 0.002)
    items = ItemResolver(resolver, SideMapCache(None), concurrency=4)

    result = await items.get_batch(STATUS, 10, 19)

    assert result["from"] == 10 and result["to"] == 19
    assert [entry["index"] for entry in result["data"]] == list(range(10, 20))
    assert all("error" not in entry for entry in result["data"])


@pytest.mark.asyncio
async def test_meta_batch_tags_failures():
    items = ItemResolver(StubResolver(failing={13}), SideMapCache(None))

    result = await items.get_batch(META, 10, 19)

    data = result["data"]
    assert len(data) == 10
    assert data[3]["index"] == 13 and "error" in data[3]
    assert all("error" not in entry for i, entry in enumerate(data) if i != 3)


@pytest.mark.asyncio
async def test_batch_bounds_are_clamped():
    items = ItemResolver(StubResolver(), SideMapCache(None), total_items=100, max_batch=5)

    result = await items.get_batch(META, 98, 500)
    assert (result["from"], result["to"]) == (98, 99)

    result = await items.get_batch(META, 0, 99)
    assert len(result["data"]) == 5

    with pytest.raises(InvalidRange):
        await items.get_batch(META, 50, 10)
