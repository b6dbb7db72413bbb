"""
Metadata and status resolution per collection index

Each derived field is resolved independently: an explicit top-level field
wins, then a case-insensitive attribute lookup by trait name, then the
relevant side map, then null.
"""
import asyncio
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .config import settings
from .exceptions import GatewayError
from .layout import clamp_range, is_valid_index
from .logging_config import setup_logging
from .sidemaps import SideMapCache

logger = setup_logging(__name__)

META = "meta"
STATUS = "status"


class StatusRecord(BaseModel):
    """Derived status view of one item"""
    index: int
    minted: bool = False
    mint: Optional[str] = None
    verified: bool = False
    listed: bool = False
    market: str = "none"
    tier: Optional[str] = None
    sold24h: bool = False


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def attribute(meta: Dict[str, Any], *names: str) -> Any:
    """Value of the first attribute whose trait_type matches one of ``names`` (case-insensitive)"""
    attrs = meta.get("attributes")
    if not isinstance(attrs, list):
        return None
    wanted = [n.lower() for n in names]
    for name in wanted:
        for attr in attrs:
            if isinstance(attr, dict) and str(attr.get("trait_type") or "").lower() == name:
                return attr.get("value")
    return None


def first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def as_flag(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def normalize_rarity(score: Any, lo: float = None, hi: float = None) -> Optional[float]:
    """Map a raw rarity score into [0, 1]; None for non-numeric input"""
    lo = settings.RARITY_MIN if lo is None else lo
    hi = settings.RARITY_MAX if hi is None else hi
    if isinstance(score, bool):
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if hi <= lo:
        return None
    return max(0.0, min(1.0, (value - lo) / (hi - lo)))


def resolve_mint(meta: Dict[str, Any], mint_map: Dict[str, Any], index: int) -> Optional[str]:
    mint = (
        meta.get("mint")
        or _dict(meta.get("properties")).get("mint")
        or attribute(meta, "mint")
        or mint_map.get(str(index))
    )
    return str(mint) if mint else None


def resolve_verified(meta: Dict[str, Any]) -> bool:
    props = _dict(meta.get("properties"))
    return bool(
        _dict(meta.get("collection")).get("verified")
        or _dict(props.get("collection")).get("verified")
        or as_flag(attribute(meta, "verified"))
    )


def resolve_listed(meta: Dict[str, Any]) -> bool:
    value = first_present(meta.get("listed"), attribute(meta, "listed"))
    return as_flag(value)


def resolve_market(meta: Dict[str, Any], minted: bool, listed: bool) -> str:
    if not minted:
        return "none"
    market = first_present(meta.get("market"), attribute(meta, "market"))
    if market:
        return str(market)
    return "unknown" if listed else "none"


def resolve_tier(meta: Dict[str, Any]) -> Optional[str]:
    tier = first_present(meta.get("tier"), attribute(meta, "tier"))
    return str(tier).lower() if tier else None


def resolve_traits(meta: Dict[str, Any]) -> Dict[str, Any]:
    """Digit, axis/pair flags and rarity of an item"""
    score = first_present(
        meta.get("rarity_score"),
        attribute(meta, "rarity_score"),
        attribute(meta, "rarityscore"),
    )
    return {
        "digit": first_present(meta.get("Digit"), meta.get("digit"), attribute(meta, "digit")),
        "axis": as_flag(first_present(meta.get("Axis"), meta.get("axis"), attribute(meta, "axis"))),
        "pair": as_flag(first_present(meta.get("MatchingPair"), meta.get("matchingpair"), attribute(meta, "matchingpair"))),
        "rarityScore": score,
        "rarity": normalize_rarity(score),
    }


def collection_slug(meta: Dict[str, Any]) -> str:
    slug = (
        settings.ME_COLLECTION_SLUG
        or meta.get("symbol")
        or _dict(meta.get("collection")).get("name")
        or settings.COLLECTION_SYMBOL
        or "inpi"
    )
    return str(slug).strip().lower()


def marketplace_links(mint: Optional[str], slug: str) -> Dict[str, str]:
    links = {"magicEdenCollection": f"https://magiceden.io/marketplace/{slug}"}
    if mint:
        links["magicEdenItem"] = f"https://magiceden.io/item-details/{mint}"
        links["okxNftItem"] = f"https://www.okx.com/web3/market/nft/sol/{mint}"
    return links


class ItemResolver:
    """Joins per-index metadata with the side maps"""

    def __init__(
        self,
        resolver,
        sidemaps: SideMapCache,
        total_items: int = None,
        concurrency: int = None,
        max_batch: int = None,
    ):
        self.resolver = resolver
        self.sidemaps = sidemaps
        self.total_items = settings.TOTAL_ITEMS if total_items is None else total_items
        self.concurrency = max(1, settings.BATCH_CONCURRENCY if concurrency is None else concurrency)
        self.max_batch = settings.BATCH_MAX_ITEMS if max_batch is None else max_batch

    def is_valid(self, index: int) -> bool:
        return is_valid_index(index, self.total_items)

    async def fetch_document(self, index: int) -> Dict[str, Any]:
        """Raw metadata document of ``index``"""
        doc = await self.resolver.resolve_json(f"{index}.json")
        if not isinstance(doc, dict):
            raise GatewayError(f"metadata for {index} is not a JSON object")
        return doc

    async def get_meta(self, index: int) -> Dict[str, Any]:
        """Metadata document with mint, marketplace links and derived traits"""
        meta = await self.fetch_document(index)
        mint = resolve_mint(meta, await self.sidemaps.get_mint_map(), index)
        return {
            "index": index,
            **meta,
            "mint": mint,
            "links": marketplace_links(mint, collection_slug(meta)),
            "traits": resolve_traits(meta),
        }

    async def get_meta_safe(self, index: int) -> Dict[str, Any]:
        try:
            return await self.get_meta(index)
        except GatewayError as e:
            return {"index": index, "error": str(e)}

    async def get_status(self, index: int) -> StatusRecord:
        mint_map = await self.sidemaps.get_mint_map()
        sales_map = await self.sidemaps.get_sales_map()

        try:
            meta = await self.fetch_document(index)
        except GatewayError as e:
            logger.info(f"Status degraded to side maps: {e}", extra={"index": index})
            mint = resolve_mint({}, mint_map, index)
            return StatusRecord(
                index=index,
                minted=bool(mint),
                mint=mint,
                sold24h=self.sidemaps.sold_24h(mint, sales_map),
            )

        mint = resolve_mint(meta, mint_map, index)
        minted = bool(mint)
        listed = resolve_listed(meta)
        return StatusRecord(
            index=index,
            minted=minted,
            mint=mint,
            verified=resolve_verified(meta),
            listed=listed,
            market=resolve_market(meta, minted, listed),
            tier=resolve_tier(meta),
            sold24h=self.sidemaps.sold_24h(mint, sales_map),
        )

    async def _status_dict(self, index: int) -> Dict[str, Any]:
        return (await self.get_status(index)).model_dump()

    async def get_batch(self, kind: str, start: int, end: int) -> Dict[str, Any]:
        """
        Resolve an inclusive index range through a bounded worker pool

        Results are returned in index order. A failing index becomes an
        ``{index, error}`` element instead of aborting the batch.
        """
        if kind == META:
            single = self.get_meta_safe
        elif kind == STATUS:
            single = self._status_dict
        else:
            raise ValueError(f"unknown batch kind: {kind}")

        lo, hi = clamp_range(start, end, self.total_items, self.max_batch)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(index: int) -> Dict[str, Any]:
            async with semaphore:
                try:
                    return await single(index)
                except Exception as e:
                    logger.warning(f"Batch item failed: {e}", extra={"index": index, "kind": kind})
                    return {"index": index, "error": str(e)}

        data: List[Dict[str, Any]] = await asyncio.gather(*(worker(i) for i in range(lo, hi + 1)))
        return {"from": lo, "to": hi, "data": data}


__all__ = [
    "ItemResolver",
    "StatusRecord",
    "attribute",
    "normalize_rarity",
    "resolve_mint",
    "resolve_traits",
    "marketplace_links",
]
