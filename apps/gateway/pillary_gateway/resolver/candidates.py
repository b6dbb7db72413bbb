"""
Candidate URL expansion for gateway resolution

Relative priority of references is preserved: every gateway is tried for
the first reference before the second reference is considered.
"""
import re
from typing import Any, Dict, Iterable, List, Optional

VIDEO_FILE_TYPE = re.compile(r"video|mp4|quicktime|webm", re.IGNORECASE)
IMAGE_FILE_TYPE = re.compile(r"image|png|jpg|jpeg|gif|webp", re.IGNORECASE)

QUALITY_TIERS = ("low", "med", "high")
DEFAULT_TIER = "med"

TIER_ORDER = {
    "low": ("low", "med", "high"),
    "med": ("med", "high", "low"),
    "high": ("high", "med", "low"),
}


def to_http(gateway: str, uri: str) -> str:
    """Map ``ipfs://<cid>/<path>`` onto a gateway; other URIs are returned as-is"""
    if uri.startswith("ipfs://"):
        return f"{gateway}/ipfs/{uri[len('ipfs://'):]}"
    return uri


def dedupe(urls: Iterable[str]) -> List[str]:
    """Drop repeats, keeping the first occurrence"""
    seen = set()
    out = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            out.append(url)
    return out


def expand(uris: Iterable[str], gateways: List[str]) -> List[str]:
    """Expand references into concrete URLs, ``references x gateways``"""
    urls = []
    for uri in uris:
        if uri.startswith("ipfs://"):
            urls.extend(to_http(gw, uri) for gw in gateways)
        else:
            urls.append(uri)
    return dedupe(urls)


def normalize_tier(q: Optional[str]) -> str:
    tier = (q or DEFAULT_TIER).strip().lower()
    return tier if tier in TIER_ORDER else DEFAULT_TIER


def video_cids_for_tier(video_cids: Dict[str, Optional[str]], q: Optional[str]) -> List[str]:
    """Configured video folder CIDs, requested tier first"""
    return [video_cids[t] for t in TIER_ORDER[normalize_tier(q)] if video_cids.get(t)]


def _flatten(value: Any, into: List[str]):
    if not value:
        return
    if isinstance(value, (list, tuple)):
        for v in value:
            _flatten(v, into)
    else:
        into.append(str(value))


def _properties(meta: Dict[str, Any]) -> Dict[str, Any]:
    props = meta.get("properties")
    return props if isinstance(props, dict) else {}


def _files(meta: Dict[str, Any]) -> List[Dict[str, Any]]:
    files = _properties(meta).get("files")
    if not isinstance(files, list):
        return []
    return [f for f in files if isinstance(f, dict) and f.get("uri")]


def video_references(meta: Dict[str, Any]) -> List[str]:
    """Video-class references declared in metadata, then image fallbacks"""
    props = _properties(meta)
    refs: List[str] = []
    _flatten(meta.get("animation_url"), refs)
    _flatten(props.get("animation_url"), refs)
    for f in _files(meta):
        if not f.get("type") or VIDEO_FILE_TYPE.search(str(f["type"])):
            _flatten(f["uri"], refs)
    _flatten(meta.get("image"), refs)
    _flatten(props.get("image"), refs)
    return refs


def image_references(meta: Dict[str, Any]) -> List[str]:
    """Image references declared in metadata; animation fields only when none exist"""
    props = _properties(meta)
    refs: List[str] = []
    _flatten(meta.get("image"), refs)
    _flatten(props.get("image"), refs)
    for f in _files(meta):
        if IMAGE_FILE_TYPE.search(str(f.get("type") or "")):
            _flatten(f["uri"], refs)
    if not refs:
        _flatten(meta.get("animation_url") or props.get("animation_url"), refs)
    return refs


def video_candidates(
    meta: Dict[str, Any],
    index: int,
    q: Optional[str],
    gateways: List[str],
    video_cids: Dict[str, Optional[str]],
) -> List[str]:
    """Concrete video URLs: tier folders on every gateway, then metadata fields"""
    urls = [
        f"{gw}/ipfs/{cid}/{index}.mp4"
        for gw in gateways
        for cid in video_cids_for_tier(video_cids, q)
    ]
    urls.extend(expand(video_references(meta), gateways))
    return dedupe(urls)


def image_candidates(meta: Dict[str, Any], gateways: List[str]) -> List[str]:
    return expand(image_references(meta), gateways)
