"""
Gateway resolution: candidate expansion, retry pacing and the edge cache
"""
from .edge_cache import EdgeCache
from .http import UpstreamClient, UpstreamResponse
from .mirror import MirrorResolver
from .policy import BackoffPolicy

__all__ = [
    "BackoffPolicy",
    "EdgeCache",
    "MirrorResolver",
    "UpstreamClient",
    "UpstreamResponse",
]
