"""
Long-lived service objects shared by all requests
"""
from dataclasses import dataclass
from typing import Any, Optional

from .config import settings
from .items import ItemResolver
from .logging_config import setup_logging
from .media import MediaMirror
from .prewarm import Prewarmer, PrewarmScheduler
from .resolver import BackoffPolicy, EdgeCache, MirrorResolver, UpstreamClient
from .sidemaps import SideMapCache
from .storage import close_storage, get_storage
from .tasks import TaskSpawner

logger = setup_logging(__name__)


@dataclass
class Services:
    client: Any
    edge_cache: EdgeCache
    resolver: MirrorResolver
    sidemaps: SideMapCache
    items: ItemResolver
    media: MediaMirror
    spawner: TaskSpawner
    storage: Any = None
    scheduler: Optional[PrewarmScheduler] = None

    async def start(self):
        if self.scheduler is not None:
            await self.scheduler.start()

    async def close(self):
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.spawner.shutdown()
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()
        await close_storage()


def assemble(client, storage=None, edge_cache: EdgeCache = None, backoff: BackoffPolicy = None) -> Services:
    """Wire the resolver stack around an upstream client and optional mirror storage"""
    edge_cache = edge_cache if edge_cache is not None else EdgeCache()
    resolver = MirrorResolver(client, edge_cache=edge_cache, backoff=backoff)
    sidemaps = SideMapCache(storage)
    items = ItemResolver(resolver, sidemaps)
    spawner = TaskSpawner()
    media = MediaMirror(storage, resolver, items, spawner)
    return Services(
        client=client,
        edge_cache=edge_cache,
        resolver=resolver,
        sidemaps=sidemaps,
        items=items,
        media=media,
        spawner=spawner,
        storage=storage,
    )


async def build_services() -> Services:
    """Create the production service graph from settings"""
    client = UpstreamClient()
    await client.start()

    storage = None
    try:
        storage = await get_storage()
    except Exception as e:
        logger.error(f"Mirror storage unavailable, serving from gateways only: {e}")
    if storage is None:
        logger.info("Durable mirror disabled")

    services = assemble(client, storage)
    if settings.ENABLE_PREWARM:
        services.scheduler = PrewarmScheduler(
            Prewarmer(sidemaps=services.sidemaps),
            initial_delay=5.0,
        )
    return services
