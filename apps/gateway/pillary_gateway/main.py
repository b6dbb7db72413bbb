"""
FastAPI application for the Pillary gateway
"""
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .config import settings
from .events import active_channels, heartbeat_stream
from .exceptions import GatewayError, InvalidRange
from .health import health_router
from .items import META, STATUS
from .logging_config import setup_logging
from .media import MediaResponse
from .middleware.security import limiter, require_api_key, setup_security_middleware
from .services import Services, build_services
from .sidemaps import MINT, SALES

logger = setup_logging(__name__)

JSON_CACHE_CONTROL = "public, max-age=60, stale-while-revalidate=600"
NO_STORE = "no-store"
EVENT_HEADERS = {"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"}

router = APIRouter()


def json_response(content: Any, status_code: int = 200, cache_control: str = JSON_CACHE_CONTROL) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers={"Cache-Control": cache_control})


def index_not_found(index: int) -> JSONResponse:
    return json_response({"index": index, "error": "index out of range"}, 404, NO_STORE)


def media_response(media: MediaResponse, method: str) -> Response:
    """Convert a MediaResponse into a Starlette response"""
    if method == "HEAD" or media.status == 304:
        media.discard()
        return Response(status_code=media.status, headers=media.headers)
    if media.stream is not None:
        return StreamingResponse(media.stream, status_code=media.status, headers=media.headers)
    return Response(content=media.body or b"", status_code=media.status, headers=media.headers)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return services


@router.get("/meta/{index}")
async def get_meta(index: int, services: Services = Depends(get_services)):
    """Metadata document with mint, marketplace links and traits"""
    if not services.items.is_valid(index):
        return index_not_found(index)
    try:
        return json_response(await services.items.get_meta(index))
    except GatewayError as e:
        logger.warning(f"Metadata unavailable: {e}", extra={"index": index})
        return json_response({"index": index, "error": str(e)}, 502, NO_STORE)


@router.get("/status/{index}")
async def get_status(index: int, services: Services = Depends(get_services)):
    if not services.items.is_valid(index):
        return index_not_found(index)
    record = await services.items.get_status(index)
    return json_response(record.model_dump())


@router.get("/batch/meta")
async def batch_meta(
    start: int = Query(0, alias="from"),
    end: int = Query(49, alias="to"),
    services: Services = Depends(get_services),
):
    return json_response(await services.items.get_batch(META, start, end))


@router.get("/batch/status")
async def batch_status(
    start: int = Query(0, alias="from"),
    end: int = Query(299, alias="to"),
    services: Services = Depends(get_services),
):
    return json_response(await services.items.get_batch(STATUS, start, end))


@router.api_route("/thumb/{index}", methods=["GET", "HEAD"])
async def get_thumb(index: int, request: Request, services: Services = Depends(get_services)):
    media = await services.media.serve_thumb(index, request.headers)
    return media_response(media, request.method)


@router.api_route("/video/{index}", methods=["GET", "HEAD"])
async def get_video(
    index: int,
    request: Request,
    q: Optional[str] = Query(None, description="low, med or high"),
    services: Services = Depends(get_services),
):
    """Video bytes; honors Range and conditional request headers"""
    media = await services.media.serve_video(index, q, request.headers)
    return media_response(media, request.method)


@router.get("/events")
async def events():
    """Heartbeat event stream"""
    return StreamingResponse(heartbeat_stream(), media_type="text/event-stream", headers=EVENT_HEADERS)


@router.get("/config")
async def get_config(services: Services = Depends(get_services)):
    counts = await services.sidemaps.counts()
    return json_response({
        "cid": settings.JSON_BASE_CID,
        "gateways": settings.gateways,
        **counts,
        "collection": settings.get_collection_config(),
        "video": {tier: bool(cid) for tier, cid in settings.video_cids.items()},
        "activeChannels": active_channels(),
        "edgeCache": services.edge_cache.stats(),
        "mirror": services.media.stats(),
    })


@router.get("/minted/{index}")
async def get_minted(index: int, services: Services = Depends(get_services)):
    if not services.items.is_valid(index):
        return index_not_found(index)
    mint = await services.sidemaps.mint_for(index)
    return json_response({"index": index, "minted": bool(mint), "mint": mint})


@router.get("/mints/count")
async def mints_count(services: Services = Depends(get_services)):
    return json_response({"count": len(await services.sidemaps.get_mint_map())})


@router.get("/sales/count")
async def sales_count(services: Services = Depends(get_services)):
    return json_response({"count": len(await services.sidemaps.get_sales_map())})


@router.api_route("/mints/reload", methods=["GET", "POST"], dependencies=[Depends(require_api_key)])
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def reload_mints(request: Request, services: Services = Depends(get_services)):
    counts = await services.sidemaps.reload(MINT)
    logger.info("Mint map reloaded", extra={"kind": MINT})
    return json_response({"reloaded": True, "count": counts[MINT]}, cache_control=NO_STORE)


@router.api_route("/sales/reload", methods=["GET", "POST"], dependencies=[Depends(require_api_key)])
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def reload_sales(request: Request, services: Services = Depends(get_services)):
    counts = await services.sidemaps.reload(SALES)
    logger.info("Sales map reloaded", extra={"kind": SALES})
    return json_response({"reloaded": True, "count": counts[SALES]}, cache_control=NO_STORE)


async def invalid_range_handler(request: Request, exc: InvalidRange):
    return json_response({"error": str(exc)}, 400, NO_STORE)


async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error(f"Unhandled gateway error: {exc}", extra={"url": request.url.path})
    return json_response({"error": str(exc)}, 502, NO_STORE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services unless they were injected, then run the prewarm loop if enabled"""
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}")

    owned = app.state.services is None
    if owned:
        app.state.services = await build_services()
    await app.state.services.start()

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")
    if owned:
        await app.state.services.close()
        app.state.services = None
    elif app.state.services.scheduler is not None:
        await app.state.services.scheduler.stop()


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Metadata, status and media gateway for the Pillary collection",
        version=settings.VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.services = services

    setup_security_middleware(app)
    app.add_exception_handler(InvalidRange, invalid_range_handler)
    app.add_exception_handler(GatewayError, gateway_error_handler)

    app.include_router(health_router, prefix=settings.API_PREFIX)
    app.include_router(router, prefix=settings.API_PREFIX)
    return app


app = create_app()
