"""
Security middleware for the gateway API
"""
import secrets
import time
from collections import defaultdict, deque
from typing import Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import settings
from ..logging_config import setup_logging

logger = setup_logging(__name__)

EXPOSED_HEADERS = ["Content-Range", "Content-Length", "Accept-Ranges", "ETag"]
UNLIMITED_SUFFIXES = ("/health", "/health/detailed", "/events")

# Per-endpoint limits (reload routes)
limiter = Limiter(key_func=get_remote_address, enabled=settings.ENABLE_RATE_LIMITING)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security and open-CORS headers to all responses"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Cross-Origin-Resource-Policy"] = "cross-origin"

        # CORSMiddleware only answers requests that carry an Origin header
        if "*" in settings.CORS_ORIGINS:
            response.headers.setdefault("Access-Control-Allow-Origin", "*")

        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limit per client address"""

    def __init__(self, app, calls: int = 600, period: int = 60):
        super().__init__(app)
        self.calls = calls
        self.period = period
        self.clients: Dict[str, deque] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        # Health probes and long-lived event streams are not counted
        if request.url.path.endswith(UNLIMITED_SUFFIXES):
            return await call_next(request)

        client_ip = get_remote_address(request)
        now = time.time()

        client_requests = self.clients[client_ip]
        while client_requests and client_requests[0] <= now - self.period:
            client_requests.popleft()

        if len(client_requests) >= self.calls:
            logger.warning(f"Rate limit exceeded for {client_ip}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "message": f"Too many requests. Limit: {self.calls} per {self.period} seconds",
                },
                headers={"Retry-After": str(self.period)},
            )

        client_requests.append(now)
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its outcome and latency"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = get_remote_address(request)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "url": str(request.url),
                    "error": str(e),
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "client_ip": client_ip,
                },
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "url": request.url.path,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "client_ip": client_ip,
            },
        )
        return response


def setup_security_middleware(app: FastAPI) -> Limiter:
    """Setup all security middleware"""

    wildcard = "*" in settings.CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=not wildcard,
        allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )

    if settings.DEBUG is False and "*" not in settings.ALLOWED_HOSTS:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

    app.add_middleware(SecurityHeadersMiddleware)

    if settings.ENABLE_RATE_LIMITING:
        app.add_middleware(
            RateLimitMiddleware,
            calls=settings.RATE_LIMIT_PER_MINUTE,
            period=60,
        )

    app.add_middleware(RequestLoggingMiddleware)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    logger.info("Security middleware configured")

    return limiter


async def require_api_key(x_api_key: Optional[str] = Header(default=None)):
    """Guard for administrative routes; open when no API_KEY is configured"""
    if not settings.API_KEY:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
