"""
Configuration management for the Pillary edge gateway
Uses pydantic-settings for type-safe environment variable handling
"""
from typing import List, Optional, Dict, Any
from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_GATEWAYS = "https://ipfs.inpinity.online,https://cloudflare-ipfs.com,https://ipfs.io"


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    # Application
    APP_NAME: str = Field(default="Pillary Gateway", description="Application name")
    VERSION: str = Field(default="1.0.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_DIR: Optional[str] = Field(default=None, description="Directory for rotating log files (unset = console only)")

    # Content
    JSON_BASE_CID: str = Field(default="", description="IPFS folder CID holding <index>.json metadata")
    IPFS_GATEWAYS: str = Field(default=DEFAULT_GATEWAYS, description="Comma-separated IPFS gateway base URLs, in priority order")
    VIDEO_BASE_CID_LOW: Optional[str] = Field(default=None, description="IPFS folder CID for low quality videos")
    VIDEO_BASE_CID_MED: Optional[str] = Field(default=None, description="IPFS folder CID for medium quality videos")
    VIDEO_BASE_CID_HIGH: Optional[str] = Field(default=None, description="IPFS folder CID for high quality videos")
    TOTAL_ITEMS: int = Field(default=10000, description="Size of the collection index space")

    # Collection
    COLLECTION_NAME: str = Field(default="Pi Pyramide", description="Collection display name")
    COLLECTION_SYMBOL: str = Field(default="inpi", description="Collection symbol")
    COLLECTION_DESCRIPTION: str = Field(default="10000 Pi Pyramid blocks", description="Collection description")
    COLLECTION_CHAIN: str = Field(default="solana", description="Chain the collection lives on")
    COLLECTION_STANDARD: str = Field(default="nft", description="Token standard")
    COLLECTION_MINT: Optional[str] = Field(default=None, description="Verified collection mint address")
    ME_COLLECTION_SLUG: Optional[str] = Field(default=None, description="Magic Eden collection slug")
    COLLECTION_CERT_URL: str = Field(default="", description="Collection certificate URL")
    OKX_TOKEN_URL: str = Field(default="", description="OKX token page URL")
    RARITY_MIN: float = Field(default=0.0, description="Lower bound of the raw rarity score")
    RARITY_MAX: float = Field(default=100.0, description="Upper bound of the raw rarity score")

    # Storage/R2
    R2_ENDPOINT_URL: Optional[str] = Field(default=None, description="Cloudflare R2 endpoint URL (unset disables the durable mirror)")
    R2_ACCESS_KEY_ID: Optional[str] = Field(default=None, description="R2 access key ID")
    R2_SECRET_ACCESS_KEY: Optional[str] = Field(default=None, description="R2 secret access key")
    R2_BUCKET_NAME: str = Field(default="pillary", description="R2 bucket name")
    R2_REGION: str = Field(default="auto", description="R2 region")

    # Side maps
    MINT_MAP_KEYS: str = Field(default="mint-map.json,pillaries/mint-map.json", description="Storage keys tried for the mint map")
    SALES_MAP_KEYS: str = Field(default="sales-24h.json,pillaries/sales-24h.json", description="Storage keys tried for the sales map")
    MINT_MAP_TTL_SECONDS: int = Field(default=900, description="Mint map refresh TTL (seconds)")
    SALES_MAP_TTL_SECONDS: int = Field(default=300, description="Sales map refresh TTL (seconds)")

    # Upstream
    UPSTREAM_TIMEOUT: float = Field(default=15.0, description="Connect/total timeout for JSON fetches (seconds)")
    UPSTREAM_READ_TIMEOUT: float = Field(default=30.0, description="Per-read socket timeout for streamed media (seconds)")
    BACKOFF_STEP_MS: int = Field(default=80, description="Backoff per failed attempt (milliseconds)")
    BACKOFF_CAP_MS: int = Field(default=600, description="Maximum backoff between attempts (milliseconds)")
    USER_AGENT: str = Field(default="pillary-gateway/1.0", description="User agent sent to gateways")

    # Edge cache
    EDGE_CACHE_MAX_ENTRIES: int = Field(default=4096, description="Maximum cached upstream responses")
    EDGE_CACHE_MAX_BODY_BYTES: int = Field(default=2 * 1024 * 1024, description="Largest media body kept in the edge cache")
    EDGE_CACHE_MAX_TOTAL_BYTES: int = Field(default=256 * 1024 * 1024, description="Total body bytes held by the edge cache")
    META_CACHE_TTL: int = Field(default=24 * 3600, description="Edge TTL for metadata (seconds)")
    MEDIA_CACHE_TTL: int = Field(default=24 * 3600, description="Edge TTL for media (seconds)")
    MEDIA_STALE_TTL: int = Field(default=24 * 3600, description="Additional stale-serve window for media (seconds)")
    NOT_FOUND_CACHE_TTL: int = Field(default=60, description="Edge TTL for upstream 404s (seconds)")
    SERVER_ERROR_CACHE_TTL: int = Field(default=5, description="Edge TTL for upstream 5xx (seconds)")

    # Durable mirror
    MIRROR_MAX_OBJECT_BYTES: int = Field(default=200 * 1024 * 1024, description="Largest object written back to the mirror")
    BACKFILL_ON_PARTIAL: bool = Field(default=True, description="Schedule a full-body backfill when upstream answers 206")

    # Batch
    BATCH_CONCURRENCY: int = Field(default=12, description="Concurrent workers per batch request")
    BATCH_MAX_ITEMS: int = Field(default=300, description="Maximum items returned by one batch request")

    # Live channel
    EVENTS_KEEPALIVE_SECONDS: float = Field(default=15.0, description="Heartbeat interval (seconds)")
    EVENTS_RETRY_MS: int = Field(default=5000, description="Reconnect hint sent to event stream clients")

    # Prewarm
    ENABLE_PREWARM: bool = Field(default=False, description="Run the prewarm loop inside the API process")
    PREWARM_ROWS: int = Field(default=12, description="Number of pyramid rows to prewarm")
    PREWARM_INTERVAL: int = Field(default=900, description="Prewarm interval (seconds)")
    PREWARM_CONCURRENCY: int = Field(default=16, description="Concurrent prewarm requests")
    PUBLIC_BASE_URL: Optional[str] = Field(default=None, description="Public base URL of this API, used by prewarm")

    # API
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_PREFIX: str = Field(default="", description="Route prefix, e.g. /pillary/api")
    CORS_ORIGINS: List[str] = Field(default=["*"], description="CORS allowed origins")
    ALLOWED_HOSTS: List[str] = Field(default=["*"], description="Trusted Host header values")

    # Security
    API_KEY: Optional[str] = Field(default=None, description="API key for administrative endpoints")
    RATE_LIMIT_PER_MINUTE: int = Field(default=600, description="Rate limit per minute per IP")
    ADMIN_RATE_LIMIT: str = Field(default="6/minute", description="Rate limit for reload endpoints")
    ENABLE_RATE_LIMITING: bool = Field(default=True, description="Enable rate limiting")

    @validator('IPFS_GATEWAYS')
    def validate_gateways(cls, v):
        """Validate every gateway is an HTTP(S) URL"""
        for gw in (s.strip() for s in v.split(',')):
            if gw and not gw.startswith(('http://', 'https://')):
                raise ValueError(f'IPFS gateway must be a valid HTTP(S) URL: {gw}')
        return v

    @validator('R2_ENDPOINT_URL')
    def validate_r2_endpoint(cls, v):
        """Validate R2 endpoint URL format"""
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('R2_ENDPOINT_URL must be a valid HTTP(S) URL')
        return v

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of: {valid_levels}')
        return v.upper()

    @validator('API_PREFIX')
    def validate_api_prefix(cls, v):
        """Normalize the route prefix to '' or '/segment'"""
        v = v.strip().rstrip('/')
        if v and not v.startswith('/'):
            v = '/' + v
        return v

    @validator('RARITY_MAX')
    def validate_rarity_range(cls, v, values):
        """Validate the rarity range is not empty"""
        if 'RARITY_MIN' in values and v <= values['RARITY_MIN']:
            raise ValueError('RARITY_MAX must be greater than RARITY_MIN')
        return v

    @property
    def gateways(self) -> List[str]:
        """Gateway base URLs in priority order"""
        gws = [s.strip().rstrip('/') for s in self.IPFS_GATEWAYS.split(',') if s.strip()]
        return gws or [s.rstrip('/') for s in DEFAULT_GATEWAYS.split(',')]

    @property
    def mint_map_keys(self) -> List[str]:
        return [s.strip() for s in self.MINT_MAP_KEYS.split(',') if s.strip()]

    @property
    def sales_map_keys(self) -> List[str]:
        return [s.strip() for s in self.SALES_MAP_KEYS.split(',') if s.strip()]

    @property
    def video_cids(self) -> Dict[str, Optional[str]]:
        """Video folder CID per quality tier (None when unset)"""
        return {
            "low": (self.VIDEO_BASE_CID_LOW or "").strip() or None,
            "med": (self.VIDEO_BASE_CID_MED or "").strip() or None,
            "high": (self.VIDEO_BASE_CID_HIGH or "").strip() or None,
        }

    @property
    def storage_enabled(self) -> bool:
        return bool(self.R2_ENDPOINT_URL)

    @property
    def public_base_url(self) -> str:
        """Base URL prewarm requests are sent to"""
        if self.PUBLIC_BASE_URL:
            return self.PUBLIC_BASE_URL.rstrip('/')
        return f"http://127.0.0.1:{self.API_PORT}{self.API_PREFIX}"

    @property
    def collection_slug(self) -> str:
        return (self.ME_COLLECTION_SLUG or self.COLLECTION_SYMBOL or "inpi").strip().lower()

    def get_r2_config(self) -> Dict[str, Any]:
        """Get R2 configuration as dict"""
        return {
            "endpoint_url": self.R2_ENDPOINT_URL,
            "access_key_id": self.R2_ACCESS_KEY_ID,
            "secret_access_key": self.R2_SECRET_ACCESS_KEY,
            "bucket_name": self.R2_BUCKET_NAME,
            "region": self.R2_REGION,
        }

    def get_edge_cache_config(self) -> Dict[str, Any]:
        """Get edge cache TTLs as dict"""
        return {
            "max_entries": self.EDGE_CACHE_MAX_ENTRIES,
            "max_body_bytes": self.EDGE_CACHE_MAX_BODY_BYTES,
            "max_total_bytes": self.EDGE_CACHE_MAX_TOTAL_BYTES,
            "meta_ttl": self.META_CACHE_TTL,
            "media_ttl": self.MEDIA_CACHE_TTL,
            "media_stale_ttl": self.MEDIA_STALE_TTL,
            "not_found_ttl": self.NOT_FOUND_CACHE_TTL,
            "server_error_ttl": self.SERVER_ERROR_CACHE_TTL,
        }

    def get_collection_config(self) -> Dict[str, Any]:
        """Collection block exposed on /config"""
        return {
            "name": self.COLLECTION_NAME,
            "symbol": self.COLLECTION_SYMBOL.lower(),
            "description": self.COLLECTION_DESCRIPTION,
            "chain": self.COLLECTION_CHAIN,
            "standard": self.COLLECTION_STANDARD,
            "mint": self.COLLECTION_MINT,
            "certUrl": self.COLLECTION_CERT_URL,
            "meCollectionUrl": f"https://magiceden.io/marketplace/{self.collection_slug}",
            "okxTokenUrl": self.OKX_TOKEN_URL,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Allow extra env vars without validation errors


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (dependency injection compatible)"""
    return settings
