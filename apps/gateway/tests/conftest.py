"""Test configuration and fixtures for the Pillary gateway tests."""

import hashlib
import json
import os

# Settings are read at import time; pin them before the package is imported
os.environ.setdefault("ENABLE_RATE_LIMITING", "false")
os.environ.setdefault("JSON_BASE_CID", "bafyjson")
os.environ.setdefault("IPFS_GATEWAYS", "https://gw1.test,https://gw2.test,https://gw3.test")
os.environ.setdefault("VIDEO_BASE_CID_MED", "bafymed")
os.environ.setdefault("VIDEO_BASE_CID_HIGH", "bafyhigh")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("R2_ENDPOINT_URL", None)
os.environ.pop("API_KEY", None)

import pytest
from fastapi.testclient import TestClient

from pillary_gateway.main import create_app
from pillary_gateway.media.ranges import content_range, parse_range
from pillary_gateway.resolver import BackoffPolicy
from pillary_gateway.resolver.http import UpstreamResponse
from pillary_gateway.services import assemble
from pillary_gateway.storage.r2 import StoredObject

GATEWAYS = ["https://gw1.test", "https://gw2.test", "https://gw3.test"]


def json_url(gateway: str, index: int) -> str:
    return f"{gateway}/ipfs/bafyjson/{index}.json"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeUpstreamClient:
    """Routes exact URLs to canned responses; unknown URLs answer 404."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, url: str, status: int = 200, body=b"", headers=None):
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode()
            headers = {"content-type": "application/json", **(headers or {})}
        self.routes[url] = (status, dict(headers or {}), body)

    def fail(self, url: str, error: Exception):
        self.routes[url] = error

    def urls(self):
        return [url for url, _, _ in self.calls]

    async def open(self, url, headers=None, stream=False):
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.calls.append((url, headers, stream))
        route = self.routes.get(url)
        if route is None:
            return UpstreamResponse(404, {}, b"", url=url)
        if isinstance(route, Exception):
            raise route
        status, hdrs, body = route
        out = {"content-length": str(len(body)), **hdrs}
        byte_range = parse_range(headers.get("range"), len(body)) if status == 200 else None
        if byte_range is not None:
            start, end = byte_range
            size = len(body)
            body = body[start:end + 1]
            out["content-length"] = str(len(body))
            out["content-range"] = content_range(start, end, size)
            status = 206
        return UpstreamResponse(status, out, body, url=url)

    async def close(self):
        pass


class FakeStorage:
    """In-memory stand-in for the R2 bucket."""

    bucket = "pillary-test"

    def __init__(self):
        self.objects = {}
        self.puts = []

    def seed(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.objects[key] = (data, content_type)

    def seed_json(self, key: str, value):
        self.seed(key, json.dumps(value).encode(), "application/json")

    @staticmethod
    def etag(data: bytes) -> str:
        return f'"{hashlib.md5(data).hexdigest()}"'

    async def ping(self):
        return True

    async def head_object(self, key):
        if key not in self.objects:
            return None
        data, content_type = self.objects[key]
        return StoredObject(key=key, size=len(data), content_type=content_type, etag=self.etag(data))

    async def object_exists(self, key):
        return key in self.objects

    async def get_object(self, key, byte_range=None):
        if key not in self.objects:
            return None
        data, content_type = self.objects[key]
        start, end = byte_range if byte_range else (0, len(data) - 1)
        body = data[start:end + 1]
        return StoredObject(
            key=key, size=len(data), content_type=content_type, etag=self.etag(data),
            offset=start, length=len(body), body=body,
        )

    async def get_text(self, keys):
        for key in keys:
            if key in self.objects:
                return self.objects[key][0].decode()
        return None

    async def put_object(self, data, key, content_type=None):
        if key not in self.objects:
            self.objects[key] = (bytes(data), content_type)
            self.puts.append(key)
        return key


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def upstream():
    return FakeUpstreamClient()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def services(upstream, storage):
    return assemble(upstream, storage, backoff=BackoffPolicy(step_ms=0, cap_ms=0))


@pytest.fixture
def client(services):
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client
