"""Test configuration and fixtures."""

import json
from datetime import timedelta
from typing import Dict, Optional, Tuple

import httpx
import pytest

from chat_memory.config.settings import LocalStorageSettings, MemorySettings
from chat_memory.memory.schemas import Memory, utc_now
from chat_memory.memory.service import MemoryService
from chat_memory.persist.blob_client import BlobClient
from chat_memory.persist.local_adapter import LocalStorageAdapter
from chat_memory.persist.remote_adapter import RemoteStorageAdapter


BLOB_API = "https://blob.test"
BLOB_FILES = "https://files.blob.test"


class FakeBlobStore:
    """
    In-memory blob store speaking the blob REST API through httpx.MockTransport.

    Set ``fail_next`` to answer the next N requests with 503, or ``down`` to
    answer every request with 503.
    """

    def __init__(self):
        self.blobs: Dict[str, Tuple[bytes, str]] = {}
        self.fail_next = 0
        self.down = False
        self.requests = []

    def _info(self, pathname: str) -> dict:
        body, uploaded_at = self.blobs[pathname]
        return {
            "url": f"{BLOB_FILES}/{pathname}",
            "pathname": pathname,
            "size": len(body),
            "uploadedAt": uploaded_at,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, str(request.url)))

        if self.down:
            return httpx.Response(503, json={"error": "unavailable"})
        if self.fail_next > 0:
            self.fail_next -= 1
            return httpx.Response(503, json={"error": "unavailable"})

        host = request.url.host
        path = request.url.path.lstrip("/")

        if host == "files.blob.test":
            if path not in self.blobs:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, content=self.blobs[path][0])

        if request.method == "GET" and path == "":
            params = request.url.params
            if "url" in params:
                pathname = params["url"]
                if pathname not in self.blobs:
                    return httpx.Response(404, json={"error": "not found"})
                return httpx.Response(200, json=self._info(pathname))
            prefix = params.get("prefix", "")
            limit = int(params.get("limit", 1000))
            names = sorted(p for p in self.blobs if p.startswith(prefix))[:limit]
            return httpx.Response(200, json={"blobs": [self._info(p) for p in names]})

        if request.method == "PUT":
            self.blobs[path] = (request.content, utc_now().isoformat())
            return httpx.Response(200, json=self._info(path))

        if request.method == "POST" and path == "delete":
            urls = json.loads(request.content)["urls"]
            for url in urls:
                self.blobs.pop(url[len(BLOB_FILES) + 1:], None)
            return httpx.Response(200, json={})

        return httpx.Response(400, json={"error": "unsupported"})

    def envelope(self, pathname: str) -> Optional[dict]:
        if pathname not in self.blobs:
            return None
        return json.loads(self.blobs[pathname][0])


@pytest.fixture
def make_memory():
    """Factory for memories with a controllable age."""

    def _make(content: str, days_old: float = 0, **kwargs) -> Memory:
        kwargs.setdefault("timestamp", utc_now() - timedelta(days=days_old))
        return Memory(content=content, **kwargs)

    return _make


@pytest.fixture
def memory_dir(tmp_path):
    return tmp_path / "memories"


@pytest.fixture
def local_adapter(memory_dir):
    """LocalStorageAdapter rooted in a temporary directory."""
    return LocalStorageAdapter(base_path=str(memory_dir), max_memories_per_user=1000, ttl_days=30)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def blob_client(blob_store):
    return BlobClient(
        BLOB_API,
        token="test-token",
        max_retries=3,
        timeout=1.0,
        retry_delay=0,
        transport=httpx.MockTransport(blob_store.handler),
    )


@pytest.fixture
def remote_adapter(blob_client):
    return RemoteStorageAdapter(blob_client, prefix="memories", max_memories_per_user=1000, ttl_days=30)


@pytest.fixture
def settings(memory_dir):
    """Local-backend settings with every feature enabled."""
    return MemorySettings(storage="local", local=LocalStorageSettings(base_path=str(memory_dir)))


@pytest.fixture
def service(local_adapter, settings):
    return MemoryService(local_adapter, settings=settings)
