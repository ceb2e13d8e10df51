"""
Async HTTP client for a Vercel-Blob style key/blob store.

Endpoints (relative to ``base_url``):
    GET  /?prefix=<p>&limit=<n>   list blobs -> {"blobs": [...]}
    GET  /?url=<pathname>         blob metadata -> {url, pathname, size, uploadedAt}
    PUT  /<pathname>              upload (overwrite allowed, no random suffix)
    POST /delete                  {"urls": [...]}
    GET  <blob url>               blob content

Every call is retried on transport errors and 429/5xx responses with
exponential backoff (``retry_delay * 2**attempt``); ``timeout`` bounds each
attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .adapter import StorageError


logger = logging.getLogger(__name__)

TRANSIENT_STATUS = (429, 500, 502, 503, 504)


class BlobStoreError(StorageError):
    """Remote blob store failure (after retries, or a non-retryable status)."""


class BlobNotFoundError(BlobStoreError):
    """The requested blob does not exist."""


@dataclass
class BlobInfo:
    """Metadata of a stored blob."""

    url: str
    pathname: str
    size: int = 0
    uploaded_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlobInfo":
        uploaded_at = data.get("uploadedAt")
        return cls(
            url=data["url"],
            pathname=data.get("pathname", ""),
            size=int(data.get("size") or 0),
            uploaded_at=datetime.fromisoformat(uploaded_at.replace("Z", "+00:00")) if uploaded_at else None,
        )


class BlobClient:
    """
    Thin async client over the blob REST API.

    Usage:
        async with BlobClient(base_url, token) as client:
            await client.put("memories/u1.json", payload)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        max_retries: int = 3,
        timeout: float = 10.0,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize blob client.

        Args:
            base_url: API root
            token: Read/write bearer token
            max_retries: Total attempts per call (at least 1)
            timeout: Seconds per attempt
            retry_delay: Base backoff in seconds
            transport: Custom httpx transport (tests mount a fake store here)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "BlobClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request with retry/backoff for transient failures.

        Returns:
            The final response (any non-transient status)

        Raises:
            BlobStoreError: After retry exhaustion
        """
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if last_attempt:
                    raise BlobStoreError(f"{method} {url} failed after {self.max_retries} attempts: {e}") from e
                logger.warning(f"Blob request {method} {url} failed ({e}), retrying")
                await asyncio.sleep(self._backoff(attempt))
                continue

            if response.status_code in TRANSIENT_STATUS:
                if last_attempt:
                    raise BlobStoreError(
                        f"retry exhausted: status={response.status_code} {method} {url}"
                    )
                logger.warning(f"Blob request {method} {url} returned {response.status_code}, retrying")
                await asyncio.sleep(self._backoff(attempt))
                continue

            return response

        raise BlobStoreError(f"{method} {url} failed without a response")

    @staticmethod
    def _check(response: httpx.Response, what: str) -> None:
        if response.status_code == 404:
            raise BlobNotFoundError(f"{what}: not found")
        if response.status_code >= 400:
            raise BlobStoreError(f"{what}: HTTP {response.status_code}")

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise BlobStoreError(f"{what}: malformed response body") from e

    @staticmethod
    def _info(data: Any, what: str) -> BlobInfo:
        try:
            return BlobInfo.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise BlobStoreError(f"{what}: unexpected blob metadata {data!r}") from e

    async def list(self, prefix: str, limit: int = 1000) -> List[BlobInfo]:
        response = await self._request("GET", "/", params={"prefix": prefix, "limit": limit})
        what = f"list {prefix}"
        self._check(response, what)
        data = self._json(response, what)
        if not isinstance(data, dict):
            raise BlobStoreError(f"{what}: unexpected response body")
        return [self._info(b, what) for b in data.get("blobs") or []]

    async def head(self, pathname: str) -> BlobInfo:
        response = await self._request("GET", "/", params={"url": pathname})
        what = f"head {pathname}"
        self._check(response, what)
        return self._info(self._json(response, what), what)

    async def get_text(self, pathname: str) -> str:
        """Fetch blob content. Raises BlobNotFoundError if absent."""
        info = await self.head(pathname)
        response = await self._request("GET", info.url)
        self._check(response, f"get {pathname}")
        return response.text

    async def put(self, pathname: str, body: str, content_type: str = "application/json") -> BlobInfo:
        response = await self._request(
            "PUT",
            f"/{pathname}",
            content=body.encode("utf-8"),
            headers={
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "1",
                "x-content-type": content_type,
            },
        )
        what = f"put {pathname}"
        self._check(response, what)
        return self._info(self._json(response, what), what)

    async def delete(self, pathname: str) -> bool:
        """
        Delete a blob.

        Returns:
            False if the blob did not exist (no-op), True otherwise
        """
        try:
            info = await self.head(pathname)
        except BlobNotFoundError:
            return False
        response = await self._request("POST", "/delete", json={"urls": [info.url]})
        if response.status_code == 404:
            return False
        self._check(response, f"delete {pathname}")
        return True
