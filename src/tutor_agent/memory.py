"""Gateway to the external per-user memory store (Mem0 REST API).

The store answers in several envelope shapes depending on API version, so
everything returned from here is normalized to plain strings by
:func:`extract_items` and :func:`memory_text`.

Writes never block a conversation: :meth:`MemoryGateway.add` hands the
request to a :class:`MemoryWriter` and returns an acknowledgement straight
away. Failed writes are logged and dropped.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .errors import MemoryStoreError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 25


# -----------------------------
# Normalization
# -----------------------------
def clamp_limit(limit: Any, default: int = DEFAULT_LIMIT) -> int:
    """Coerce a caller-supplied limit into ``[1, MAX_LIMIT]``."""
    try:
        n = int(float(limit))
    except (TypeError, ValueError):
        n = default
    if n <= 0:
        n = default
    return max(1, min(n, MAX_LIMIT))


def extract_items(payload: Any) -> List[Any]:
    """Unwrap raw array / ``results`` / ``memories`` / ``data`` envelopes."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("results", "memories", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def memory_text(item: Any) -> str:
    """Best-effort plain text for one stored memory."""
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        if item.get("memory") is not None:
            return str(item["memory"])
        data = item.get("data")
        if isinstance(data, dict) and data.get("memory") is not None:
            return str(data["memory"])
        for key in ("text", "content"):
            if item.get(key) is not None:
                return str(item[key])
    return json.dumps(item, ensure_ascii=False, default=str)


# -----------------------------
# HTTP client
# -----------------------------
class Mem0Client:
    """Thin synchronous client for the Mem0 platform API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.mem0.ai",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={
                "Authorization": f"Token {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            r = self._client.request(method, path, **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MemoryStoreError(
                f"memory store returned {e.response.status_code}",
                upstream_status=e.response.status_code,
                upstream_body=e.response.text[:2000],
            ) from e
        except httpx.HTTPError as e:
            raise MemoryStoreError(f"memory store unreachable: {e}") from e
        try:
            return r.json()
        except ValueError as e:
            raise MemoryStoreError(
                "memory store sent a non-JSON response",
                upstream_status=r.status_code,
                upstream_body=r.text[:2000],
            ) from e

    def search(self, query: str, user_id: str) -> Any:
        return self._request("POST", "/v1/memories/search/", json={"query": query, "user_id": user_id})

    def add(self, text: str, user_id: str) -> Any:
        # Single-message payload; the store infers memories from it.
        return self._request(
            "POST",
            "/v1/memories/",
            json={"messages": [{"role": "user", "content": text}], "user_id": user_id},
        )

    def get_all(self, user_id: str, *, page: int = 1, page_size: int = DEFAULT_LIMIT) -> Any:
        return self._request(
            "GET",
            "/v1/memories/",
            params={"user_id": user_id, "page": page, "page_size": page_size},
        )

    def close(self) -> None:
        self._client.close()


# -----------------------------
# Background writes
# -----------------------------
class MemoryWriter:
    """Runs memory writes off the request path. Failures are only logged."""

    def __init__(self, max_workers: int = 1) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="memory-writer")

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._pool.submit(fn, *args)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Async memory write failed: %s", exc)

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait)


# -----------------------------
# Gateway
# -----------------------------
class MemoryGateway:
    """Search, list and queue writes against the memory store."""

    def __init__(self, client: Mem0Client, writer: Optional[MemoryWriter] = None) -> None:
        self.client = client
        self.writer = writer or MemoryWriter()

    def search(self, query: str, user_id: str, limit: int = DEFAULT_LIMIT) -> Tuple[int, List[str]]:
        """Return ``(total_found, memories[:limit])``.

        Raises :class:`MemoryStoreError` when the store cannot be reached.
        """
        items = extract_items(self.client.search(query, user_id))
        limited = items[: clamp_limit(limit)]
        logger.debug("memory search user=%s query=%r hits=%d", user_id, query, len(items))
        return len(items), [memory_text(m) for m in limited]

    def add(self, text: str, user_id: str) -> Dict[str, Any]:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Memory text must not be empty.")
        self.writer.submit(self.client.add, text, user_id)
        return {"ok": True, "queued": True}

    def list(self, user_id: str, limit: int = DEFAULT_LIMIT) -> Tuple[int, List[str]]:
        """Return ``(total_returned, memories[:limit])`` from the first page."""
        page_size = clamp_limit(limit)
        items = extract_items(self.client.get_all(user_id, page=1, page_size=page_size))
        # The store does not always honor page_size.
        return len(items), [memory_text(m) for m in items[:page_size]]

    def close(self) -> None:
        # Queued writes must reach the store before the client goes away.
        self.writer.shutdown(wait=True)
        self.client.close()
