from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Dict, List

from duckduckgo_search import DDGS

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
MAX_RETRIES = 3
BASE_DELAY = 0.75            # initial backoff delay
SEARCH_CACHE = 64
MAX_RESULTS_CAP = 10
SAFESEARCH = "moderate"


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------
def _clamp_results(n: int) -> int:
    return max(1, min(int(n), MAX_RESULTS_CAP))


@lru_cache(maxsize=SEARCH_CACHE)
def _cached_search(query: str, max_results: int) -> tuple:
    last_err: Exception | None = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            with DDGS() as ddgs:
                hits = ddgs.text(query, max_results=max_results, safesearch=SAFESEARCH)
                out = []
                for h in hits or []:
                    out.append((
                        (h.get("title") or "")[:200],
                        h.get("href") or "",
                        (h.get("body") or "")[:500],
                    ))
                return tuple(out)
        except Exception as e:
            last_err = e
            delay = BASE_DELAY * attempt
            logger.warning("web_search retry %d for %r: %s (sleep %.2fs)", attempt, query, e, delay)
            time.sleep(delay)
    logger.error("web_search failed for %r: %s", query, last_err)
    raise RuntimeError(f"web search unavailable: {last_err}")


def web_search(query: str, max_results: int = 5) -> List[Dict[str, str]]:
    """DuckDuckGo text search with basic retry + cache.

    Returns ``[{"title", "url", "snippet"}, ...]``. Raises ``RuntimeError``
    once every retry has failed so the tool layer can report it.
    """
    query = (query or "").strip()
    if not query:
        return []
    rows = _cached_search(query, _clamp_results(max_results))
    return [{"title": t, "url": u, "snippet": s} for t, u, s in rows]


def clear_cache() -> None:
    _cached_search.cache_clear()
