"""Token usage normalization and aggregation.

Providers report usage under different field names depending on the API
flavour (chat completions, responses, agent SDKs). :func:`pick_usage` maps all
of them onto one :class:`UsageSnapshot`; :func:`aggregate` sums snapshots for
a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

_INPUT_KEYS = ("input_tokens", "inputTokens", "prompt_tokens", "promptTokens")
_OUTPUT_KEYS = ("output_tokens", "outputTokens", "completion_tokens", "completionTokens")
_TOTAL_KEYS = ("total_tokens", "totalTokens")
_CACHED_KEYS = ("cached_tokens", "cachedTokens")
_DETAIL_KEYS = (
    "input_tokens_details",
    "inputTokensDetails",
    "prompt_tokens_details",
    "promptTokensDetails",
)


@dataclass(frozen=True)
class UsageSnapshot:
    """Counters for a single model call. ``None`` means the field was absent."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cached_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.input_tokens, self.output_tokens, self.cached_tokens, self.total_tokens)
        )


@dataclass(frozen=True)
class RunUsage:
    """Usage summed over every model call of a run."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0

    def to_response(self) -> dict:
        return {
            "promptTokens": self.input_tokens,
            "completionTokens": self.output_tokens,
            "cachedTokens": self.cached_tokens,
        }


def _as_mapping(raw: Any) -> Optional[Mapping[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        return raw
    # pydantic models (openai SDK objects)
    dump = getattr(raw, "model_dump", None)
    if callable(dump):
        try:
            data = dump()
        except TypeError:
            data = None
        if isinstance(data, Mapping):
            return data
    if hasattr(raw, "__dict__"):
        return vars(raw)
    return None


def _count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        if value < 0 or value != value:  # NaN
            return None
        return int(value)
    return None


def _first(data: Mapping[str, Any], keys: Sequence[str]) -> Optional[int]:
    for k in keys:
        if k in data:
            n = _count(data.get(k))
            if n is not None:
                return n
    return None


def pick_usage(raw: Any) -> UsageSnapshot:
    """Normalize one provider usage payload (dict or SDK object)."""
    data = _as_mapping(raw)
    if not data:
        return UsageSnapshot()

    cached = _first(data, _CACHED_KEYS)
    if cached is None:
        for key in _DETAIL_KEYS:
            details = _as_mapping(data.get(key))
            if details:
                cached = _first(details, _CACHED_KEYS)
                if cached is not None:
                    break

    return UsageSnapshot(
        input_tokens=_first(data, _INPUT_KEYS),
        output_tokens=_first(data, _OUTPUT_KEYS),
        cached_tokens=cached,
        total_tokens=_first(data, _TOTAL_KEYS),
    )


def aggregate(snapshots: Iterable[UsageSnapshot | RunUsage]) -> RunUsage:
    """Field-wise sum; absent counters count as zero."""
    inp = out = cached = total = 0
    for s in snapshots:
        inp += s.input_tokens or 0
        out += s.output_tokens or 0
        cached += s.cached_tokens or 0
        total += s.total_tokens or 0
    return RunUsage(
        input_tokens=inp,
        output_tokens=out,
        cached_tokens=cached,
        total_tokens=total,
    )
