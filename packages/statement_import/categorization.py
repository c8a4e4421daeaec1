"""Categorization oracle backed by the OpenAI Responses API.

Public API:
    - :class:`OpenAICategorizer`: one Responses call per description.
    - :class:`CachedCategorizer`: process-lifetime cache plus a per-call
      timeout around any ``CategorizationOracle``.
    - :class:`UsageTally`: per-session API call/cache/cost accounting.

No side effects occur at import time (no client creation, no environment
reads). The OpenAI client is created lazily on the first cache miss.
"""

from __future__ import annotations

import json
import os
import random
import threading
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from openai import APITimeoutError, OpenAI

from . import prompting
from .errors import CategorizationError
from .interfaces import Categorization, CategorizationOracle
from .logging_setup import get_logger, short
from .models import AiUsageStats

# ---- Tunables ----------------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

# gpt-5-mini list price, USD per million tokens.
_INPUT_USD_PER_MTOK: float = 0.25
_OUTPUT_USD_PER_MTOK: float = 2.00

_logger = get_logger("statement_import.categorization")


# ---- Response decoding -------------------------------------------------------


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from a Responses SDK result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    Raises ``ValueError`` when no text is found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                text = txt_obj if isinstance(txt_obj, str) else getattr(txt_obj, "value", None)
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output was not a JSON object")
    return decoded


def _usage_tokens(resp: Any) -> tuple[int, int]:
    usage = getattr(resp, "usage", None)
    return (
        int(getattr(usage, "input_tokens", 0) or 0),
        int(getattr(usage, "output_tokens", 0) or 0),
    )


def estimate_cost_usd(input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1_000_000) * _INPUT_USD_PER_MTOK + (
        output_tokens / 1_000_000
    ) * _OUTPUT_USD_PER_MTOK


# ---- Error classification ----------------------------------------------------


def _is_insufficient_credits(exc: BaseException) -> bool:
    sc = getattr(exc, "status_code", None)
    code = str(getattr(exc, "code", "") or "")
    if sc == 402 or code == "insufficient_quota":
        return True
    return sc == 429 and "quota" in str(exc).lower()


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 (rate limit, not quota) and 5xx errors."""

    if _is_insufficient_credits(exc):
        return False
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _to_categorization_error(exc: BaseException) -> CategorizationError:
    if isinstance(exc, CategorizationError):
        return exc
    if isinstance(exc, (APITimeoutError, TimeoutError)):
        return CategorizationError(f"OpenAI request timed out: {exc}", "TIMEOUT")
    if _is_insufficient_credits(exc):
        return CategorizationError(
            "OpenAI quota exhausted. Add credits at "
            "https://platform.openai.com/settings/organization/billing",
            "INSUFFICIENT_CREDITS",
        )
    return CategorizationError(f"OpenAI API error: {exc}", "API_ERROR")


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


# ---- Oracle ------------------------------------------------------------------


class OpenAICategorizer:
    """``CategorizationOracle`` asking an OpenAI model to name the merchant.

    Returns ``None`` when the model reports no identifiable merchant. Raises
    ``CategorizationError`` with code ``NO_API_KEY`` when no key is configured,
    ``INSUFFICIENT_CREDITS`` on quota errors, ``TIMEOUT`` on client timeouts and
    ``API_ERROR`` for everything else (after retrying 429/5xx).
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "gpt-5-mini",
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        with self._client_lock:
            if self._client is None:
                key = self._api_key or os.getenv("OPENAI_API_KEY")
                if not key:
                    raise CategorizationError("OPENAI_API_KEY not configured", "NO_API_KEY")
                self._client = OpenAI(api_key=key)
        return self._client

    def categorize(self, description: str) -> Categorization | None:
        if not description or not description.strip():
            return None

        client = self._get_client()
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(
                    model=self._model,
                    instructions=prompting.build_system_instructions(),
                    input=prompting.build_user_content(description),
                    text={"format": prompting.build_response_format()},
                )
                break
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "categorize:failed description=%s latency_ms=%.2f error=%s",
                        short(description),
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise _to_categorization_error(e) from e
                _logger.warning(
                    "categorize:retry description=%s latency_ms=%.2f error=%s attempt=%d",
                    short(description),
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                _sleep_backoff(attempt)
                attempt += 1

        try:
            decoded = _extract_response_json_mapping(resp)
        except ValueError as e:
            raise CategorizationError(str(e), "API_ERROR") from e

        name = str(decoded.get("entity_name") or "").strip()
        if not name:
            _logger.info("categorize:no_opinion description=%s", short(description))
            return None

        input_tokens, output_tokens = _usage_tokens(resp)
        try:
            confidence = float(decoded.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        category = decoded.get("category")
        result = Categorization(
            entity_name=name,
            category=str(category) if category else None,
            confidence=min(1.0, max(0.0, confidence)),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=estimate_cost_usd(input_tokens, output_tokens),
        )
        _logger.info(
            "categorize:done description=%s entity=%s category=%s tokens_in=%d tokens_out=%d",
            short(description),
            result.entity_name,
            result.category,
            input_tokens,
            output_tokens,
        )
        return result


# ---- Cache + timeout ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategorizationLookup:
    result: Categorization | None
    cached: bool


class CachedCategorizer:
    """Wrap an oracle with a shared result cache and a per-call timeout.

    The cache is keyed by ``description.strip().upper()``, lives as long as
    this object, and is never evicted. Only proposals are cached; "no opinion"
    and failures are asked again next time. Calls run on a small private pool
    so a hung request is abandoned after ``timeout_sec`` (raised as
    ``CategorizationError`` code ``TIMEOUT``).
    """

    def __init__(
        self,
        oracle: CategorizationOracle,
        *,
        timeout_sec: float = 15.0,
        max_workers: int = 8,
    ) -> None:
        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be positive")
        self._oracle = oracle
        self._timeout_sec = timeout_sec
        self._cache: dict[str, Categorization] = {}
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="si-oracle")

    @staticmethod
    def cache_key(description: str) -> str:
        return description.strip().upper()

    def lookup(self, description: str) -> CategorizationLookup:
        key = self.cache_key(description)
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            _logger.debug("categorize:cache_hit description=%s", short(description))
            return CategorizationLookup(result=hit, cached=True)

        future = self._pool.submit(self._oracle.categorize, description)
        try:
            result = future.result(timeout=self._timeout_sec)
        except TimeoutError:
            future.cancel()
            _logger.warning(
                "categorize:timeout description=%s timeout_sec=%.1f",
                short(description),
                self._timeout_sec,
            )
            raise CategorizationError(
                f"categorization timed out after {self._timeout_sec:g}s", "TIMEOUT"
            ) from None
        except CategorizationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise _to_categorization_error(exc) from exc

        if result is not None:
            with self._lock:
                result = self._cache.setdefault(key, result)
        return CategorizationLookup(result=result, cached=False)

    def categorize(self, description: str) -> Categorization | None:
        return self.lookup(description).result

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


class UsageTally:
    """Accumulates ``AiUsageStats`` for one session."""

    def __init__(self) -> None:
        self.api_calls = 0
        self.cache_hits = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.cost_usd = 0.0

    def record(self, lookup: CategorizationLookup) -> None:
        if lookup.cached:
            self.cache_hits += 1
            return
        self.api_calls += 1
        if lookup.result is not None:
            self.input_tokens += lookup.result.input_tokens
            self.output_tokens += lookup.result.output_tokens
            self.cost_usd += lookup.result.cost_usd

    def record_failed_call(self) -> None:
        self.api_calls += 1

    @property
    def used(self) -> bool:
        return bool(self.api_calls or self.cache_hits)

    def snapshot(self) -> AiUsageStats:
        return AiUsageStats(
            api_calls=self.api_calls,
            cache_hits=self.cache_hits,
            total_input_tokens=self.input_tokens,
            total_output_tokens=self.output_tokens,
            total_cost_usd=round(self.cost_usd, 6),
            avg_cost_per_call=round(self.cost_usd / self.api_calls, 6) if self.api_calls else 0.0,
        )


__all__ = [
    "CachedCategorizer",
    "CategorizationLookup",
    "OpenAICategorizer",
    "UsageTally",
    "estimate_cost_usd",
]
