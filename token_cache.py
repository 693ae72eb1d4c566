"""Time-boxed cache of the x-is-human proof token and the script it came from."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx

from errors import ScriptEvaluationError
from fingerprint import HeaderGenerator
from js_runtime import ScriptEvaluator, ScriptTemplate

log = logging.getLogger("cursor_api")

# Upstream rejects tokens well before a few minutes; keep this short
FRESHNESS_WINDOW_S = 60.0


@dataclass(frozen=True)
class ScriptCacheEntry:
    """Script body, token computed from it, and when the body was fetched."""

    body: str
    token: str
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at


class XIsHumanTokenCache:
    """
    Process-wide proof-token cache.

    The whole entry is an immutable snapshot replaced by a single assignment
    under ``_write_lock``, so readers always see body, token and timestamp
    from the same write. Two concurrent misses may both refetch; the last
    writer wins. A token whose computation started before an ``invalidate()``
    is returned to its caller but never stored.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        header_generator: HeaderGenerator,
        evaluator: ScriptEvaluator,
        template: ScriptTemplate,
        script_url: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._headers = header_generator
        self._evaluator = evaluator
        self._template = template
        self._script_url = script_url
        self._clock = clock
        self._entry: Optional[ScriptCacheEntry] = None
        self._write_lock = asyncio.Lock()
        self._generation = 0

    def peek(self) -> Optional[ScriptCacheEntry]:
        return self._entry

    async def invalidate(self) -> None:
        async with self._write_lock:
            self._entry = None
            self._generation += 1

    async def acquire(self) -> str:
        """Return a fresh token, computing one on a miss. Raises ScriptEvaluationError."""
        cached = self._entry
        if cached is not None and cached.token and cached.age(self._clock()) < FRESHNESS_WINDOW_S:
            log.debug("x-is-human cache hit age=%.1fs", cached.age(self._clock()))
            return cached.token

        generation = self._generation
        body, fresh = await self._resolve_script_body(cached)

        profile = self._headers.current()
        source = self._template.assemble(body, profile, self._script_url)
        try:
            token = await self._evaluator.evaluate(source)
        except ScriptEvaluationError:
            await self.invalidate()
            raise

        if fresh:
            async with self._write_lock:
                if generation == self._generation:
                    self._entry = ScriptCacheEntry(body=body, token=token, fetched_at=self._clock())
                else:
                    log.debug("Cache invalidated during token computation, not storing result")

        log.debug("Fetched x-is-human token length=%d fresh_script=%s", len(token), fresh)
        return token

    async def _resolve_script_body(self, cached: Optional[ScriptCacheEntry]) -> Tuple[str, bool]:
        """Return (body, fetched_now). Falls back to the cached body, then to empty."""
        if not self._script_url:
            log.warning("SCRIPT_URL is empty, using fallback mode")
            return "", False

        previous = cached.body if cached is not None else ""
        try:
            resp = await self._client.get(self._script_url, headers=self._headers.get_script_headers())
        except httpx.HTTPError as e:
            if previous:
                log.warning("Failed to fetch script, using cached version: %s", e)
            else:
                log.warning("Failed to fetch script and no cache available, using fallback mode: %s", e)
            return previous, False

        if resp.status_code != 200:
            if previous:
                log.warning("Script fetch returned status %d, using cached version", resp.status_code)
            else:
                log.warning(
                    "Script fetch returned status %d and no cache available, using fallback mode",
                    resp.status_code,
                )
            return previous, False

        return resp.text, True
