"""Upstream Cursor chat communication: attempt loop, failure classification, streaming hand-off."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx

from config import AppConfig
from errors import (
    AccessDeniedError,
    AttemptsExhaustedError,
    CursorWebError,
    ScriptEvaluationError,
    TokenAcquisitionError,
    UpstreamUnavailableError,
    normalize_block_message,
)
from fingerprint import HeaderGenerator
from logger import preview
from messages import ChatMessage, SubmissionPayload, to_cursor_messages, truncate_messages
from models import convert_model_name
from sse_handler import EventStream, StreamRelay
from token_cache import XIsHumanTokenCache

log = logging.getLogger("cursor_api")

CURSOR_API_URL = "https://cursor.com/api/chat"
MAX_ATTEMPTS = 2


class AttemptState(enum.Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class FailureKind(enum.Enum):
    TRANSPORT = "transport"
    TOKEN = "token"
    ACCESS_DENIED = "access_denied"
    UPSTREAM_STATUS = "upstream_status"


@dataclass(frozen=True)
class Decision:
    """Outcome of classifying one attempt."""

    retry: bool
    kind: Optional[FailureKind] = None
    refresh_identity: bool = False

    @property
    def success(self) -> bool:
        return not self.retry and self.kind is None


def classify_outcome(
    status_code: Optional[int],
    error: Optional[BaseException],
    attempts_left: bool,
) -> Decision:
    """Map one attempt's (status, error) to retry / fail(kind) / success. No side effects."""
    if error is not None:
        kind = FailureKind.TOKEN if isinstance(error, ScriptEvaluationError) else FailureKind.TRANSPORT
        return Decision(retry=attempts_left, kind=kind)
    if status_code is None:
        return Decision(retry=attempts_left, kind=FailureKind.TRANSPORT)
    if 200 <= status_code < 300:
        return Decision(retry=False)
    if status_code == 403:
        if attempts_left:
            return Decision(retry=True, kind=FailureKind.ACCESS_DENIED, refresh_identity=True)
        return Decision(retry=False, kind=FailureKind.ACCESS_DENIED)
    return Decision(retry=False, kind=FailureKind.UPSTREAM_STATUS)


async def read_error_body(resp: httpx.Response, timeout_s: float = 5.0) -> str:
    """Drain and close a non-success response; returns its trimmed text."""
    try:
        raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
    except (httpx.HTTPError, asyncio.TimeoutError) as e:
        log.debug("Could not read upstream error body: %r", e)
        raw = b""
    finally:
        await resp.aclose()
    return raw.decode("utf-8", errors="replace").strip()


class CursorService:
    """
    Submit one chat turn to Cursor and hand back a live EventStream.

    At most MAX_ATTEMPTS attempts. A 403 with attempts left swaps the browser
    identity and drops the cached token before backing off; any other
    non-2xx status is final.
    """

    def __init__(
        self,
        config: AppConfig,
        client: httpx.AsyncClient,
        header_generator: HeaderGenerator,
        token_cache: XIsHumanTokenCache,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._config = config
        self._client = client
        self._headers = header_generator
        self._tokens = token_cache
        self._sleep = sleep
        self._max_attempts = max_attempts

    def build_payload(self, messages: Sequence[ChatMessage], model: str) -> SubmissionPayload:
        truncated = truncate_messages(messages, self._config.max_input_length)
        return SubmissionPayload(
            model=convert_model_name(model),
            messages=to_cursor_messages(truncated, self._config.system_prompt_inject),
        )

    async def chat_completion(self, messages: List[ChatMessage], model: str) -> EventStream:
        """Raises CursorWebError when no attempt produces an accepted stream."""
        state = AttemptState.ATTEMPTING
        attempt = 0
        last_error: Optional[CursorWebError] = None
        events: Optional[EventStream] = None

        while state not in (AttemptState.SUCCESS, AttemptState.EXHAUSTED):
            if state is AttemptState.BACKOFF:
                await self._sleep(float(attempt))
                state = AttemptState.ATTEMPTING
                continue

            attempt += 1
            if attempt > self._max_attempts:
                state = AttemptState.EXHAUSTED
                continue
            attempts_left = attempt < self._max_attempts

            try:
                x_is_human = await self._tokens.acquire()
            except ScriptEvaluationError as e:
                decision = classify_outcome(None, e, attempts_left)
                last_error = TokenAcquisitionError(f"failed to execute JS: {e}")
                log.warning(
                    "Failed to fetch x-is-human token (attempt %d/%d): %s",
                    attempt,
                    self._max_attempts,
                    e,
                )
                if decision.retry:
                    state = AttemptState.BACKOFF
                    continue
                raise last_error from e

            # Snapshot the profile once so the header set is self-consistent
            profile = self._headers.current()
            headers = profile.chat_headers(x_is_human)
            payload = self.build_payload(messages, model)
            body = json.dumps(payload.to_dict(), ensure_ascii=False).encode("utf-8")

            log.debug(
                "Sending request to Cursor API url=%s x-is-human=%s payload_length=%d model=%s upstream_model=%s attempt=%d",
                CURSOR_API_URL,
                preview(x_is_human),
                len(body),
                model,
                payload.model,
                attempt,
            )

            t0 = time.time()
            try:
                req = self._client.build_request("POST", CURSOR_API_URL, headers=headers, content=body)
                resp = await self._client.send(req, stream=True)
            except httpx.HTTPError as e:
                decision = classify_outcome(None, e, attempts_left)
                last_error = UpstreamUnavailableError(f"cursor request failed: {type(e).__name__}: {e}")
                log.warning(
                    "Cursor request failed (attempt %d/%d): %r",
                    attempt,
                    self._max_attempts,
                    e,
                )
                if decision.retry:
                    state = AttemptState.BACKOFF
                    continue
                raise last_error from e

            dt = (time.time() - t0) * 1000
            log.info("Upstream chat model=%s status=%s ms=%.1f attempt=%d", payload.model, resp.status_code, dt, attempt)

            decision = classify_outcome(resp.status_code, None, attempts_left)
            if decision.success:
                events = StreamRelay.start(resp)
                state = AttemptState.SUCCESS
                continue

            message = await read_error_body(resp)
            log.error(
                "Cursor API returned non-OK status status_code=%s response=%s attempt=%d",
                resp.status_code,
                message[:2000],
                attempt,
            )

            if decision.refresh_identity:
                log.warning("Received 403 Access Denied, refreshing browser fingerprint and clearing token cache...")
                new_profile = self._headers.refresh()
                await self._tokens.invalidate()
                log.info(
                    "Browser fingerprint refreshed platform=%s chrome_version=%s",
                    new_profile.platform,
                    new_profile.chrome_version,
                )
                last_error = AccessDeniedError(normalize_block_message(message))
                state = AttemptState.BACKOFF
                continue

            message = normalize_block_message(message)
            if decision.kind is FailureKind.ACCESS_DENIED:
                raise AccessDeniedError(message)
            raise CursorWebError(resp.status_code, message)

        if state is AttemptState.SUCCESS and events is not None:
            return events

        log.error("Cursor request exhausted attempts=%d last_error=%s", self._max_attempts, last_error)
        raise AttemptsExhaustedError(self._max_attempts)
