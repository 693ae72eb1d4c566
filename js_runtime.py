"""Proof-token script assembly and sandboxed evaluation (V8 via mini-racer)."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol

from py_mini_racer import JSTimeoutException, MiniRacer

from errors import ScriptEvaluationError, ScriptTimeoutError
from fingerprint import BrowserProfile

log = logging.getLogger("cursor_api")

JSCODE_DIR = Path(__file__).resolve().parent / "jscode"


class ScriptEvaluator(Protocol):
    """Runs a fully assembled script and returns the token string."""

    async def evaluate(self, source: str) -> str:
        ...


class MiniRacerEvaluator:
    """
    Evaluate each script in a fresh V8 context.

    The context has no host bindings: the only environment the script sees is
    what the template injected. Evaluation runs in a worker thread and is
    bounded twice, by V8's own timeout and by an asyncio deadline.
    """

    def __init__(self, timeout_s: float = 10.0) -> None:
        self._timeout_s = timeout_s

    def _evaluate_sync(self, source: str) -> object:
        with MiniRacer() as ctx:
            return ctx.eval(source, timeout=int(self._timeout_s * 1000))

    async def evaluate(self, source: str) -> str:
        try:
            value = await asyncio.wait_for(
                asyncio.to_thread(self._evaluate_sync, source),
                # V8 timeout should fire first; this catches a wedged thread
                timeout=self._timeout_s + 1.0,
            )
        except (JSTimeoutException, asyncio.TimeoutError) as e:
            raise ScriptTimeoutError(f"script evaluation timed out after {self._timeout_s}s") from e
        except Exception as e:
            raise ScriptEvaluationError(f"{type(e).__name__}: {e}") from e

        if not isinstance(value, str) or not value:
            raise ScriptEvaluationError(f"script returned {type(value).__name__}, expected non-empty string")
        return value


def _js_string_body(value: str) -> str:
    """Escape a value for use between the double quotes of a JS string literal."""
    return json.dumps(value)[1:-1]


class ScriptTemplate:
    """The fixed wrapper script with placeholder slots."""

    def __init__(self, main_js: str, env_js: str) -> None:
        self._main_js = main_js
        self._env_js = env_js

    @classmethod
    def load(cls, jscode_dir: Path = JSCODE_DIR) -> ScriptTemplate:
        main_path = jscode_dir / "main.js"
        env_path = jscode_dir / "env.js"
        try:
            return cls(main_path.read_text(encoding="utf-8"), env_path.read_text(encoding="utf-8"))
        except OSError:
            log.exception("Failed to read script template from %s", str(jscode_dir))
            raise

    def assemble(self, cursor_js: str, profile: BrowserProfile, script_url: str) -> str:
        """Substitute scalar slots first, then splice code; spliced code is left untouched."""
        script = self._main_js
        for placeholder, value in (
            ("$$currentScriptSrc$$", script_url),
            ("$$UNMASKED_VENDOR_WEBGL$$", profile.webgl_vendor),
            ("$$UNMASKED_RENDERER_WEBGL$$", profile.webgl_renderer),
            ("$$userAgent$$", profile.user_agent),
        ):
            script = script.replace(placeholder, _js_string_body(value))

        script = script.replace("$$env_jscode$$", self._env_js, 1)
        return script.replace("$$cursor_jscode$$", cursor_js, 1)
