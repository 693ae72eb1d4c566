"""Utility functions for Cursor API service."""

from __future__ import annotations

import logging
import secrets
import string
from pathlib import Path

from dotenv import load_dotenv

from logger import mask_secret

log = logging.getLogger("cursor_api")

_ALPHANUM = string.ascii_letters + string.digits


def generate_random_string(length: int) -> str:
    """Random alphanumeric id (request ids, message ids)."""
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def load_env_files() -> None:
    """Apply .env from the program directory, then from the working directory (later wins)."""
    candidates = [Path(__file__).resolve().parent / ".env"]
    cwd_env = Path.cwd() / ".env"
    if cwd_env != candidates[0]:
        candidates.append(cwd_env)

    applied = []
    for path in candidates:
        if not path.exists():
            log.info("No .env at %s", path)
            continue
        if load_dotenv(dotenv_path=str(path), override=True):
            applied.append(str(path))
            log.info("Loaded .env from %s", path)

    if not applied:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config) -> None:
    """Log effective configuration at startup."""
    log.info("=== Cursor API startup config ===")
    log.info("PORT=%s", config.port)
    log.info("API_KEY_set=%s value=%s", bool(config.api_key), mask_secret(config.api_key))
    log.info("TIMEOUT=%s", config.request_timeout_s)
    log.info("SCRIPT_URL=%s", config.script_url or "<empty: degraded mode>")
    log.info("JS_TIMEOUT=%s", config.js_timeout_s)
    log.info("MAX_INPUT_LENGTH=%s", config.max_input_length)
    if config.max_input_length <= 0:
        log.info("MAX_INPUT_LENGTH<=0 means messages are never truncated.")
    log.info("SYSTEM_PROMPT_INJECT_set=%s len=%s", bool(config.system_prompt_inject), len(config.system_prompt_inject))
    log.info("UNMASKED_VENDOR_WEBGL=%s", config.fp.unmasked_vendor_webgl)
    log.info("UNMASKED_RENDERER_WEBGL=%s", config.fp.unmasked_renderer_webgl)
    log.info("USER_AGENT=%s", config.fp.user_agent)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("===============================")
