"""Error types surfaced by the Cursor upstream layer."""

from __future__ import annotations

from typing import Any, Dict

CLOUDFLARE_BLOCK_SIGNATURE = "Attention Required! | Cloudflare"


class CursorWebError(Exception):
    """Upstream failure carrying an HTTP-like status code and a readable message."""

    error_type = "cursor_web_error"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"

    def to_openai_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.status_code,
            }
        }


class UpstreamUnavailableError(CursorWebError):
    error_type = "upstream_unreachable"

    def __init__(self, message: str) -> None:
        super().__init__(502, message)


class TokenAcquisitionError(CursorWebError):
    error_type = "token_acquisition_error"

    def __init__(self, message: str) -> None:
        super().__init__(502, message)


class AccessDeniedError(CursorWebError):
    error_type = "access_denied"

    def __init__(self, message: str) -> None:
        super().__init__(403, message)


class AttemptsExhaustedError(CursorWebError):
    error_type = "attempts_exhausted"

    def __init__(self, attempts: int) -> None:
        super().__init__(502, f"failed after {attempts} attempts")


class UpstreamStreamError(CursorWebError):
    """Mid-stream read/parse failure, delivered inside an already-open stream."""

    error_type = "upstream_stream_error"

    def __init__(self, message: str) -> None:
        super().__init__(502, message)


class ScriptEvaluationError(Exception):
    """The proof-token script failed or returned something unusable."""


class ScriptTimeoutError(ScriptEvaluationError):
    pass


def normalize_block_message(message: str) -> str:
    """Collapse a known anti-bot block page into a short message."""
    if CLOUDFLARE_BLOCK_SIGNATURE in message:
        return "Cloudflare 403"
    return message
