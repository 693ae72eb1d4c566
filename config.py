"""Configuration management for Cursor API service."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)
DEFAULT_WEBGL_VENDOR = "Google Inc. (Intel)"
DEFAULT_WEBGL_RENDERER = (
    "ANGLE (Intel, Intel(R) UHD Graphics 620 (0x00005917) Direct3D11 vs_5_0 ps_5_0, D3D11)"
)


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class FingerprintSeed:
    """Browser identity values fed into the proof-token script."""

    unmasked_vendor_webgl: str
    unmasked_renderer_webgl: str
    user_agent: str


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Server settings
    port: int
    log_level: str
    log_path: str
    max_request_bytes: int
    api_key: str

    # Upstream settings
    request_timeout_s: float
    script_url: str
    js_timeout_s: float

    # Request shaping
    max_input_length: int
    system_prompt_inject: str

    fp: FingerprintSeed

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            port=_env_int("PORT", 8002),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/cursor-api/cursor-api.log"),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            api_key=_env_str("API_KEY", "").strip(),
            request_timeout_s=_env_float("TIMEOUT", 60.0),
            script_url=_env_str("SCRIPT_URL", "").strip(),
            js_timeout_s=_env_float("JS_TIMEOUT", 10.0),
            max_input_length=_env_int("MAX_INPUT_LENGTH", 200_000),  # <=0 = unlimited
            system_prompt_inject=_env_str("SYSTEM_PROMPT_INJECT", ""),
            fp=FingerprintSeed(
                unmasked_vendor_webgl=_env_str("UNMASKED_VENDOR_WEBGL", DEFAULT_WEBGL_VENDOR),
                unmasked_renderer_webgl=_env_str("UNMASKED_RENDERER_WEBGL", DEFAULT_WEBGL_RENDERER),
                user_agent=_env_str("USER_AGENT", DEFAULT_USER_AGENT),
            ),
        )

    def validate(self) -> None:
        """Validate configuration."""
        if self.port <= 0:
            raise ValueError("PORT must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("TIMEOUT must be > 0")
        if self.js_timeout_s <= 0:
            raise ValueError("JS_TIMEOUT must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if self.script_url and not self.script_url.startswith(("http://", "https://")):
            raise ValueError("SCRIPT_URL must be an http(s) URL or empty")
        if not self.fp.user_agent:
            raise ValueError("USER_AGENT must be non-empty")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()


def log_color_enabled() -> bool:
    """Whether colored console/file output was requested."""
    return _env_bool("LOG_COLOR", True)
