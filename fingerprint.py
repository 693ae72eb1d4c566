"""Simulated browser identity and the header sets derived from it."""

from __future__ import annotations

import logging
import random
import re
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from config import FingerprintSeed

log = logging.getLogger("cursor_api")

CURSOR_ORIGIN = "https://cursor.com"

# (sec-ch-ua-platform, user-agent OS token)
PLATFORMS: Tuple[Tuple[str, str], ...] = (
    ("Windows", "Windows NT 10.0; Win64; x64"),
    ("macOS", "Macintosh; Intel Mac OS X 10_15_7"),
    ("Linux", "X11; Linux x86_64"),
)
CHROME_VERSIONS: Tuple[str, ...] = ("136", "137", "138", "139", "140", "141")

_CHROME_RE = re.compile(r"Chrome/(\d+)")


def build_user_agent(platform: str, chrome_version: str) -> str:
    os_token = dict(PLATFORMS).get(platform, PLATFORMS[0][1])
    return (
        f"Mozilla/5.0 ({os_token}) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{chrome_version}.0.0.0 Safari/537.36"
    )


def _platform_from_user_agent(user_agent: str) -> str:
    if "Macintosh" in user_agent or "Mac OS X" in user_agent:
        return "macOS"
    if "Linux" in user_agent or "X11" in user_agent:
        return "Linux"
    return "Windows"


@dataclass(frozen=True)
class BrowserProfile:
    """One complete browser identity. Replaced as a whole, never edited."""

    platform: str
    chrome_version: str
    user_agent: str
    webgl_vendor: str
    webgl_renderer: str

    @classmethod
    def from_seed(cls, seed: FingerprintSeed) -> BrowserProfile:
        m = _CHROME_RE.search(seed.user_agent)
        return cls(
            platform=_platform_from_user_agent(seed.user_agent),
            chrome_version=m.group(1) if m else CHROME_VERSIONS[-1],
            user_agent=seed.user_agent,
            webgl_vendor=seed.unmasked_vendor_webgl,
            webgl_renderer=seed.unmasked_renderer_webgl,
        )

    @property
    def sec_ch_ua(self) -> str:
        v = self.chrome_version
        return f'"Chromium";v="{v}", "Not=A?Brand";v="24", "Google Chrome";v="{v}"'

    def _client_hints(self) -> Dict[str, str]:
        return {
            "sec-ch-ua": self.sec_ch_ua,
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": f'"{self.platform}"',
            "user-agent": self.user_agent,
        }

    def chat_headers(self, x_is_human: str) -> Dict[str, str]:
        """Headers for the chat POST; token and identity come from one call."""
        headers = {
            "accept": "*/*",
            "accept-language": "en-US,en;q=0.9",
            "content-type": "application/json",
            "origin": CURSOR_ORIGIN,
            "referer": f"{CURSOR_ORIGIN}/",
            "priority": "u=1, i",
            "sec-fetch-dest": "empty",
            "sec-fetch-mode": "cors",
            "sec-fetch-site": "same-origin",
            "x-method": "POST",
            "x-path": "/api/chat",
            "x-is-human": x_is_human,
        }
        headers.update(self._client_hints())
        return headers

    def script_headers(self) -> Dict[str, str]:
        """Reduced header set for fetching the proof-token script."""
        headers = {
            "accept": "*/*",
            "accept-language": "en-US,en;q=0.9",
            "referer": f"{CURSOR_ORIGIN}/",
            "sec-fetch-dest": "script",
            "sec-fetch-mode": "no-cors",
            "sec-fetch-site": "same-origin",
        }
        headers.update(self._client_hints())
        return headers


class HeaderGenerator:
    """Holds the process-wide browser profile; readers get whole snapshots."""

    def __init__(self, seed: FingerprintSeed, rng: Optional[random.Random] = None) -> None:
        self._lock = threading.Lock()
        self._rng = rng or random.Random()
        self._profile = BrowserProfile.from_seed(seed)

    def current(self) -> BrowserProfile:
        return self._profile

    def refresh(self) -> BrowserProfile:
        """Swap in a new (platform, chrome version) identity different from the current one."""
        with self._lock:
            old = self._profile
            candidates = [
                (p, v)
                for p, _ in PLATFORMS
                for v in CHROME_VERSIONS
                if (p, v) != (old.platform, old.chrome_version)
            ]
            platform, version = self._rng.choice(candidates)
            self._profile = BrowserProfile(
                platform=platform,
                chrome_version=version,
                user_agent=build_user_agent(platform, version),
                webgl_vendor=old.webgl_vendor,
                webgl_renderer=old.webgl_renderer,
            )
            new = self._profile
        log.debug("Refreshed browser fingerprint platform=%s chrome_version=%s", new.platform, new.chrome_version)
        return new

    def get_script_headers(self) -> Dict[str, str]:
        return self.current().script_headers()
