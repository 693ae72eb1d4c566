"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Shared fixtures available to all test modules
- Test environment setup
"""

import os
import sys
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# The app loads config at import time, so set these during collection.
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/cursor_api_test.log")
os.environ.setdefault("LOG_COLOR", "false")
os.environ["API_KEY"] = ""
os.environ["SCRIPT_URL"] = ""

from config import AppConfig, FingerprintSeed  # noqa: E402
from fingerprint import HeaderGenerator  # noqa: E402

SCRIPT_URL = "https://cursor.test/static/x.js"


class StubEvaluator:
    """Deterministic evaluator: returns tok-<n> and records every source it saw."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sources = []

    async def evaluate(self, source: str) -> str:
        from errors import ScriptEvaluationError

        self.sources.append(source)
        if self.fail:
            raise ScriptEvaluationError("boom")
        return f"tok-{len(self.sources)}"

    @property
    def calls(self) -> int:
        return len(self.sources)


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root


@pytest.fixture
def fp_seed():
    return FingerprintSeed(
        unmasked_vendor_webgl="Test Vendor",
        unmasked_renderer_webgl="Test Renderer",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
        ),
    )


@pytest.fixture
def test_config(fp_seed):
    """Create test configuration."""
    return AppConfig(
        port=8002,
        log_level="DEBUG",
        log_path="/tmp/cursor_api_test.log",
        max_request_bytes=2_000_000,
        api_key="",
        request_timeout_s=5.0,
        script_url=SCRIPT_URL,
        js_timeout_s=2.0,
        max_input_length=0,
        system_prompt_inject="",
        fp=fp_seed,
    )


@pytest.fixture
def header_generator(fp_seed):
    return HeaderGenerator(fp_seed)


@pytest.fixture
def stub_evaluator():
    return StubEvaluator()


@pytest.fixture
def make_evaluator():
    return StubEvaluator
