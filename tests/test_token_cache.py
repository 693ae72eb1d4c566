"""
Tests for the x-is-human token cache and script template assembly.

Tests cover:
- Cache hits within the freshness window
- Invalidation and expiry
- Degraded mode and fallback to the previous script body
- Evaluator failures never leave a cached value behind
"""

import asyncio

import httpx
import pytest

from config import FingerprintSeed
from errors import ScriptEvaluationError
from fingerprint import BrowserProfile
from js_runtime import ScriptTemplate
from token_cache import FRESHNESS_WINDOW_S, XIsHumanTokenCache

SCRIPT_URL = "https://cursor.test/static/x.js"

TEMPLATE = ScriptTemplate(
    main_js='ua="$$userAgent$$";v="$$UNMASKED_VENDOR_WEBGL$$";r="$$UNMASKED_RENDERER_WEBGL$$";'
    'src="$$currentScriptSrc$$";\n$$env_jscode$$\n$$cursor_jscode$$',
    env_js="/*env*/",
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class ScriptServer:
    """MockTransport handler serving the script body with a programmable status."""

    def __init__(self) -> None:
        self.status = 200
        self.body = "function cursorScript(){}"
        self.fail = False
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status, text=self.body)


@pytest.fixture
def server():
    return ScriptServer()


@pytest.fixture
async def http_client(server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as c:
        yield c


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_cache(http_client, header_generator, stub_evaluator, clock):
    def _make(script_url=SCRIPT_URL, evaluator=None):
        return XIsHumanTokenCache(
            client=http_client,
            header_generator=header_generator,
            evaluator=evaluator or stub_evaluator,
            template=TEMPLATE,
            script_url=script_url,
            clock=clock,
        )

    return _make


class TestAcquire:
    async def test_second_acquire_is_a_cache_hit(self, make_cache, server, stub_evaluator):
        cache = make_cache()
        first = await cache.acquire()
        second = await cache.acquire()
        assert first == second == "tok-1"
        assert len(server.requests) == 1
        assert stub_evaluator.calls == 1

    async def test_script_request_uses_reduced_headers(self, make_cache, server, header_generator):
        await make_cache().acquire()
        req = server.requests[0]
        assert req.method == "GET"
        assert str(req.url) == SCRIPT_URL
        assert "x-is-human" not in req.headers
        assert req.headers["user-agent"] == header_generator.current().user_agent

    async def test_acquire_after_invalidate_refetches(self, make_cache, server, stub_evaluator):
        cache = make_cache()
        await cache.acquire()
        await cache.invalidate()
        assert cache.peek() is None
        token = await cache.acquire()
        assert token == "tok-2"
        assert len(server.requests) == 2
        assert stub_evaluator.calls == 2

    async def test_stale_entry_is_recomputed(self, make_cache, server, clock):
        cache = make_cache()
        await cache.acquire()
        clock.now += FRESHNESS_WINDOW_S - 0.5
        assert await cache.acquire() == "tok-1"
        clock.now += 1.0
        assert await cache.acquire() == "tok-2"
        assert len(server.requests) == 2

    async def test_template_receives_body_and_profile(self, make_cache, stub_evaluator, header_generator):
        await make_cache().acquire()
        source = stub_evaluator.sources[0]
        profile = header_generator.current()
        assert f'ua="{profile.user_agent}"' in source
        assert 'v="Test Vendor"' in source
        assert 'r="Test Renderer"' in source
        assert f'src="{SCRIPT_URL}"' in source
        assert "/*env*/" in source
        assert "function cursorScript(){}" in source


class TestDegradedAndFallback:
    async def test_empty_url_runs_with_empty_body(self, make_cache, server, stub_evaluator):
        cache = make_cache(script_url="")
        token = await cache.acquire()
        assert token == "tok-1"
        assert server.requests == []
        assert "function cursorScript" not in stub_evaluator.sources[0]
        assert 'src=""' in stub_evaluator.sources[0]

    async def test_fetch_error_without_cache_uses_empty_body(self, make_cache, server, stub_evaluator):
        server.fail = True
        token = await make_cache().acquire()
        assert token == "tok-1"
        assert "function cursorScript" not in stub_evaluator.sources[0]

    async def test_bad_status_falls_back_to_previous_body(self, make_cache, server, stub_evaluator, clock):
        cache = make_cache()
        await cache.acquire()
        clock.now += FRESHNESS_WINDOW_S + 1
        server.status = 503
        server.body = "maintenance page"
        token = await cache.acquire()
        assert token == "tok-2"
        assert "function cursorScript(){}" in stub_evaluator.sources[1]
        assert "maintenance page" not in stub_evaluator.sources[1]
        # fallback does not refresh the entry
        assert cache.peek().token == "tok-1"

    async def test_fetch_error_falls_back_to_previous_body(self, make_cache, server, stub_evaluator, clock):
        cache = make_cache()
        await cache.acquire()
        clock.now += FRESHNESS_WINDOW_S + 1
        server.fail = True
        await cache.acquire()
        assert "function cursorScript(){}" in stub_evaluator.sources[1]


class TestEvaluatorFailure:
    async def test_failure_clears_cache_and_raises(self, make_cache, make_evaluator, clock):
        good = make_evaluator()
        cache = make_cache(evaluator=good)
        await cache.acquire()
        assert cache.peek() is not None

        clock.now += FRESHNESS_WINDOW_S + 1
        good.fail = True
        with pytest.raises(ScriptEvaluationError):
            await cache.acquire()
        assert cache.peek() is None

    async def test_failure_on_first_acquire_leaves_nothing(self, make_cache, make_evaluator):
        cache = make_cache(evaluator=make_evaluator(fail=True))
        with pytest.raises(ScriptEvaluationError):
            await cache.acquire()
        assert cache.peek() is None


class GatedEvaluator:
    """Holds its first evaluation open until released."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def evaluate(self, source: str) -> str:
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            await self.release.wait()
        return f"tok-{self.calls}"


def _assert_whole_or_empty(entry, server):
    if entry is None:
        return
    assert entry.token.startswith("tok-")
    assert entry.body == server.body
    assert entry.fetched_at is not None


class TestConcurrentInvalidate:
    async def test_invalidate_during_acquire_is_not_overwritten(self, make_cache, server, clock):
        gated = GatedEvaluator()
        cache = make_cache(evaluator=gated)

        pending = asyncio.create_task(cache.acquire())
        await asyncio.wait_for(gated.entered.wait(), timeout=1.0)
        _assert_whole_or_empty(cache.peek(), server)

        await cache.invalidate()
        assert cache.peek() is None

        gated.release.set()
        assert await asyncio.wait_for(pending, timeout=1.0) == "tok-1"
        # the in-flight result predates the invalidate and is not stored
        assert cache.peek() is None

        assert await cache.acquire() == "tok-2"
        assert len(server.requests) == 2
        entry = cache.peek()
        _assert_whole_or_empty(entry, server)
        assert entry.token == "tok-2"
        assert entry.fetched_at == clock.now

    async def test_stale_entry_stays_whole_while_recomputing(self, make_cache, server, clock):
        gated = GatedEvaluator()
        cache = make_cache(evaluator=gated)
        gated.release.set()
        await cache.acquire()
        first = cache.peek()

        clock.now += FRESHNESS_WINDOW_S + 1
        gated.release.clear()
        gated.calls = 0
        gated.entered.clear()

        pending = asyncio.create_task(cache.acquire())
        await asyncio.wait_for(gated.entered.wait(), timeout=1.0)
        assert cache.peek() is first

        await cache.invalidate()
        assert cache.peek() is None

        gated.release.set()
        await asyncio.wait_for(pending, timeout=1.0)
        assert cache.peek() is None

        await cache.acquire()
        _assert_whole_or_empty(cache.peek(), server)
        assert len(server.requests) == 3


class TestScriptTemplate:
    def test_spliced_code_is_not_substituted(self, fp_seed):
        template = ScriptTemplate(main_js="A=$$userAgent$$;$$env_jscode$$;$$cursor_jscode$$", env_js="E")
        profile = BrowserProfile.from_seed(fp_seed)
        out = template.assemble("B=$$userAgent$$", profile, "")
        assert out == f"A={profile.user_agent};E;B=$$userAgent$$"

    def test_load_ships_all_placeholders(self):
        template = ScriptTemplate.load()
        main = template._main_js
        for placeholder in (
            "$$currentScriptSrc$$",
            "$$UNMASKED_VENDOR_WEBGL$$",
            "$$UNMASKED_RENDERER_WEBGL$$",
            "$$userAgent$$",
            "$$env_jscode$$",
            "$$cursor_jscode$$",
        ):
            assert placeholder in main

    def test_quotes_and_backslashes_are_escaped(self):
        template = ScriptTemplate(main_js='v="$$UNMASKED_VENDOR_WEBGL$$";$$env_jscode$$$$cursor_jscode$$', env_js="")
        seed = FingerprintSeed(
            unmasked_vendor_webgl='Vendor "X" \\ Inc',
            unmasked_renderer_webgl="R",
            user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/140.0.0.0 Safari/537.36",
        )
        out = template.assemble("", BrowserProfile.from_seed(seed), "")
        assert out == 'v="Vendor \\"X\\" \\\\ Inc";'
