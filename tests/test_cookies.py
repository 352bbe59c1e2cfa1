import json
import os
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rankscout.contexts.orchestration import AttemptContext, Fatal, Retry, Success
from rankscout.contexts.scraping.browsing import PageTimings
from rankscout.contexts.scraping.cookies import (
    DEFAULT_DOMAINS,
    CookieEntry,
    CookieHarvestTask,
    CookieProvider,
    CookieStore,
    DomainCookieConfig,
    refresh_cookies,
)
from rankscout.contexts.scraping.errors import SelectorNotFoundError

COOKIES_MODULE = "rankscout.contexts.scraping.cookies"


def entry(domain, hours_old=0.0, cookie="session-id=1"):
    return CookieEntry(domain=domain, zip_code="10008", cookie=cookie, timestamp=time.time() - hours_old * 3600)


class TestCookieStore:
    def test_missing_file_is_empty(self, tmp_path):
        store = CookieStore(tmp_path / "cookies.json")
        assert store.entries() == []
        assert store.get("amazon.com") is None

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "cookies.json"
        CookieStore(path).save_entry(entry("amazon.com"))
        CookieStore(path).save_entry(entry("amazon.de", cookie="lc=de"))

        reloaded = CookieStore(path)
        assert {e.domain for e in reloaded.entries()} == {"amazon.com", "amazon.de"}
        assert reloaded.get("amazon.de").cookie == "lc=de"

        data = json.loads(path.read_text())
        assert set(data["cookies"][0]) == {"domain", "zip_code", "cookie", "timestamp"}

    def test_save_replaces_domain_entry(self, tmp_path):
        store = CookieStore(tmp_path / "cookies.json")
        store.save_entry(entry("amazon.com", cookie="old=1"))
        store.save_entry(entry("amazon.com", cookie="new=2"))

        assert len(store.entries()) == 1
        assert store.get("amazon.com").cookie == "new=2"

    def test_reload_only_when_file_changes(self, tmp_path):
        path = tmp_path / "cookies.json"
        store = CookieStore(path)
        store.save_entry(entry("amazon.com", cookie="first=1"))

        with patch(f"{COOKIES_MODULE}.json.load") as load:
            store.get("amazon.com")
            load.assert_not_called()

        other_writer = CookieStore(path)
        other_writer.save_entry(entry("amazon.com", cookie="second=2"))
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 10_000_000))

        assert store.get("amazon.com").cookie == "second=2"


class TestFreshness:
    def test_entry_freshness(self):
        assert entry("amazon.com", hours_old=19.5).is_fresh(20)
        assert not entry("amazon.com", hours_old=20.5).is_fresh(20)

    def test_provider(self, tmp_path):
        store = CookieStore(tmp_path / "cookies.json")
        store.save_entry(entry("amazon.com", hours_old=1))
        store.save_entry(entry("amazon.de", hours_old=30, cookie="lc=de"))
        provider = CookieProvider(store, expiry_hours=20)

        found = provider.cookies_for(["amazon.com", "amazon.de", "amazon.fr"])

        assert found["amazon.com"].fresh
        assert found["amazon.com"].cookie == "session-id=1"
        assert found["amazon.com"].zip_code == "10008"
        assert not found["amazon.de"].fresh
        assert found["amazon.de"].cookie == "lc=de"
        assert found["amazon.fr"].cookie == ""
        assert not found["amazon.fr"].fresh

    def test_stale_domains(self, tmp_path):
        store = CookieStore(tmp_path / "cookies.json")
        store.save_entry(entry("amazon.com", hours_old=1))
        configs = [DomainCookieConfig("amazon.com", "10008"), DomainCookieConfig("amazon.de", "20099")]

        stale = CookieProvider(store).stale_domains(configs)
        assert [c.domain for c in stale] == ["amazon.de"]


def test_default_domains():
    assert len(DEFAULT_DOMAINS) == 8
    canada = next(c for c in DEFAULT_DOMAINS if c.domain == "amazon.ca")
    assert canada.zip_separator == " "


def test_domain_config_from_dict():
    config = DomainCookieConfig.from_dict({"domain": "amazon.co.jp", "zip_code": "110-0008", "zip_separator": "-"})
    assert config == DomainCookieConfig("amazon.co.jp", "110-0008", "-")


def harvest_session(cookies=None, wait_for_selector=None):
    element = MagicMock(name="element")
    element.click = AsyncMock()
    element.fill = AsyncMock()

    page = MagicMock(name="page")
    page.wait_for_load_state = AsyncMock()
    page.wait_for_selector = wait_for_selector or AsyncMock(return_value=element)
    page.query_selector = AsyncMock(return_value=element)

    context = MagicMock(name="context")
    context.cookies = AsyncMock(return_value=cookies or [])
    return SimpleNamespace(page=page, context=context), element


class TestCookieHarvestTask:
    @pytest.mark.asyncio
    async def test_collects_cookies(self):
        session, element = harvest_session(
            cookies=[{"name": "session-id", "value": "123"}, {"name": "i18n-prefs", "value": "USD"}]
        )
        task = CookieHarvestTask(DomainCookieConfig("amazon.com", "10008"))

        with patch(f"{COOKIES_MODULE}.goto", new_callable=AsyncMock) as goto, patch(
            f"{COOKIES_MODULE}.handle_interstitial", new_callable=AsyncMock
        ):
            outcome = await task.run(session, AttemptContext(task_id=1))

        assert isinstance(outcome, Success)
        assert outcome.result.domain == "amazon.com"
        assert outcome.result.zip_code == "10008"
        assert outcome.result.cookie == "session-id=123; i18n-prefs=USD"
        assert goto.await_args.args[1] == "https://www.amazon.com"
        element.fill.assert_awaited_once_with("10008")

    @pytest.mark.asyncio
    async def test_split_zip_code(self):
        session, element = harvest_session()
        task = CookieHarvestTask(DomainCookieConfig("amazon.ca", "K1A 0A9", zip_separator=" "))

        with patch(f"{COOKIES_MODULE}.goto", new_callable=AsyncMock), patch(
            f"{COOKIES_MODULE}.handle_interstitial", new_callable=AsyncMock
        ):
            outcome = await task.run(session, AttemptContext(task_id=1))

        assert isinstance(outcome, Success)
        assert [c.args[0] for c in element.fill.await_args_list] == ["K1A", "0A9"]

    @pytest.mark.asyncio
    async def test_selector_waits_use_configured_timeout(self):
        session, _ = harvest_session()
        task = CookieHarvestTask(DomainCookieConfig("amazon.com", "10008"), timings=PageTimings(selector_timeout=2500))

        with patch(f"{COOKIES_MODULE}.goto", new_callable=AsyncMock), patch(
            f"{COOKIES_MODULE}.handle_interstitial", new_callable=AsyncMock
        ):
            outcome = await task.run(session, AttemptContext(task_id=1))

        assert isinstance(outcome, Success)
        waits = session.page.wait_for_selector.await_args_list
        assert waits
        assert {c.kwargs["timeout"] for c in waits} == {2500}

    @pytest.mark.asyncio
    async def test_missing_navbar_is_retried(self):
        session, _ = harvest_session(wait_for_selector=AsyncMock(side_effect=PlaywrightTimeoutError("timeout")))
        task = CookieHarvestTask(DomainCookieConfig("amazon.com", "10008"), max_retries=2)

        with patch(f"{COOKIES_MODULE}.goto", new_callable=AsyncMock), patch(
            f"{COOKIES_MODULE}.handle_interstitial", new_callable=AsyncMock
        ):
            first = await task.run(session, AttemptContext(task_id=1, attempt=0))
            last = await task.run(session, AttemptContext(task_id=1, attempt=2))

        assert isinstance(first, Retry)
        assert isinstance(first.error, SelectorNotFoundError)
        assert isinstance(last, Fatal)


@pytest.mark.asyncio
async def test_refresh_cookies_only_stale_domains(tmp_path, session_manager, monkeypatch):
    store = CookieStore(tmp_path / "cookies.json")
    store.save_entry(entry("amazon.com", hours_old=1))
    configs = [
        DomainCookieConfig("amazon.com", "10008"),
        DomainCookieConfig("amazon.de", "20099"),
        DomainCookieConfig("amazon.fr", "75000"),
    ]

    async def fake_run(self, session, ctx):
        if self.config.domain == "amazon.fr":
            return ctx.fail(RuntimeError("captcha"), can_retry=False)
        return ctx.complete(
            CookieEntry(self.config.domain, self.config.zip_code, f"harvested={self.config.domain}", time.time())
        )

    monkeypatch.setattr(CookieHarvestTask, "run", fake_run)
    results = await refresh_cookies(configs, store, session_manager, concurrency_limit=2)

    statuses = {r["domain"]: r["status"] for r in results}
    assert statuses == {"amazon.com": "fresh", "amazon.de": "updated", "amazon.fr": "failed"}
    assert store.get("amazon.de").cookie == "harvested=amazon.de"
    assert store.get("amazon.fr") is None
    assert session_manager.shutdown_called


@pytest.mark.asyncio
async def test_refresh_cookies_nothing_stale(tmp_path, session_manager):
    store = CookieStore(tmp_path / "cookies.json")
    store.save_entry(entry("amazon.com"))

    results = await refresh_cookies([DomainCookieConfig("amazon.com", "10008")], store, session_manager)

    assert results == [{"domain": "amazon.com", "status": "fresh", "error": None}]
    assert session_manager.shutdown_called
