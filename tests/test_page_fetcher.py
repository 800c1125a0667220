"""
Tests for fetching a single crawl target.

**Feature: prerender-crawler, Property 7: Existing non-HTML assets are skipped without navigation**
**Feature: prerender-crawler, Property 8: Every fetch marks its target processed exactly once**
"""

import asyncio

import pytest

from config import CrawlConfig, CrawlOptions
from prerender_crawler.concurrent.frontier import Frontier
from prerender_crawler.concurrent.shutdown import ShutdownController
from prerender_crawler.crawlers.hooks import CrawlHooks
from prerender_crawler.crawlers.page_fetcher import (
    PageFetcher,
    RequestTracker,
    is_fatal_page_error,
    should_skip_existing,
)
from prerender_crawler.crawlers.session import ConsoleMessage, HttpExchange, UncaughtError
from prerender_crawler.crawlers.url_normalizer import UrlNormalizer
from prerender_crawler.data.models import (
    ConsoleError,
    ConsoleObject,
    ConsoleText,
    HttpWarning,
    LogEntryKind,
    PageError,
)

from fake_browser import FakeBrowser, FakePage, console_error, console_object, console_text


BASE_PATH = "http://localhost:45678"


def make_config(source_dir, **options) -> CrawlConfig:
    return CrawlConfig(
        base_path=BASE_PATH,
        source_dir=str(source_dir),
        options=CrawlOptions(**options),
    )


def fetch_route(config, site, route, hooks=None, stack_mapper=None, settle=0.0):
    """Admit ``route``, fetch it once and return the record with the run state.

    ``settle`` keeps the loop running for that many seconds after the fetch.
    """
    browser = FakeBrowser(site)
    shutdown = ShutdownController(
        ignore_page_errors=config.options.ignore_page_errors,
        force_exit=lambda: None,
    )

    async def scenario():
        normalizer = UrlNormalizer(config.base_path, config.options.port, config.options.exclude_patterns)
        frontier = Frontier(normalizer, shutdown, public_path=config.public_path,
                            crawl=config.options.crawl)
        fetcher = PageFetcher(config, browser, frontier, shutdown, hooks=hooks,
                              stack_mapper=stack_mapper)
        frontier.admit(f"{BASE_PATH}{route}")
        target = await frontier.take()
        record = await fetcher.fetch(target)
        await asyncio.sleep(settle)
        return record, frontier

    record, frontier = asyncio.run(scenario())
    return record, frontier, shutdown, browser


class TestSkipExisting:
    """
    **Feature: prerender-crawler, Property 7: Existing non-HTML assets are skipped without navigation**
    """

    def test_existing_asset_is_not_navigated(self, source_dir):
        (source_dir / "static").mkdir()
        (source_dir / "static" / "app.js").write_text("console.log(1)")
        config = make_config(source_dir)

        record, frontier, shutdown, browser = fetch_route(config, {}, "/static/app.js")

        assert record.url == f"{BASE_PATH}/static/app.js"
        assert record.entries == []
        assert browser.navigations == []
        assert browser.sessions == []
        assert frontier.processed == 1
        assert not shutdown.is_shutting_down

    def test_missing_asset_is_navigated(self, source_dir):
        config = make_config(source_dir)
        record, frontier, _, browser = fetch_route(config, {}, "/static/missing.js")
        assert browser.navigations == [f"{BASE_PATH}/static/missing.js"]
        assert frontier.processed == 1

    def test_html_pages_are_always_navigated(self, source_dir):
        (source_dir / "about.html").write_text("<html></html>")
        config = make_config(source_dir)
        _, _, _, browser = fetch_route(config, {}, "/about.html")
        assert browser.navigations == [f"{BASE_PATH}/about.html"]

    @pytest.mark.parametrize("route,expected", [
        ("/", False),
        ("/about", False),
        ("/index.html", False),
        ("/favicon.ico", True),
        ("/missing.png", False),
    ])
    def test_should_skip_existing(self, source_dir, route, expected):
        (source_dir / "favicon.ico").write_bytes(b"\x00")
        (source_dir / "index.html").write_text("<html></html>")
        assert should_skip_existing(route, str(source_dir)) is expected


class TestLogCapture:
    """Tests for turning page events into log entries."""

    def test_console_and_http_events_are_recorded(self, source_dir):
        config = make_config(source_dir)
        site = {
            f"{BASE_PATH}/": FakePage(
                console=[
                    console_object({"a": 1}),
                    console_error("Error: broken widget"),
                    console_text("hello", f"{BASE_PATH}/main.js"),
                    console_text("[webpack-dev-server] Hot Module Replacement enabled."),
                    console_text("WebSocket connection to 'ws://localhost' failed"),
                ],
                responses=[
                    HttpExchange(200, f"{BASE_PATH}/main.js", f"{BASE_PATH}/"),
                    HttpExchange(404, f"{BASE_PATH}/missing.png", f"{BASE_PATH}/"),
                ],
            ),
        }

        record, frontier, shutdown, browser = fetch_route(config, site, "/")

        kinds = [entry.kind for entry in record.entries]
        assert LogEntryKind.CONSOLE_OBJECT in kinds
        assert LogEntryKind.CONSOLE_ERROR in kinds
        assert ConsoleText("hello", f"{BASE_PATH}/main.js") in record.entries
        assert ConsoleObject([{"a": 1}]) in record.entries
        assert ConsoleError(["Error: broken widget"]) in record.entries
        assert HttpWarning(404, f"{BASE_PATH}/missing.png", "/") in record.entries
        assert not any("webpack" in getattr(entry, "text", "") for entry in record.entries)
        assert not any("WebSocket" in getattr(entry, "text", "") for entry in record.entries)
        assert not shutdown.is_shutting_down
        assert frontier.processed == 1

    def test_third_party_failures_dropped_when_skipping_requests(self, source_dir):
        config = make_config(source_dir, skip_third_party_requests=True)
        site = {
            f"{BASE_PATH}/": FakePage(console=[
                console_text("Failed to load resource: net::ERR_FAILED", "https://fonts.example.com/font.woff"),
                console_text("Failed to load resource: net::ERR_FAILED", f"{BASE_PATH}/local.css"),
            ]),
        }

        record, _, _, browser = fetch_route(config, site, "/")

        assert record.entries == [
            ConsoleText("Failed to load resource: net::ERR_FAILED", f"{BASE_PATH}/local.css"),
        ]
        allow = browser.sessions[0].allow
        assert allow(f"{BASE_PATH}/api")
        assert not allow("https://fonts.example.com/font.woff")

    def test_page_error_is_recorded_and_fatal(self, source_dir):
        config = make_config(source_dir)
        site = {
            f"{BASE_PATH}/": FakePage(page_errors=[
                UncaughtError("ReferenceError: foo is not defined", "ReferenceError: foo is not defined\n    at main.js:1:1"),
            ]),
        }

        record, _, shutdown, _ = fetch_route(config, site, "/")

        assert record.entries == [
            PageError("ReferenceError: foo is not defined\n    at main.js:1:1"),
        ]
        assert shutdown.is_shutting_down

    @pytest.mark.parametrize("message", ["TypeError: x is undefined", "Event"])
    def test_non_fatal_page_errors_are_only_recorded(self, source_dir, message):
        config = make_config(source_dir)
        site = {f"{BASE_PATH}/": FakePage(page_errors=[UncaughtError(message)])}

        record, _, shutdown, _ = fetch_route(config, site, "/")

        assert record.entries == [PageError(message)]
        assert not shutdown.is_shutting_down

    def test_ignored_page_errors_do_not_shut_down(self, source_dir):
        config = make_config(source_dir, ignore_page_errors=True)
        site = {f"{BASE_PATH}/": FakePage(page_errors=[UncaughtError("Error: boom")])}
        _, _, shutdown, _ = fetch_route(config, site, "/")
        assert not shutdown.is_shutting_down

    def test_crash_is_fatal(self, source_dir):
        config = make_config(source_dir)
        site = {f"{BASE_PATH}/": FakePage(crash=True)}

        record, _, shutdown, _ = fetch_route(config, site, "/")

        assert record.entries == [PageError("Page crashed")]
        assert shutdown.is_shutting_down

    def test_stack_mapper_rewrites_error_stack(self, source_dir):
        config = make_config(source_dir)
        site = {
            f"{BASE_PATH}/": FakePage(page_errors=[
                UncaughtError("Error: boom", "Error: boom\n    at a.js:1:100"),
            ]),
        }

        async def mapper(stack):
            return "    at src/App.js:12:3\n    at playwright/injected.js:1:1"

        record, _, _, _ = fetch_route(config, site, "/", stack_mapper=mapper)

        assert record.entries == [PageError("Error: boom\n    at src/App.js:12:3")]

    def test_failing_stack_mapper_keeps_original_stack(self, source_dir):
        config = make_config(source_dir)
        site = {f"{BASE_PATH}/": FakePage(page_errors=[UncaughtError("Error: boom", "Error: boom\n    at a.js:1")])}

        async def mapper(stack):
            raise ValueError("no source map")

        record, _, _, _ = fetch_route(config, site, "/", stack_mapper=mapper)

        assert record.entries == [PageError("Error: boom\n    at a.js:1")]

    @pytest.mark.parametrize("mapped,expected", [
        ("    at src/App.js:12:3\n    at src/index.js:4:1", "Error: boom\n    at src/App.js:12:3"),
        ("    at playwright/injected.js:1:1\n    at src/App.js:12:3", "Error: boom\n    at playwright/injected.js:1:1"),
    ])
    def test_mapped_stack_drops_last_row_unless_driver_frame_follows(self, source_dir, mapped, expected):
        config = make_config(source_dir)
        site = {f"{BASE_PATH}/": FakePage(page_errors=[UncaughtError("Error: boom", "Error: boom\n    at a.js:1")])}

        async def mapper(stack):
            return mapped

        record, _, _, _ = fetch_route(config, site, "/", stack_mapper=mapper)

        assert record.entries == [PageError(expected)]

    def test_console_output_during_close_is_ignored(self, source_dir):
        config = make_config(source_dir)

        async def slow_resolve():
            await asyncio.sleep(0.01)
            return [{"late": True}]

        site = {
            f"{BASE_PATH}/": FakePage(
                console=[console_text("ready")],
                close_console=[
                    ConsoleMessage(ConsoleMessage.OBJECT, "JSHandle@object", resolve_args=slow_resolve),
                ],
            ),
        }

        record, _, shutdown, browser = fetch_route(config, site, "/", settle=0.05)

        assert browser.sessions[0].closed
        assert record.entries == [ConsoleText("ready", None)]
        assert not shutdown.is_shutting_down


class TestFetchLifecycle:
    """
    **Feature: prerender-crawler, Property 8: Every fetch marks its target processed exactly once**
    """

    def test_session_prepared_in_order(self, source_dir):
        config = make_config(source_dir, skip_third_party_requests=True, wait_for=10)
        _, _, _, browser = fetch_route(config, {}, "/")

        session = browser.sessions[0]
        assert session.calls == [
            "disable_service_workers",
            "set_cache_enabled",
            "set_viewport",
            "restrict_requests",
            "set_user_agent",
            "goto",
            "wait_for_timeout",
            "extract_links",
            "close",
        ]
        assert session.user_agent == "PrerenderCrawler"
        assert session.viewport == {"width": 480, "height": 850}
        assert session.cache_enabled is True

    def test_links_are_admitted(self, source_dir):
        config = make_config(source_dir)
        site = {
            f"{BASE_PATH}/": FakePage(links=[
                f"{BASE_PATH}/about",
                f"{BASE_PATH}/about?utm=1",
                "https://github.com/",
                f"{BASE_PATH}/blog#comments",
            ]),
        }

        _, frontier, _, _ = fetch_route(config, site, "/")

        assert frontier.visited == {
            f"{BASE_PATH}/",
            f"{BASE_PATH}/about",
            f"{BASE_PATH}/404.html",
            f"{BASE_PATH}/blog",
        }

    def test_links_not_followed_without_crawling(self, source_dir):
        config = make_config(source_dir, crawl=False)
        site = {f"{BASE_PATH}/": FakePage(links=[f"{BASE_PATH}/about"])}
        _, frontier, _, browser = fetch_route(config, site, "/")
        assert frontier.enqueued == 1
        assert "extract_links" not in browser.sessions[0].calls

    def test_navigation_failure_reports_unfinished_requests(self, source_dir):
        config = make_config(source_dir)
        pending = [f"{BASE_PATH}/api/{i}" for i in range(3)]
        site = {
            f"{BASE_PATH}/broken": FakePage(
                pending_requests=pending,
                fail_navigation="net::ERR_CONNECTION_REFUSED",
            ),
        }

        record, frontier, shutdown, browser = fetch_route(config, site, "/broken")

        assert record.entries == []
        assert frontier.processed == 1
        assert shutdown.is_shutting_down
        assert shutdown.reason == "page error at /broken"
        assert browser.sessions[0].closed
        assert browser.active == 0

    def test_navigation_failure_ignored_when_requested(self, source_dir):
        config = make_config(source_dir, ignore_page_errors=True)
        site = {f"{BASE_PATH}/": FakePage(fail_navigation="net::ERR_ABORTED")}
        _, frontier, shutdown, browser = fetch_route(config, site, "/")
        assert not shutdown.is_shutting_down
        assert frontier.processed == 1
        assert browser.sessions[0].closed

    def test_waits_for_matching_response(self, source_dir):
        config = make_config(source_dir, wait_for_response="*/api/*")
        site = {
            f"{BASE_PATH}/": FakePage(responses=[
                HttpExchange(200, f"{BASE_PATH}/main.js"),
                HttpExchange(200, f"{BASE_PATH}/api/data"),
            ]),
        }

        _, _, shutdown, browser = fetch_route(config, site, "/")

        calls = browser.sessions[0].calls
        assert calls.index("expect_response") < calls.index("goto")
        assert not shutdown.is_shutting_down

    def test_hooks_are_called(self, source_dir):
        config = make_config(source_dir)
        calls = []

        def before_fetch(page, route):
            calls.append(("before", route, page.calls[-1]))

        async def after_fetch(page, route, browser, add_to_queue, logs):
            calls.append(("after", route, browser is not None))
            add_to_queue(f"{BASE_PATH}/from-hook")

        _, frontier, _, _ = fetch_route(
            config, {}, "/",
            hooks=CrawlHooks(before_fetch=before_fetch, after_fetch=after_fetch),
        )

        # before_fetch runs before the user agent is set
        assert calls == [("before", "/", "set_viewport"), ("after", "/", True)]
        assert f"{BASE_PATH}/from-hook" in frontier.visited

    def test_failing_hook_becomes_page_error(self, source_dir):
        config = make_config(source_dir)

        def after_fetch(**kwargs):
            raise RuntimeError("hook failed")

        _, frontier, shutdown, browser = fetch_route(config, {}, "/", hooks=CrawlHooks(after_fetch=after_fetch))

        assert shutdown.is_shutting_down
        assert frontier.processed == 1
        assert browser.sessions[0].closed

    def test_fetch_during_shutdown_skips_navigation(self, source_dir):
        config = make_config(source_dir)
        browser = FakeBrowser()
        shutdown = ShutdownController(force_exit=lambda: None)

        async def scenario():
            frontier = Frontier(UrlNormalizer(BASE_PATH, 45678), shutdown)
            fetcher = PageFetcher(config, browser, frontier, shutdown)
            frontier.admit(f"{BASE_PATH}/")
            target = await frontier.take()
            shutdown.trigger_shutdown("test")
            return await fetcher.fetch(target), frontier

        record, frontier = asyncio.run(scenario())
        assert record.entries == []
        assert browser.navigations == []
        assert frontier.processed == 1


class TestHelpers:
    """Unit tests for page fetcher helpers."""

    @pytest.mark.parametrize("message,fatal", [
        ("Error: boom", True),
        ("ReferenceError: x is not defined", True),
        ("TypeError: Cannot read properties of undefined", False),
        ("Event", False),
    ])
    def test_is_fatal_page_error(self, message, fatal):
        assert is_fatal_page_error(message) is fatal

    def test_tracker_augments_with_last_ten_urls(self):
        tracker = RequestTracker()
        for i in range(12):
            tracker.started(f"/r{i}")
        tracker.finished("/r11")

        message = tracker.augment("Navigation failed")

        lines = message.split("\n")
        assert lines[0] == "Navigation failed"
        assert lines[1] == "Tracked URLs that have not finished (11):"
        assert lines[2] == "..."
        assert lines[3:] == [f"/r{i}" for i in range(1, 11)]

    def test_tracker_without_pending_requests_keeps_message(self):
        tracker = RequestTracker()
        tracker.started("/a")
        tracker.finished("/a")
        assert tracker.augment("Navigation failed") == "Navigation failed"

    def test_disposed_tracker_ignores_events(self):
        tracker = RequestTracker()
        tracker.started("/a")
        tracker.dispose()
        tracker.started("/b")
        tracker.finished("/a")
        assert tracker.urls() == ["/a"]
