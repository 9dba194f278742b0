"""Unit tests for the webring module."""

import datetime
import os
import tempfile
import threading
import unittest
from unittest.mock import MagicMock, patch

import requests
from requests.structures import CaseInsensitiveDict

from feedring import webring
from feedring.config import Settings
from feedring.errors import (
    FeedMissingError,
    FeedringError,
    TemplateError,
    TransportError,
    UnexpectedStatusError,
)
from feedring.models import Article, CacheEntry, FeedResult
from feedring.services.cache import CacheStore, save_cache, utcnow
from feedring.services.render import TemplateRenderer


def rss(title, item_title, pub_date, host):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://{host}/</link>
    <description>d</description>
    <item>
      <title>{item_title}</title>
      <link>https://{host}/post</link>
      <description>About {item_title}</description>
      <pubDate>{pub_date}</pubDate>
    </item>
  </channel>
</rss>
"""


FRESH_URL = "https://fresh.example/feed"
CACHED_URL = "https://cached.example/feed"
BROKEN_URL = "https://broken.example/feed"

FRESH_BODY = rss("Fresh", "Fresh post", "Wed, 08 Jan 2025 10:00:00 GMT", "fresh.example")
CACHED_BODY = rss("Cached", "Cached post", "Tue, 07 Jan 2025 10:00:00 GMT", "cached.example")

TEMPLATE = """{% for article in articles -%}
<a href="{{ article.link }}">{{ article.title }}</a> via {{ article.source_title }} ({{ article.timestamp.strftime('%Y-%m-%d') }})
{% endfor %}"""


def make_response(status, body="", headers=None):
    resp = requests.Response()
    resp.status_code = status
    resp._content = body.encode("utf-8")
    resp._content_consumed = True
    resp.encoding = "utf-8"
    resp.headers = CaseInsensitiveDict(headers or {})
    return resp


def fake_get(url, headers=None, timeout=None, stream=False):
    """Serves one fresh feed, one unchanged feed and one broken feed."""
    if url == FRESH_URL:
        return make_response(200, FRESH_BODY, {"ETag": "fresh-v1"})
    if url == CACHED_URL:
        return make_response(304)
    if url == BROKEN_URL:
        return make_response(500, "Internal Server Error")
    raise requests.ConnectionError(f"no route to {url}")


def seeded_store():
    return CacheStore(
        {
            CACHED_URL: CacheEntry(
                timestamp=utcnow() - datetime.timedelta(days=1),
                etag='"cached-v1"',
                body=CACHED_BODY,
            )
        }
    )


class TestGetFeeds(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.cache_file = os.path.join(self.tmpdir.name, ".feedringcache")

    def tearDown(self):
        self.tmpdir.cleanup()

    @patch("requests.get", side_effect=fake_get)
    def test_mixed_batch(self, mock_get):
        """One 200, one 304 and one 500 give two feeds and one failure."""
        store = seeded_store()

        report = webring.get_feeds([FRESH_URL, CACHED_URL, BROKEN_URL], store)

        self.assertEqual(
            sorted(r.url for r in report.feeds), sorted([FRESH_URL, CACHED_URL])
        )
        self.assertEqual(len(report.failures), 1)
        failure = report.failures[0]
        self.assertEqual(failure.url, BROKEN_URL)
        self.assertIsInstance(failure.error, UnexpectedStatusError)
        self.assertEqual(failure.error.status, 500)
        self.assertEqual(mock_get.call_count, 3)

        save_cache(store, self.cache_file)
        loaded = CacheStore.load(self.cache_file, datetime.timedelta(days=14))
        self.assertEqual(len(loaded), 2)
        self.assertNotIn(BROKEN_URL, loaded)
        self.assertEqual(loaded.get(CACHED_URL).body, CACHED_BODY)
        self.assertEqual(loaded.get(FRESH_URL).etag, '"fresh-v1"')

    @patch("requests.get", side_effect=fake_get)
    def test_progress_line_per_feed(self, _mock_get):
        with self.assertLogs("feedring.progress", level="INFO") as logs:
            webring.get_feeds([FRESH_URL, CACHED_URL, BROKEN_URL], seeded_store())

        self.assertEqual(len(logs.records), 3)
        by_url = {}
        for record in logs.records:
            for url in (FRESH_URL, CACHED_URL, BROKEN_URL):
                if url in record.getMessage():
                    by_url[url] = record
        self.assertEqual(by_url[FRESH_URL].levelname, "INFO")
        self.assertEqual(by_url[CACHED_URL].levelname, "INFO")
        self.assertEqual(by_url[BROKEN_URL].levelname, "WARNING")
        self.assertTrue(all(r.getMessage().startswith("[") for r in logs.records))
        self.assertTrue(any("/3]" in r.getMessage() for r in logs.records))

    @patch("requests.get", side_effect=fake_get)
    def test_transport_failures_are_isolated(self, _mock_get):
        report = webring.get_feeds(
            [FRESH_URL, "https://unreachable.example/feed"], CacheStore()
        )

        self.assertEqual([r.url for r in report.feeds], [FRESH_URL])
        self.assertIsInstance(report.failures[0].error, TransportError)

    def test_duplicate_urls_are_fetched_once(self):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda url, store: FeedResult(url, {})

        report = webring.get_feeds(
            [FRESH_URL, FRESH_URL, CACHED_URL], CacheStore(), fetcher=fetcher
        )

        self.assertEqual(fetcher.fetch.call_count, 2)
        self.assertEqual(len(report.feeds), 2)

    def test_empty_url_list(self):
        fetcher = MagicMock()
        report = webring.get_feeds([], CacheStore(), fetcher=fetcher)
        self.assertEqual(report.feeds, [])
        self.assertEqual(report.failures, [])
        fetcher.fetch.assert_not_called()

    def test_unexpected_exceptions_do_not_abort_batch(self):
        def fetch(url, store):
            if url == BROKEN_URL:
                raise RuntimeError("bug")
            return FeedResult(url, {})

        fetcher = MagicMock()
        fetcher.fetch.side_effect = fetch

        report = webring.get_feeds([FRESH_URL, BROKEN_URL], CacheStore(), fetcher=fetcher)

        self.assertEqual([r.url for r in report.feeds], [FRESH_URL])
        self.assertIsInstance(report.failures[0].error, FeedringError)
        self.assertIn("bug", str(report.failures[0].error))

    def test_slow_feed_does_not_block_others(self):
        """Fast feeds complete while a slow one is still in flight."""
        release = threading.Event()
        completed = []

        def fetch(url, store):
            if url == BROKEN_URL:
                release.wait(5)
            else:
                completed.append(url)
                if len(completed) == 2:
                    release.set()
            return FeedResult(url, {})

        fetcher = MagicMock()
        fetcher.fetch.side_effect = fetch

        report = webring.get_feeds(
            [BROKEN_URL, FRESH_URL, CACHED_URL], CacheStore(), fetcher=fetcher
        )

        self.assertTrue(release.is_set())
        self.assertEqual(sorted(completed), sorted([FRESH_URL, CACHED_URL]))
        self.assertEqual(len(report.feeds), 3)


class TestArticles(unittest.TestCase):
    def _article(self, title, day):
        return Article(
            link=f"https://x.example/{title}",
            title=title,
            summary="",
            source_link="https://x.example/",
            source_title="X",
            timestamp=datetime.datetime(2025, 1, day, tzinfo=datetime.timezone.utc),
        )

    def test_select_articles_sorts_newest_first_and_truncates(self):
        articles = [self._article("a", 1), self._article("c", 3), self._article("b", 2)]

        selected = webring.select_articles(articles, 2)

        self.assertEqual([a["title"] for a in selected], ["c", "b"])
        self.assertEqual(webring.select_articles(articles, 10)[-1]["title"], "a")

    def test_build_articles_skips_bad_feeds(self):
        good = MagicMock()
        good.extract_articles.side_effect = [
            [self._article("a", 1)],
            TransportError("https://bad.example/", "boom"),
        ]
        feeds = [FeedResult("https://x.example/", {}), FeedResult("https://bad.example/", {})]

        articles = webring.build_articles(feeds, per_source=1, parser=good)

        self.assertEqual([a["title"] for a in articles], ["a"])


class TestTemplateRenderer(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _template(self, text):
        path = os.path.join(self.tmpdir.name, "webring.html")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    def test_render_escapes_html(self):
        renderer = TemplateRenderer(self._template("{{ articles[0].title }}"))
        output = renderer.render(
            [
                Article(
                    link="https://x.example/",
                    title="<script>",
                    summary="",
                    source_link="https://x.example/",
                    source_title="X",
                    timestamp=utcnow(),
                )
            ]
        )
        self.assertEqual(output, "&lt;script&gt;")

    def test_missing_template(self):
        renderer = TemplateRenderer(os.path.join(self.tmpdir.name, "nope.html"))
        with self.assertRaises(TemplateError):
            renderer.load()

    def test_syntax_error(self):
        renderer = TemplateRenderer(self._template("{% for %}"))
        with self.assertRaises(TemplateError):
            renderer.load()

    def test_undefined_variable(self):
        renderer = TemplateRenderer(self._template("{{ nothing.here }}"))
        with self.assertRaises(TemplateError):
            renderer.render([])


class TestRun(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.template = os.path.join(self.tmpdir.name, "webring.html")
        with open(self.template, "w", encoding="utf-8") as f:
            f.write(TEMPLATE)
        self.cache_file = os.path.join(self.tmpdir.name, ".feedringcache")

    def tearDown(self):
        self.tmpdir.cleanup()

    def _settings(self, **overrides):
        values = dict(
            template_file=self.template,
            urls=[FRESH_URL, CACHED_URL, BROKEN_URL],
            num_articles=5,
            cache=True,
            cache_file=self.cache_file,
        )
        values.update(overrides)
        return Settings(**values)

    @patch("requests.get", side_effect=fake_get)
    def test_run_renders_and_persists_cache(self, _mock_get):
        save_cache(seeded_store(), self.cache_file)

        output = webring.run(self._settings())

        lines = [line for line in output.splitlines() if line.strip()]
        self.assertEqual(len(lines), 2)
        self.assertIn("Fresh post", lines[0])
        self.assertIn("2025-01-08", lines[0])
        self.assertIn("Cached post", lines[1])

        loaded = CacheStore.load(self.cache_file, datetime.timedelta(days=14))
        self.assertEqual(sorted(url for url, _ in loaded.items()), [CACHED_URL, FRESH_URL])

    @patch("requests.get", side_effect=fake_get)
    def test_run_without_cache_writes_nothing(self, _mock_get):
        output = webring.run(self._settings(cache=False, urls=[FRESH_URL]))

        self.assertIn("Fresh post", output)
        self.assertFalse(os.path.exists(self.cache_file))

    @patch("requests.get", side_effect=fake_get)
    def test_run_reads_url_file(self, mock_get):
        url_file = os.path.join(self.tmpdir.name, "urls.txt")
        with open(url_file, "w", encoding="utf-8") as f:
            f.write(f"# my feeds\n{FRESH_URL}\n// disabled\n")

        output = webring.run(self._settings(urls=[], url_file=url_file, cache=False))

        self.assertIn("Fresh post", output)
        mock_get.assert_called_once()

    def test_run_without_urls(self):
        with self.assertRaises(FeedMissingError):
            webring.run(self._settings(urls=[]))

    @patch("requests.get")
    def test_run_checks_template_before_fetching(self, mock_get):
        with self.assertRaises(TemplateError):
            webring.run(self._settings(template_file=self.template + ".missing"))
        mock_get.assert_not_called()

    def test_run_with_missing_url_file(self):
        with self.assertRaises(FeedringError):
            webring.run(
                self._settings(urls=[], url_file=os.path.join(self.tmpdir.name, "nope"))
            )


class TestMain(unittest.TestCase):
    @patch("feedring.webring.setup_logging")
    @patch("feedring.webring.run")
    def test_main_prints_output(self, mock_run, _mock_logging):
        mock_run.return_value = "<ul></ul>"
        with patch("builtins.print") as mock_print:
            code = webring.main(["-t", "webring.html", "-s", FRESH_URL])
        self.assertEqual(code, 0)
        mock_print.assert_called_once_with("<ul></ul>")
        settings = mock_run.call_args[0][0]
        self.assertEqual(settings.urls, [FRESH_URL])

    @patch("feedring.webring.setup_logging")
    @patch("feedring.webring.run", side_effect=FeedMissingError())
    def test_main_reports_errors(self, _mock_run, _mock_logging):
        self.assertEqual(webring.main(["-t", "webring.html"]), 1)


if __name__ == "__main__":
    unittest.main()
