import copy
import unittest
from unittest.mock import MagicMock

import pandas as pd

from config.settings import DEFAULTS
from core.run_manager import CrawlOptions, RunManager
from data.models import FailureReason, LoadMethod, PageLoad
from ingestion.extraction import detail_entry_overview, table_overview
from ingestion.playwright_manager import BrowserUnavailableError

HEADINGS_HTML = """
<html><body>
<h3>Wireless Ergonomic Mouse</h3>
<h3>Ads</h3>
<h3>Mechanical Keyboard Pro</h3>
<h3>USB-C Docking Station</h3>
<h3>Shop</h3>
<h3>Noise Cancelling Headset</h3>
<h3>Portable SSD 1TB Drive</h3>
<h3>27 inch 4K Monitor Stand</h3>
</body></html>
"""

DETAIL_HTML = """
<html><body>
<table><tr><th>Weight</th><td>2 kg</td></tr></table>
<div id="feature-bullets"><ul>
  <li><span class="a-list-item">Adjustable height from 70 to 120 cm</span></li>
  <li><span class="a-list-item">Solid oak veneer desktop</span></li>
</ul></div>
</body></html>
"""

SEARCH_HTML = """
<html><body>
<h2>Results for your search</h2><h2>Need help with results?</h2>
<h2>Ergonomic Office Chair with Lumbar Support</h2>
</body></html>
"""


def _settings(**overrides):
    settings = copy.deepcopy(DEFAULTS)
    settings["save_debug_html"] = False
    settings.update(overrides)
    return settings


def _row(google="", search="", detail=""):
    return {"search_on_google_url": google, "search_page_url": search, "detail_page_url": detail}


class TestRunManager(unittest.TestCase):
    def setUp(self):
        self.pages = {}
        self.loader = MagicMock()
        self.loader.load.side_effect = lambda url, force_js=False: self.pages[url]
        self.manager = RunManager(page_loader=self.loader, settings=_settings())

    def _page(self, url, html):
        self.pages[url] = PageLoad.success(url, html, LoadMethod.STATIC)

    def test_row_without_urls_gets_blank_derived_columns(self):
        row = _row()
        reports = self.manager.crawl_rows([row])

        self.assertEqual(row, {
            "search_on_google_url": "",
            "search_page_url": "",
            "detail_page_url": "",
            "Google_Headings": "",
            "Amazon Search Titles": "",
            "Product Overview": "",
            "About_This_Item": "",
        })
        self.assertTrue(reports[0].skipped)
        self.loader.load.assert_not_called()

    def test_headings_first_five_of_remaining_in_document_order(self):
        self._page("http://x/search", HEADINGS_HTML)
        row = _row(google="http://x/search")
        self.manager.crawl_rows([row], CrawlOptions(heading_count=5))

        self.assertEqual(row["Google_Headings"], "\n".join([
            "Wireless Ergonomic Mouse",
            "Mechanical Keyboard Pro",
            "USB-C Docking Station",
            "Noise Cancelling Headset",
            "Portable SSD 1TB Drive",
        ]))
        self.assertEqual(row["Product Overview"], "")

    def test_heading_skip_drops_leading_entries(self):
        self._page("http://x/search", HEADINGS_HTML)
        row = _row(google="http://x/search")
        self.manager.crawl_rows([row], CrawlOptions(heading_count=2, heading_skip=2))
        self.assertEqual(row["Google_Headings"], "USB-C Docking Station\nNoise Cancelling Headset")

    def test_detail_page_fills_overview_and_features(self):
        self._page("http://shop/item", DETAIL_HTML)
        table_spy = MagicMock(wraps=table_overview)
        detail_spy = MagicMock(wraps=detail_entry_overview)
        self.manager.overview_chain = (table_spy, detail_spy)

        row = _row(detail="http://shop/item")
        reports = self.manager.crawl_rows([row])

        self.assertEqual(row["Product Overview"], "Weight: 2 kg")
        self.assertEqual(row["About_This_Item"], "Adjustable height from 70 to 120 cm\nSolid oak veneer desktop")
        table_spy.assert_called_once()
        detail_spy.assert_not_called()
        self.assertEqual(len(reports[0].outcomes), 2)
        self.assertTrue(all(o.ok for o in reports[0].outcomes))
        # one load serves both product fields
        self.loader.load.assert_called_once_with("http://shop/item", force_js=False)

    def test_search_titles_respect_count(self):
        self._page("http://shop/s", SEARCH_HTML)
        row = _row(search="http://shop/s")
        reports = self.manager.crawl_rows([row], CrawlOptions(search_count=1))
        self.assertEqual(row["Amazon Search Titles"], "Ergonomic Office Chair with Lumbar Support")
        self.assertEqual(reports[0].outcomes[0].strategy, "h2_titles")

    def test_features_capped_at_max_items(self):
        bullets = "".join(
            f'<li><span class="a-list-item">Feature bullet number {i:02d}</span></li>' for i in range(15)
        )
        self._page("http://shop/item", f'<div id="feature-bullets"><ul>{bullets}</ul></div>')
        row = _row(detail="http://shop/item")
        self.manager.crawl_rows([row])
        self.assertEqual(len(row["About_This_Item"].split("\n")), 10)

    def test_failed_load_leaves_cells_blank_and_run_continues(self):
        self.pages["http://blocked"] = PageLoad.failed("http://blocked", FailureReason.CAPTCHA, "captcha")
        self._page("http://x/search", HEADINGS_HTML)
        rows = [_row(google="http://blocked"), _row(google="http://x/search")]

        reports = self.manager.crawl_rows(rows)

        self.assertEqual(rows[0]["Google_Headings"], "")
        self.assertEqual(reports[0].failed_fields[0].failure, FailureReason.CAPTCHA)
        self.assertNotEqual(rows[1]["Google_Headings"], "")

    def test_empty_extraction_is_reported(self):
        self._page("http://shop/item", "<html><body><p>nothing useful</p></body></html>")
        row = _row(detail="http://shop/item")
        reports = self.manager.crawl_rows([row])
        failures = {o.field: o.failure for o in reports[0].failed_fields}
        self.assertEqual(failures, {
            "Product Overview": FailureReason.EXTRACTION_EMPTY,
            "About_This_Item": FailureReason.EXTRACTION_EMPTY,
        })

    def test_browser_unavailable_aborts_run(self):
        self.loader.load.side_effect = BrowserUnavailableError("no browser")
        rows = [_row(google="http://x/search"), _row(google="http://y/search")]

        with self.assertRaises(BrowserUnavailableError):
            self.manager.crawl_rows(rows)
        self.assertEqual(len(self.manager.reports), 1)
        self.assertEqual(self.manager.reports[0].outcomes[0].failure, FailureReason.RESOURCE_UNAVAILABLE)

    def test_progress_reported_after_each_row(self):
        progress = MagicMock()
        self.manager.crawl_rows([_row(), _row()], progress=progress)
        self.assertEqual([c.args for c in progress.call_args_list], [(50, 0, 2), (100, 1, 2)])

    def test_rerun_is_idempotent(self):
        self._page("http://x/search", HEADINGS_HTML)
        self._page("http://shop/item", DETAIL_HTML)
        first = [_row(google="http://x/search", detail="http://shop/item")]
        second = copy.deepcopy(first)

        self.manager.crawl_rows(first)
        self.manager.crawl_rows(second)
        self.assertEqual(first, second)

    def test_force_js_passed_to_loader(self):
        self._page("http://x/search", HEADINGS_HTML)
        self.manager.crawl_rows([_row(google="http://x/search")], CrawlOptions(force_js=True))
        self.loader.load.assert_called_once_with("http://x/search", force_js=True)


class TestCrawlOptions(unittest.TestCase):
    def test_counts_must_be_in_range(self):
        CrawlOptions(heading_count=1, search_count=50)
        for bad in (0, 51, -3):
            with self.assertRaises(ValueError):
                CrawlOptions(heading_count=bad)
            with self.assertRaises(ValueError):
                CrawlOptions(search_count=bad)

    def test_heading_skip_must_not_be_negative(self):
        with self.assertRaises(ValueError):
            CrawlOptions(heading_skip=-1)

    def test_booleans_are_not_counts(self):
        with self.assertRaises(ValueError):
            CrawlOptions(heading_count=True)
        with self.assertRaises(ValueError):
            CrawlOptions(search_count=True)
        with self.assertRaises(ValueError):
            CrawlOptions(heading_skip=False)


def test_run_file_writes_crawled_workbook(tmp_path):
    source = tmp_path / "products.csv"
    source.write_text(
        "sku,search_on_google_url,search_page_url,detail_page_url\n"
        "007,http://x/search,,\n"
        "008,,,\n",
        encoding="utf-8",
    )
    loader = MagicMock()
    loader.load.return_value = PageLoad.success("http://x/search", HEADINGS_HTML, LoadMethod.BROWSER)

    summary = RunManager(page_loader=loader, settings=_settings()).run_file(source, CrawlOptions(heading_count=2))

    output = tmp_path / "products_crawled.xlsx"
    assert summary.output_path == str(output)
    assert summary.total_rows == 2
    assert summary.fields_succeeded == 1
    frame = pd.read_excel(output, sheet_name="Results", dtype=str, keep_default_na=False)
    assert list(frame["sku"]) == ["007", "008"]
    assert frame.loc[0, "Google_Headings"] == "Wireless Ergonomic Mouse\nMechanical Keyboard Pro"
    assert frame.loc[1, "About_This_Item"] == ""


def test_run_file_without_rows_writes_nothing(tmp_path):
    source = tmp_path / "empty.csv"
    source.write_text("search_on_google_url,search_page_url,detail_page_url\n", encoding="utf-8")

    summary = RunManager(page_loader=MagicMock(), settings=_settings()).run_file(source)

    assert summary.output_path is None
    assert not (tmp_path / "empty_crawled.xlsx").exists()
