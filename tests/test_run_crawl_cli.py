import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from data.models import FailureReason, FieldOutcome, RowReport, RunSummary
from ingestion.playwright_manager import BrowserUnavailableError
from scripts import run_crawl


class TestRunCrawlCli(unittest.TestCase):
    @patch("scripts.run_crawl.PlaywrightBrowserManager")
    @patch("scripts.run_crawl.RunManager")
    def test_success_prints_summary(self, mock_run_manager, mock_browser):
        summary = RunSummary(
            total_rows=1,
            rows=[RowReport(index=0, outcomes=[
                FieldOutcome(field="Google_Headings", value="a", count=1, strategy="generic_h3_headings"),
                FieldOutcome(field="Product Overview", failure=FailureReason.CAPTCHA),
            ])],
            output_path="/tmp/in_crawled.xlsx",
        )
        manager = mock_run_manager.return_value
        manager.run_file.return_value = summary

        with patch("builtins.print") as mock_print:
            code = run_crawl.main(["in.csv", "--heading-count", "7", "--force-js", "--headed"])

        self.assertEqual(code, 0)
        options = manager.run_file.call_args[0][1]
        self.assertEqual(options.heading_count, 7)
        self.assertTrue(options.force_js)
        settings = mock_browser.call_args.kwargs["settings"]
        self.assertFalse(settings["headless_mode"])
        printed = json.loads(mock_print.call_args[0][0])
        self.assertEqual(printed["fields_succeeded"], 1)
        self.assertEqual(printed["failures"], {"captcha": 1})
        manager.close.assert_called_once()

    @patch("scripts.run_crawl.RunManager")
    def test_invalid_count_exits_1(self, mock_run_manager):
        self.assertEqual(run_crawl.main(["in.csv", "--search-count", "51"]), 1)
        mock_run_manager.assert_not_called()

    @patch("scripts.run_crawl.PlaywrightBrowserManager", MagicMock())
    @patch("scripts.run_crawl.RunManager")
    def test_missing_input_exits_1(self, mock_run_manager):
        mock_run_manager.return_value.run_file.side_effect = FileNotFoundError("in.csv")
        self.assertEqual(run_crawl.main(["in.csv"]), 1)
        mock_run_manager.return_value.close.assert_called_once()

    @patch("scripts.run_crawl.PlaywrightBrowserManager", MagicMock())
    @patch("scripts.run_crawl.RunManager")
    def test_browser_unavailable_exits_2(self, mock_run_manager):
        mock_run_manager.return_value.run_file.side_effect = BrowserUnavailableError("no chromium")
        self.assertEqual(run_crawl.main(["in.csv"]), 2)
        mock_run_manager.return_value.close.assert_called_once()

    def _write_config(self, text):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        path = os.path.join(tmp.name, "crawler.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    @patch("scripts.run_crawl.RunManager")
    def test_config_without_mapping_exits_1(self, mock_run_manager):
        config = self._write_config("- just\n- a list\n")
        self.assertEqual(run_crawl.main(["in.csv", "--config", config]), 1)
        mock_run_manager.assert_not_called()

    @patch("scripts.run_crawl.RunManager")
    def test_malformed_config_exits_1(self, mock_run_manager):
        config = self._write_config("strategy_order: [unclosed\n")
        self.assertEqual(run_crawl.main(["in.csv", "--config", config]), 1)
        mock_run_manager.assert_not_called()

    @patch("scripts.run_crawl.PlaywrightBrowserManager", MagicMock())
    def test_unknown_strategy_in_config_exits_1(self):
        config = self._write_config("strategy_order:\n  features: [nope]\n")
        self.assertEqual(run_crawl.main(["in.csv", "--config", config]), 1)


if __name__ == "__main__":
    unittest.main()
