"""Page loading for the crawler.

Tries a plain HTTP fetch first and falls back to the shared headless browser
when the static response is unusable. Every load ends in a ``PageLoad`` so
callers never have to interpret exceptions or empty strings.
"""
from __future__ import annotations

import logging
import os
import random
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from config.settings import SETTINGS
from data.models import FailureReason, LoadMethod, PageLoad
from ingestion.extraction import clean_text
from ingestion.playwright_manager import (
    BrowserNavigationTimeout,
    BrowserUnavailableError,
    PlaywrightBrowserManager,
)

logger = logging.getLogger(__name__)


def detect_captcha(html: str, indicators: Iterable[str]) -> Optional[str]:
    """Return the first indicator found in ``html`` (case-insensitive), else None."""
    lowered = (html or '').lower()
    for indicator in indicators:
        if indicator and indicator.lower() in lowered:
            return indicator
    return None


def visible_text_length(html: str) -> int:
    soup = BeautifulSoup(html or '', 'lxml')
    return len(clean_text(soup.get_text(separator=' ', strip=True)))


def save_debug_html(url: str, html: str, reason: str, debug_dir: str) -> Optional[Path]:
    """Dump raw markup for later inspection; failures here are logged, never raised."""
    try:
        dump_dir = Path(os.path.expanduser(debug_dir))
        dump_dir.mkdir(parents=True, exist_ok=True)
        safe = re.sub(r'[^a-zA-Z0-9_.-]', '_', url)[:120]
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        path = dump_dir / f'{safe}_{reason}_{stamp}.html'
        path.write_text(html or '', encoding='utf-8')
        logger.debug('[FETCH] Wrote %s markup for %s to %s', reason, url, path)
        return path
    except OSError as e:
        logger.warning('[FETCH] Could not write debug HTML for %s: %s', url, e)
        return None


class PageLoader:
    """Loads one URL at a time through the static path or the browser path.

    ``load`` returns a failed ``PageLoad`` for navigation errors, timeouts and
    CAPTCHA pages. ``BrowserUnavailableError`` from the browser manager is not
    caught: a browser that cannot start ends the run.
    """

    def __init__(
        self,
        browser_manager: PlaywrightBrowserManager,
        settings: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.browser_manager = browser_manager
        self.settings = settings if settings is not None else SETTINGS
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': self.settings.get('user_agent', ''),
            'Accept-Language': 'en-US,en;q=0.9',
        })
        self._sleep = sleep

    def load(self, url: str, force_js: bool = False) -> PageLoad:
        if force_js or not self.settings.get('static_fetch_enabled', True):
            logger.info('[FETCH] Loading %s with browser', url)
            return self._browser_load(url)

        html = self._static_load(url)
        if html is None:
            logger.info('[FETCH] Static load unusable for %s, falling back to browser', url)
            return self._browser_load(url)
        return PageLoad.success(url, html, LoadMethod.STATIC)

    def min_content_length_for(self, url: str) -> int:
        """Static viability threshold, honouring per-domain overrides."""
        overrides = self.settings.get('min_content_length_overrides') or {}
        domain = urlparse(url).netloc.lower()
        for candidate in (domain, domain[4:] if domain.startswith('www.') else None):
            if candidate and candidate in overrides:
                return int(overrides[candidate])
        return int(self.settings.get('min_content_length', 100))

    def _polite_delay(self) -> None:
        delay_range = self.settings.get('static_delay_range') or [0, 0]
        low, high = float(delay_range[0]), float(delay_range[-1])
        if high > 0:
            self._sleep(random.uniform(low, high))

    def _static_load(self, url: str) -> Optional[str]:
        """HTML of a usable static response, or None when the browser should be tried."""
        self._polite_delay()
        try:
            resp = self.session.get(url, timeout=float(self.settings.get('request_timeout', 15.0)))
        except requests.RequestException as e:
            logger.warning('[FETCH] Static request failed for %s: %s', url, e)
            return None

        if resp.status_code != 200:
            logger.warning('[FETCH] Fetching %s returned %s', url, resp.status_code)
            return None

        html = resp.text or ''
        if detect_captcha(html, self.settings.get('captcha_indicators', [])):
            logger.warning('[FETCH] Static response for %s is a CAPTCHA page', url)
            return None

        threshold = self.min_content_length_for(url)
        length = visible_text_length(html)
        if length < threshold:
            logger.info('[FETCH] Thin static content for %s (%d < %d chars)', url, length, threshold)
            return None
        return html

    def _browser_load(self, url: str) -> PageLoad:
        try:
            html = self.browser_manager.render(url)
        except BrowserUnavailableError:
            raise
        except BrowserNavigationTimeout as e:
            logger.warning('[FETCH] Browser load timed out for %s: %s', url, e)
            return PageLoad.failed(url, FailureReason.TIMEOUT, str(e), LoadMethod.BROWSER)
        except Exception as e:
            logger.warning('[FETCH] Browser load failed for %s: %s', url, e)
            return PageLoad.failed(url, FailureReason.LOAD_FAILED, str(e), LoadMethod.BROWSER)

        indicator = detect_captcha(html, self.settings.get('captcha_indicators', []))
        if indicator:
            logger.warning('[FETCH] CAPTCHA detected on %s (matched %r)', url, indicator)
            if self.settings.get('save_debug_html', False):
                save_debug_html(url, html, 'captcha', self.settings.get('debug_dir', '.'))
            return PageLoad.failed(url, FailureReason.CAPTCHA, f'CAPTCHA indicator {indicator!r}', LoadMethod.BROWSER)

        return PageLoad.success(url, html, LoadMethod.BROWSER)
