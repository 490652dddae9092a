"""Runtime settings for the product crawler.

``SETTINGS`` is built once at import time from three layers, later layers
overriding earlier ones:

1. ``DEFAULTS`` below
2. an optional YAML file (``CRAWLER_CONFIG`` or ``config/crawler.yaml``)
3. ``CRAWLER_*`` environment variables (a project ``.env`` is loaded first)

Components take an explicit ``settings`` dict and fall back to ``SETTINGS``,
so tests can pass their own values without patching the environment.
"""
from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / 'config' / 'crawler.yaml'

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

DEFAULTS: Dict[str, Any] = {
    # Static (requests + lxml) path
    'user_agent': DEFAULT_USER_AGENT,
    'request_timeout': 15.0,
    'static_fetch_enabled': True,
    'static_delay_range': [0.5, 1.5],
    'min_content_length': 100,
    'min_content_length_overrides': {},
    # Browser path
    'navigation_timeout': 30.0,
    'settle_delay': 3.0,
    'startup_timeout': 10.0,
    'headless_mode': True,
    'captcha_indicators': ['recaptcha', 'captcha-form', 'g-recaptcha', 'unusual traffic'],
    # Diagnostics
    'save_debug_html': True,
    'debug_dir': str(Path.home() / 'crawler_debug'),
    # Spreadsheet columns
    'input_columns': {
        'headings': 'search_on_google_url',
        'search': 'search_page_url',
        'detail': 'detail_page_url',
    },
    'output_columns': {
        'headings': 'Google_Headings',
        'search': 'Amazon Search Titles',
        'overview': 'Product Overview',
        'features': 'About_This_Item',
    },
    'max_about_items': 10,
    # Optional per-category strategy order, e.g. {'features': ['generic_list_items', 'text_blocks']}
    'strategy_order': {},
}

# env var -> (settings key, parser)
_ENV_OVERRIDES = {
    'CRAWLER_USER_AGENT': ('user_agent', str),
    'CRAWLER_REQUEST_TIMEOUT': ('request_timeout', float),
    'CRAWLER_STATIC_FETCH_ENABLED': ('static_fetch_enabled', None),
    'CRAWLER_MIN_CONTENT_LENGTH': ('min_content_length', int),
    'CRAWLER_NAVIGATION_TIMEOUT': ('navigation_timeout', float),
    'CRAWLER_SETTLE_DELAY': ('settle_delay', float),
    'CRAWLER_STARTUP_TIMEOUT': ('startup_timeout', float),
    'CRAWLER_HEADLESS_MODE': ('headless_mode', None),
    'CRAWLER_SAVE_DEBUG_HTML': ('save_debug_html', None),
    'CRAWLER_DEBUG_DIR': ('debug_dir', str),
}


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {'1', 'true', 'yes', 'on'}


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``overrides`` into ``base`` one level deep for dict values."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open('r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f'Crawler config {path} must contain a mapping at the top level')
    logger.debug('Loaded crawler config from %s', path)
    return data


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, (key, parser) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or not raw.strip():
            continue
        if parser is None:
            overrides[key] = _parse_bool(raw)
            continue
        try:
            overrides[key] = parser(raw.strip())
        except ValueError:
            logger.warning('Ignoring invalid value for %s: %r', env_name, raw)
    indicators = os.getenv('CRAWLER_CAPTCHA_INDICATORS')
    if indicators:
        overrides['captcha_indicators'] = [i.strip() for i in indicators.split(',') if i.strip()]
    return overrides


def load_settings(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Build a fresh settings dict from defaults, YAML and the environment."""
    load_dotenv(PROJECT_ROOT / '.env')
    path = Path(config_path or os.getenv('CRAWLER_CONFIG') or DEFAULT_CONFIG_PATH)
    settings = copy.deepcopy(DEFAULTS)
    settings = _merge(settings, _load_yaml(path))
    settings = _merge(settings, _env_overrides())
    return settings


SETTINGS: Dict[str, Any] = load_settings()
