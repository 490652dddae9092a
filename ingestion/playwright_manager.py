import logging
import queue
import sys
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from config.settings import SETTINGS

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    '--disable-gpu',
    '--disable-dev-shm-usage',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-accelerated-2d-canvas',
    '--disable-blink-features=AutomationControlled',
    '--disable-infobars',
]

EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Upgrade-Insecure-Requests": "1",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
}

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
    window.chrome = {
        runtime: {}
    };
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""

# Extra seconds a caller waits for a render result beyond navigation + settle
RESULT_GRACE_SECONDS = 15.0


class BrowserState(Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class BrowserUnavailableError(RuntimeError):
    """The shared browser could not be started, or failed earlier in this run."""


class BrowserNavigationTimeout(Exception):
    """Navigation did not finish within the configured timeout."""


class BrowserGate:
    """Single-slot gate around the shared browser.

    At most one render holds the gate at a time; ``with gate:`` releases it on
    every exit path.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        if timeout is None:
            return self._lock.acquire()
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()

    @property
    def in_use(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> "BrowserGate":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class PlaywrightEngine:
    """Chromium driven through the Playwright sync API.

    Every method must be called from the thread that called ``launch``.
    """

    def __init__(self, settings: Dict[str, Any]):
        self.settings = settings
        self._playwright = None
        self._browser = None

    def launch(self) -> None:
        headless = bool(self.settings.get('headless_mode', True))
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=headless,
            args=LAUNCH_ARGS,
            ignore_default_args=['--enable-automation'],
            handle_sigint=False,
            handle_sigterm=False,
            handle_sighup=False,
        )
        logger.info('[PLAYWRIGHT] Browser launched (Headless: %s)', headless)

    def render(self, url: str) -> str:
        navigation_timeout = float(self.settings.get('navigation_timeout', 30.0))
        settle_delay = float(self.settings.get('settle_delay', 3.0))
        context = self._browser.new_context(
            user_agent=self.settings.get('user_agent'),
            extra_http_headers=EXTRA_HEADERS,
        )
        try:
            page = context.new_page()
            page.add_init_script(STEALTH_SCRIPT)
            page.on("requestfailed", lambda request: logger.debug(f"[PLAYWRIGHT] Request failed: {request.url} - {request.failure}"))
            try:
                page.goto(url, timeout=navigation_timeout * 1000, wait_until='domcontentloaded')
            except PlaywrightTimeoutError as e:
                raise BrowserNavigationTimeout(f'Navigation to {url} exceeded {navigation_timeout:.0f}s') from e
            # scripts get a fixed window to populate the DOM
            page.wait_for_timeout(settle_delay * 1000)
            return page.content()
        finally:
            context.close()

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug('[PLAYWRIGHT] Browser close failed: %s', e)
        if self._playwright is not None:
            self._playwright.stop()
        self._browser = None
        self._playwright = None


EngineFactory = Callable[[Dict[str, Any]], Any]


class PlaywrightBrowserManager:
    """Thread-safe owner of the run's single browser instance.

    A dedicated thread launches the engine and serves render requests from a
    queue, since the Playwright sync API is bound to the thread that created
    it. ``render`` holds the gate while a request is in flight.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None, engine_factory: Optional[EngineFactory] = None):
        self.settings = settings if settings is not None else SETTINGS
        self._engine_factory = engine_factory or PlaywrightEngine
        self._request_queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._gate = BrowserGate()
        self._state = BrowserState.UNINITIALIZED
        self._failure: Optional[str] = None

    @property
    def state(self) -> BrowserState:
        return self._state

    @property
    def gate(self) -> BrowserGate:
        return self._gate

    @property
    def is_started(self) -> bool:
        with self._lock:
            return self._state is BrowserState.READY and self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Launch the browser thread and wait for it to become ready.

        Idempotent. Raises BrowserUnavailableError when the launch fails or
        exceeds ``startup_timeout``; the manager then stays FAILED until
        ``close()``.
        """
        if self._state is BrowserState.READY:
            return
        with self._lock:
            if self._state is BrowserState.READY:
                return
            if self._state is BrowserState.FAILED:
                raise BrowserUnavailableError(self._failure or 'Browser failed to start')

            timeout = float(self.settings.get('startup_timeout', 10.0))
            self._state = BrowserState.STARTING
            self._request_queue = queue.Queue()
            ready = threading.Event()
            # launch error of this start only; an abandoned earlier thread has its own holder
            startup: Dict[str, BaseException] = {}
            self._thread = threading.Thread(
                target=self._run_browser_loop,
                args=(ready, startup, self._request_queue),
                daemon=True,
                name="PlaywrightBrowserThread",
            )
            self._thread.start()
            logger.info('[PLAYWRIGHT] Browser thread started, waiting up to %.0fs for readiness', timeout)

            if not ready.wait(timeout):
                # a late launch finds the stop sentinel and shuts itself down
                self._request_queue.put(None)
                self._fail(f'Browser did not become ready within {timeout:.0f}s')
                raise BrowserUnavailableError(self._failure)
            error = startup.get("error")
            if error is not None:
                self._fail(f'Browser launch failed: {error}')
                raise BrowserUnavailableError(self._failure) from error

            self._state = BrowserState.READY
            logger.info('[PLAYWRIGHT] Browser ready')

    def _fail(self, message: str) -> None:
        self._state = BrowserState.FAILED
        self._failure = message
        logger.error('[PLAYWRIGHT] %s', message)

    def _run_browser_loop(self, ready: threading.Event, startup: Dict[str, BaseException], tasks: "queue.Queue") -> None:
        engine = None
        try:
            try:
                engine = self._engine_factory(self.settings)
                engine.launch()
            except Exception as e:
                startup["error"] = e
                return
            finally:
                ready.set()

            while True:
                task = tasks.get()
                if task is None:
                    break
                result_queue = task["result_queue"]
                url = task["url"]
                logger.debug('[PLAYWRIGHT] Rendering %s', url)
                try:
                    result_queue.put(engine.render(url))
                except Exception as e:
                    logger.warning('[PLAYWRIGHT] Render failed for %s: %s', url, e)
                    result_queue.put(e)
        finally:
            if engine is not None:
                try:
                    engine.close()
                except Exception as e:
                    if not sys.is_finalizing():
                        logger.warning('[PLAYWRIGHT] Browser shutdown error: %s', e)
            if not sys.is_finalizing():
                logger.info('[PLAYWRIGHT] Browser thread stopped')

    def render(self, url: str) -> str:
        """Navigate to ``url``, let scripts settle and return the page markup.

        Starts the browser on first use. Raises BrowserUnavailableError,
        BrowserNavigationTimeout, or whatever the engine raised.
        """
        self.start()
        result_wait = (
            float(self.settings.get('navigation_timeout', 30.0))
            + float(self.settings.get('settle_delay', 3.0))
            + RESULT_GRACE_SECONDS
        )
        with self._gate:
            if self._state is not BrowserState.READY:
                raise BrowserUnavailableError(self._failure or f'Browser is {self._state.value}')
            result_queue: "queue.Queue" = queue.Queue()
            self._request_queue.put({"type": "render", "url": url, "result_queue": result_queue})
            try:
                result = result_queue.get(timeout=result_wait)
            except queue.Empty:
                logger.warning(
                    '[PLAYWRIGHT] No render result for %s after %.0fs; its late result will be dropped', url, result_wait
                )
                raise BrowserNavigationTimeout(f'No render result for {url} after {result_wait:.0f}s')
        if isinstance(result, Exception):
            raise result
        return result

    def close(self, join_timeout: float = 5.0) -> None:
        """Stop the browser thread and return to UNINITIALIZED."""
        thread_to_join = None
        with self._lock:
            if self._thread is not None:
                self._request_queue.put(None)
                thread_to_join = self._thread
            self._thread = None
            self._state = BrowserState.UNINITIALIZED
            self._failure = None

        # joined outside the lock so a slow shutdown cannot block start()
        if thread_to_join is not None:
            thread_to_join.join(timeout=join_timeout)

