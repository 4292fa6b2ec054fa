"""Browser driver capability used by the login orchestrator.

``BrowserDriver`` is the narrow surface the orchestrator needs from a browser:
navigate, read the page, query controls, type, click and wait. The
Playwright-backed implementation owns exactly one browser/context/page and
translates Playwright errors into the sign-in failure taxonomy.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..auth.errors import Cancelled, DriverError, NavigationTimeout, SessionDetached


logger = logging.getLogger(__name__)

# Fragments of Playwright error messages that mean the page/frame is gone for good
DETACHED_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "has been closed",
    "detached frame",
    "frame was detached",
    "session closed",
    "browser has been closed",
    "execution context was destroyed",
)


def is_detached_error(error: Exception) -> bool:
    """Check whether a driver error means the page or frame is gone."""
    message = str(error).lower()
    return any(marker in message for marker in DETACHED_MARKERS)


class BrowserDriver(ABC):
    """Abstract single-session browser capability."""

    DEFAULT_POLL_INTERVAL = 0.5

    def __init__(self) -> None:
        self.cancel_event: threading.Event = threading.Event()

    def bind_cancel_event(self, event: threading.Event) -> None:
        """Share the owner's cancellation event so waits can be aborted."""
        self.cancel_event = event

    @abstractmethod
    def navigate(self, url: str, timeout: float) -> None:
        """Load *url* and wait for the navigation to settle.

        Raises:
            NavigationTimeout: If the page did not settle within *timeout* seconds
            SessionDetached: If the page or browser is gone
        """

    @abstractmethod
    def current_url(self) -> str:
        pass

    @abstractmethod
    def title(self) -> str:
        pass

    @abstractmethod
    def content(self) -> str:
        pass

    @abstractmethod
    def find_controls(self, descriptor: str) -> List[Any]:
        """Return handles for every control matching *descriptor* (visible or not)."""

    @abstractmethod
    def is_interactable(self, handle: Any) -> bool:
        """Return True if the control is visible and enabled."""

    @abstractmethod
    def type_text(self, handle: Any, text: str) -> None:
        pass

    @abstractmethod
    def click(self, handle: Any) -> None:
        pass

    @abstractmethod
    def press(self, handle: Any, key: str) -> None:
        pass

    @abstractmethod
    def list_controls(self) -> List[Dict[str, str]]:
        """Describe inputs and buttons on the page (attributes only, never values)."""

    @abstractmethod
    def snapshot(self, path: Path) -> Optional[Path]:
        """Save a screenshot of the current page, returning the written path."""

    @abstractmethod
    def is_closed(self) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def wait_for(
        self,
        predicate: Callable[[], bool],
        timeout: float,
        poll_interval: Optional[float] = None,
    ) -> bool:
        """Poll *predicate* until it returns True or *timeout* seconds elapse.

        Exceptions raised by the predicate count as "not yet", except for
        cancellation and a detached session which end the wait immediately.

        Returns:
            bool: True if the predicate became true, False on timeout

        Raises:
            Cancelled: If the cancel event is set while waiting
        """
        interval = self.DEFAULT_POLL_INTERVAL if poll_interval is None else poll_interval
        deadline = time.monotonic() + timeout
        while True:
            self.check_cancelled()
            try:
                if predicate():
                    return True
            except (Cancelled, SessionDetached):
                raise
            except Exception as e:
                logger.debug(f"wait_for predicate raised {e.__class__.__name__}: {e}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._pause(min(interval, remaining))

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise Cancelled("Login cancelled while waiting on the browser")

    def _pause(self, seconds: float) -> None:
        self.cancel_event.wait(seconds)


class PlaywrightDriver(BrowserDriver):
    """Chromium driven through Playwright's sync API."""

    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    # JavaScript that describes form controls for FieldNotFound diagnostics
    LIST_CONTROLS_SCRIPT = """
        () => Array.from(document.querySelectorAll('input, button, a[role="button"], [role="button"]'))
            .slice(0, 50)
            .map(el => ({
                tag: el.tagName.toLowerCase(),
                type: el.getAttribute('type') || '',
                name: el.getAttribute('name') || '',
                id: el.id || '',
                placeholder: el.getAttribute('placeholder') || '',
                text: (el.innerText || el.getAttribute('value') || '').trim().slice(0, 40),
                visible: String(el.offsetParent !== null)
            }))
    """

    def __init__(
        self,
        headless: bool = True,
        element_timeout: float = 10.0,
        viewport: Optional[Dict[str, int]] = None,
    ):
        """Initialize the driver (the browser is launched by start()).

        Args:
            headless: Run Chromium without a window (default: True)
            element_timeout: Seconds allowed for a single click/fill
            viewport: Browser viewport size (default: 1366x768)
        """
        super().__init__()
        self.headless = headless
        self.element_timeout = element_timeout
        self.viewport = viewport or {"width": 1366, "height": 768}

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    def start(self) -> "PlaywrightDriver":
        """Launch Chromium and open the single page this driver controls."""
        logger.debug(f"Launching Chromium browser ({'headless' if self.headless else 'headed'})...")
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
            )
            self._context = self._browser.new_context(user_agent=self.USER_AGENT, viewport=self.viewport)
            self._page = self._context.new_page()
        except PlaywrightError:
            self.close()
            raise
        logger.info("Browser session started")
        return self

    @property
    def page(self) -> Page:
        if self._page is None or self._page.is_closed():
            raise SessionDetached("Browser page is not available")
        return self._page

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Timed out during {action}") from e
        except PlaywrightError as e:
            if is_detached_error(e):
                raise SessionDetached(f"Browser session lost during {action}: {e}") from e
            raise DriverError(f"Browser error during {action}: {e}") from e

    def navigate(self, url: str, timeout: float) -> None:
        logger.debug(f"Navigating to {url} (timeout {timeout:.0f}s)")
        with self._translate_errors(f"navigation to {url}"):
            self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
            try:
                self.page.wait_for_load_state("networkidle", timeout=timeout * 1000)
            except PlaywrightTimeoutError:
                logger.warning("  Network idle timeout - continuing anyway")
        logger.debug(f"  Landed on {self.page.url}")

    def current_url(self) -> str:
        with self._translate_errors("URL read"):
            return self.page.url

    def title(self) -> str:
        with self._translate_errors("title read"):
            return self.page.title()

    def content(self) -> str:
        with self._translate_errors("content read"):
            return self.page.content()

    def find_controls(self, descriptor: str) -> List[Any]:
        with self._translate_errors(f"query '{descriptor}'"):
            locator = self.page.locator(descriptor)
            return [locator.nth(i) for i in range(locator.count())]

    def is_interactable(self, handle: Any) -> bool:
        try:
            return handle.is_visible() and handle.is_enabled()
        except PlaywrightError as e:
            if is_detached_error(e):
                raise SessionDetached(f"Browser session lost while checking a control: {e}") from e
            logger.debug(f"Visibility check failed: {e}")
            return False

    def type_text(self, handle: Any, text: str) -> None:
        with self._translate_errors("typing"):
            handle.fill("", timeout=self.element_timeout * 1000)
            handle.fill(text, timeout=self.element_timeout * 1000)

    def click(self, handle: Any) -> None:
        with self._translate_errors("click"):
            handle.click(timeout=self.element_timeout * 1000)

    def press(self, handle: Any, key: str) -> None:
        with self._translate_errors(f"key press {key}"):
            handle.press(key, timeout=self.element_timeout * 1000)

    def list_controls(self) -> List[Dict[str, str]]:
        try:
            return self.page.evaluate(self.LIST_CONTROLS_SCRIPT)
        except PlaywrightError as e:
            logger.warning(f"Could not list page controls: {e}")
            return []

    def snapshot(self, path: Path) -> Optional[Path]:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, SessionDetached) as e:
            logger.warning(f"Could not save page snapshot: {e}")
            return None
        logger.info(f"Saved page snapshot to {path}")
        return path

    def _pause(self, seconds: float) -> None:
        # Waiting through the page keeps Playwright's event loop running.
        if self._page is not None and not self._page.is_closed():
            with self._translate_errors("wait"):
                self._page.wait_for_timeout(seconds * 1000)
        else:
            super()._pause(seconds)

    def is_closed(self) -> bool:
        return self._page is None or self._page.is_closed()

    def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call more than once."""
        if self._browser is not None:
            logger.debug("Closing browser...")
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"Browser close raised: {e}")
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"Playwright stop raised: {e}")
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None


def playwright_driver_factory(headless: bool = True, element_timeout: float = 10.0) -> Callable[[], BrowserDriver]:
    """Build a factory that launches a fresh PlaywrightDriver on every call."""
    def create() -> BrowserDriver:
        return PlaywrightDriver(headless=headless, element_timeout=element_timeout).start()
    return create
