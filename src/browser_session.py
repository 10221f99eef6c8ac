"""
Browser Session - Rendering driver capability backed by Playwright
Each session owns its own Playwright instance, browser context and page.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from playwright.sync_api import Browser, BrowserContext, ElementHandle as PlaywrightElement, Page, Playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when the rendering driver cannot open or query a page."""


class ElementHandle:
    """Minimal element surface used by the crawler: attribute, text, click."""

    def attribute(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def text(self) -> str:
        raise NotImplementedError

    def click(self) -> None:
        raise NotImplementedError


class RenderingSession:
    """Fetch-and-query capability consumed by the crawler and the workers."""

    def open(self, url: str) -> None:
        raise NotImplementedError

    def wait_until_stable(self) -> None:
        raise NotImplementedError

    def current_content(self) -> str:
        raise NotImplementedError

    def current_url(self) -> str:
        raise NotImplementedError

    def query_all(self, selector: str) -> List[ElementHandle]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "RenderingSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


SessionFactory = Callable[[str], RenderingSession]


class PlaywrightElementHandle(ElementHandle):
    def __init__(self, element: PlaywrightElement) -> None:
        self._element = element

    def attribute(self, name: str) -> Optional[str]:
        try:
            return self._element.get_attribute(name)
        except PlaywrightError as exc:
            raise SessionError(f"could not read {name!r} from element: {exc}") from exc

    def text(self) -> str:
        try:
            text = (self._element.inner_text() or "").strip()
        except PlaywrightError:
            text = ""
        if not text:
            try:
                text = (self._element.text_content() or "").strip()
            except PlaywrightError:
                text = ""
        return text

    def click(self) -> None:
        try:
            self._element.click()
        except PlaywrightError as exc:
            raise SessionError(f"click failed: {exc}") from exc


class PlaywrightSession(RenderingSession):
    """Rendering session on Playwright's sync API.

    Playwright sync objects are bound to the thread that created them, so a
    session must be created and used on the same thread.
    """

    def __init__(
        self,
        name: str = "session",
        endpoint: str = "",
        connect_mode: str = "cdp",
        headless: bool = True,
        page_timeout: int = 30000,
        navigation_timeout: int = 45000,
        settle_delay: float = 0.0,
    ) -> None:
        self.name = name
        self.endpoint = endpoint
        self.connect_mode = connect_mode
        self.headless = headless
        self.page_timeout = page_timeout
        self.navigation_timeout = navigation_timeout
        self.settle_delay = settle_delay
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def start(self) -> "PlaywrightSession":
        logger.info("%s: starting browser session", self.name)
        self.playwright = sync_playwright().start()
        try:
            if self.endpoint:
                logger.info("%s: connecting to driver endpoint %s (%s)", self.name, self.endpoint, self.connect_mode)
                if self.connect_mode == "playwright":
                    self.browser = self.playwright.chromium.connect(self.endpoint)
                else:
                    self.browser = self.playwright.chromium.connect_over_cdp(self.endpoint)
            else:
                self.browser = self.playwright.chromium.launch(headless=self.headless)
            self.context = self.browser.new_context(viewport={"width": 1280, "height": 800})
            self.page = self.context.new_page()
            self.page.set_default_timeout(self.page_timeout)
            self.page.set_default_navigation_timeout(self.navigation_timeout)
        except PlaywrightError as exc:
            self.close()
            raise SessionError(f"{self.name}: failed to start browser: {exc}") from exc
        logger.info("%s: browser session ready", self.name)
        return self

    def _require_page(self) -> Page:
        if self.page is None or self.page.is_closed():
            raise SessionError(f"{self.name}: session is not open")
        return self.page

    def open(self, url: str) -> None:
        page = self._require_page()
        try:
            page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as exc:
            raise SessionError(f"{self.name}: navigation to {url} failed: {exc}") from exc

    def wait_until_stable(self) -> None:
        page = self._require_page()
        try:
            page.wait_for_load_state("networkidle", timeout=self.page_timeout)
        except PlaywrightTimeoutError:
            logger.debug("%s: network did not go idle, continuing", self.name)
        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

    def current_content(self) -> str:
        page = self._require_page()
        try:
            return page.content()
        except PlaywrightError as exc:
            raise SessionError(f"{self.name}: could not read page content: {exc}") from exc

    def current_url(self) -> str:
        return self._require_page().url

    def query_all(self, selector: str) -> List[ElementHandle]:
        page = self._require_page()
        try:
            return [PlaywrightElementHandle(el) for el in page.query_selector_all(selector)]
        except PlaywrightError as exc:
            raise SessionError(f"{self.name}: query {selector!r} failed: {exc}") from exc

    def close(self) -> None:
        """Clean up browser resources"""
        try:
            if self.context:
                self.context.close()
        except Exception:
            logger.debug("%s: browser context close failed", self.name, exc_info=True)
        try:
            if self.browser:
                self.browser.close()
        except Exception:
            logger.debug("%s: browser close failed", self.name, exc_info=True)
        try:
            if self.playwright:
                self.playwright.stop()
        except Exception:
            logger.debug("%s: playwright stop failed", self.name, exc_info=True)
        self.page = None
        self.context = None
        self.browser = None
        self.playwright = None


def playwright_session_factory(config) -> SessionFactory:
    """Build a factory that opens a started PlaywrightSession per caller."""

    def _factory(name: str) -> RenderingSession:
        session = PlaywrightSession(
            name=name,
            endpoint=config.get_browser_endpoint(),
            connect_mode=config.get_browser_connect_mode(),
            headless=config.is_headless(),
            page_timeout=config.get_page_timeout(),
            navigation_timeout=config.get_navigation_timeout(),
            settle_delay=config.get_settle_delay(),
        )
        return session.start()

    return _factory
