import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from sitemap_audit.features.audit.exceptions import (
    FetchHttpError,
    FetchNetworkError,
    FetchTimeout,
)
from sitemap_audit.features.audit.schemas.audit import RenderedPage
from sitemap_audit.platform.config import settings

logger = logging.getLogger(__name__)

# Chrome exposes the main document's HTTP status through Navigation Timing
_RESPONSE_STATUS_SCRIPT = (
    "const nav = performance.getEntriesByType('navigation')[0];"
    "return nav ? nav.responseStatus : null;"
)


def _first_line(message: str) -> str:
    lines = [line for line in message.splitlines() if line.strip()]
    return lines[0].strip() if lines else "Browser error"


def build_driver(chromedriver_path: Optional[str] = None) -> webdriver.Chrome:
    chrome_options = Options()
    chrome_options.add_argument('--headless')
    chrome_options.add_argument('--no-sandbox')
    chrome_options.add_argument('--disable-dev-shm-usage')
    chrome_options.add_argument('--disable-gpu')
    chrome_options.add_argument('--window-size=1920,1080')

    chromedriver_path = chromedriver_path or settings.CHROMEDRIVER_PATH
    if chromedriver_path:
        driver_service = Service(executable_path=chromedriver_path)
        return webdriver.Chrome(service=driver_service, options=chrome_options)
    return webdriver.Chrome(options=chrome_options)


class PageFetcher:
    """
    Loads one page in headless Chrome and returns its rendered DOM.

    A fresh driver is opened per fetch and always quit before returning,
    whatever the outcome. Retrying is the scheduler's decision, not ours.
    Open drivers are tracked by URL so the scheduler can `abort()` a page
    it has given up on.
    """

    def __init__(self, driver_factory: Optional[Callable[[], webdriver.Chrome]] = None):
        self.driver_factory = driver_factory or build_driver
        self._active: Dict[str, webdriver.Chrome] = {}
        self._lock = threading.Lock()

    @contextmanager
    def rendering_session(self, url: str, timeout: float) -> Iterator[webdriver.Chrome]:
        try:
            driver = self.driver_factory()
        except WebDriverException as e:
            raise FetchNetworkError(url, f"Could not start browser: {e.msg}") from e

        with self._lock:
            self._active[url] = driver
        try:
            driver.set_page_load_timeout(timeout)
            driver.set_script_timeout(timeout)
            yield driver
        finally:
            with self._lock:
                owned = self._active.pop(url, None) is driver
            # An aborted session was already quit by abort()
            if owned:
                self._quit(driver, url)

    def abort(self, url: str) -> bool:
        """
        Quit the browser still rendering `url`, unblocking the fetch.

        Returns:
            True if a live session was found and closed
        """
        with self._lock:
            driver = self._active.pop(url, None)
        if driver is None:
            return False
        logger.warning(f"Aborting browser session for {url}")
        self._quit(driver, url)
        return True

    @staticmethod
    def _quit(driver: webdriver.Chrome, url: str) -> None:
        try:
            driver.quit()
        except WebDriverException as e:
            logger.warning(f"Failed to quit browser for {url}: {e.msg}")

    def fetch(self, url: str, timeout: float) -> RenderedPage:
        """
        Render a page.

        Raises:
            FetchTimeout: page did not finish loading within `timeout` seconds
            FetchNetworkError: DNS, connection or browser failure
            FetchHttpError: document answered with a 4xx/5xx status
        """
        with self.rendering_session(url, timeout) as driver:
            start_time = time.monotonic()
            try:
                driver.get(url)
            except TimeoutException as e:
                raise FetchTimeout(url, f"Page load exceeded {timeout:g}s") from e
            except WebDriverException as e:
                raise FetchNetworkError(url, _first_line(e.msg or str(e))) from e
            load_time = time.monotonic() - start_time

            status = self._response_status(driver)
            if status is not None and status >= 400:
                raise FetchHttpError(url, status)

            try:
                html = driver.page_source or ""
                title = driver.title or None
                final_url = driver.current_url or url
            except TimeoutException as e:
                raise FetchTimeout(url, "Timed out reading rendered DOM") from e
            except WebDriverException as e:
                # e.g. the renderer crashed after navigation
                raise FetchNetworkError(url, _first_line(e.msg or str(e))) from e

        logger.info(f"Rendered {url} in {load_time:.2f}s ({len(html)} bytes)")
        return RenderedPage(
            url=url,
            final_url=final_url,
            html=html,
            title=title,
            status_code=status,
            load_time=load_time,
        )

    @staticmethod
    def _response_status(driver: webdriver.Chrome) -> Optional[int]:
        try:
            status = driver.execute_script(_RESPONSE_STATUS_SCRIPT)
        except WebDriverException:
            return None
        # 0 means the browser could not tell (cross-origin redirect, cache, ...)
        if isinstance(status, int) and status > 0:
            return status
        return None
