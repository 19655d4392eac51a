import threading

import pytest
from unittest.mock import MagicMock, PropertyMock, patch
from selenium.common.exceptions import TimeoutException, WebDriverException

from sitemap_audit.features.audit.exceptions import (
    FetchHttpError,
    FetchNetworkError,
    FetchTimeout,
)
from sitemap_audit.features.audit.services.scraping.page_fetcher import PageFetcher, build_driver


class TestPageFetcher:
    @pytest.fixture
    def mock_driver(self):
        driver = MagicMock()
        driver.page_source = "<html><body><h1>Hi</h1></body></html>"
        driver.title = "Hi"
        driver.current_url = "https://example.com/final"
        driver.execute_script.return_value = 200
        return driver

    @pytest.fixture
    def fetcher(self, mock_driver):
        return PageFetcher(driver_factory=lambda: mock_driver)

    def test_fetch_returns_rendered_page(self, fetcher, mock_driver):
        page = fetcher.fetch("https://example.com/", timeout=10)

        assert page.url == "https://example.com/"
        assert page.final_url == "https://example.com/final"
        assert page.title == "Hi"
        assert page.status_code == 200
        assert "<h1>Hi</h1>" in page.html
        mock_driver.set_page_load_timeout.assert_called_once_with(10)
        mock_driver.quit.assert_called_once()

    def test_page_load_timeout_raises_fetch_timeout(self, fetcher, mock_driver):
        mock_driver.get.side_effect = TimeoutException("timed out")

        with pytest.raises(FetchTimeout):
            fetcher.fetch("https://example.com/", timeout=5)

        mock_driver.quit.assert_called_once()

    def test_browser_error_raises_network_error(self, fetcher, mock_driver):
        mock_driver.get.side_effect = WebDriverException("unknown error: net::ERR_NAME_NOT_RESOLVED\n  (Session info: chrome)")

        with pytest.raises(FetchNetworkError) as exc_info:
            fetcher.fetch("https://nope.invalid/", timeout=5)

        assert exc_info.value.transient is True
        assert "ERR_NAME_NOT_RESOLVED" in exc_info.value.message
        mock_driver.quit.assert_called_once()

    def test_empty_browser_error_still_has_message(self, fetcher, mock_driver):
        mock_driver.get.side_effect = WebDriverException("")

        with pytest.raises(FetchNetworkError) as exc_info:
            fetcher.fetch("https://example.com/", timeout=5)

        assert exc_info.value.message

    @pytest.mark.parametrize("status,transient", [(404, False), (410, False), (500, True), (503, True)])
    def test_error_status_raises_http_error(self, fetcher, mock_driver, status, transient):
        mock_driver.execute_script.return_value = status

        with pytest.raises(FetchHttpError) as exc_info:
            fetcher.fetch("https://example.com/", timeout=5)

        assert exc_info.value.status == status
        assert exc_info.value.transient is transient
        mock_driver.quit.assert_called_once()

    def test_unknown_status_is_not_an_error(self, fetcher, mock_driver):
        mock_driver.execute_script.return_value = 0

        page = fetcher.fetch("https://example.com/", timeout=5)

        assert page.status_code is None

    def test_driver_start_failure_is_network_error(self):
        def broken_factory():
            raise WebDriverException("chromedriver not found")

        with pytest.raises(FetchNetworkError, match="Could not start browser"):
            PageFetcher(driver_factory=broken_factory).fetch("https://example.com/", timeout=5)

    def test_quit_failure_does_not_mask_result(self, fetcher, mock_driver):
        mock_driver.quit.side_effect = WebDriverException("already closed")

        page = fetcher.fetch("https://example.com/", timeout=5)

        assert page.title == "Hi"

    def test_renderer_crash_after_navigation_is_network_error(self):
        driver = MagicMock()
        driver.execute_script.return_value = 200
        type(driver).page_source = PropertyMock(side_effect=WebDriverException("tab crashed"))

        with pytest.raises(FetchNetworkError) as exc_info:
            PageFetcher(driver_factory=lambda: driver).fetch("https://example.com/", timeout=5)

        assert exc_info.value.transient is True
        assert "tab crashed" in exc_info.value.message
        driver.quit.assert_called_once()

    def test_abort_quits_a_session_still_rendering(self):
        navigating = threading.Event()
        closed = threading.Event()
        driver = MagicMock()

        def blocking_get(url):
            navigating.set()
            closed.wait(2)
            raise WebDriverException("invalid session id")

        driver.get.side_effect = blocking_get
        driver.quit.side_effect = lambda: closed.set()
        fetcher = PageFetcher(driver_factory=lambda: driver)
        errors = []

        def render():
            try:
                fetcher.fetch("https://example.com/slow", timeout=30)
            except FetchNetworkError as e:
                errors.append(e)

        thread = threading.Thread(target=render)
        thread.start()
        assert navigating.wait(2)

        assert fetcher.abort("https://example.com/slow") is True
        thread.join(2)

        assert not thread.is_alive()
        assert len(errors) == 1
        driver.quit.assert_called_once()

    def test_abort_without_session_is_a_noop(self, fetcher):
        assert fetcher.abort("https://example.com/never-opened") is False

    @patch('sitemap_audit.features.audit.services.scraping.page_fetcher.webdriver.Chrome')
    def test_build_driver_is_headless(self, mock_chrome):
        build_driver()

        options = mock_chrome.call_args.kwargs["options"]
        assert "--headless" in options.arguments
        assert "--no-sandbox" in options.arguments
