import asyncio
import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By

from app.features.audit.schemas.scan import (
    DetectedScript,
    InjectedTag,
    NetworkRequest,
    PerformanceMetrics,
    ScanResult,
)
from app.features.audit.services.errors import TransientError

logger = logging.getLogger(__name__)

TRACKING_DOMAINS = (
    "googletagmanager.com",
    "google-analytics.com",
    "facebook.net",
    "linkedin.com",
    "tiktok.com",
    "twitter.com",
    "pinterest.com",
    "doubleclick.net",
    "hotjar.com",
    "segment.com",
    "mixpanel.com",
    "amplitude.com",
)
MAX_COLLECTED_REQUESTS = 200

# (tag type, pattern); group 1 is the identifier when present
TAG_PATTERNS = (
    ("GTM", re.compile(r"(GTM-[A-Z0-9]+)")),
    ("GA4", re.compile(r"\b(G-[A-Z0-9]{4,})\b")),
    ("MetaPixel", re.compile(r"fbq\(\s*['\"]init['\"]\s*,\s*['\"]([^'\"]+)['\"]")),
    ("LinkedIn", re.compile(r"_linkedin_partner_id\s*=\s*['\"]([^'\"]+)['\"]")),
    ("LinkedIn", re.compile(r"lntrck\(\s*['\"]init['\"]\s*,\s*['\"]([^'\"]+)['\"]")),
    ("TikTok", re.compile(r"ttq\.load\(\s*['\"]([^'\"]+)['\"]")),
    ("Twitter", re.compile(r"twq\(\s*['\"]init['\"]\s*,\s*['\"]([^'\"]+)['\"]")),
    ("Pinterest", re.compile(r"pintrk\(\s*['\"]load['\"]\s*,\s*['\"]([^'\"]+)['\"]")),
)

_RESOURCE_ENTRIES_JS = """
return performance.getEntriesByType('resource').map(function (entry) {
    return {url: entry.name, type: entry.initiatorType};
});
"""

_PERFORMANCE_JS = """
var nav = performance.getEntriesByType('navigation')[0] || {};
var start = nav.startTime || 0;
var paint = performance.getEntriesByType('paint').filter(function (e) {
    return e.name === 'first-contentful-paint';
})[0];
var lcp = performance.getEntriesByType('largest-contentful-paint').slice(-1)[0];
var cls = performance.getEntriesByType('layout-shift').reduce(function (sum, e) {
    return sum + (e.hadRecentInput ? 0 : (e.value || 0));
}, 0);
return {
    loadTimeMs: Math.max(0, (nav.loadEventEnd || 0) - start),
    domContentLoadedMs: Math.max(0, (nav.domContentLoadedEventEnd || 0) - start),
    firstContentfulPaintMs: paint ? paint.startTime : null,
    largestContentfulPaintMs: lcp ? lcp.startTime : null,
    cumulativeLayoutShift: cls
};
"""


class ScanEngine(Protocol):
    async def scan(self, url: str) -> ScanResult:
        ...


def detect_injected_tags(html: str) -> List[InjectedTag]:
    """Find tag-manager/analytics/pixel identifiers in page source, de-duplicated per type."""
    tags: List[InjectedTag] = []
    seen = set()
    for tag_type, pattern in TAG_PATTERNS:
        for match in pattern.finditer(html or ""):
            tag_id = match.group(1)
            if (tag_type, tag_id) in seen:
                continue
            seen.add((tag_type, tag_id))
            tags.append(InjectedTag(type=tag_type, id=tag_id, code=tag_id))
    return tags


def is_tracking_request(url: str) -> bool:
    return any(domain in url for domain in TRACKING_DOMAINS)


class SeleniumScanEngine:
    """Headless Chrome scan of a single page."""

    def __init__(
        self,
        page_load_timeout: int = 30,
        settle_seconds: float = 2.0,
        timeout_seconds: float = 90.0,
        chromedriver_path: Optional[str] = None,
    ):
        self.page_load_timeout = page_load_timeout
        self.settle_seconds = settle_seconds
        self.timeout_seconds = timeout_seconds
        self.chromedriver_path = chromedriver_path
        # one browser session at a time; _driver is the live one, if any
        self._session_lock = threading.Lock()
        self._driver_lock = threading.Lock()
        self._driver = None
        self._abort_requested = False

    def build_driver(self) -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument('--ignore-certificate-errors')

        if self.chromedriver_path:
            driver_service = Service(executable_path=self.chromedriver_path)
            driver = webdriver.Chrome(service=driver_service, options=chrome_options)
        else:
            driver = webdriver.Chrome(options=chrome_options)

        driver.set_page_load_timeout(self.page_load_timeout)
        return driver

    async def scan(self, url: str) -> ScanResult:
        """
        Run the blocking browser session in a worker thread, bounded by timeout_seconds.

        When the watchdog fires the browser is quit and the worker thread is
        awaited, so no session outlives the call that started it.
        """
        session = asyncio.ensure_future(asyncio.to_thread(self.scan_sync, url))
        try:
            return await asyncio.wait_for(asyncio.shield(session), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(f"Scan of {url} exceeded {self.timeout_seconds}s; closing browser session")
            await asyncio.to_thread(self.abort_session)
            await asyncio.wait({session})
            with self._driver_lock:
                self._abort_requested = False
            if not session.cancelled() and session.exception() is not None:
                logger.warning(f"Aborted scan of {url} ended with: {session.exception()}")
            raise TransientError(f"Scan of {url} timed out after {self.timeout_seconds}s") from e

    def abort_session(self) -> None:
        """Quit the live browser, which makes the blocked WebDriver call in scan_sync return."""
        with self._driver_lock:
            driver = self._driver
            # a session still starting up quits as soon as its driver exists
            self._abort_requested = driver is None
        if driver is None:
            return
        try:
            driver.quit()
        except WebDriverException as e:
            logger.warning(f"Error aborting browser session: {e}")

    def scan_sync(self, url: str) -> ScanResult:
        """
        Load the page and collect scripts, tags, network requests and timings.

        Browser failures are reported through ScanResult.errors rather than
        raised, so callers always get a result object back.
        """
        with self._session_lock:
            return self._run_session(url)

    def _run_session(self, url: str) -> ScanResult:
        driver = None
        try:
            logger.info(f"Starting browser scan for {url}")
            driver = self.build_driver()
            with self._driver_lock:
                self._driver = driver
                if self._abort_requested:
                    raise WebDriverException("Scan aborted before page load")
            driver.get(url)
            if self.settle_seconds > 0:
                # let late tags fire
                time.sleep(self.settle_seconds)

            html = driver.page_source or ""
            page_url = driver.current_url or url
            result = ScanResult(
                url=url,
                timestamp=datetime.now(timezone.utc).isoformat(),
                detected_scripts=self.collect_scripts(driver),
                injected_tags=detect_injected_tags(html),
                network_requests=self.collect_network_requests(driver, page_url),
                performance_metrics=self.collect_performance_metrics(driver),
            )
            logger.info(
                f"Scan completed for {url} - found {len(result.injected_tags)} tags, "
                f"{len(result.detected_scripts)} scripts"
            )
            return result
        except TimeoutException as e:
            return self._failed_result(url, f"Timeout loading page: {e.msg or e}")
        except WebDriverException as e:
            return self._failed_result(url, f"WebDriver error: {e.msg or e}")
        finally:
            with self._driver_lock:
                self._driver = None
            if driver:
                try:
                    driver.quit()
                except WebDriverException as e:
                    logger.warning(f"Error closing browser for {url}: {e}")

    @staticmethod
    def _failed_result(url: str, message: str) -> ScanResult:
        logger.error(f"Scan failed for {url}: {message}")
        return ScanResult(
            url=url,
            timestamp=datetime.now(timezone.utc).isoformat(),
            errors=[message],
        )

    @staticmethod
    def collect_scripts(driver) -> List[DetectedScript]:
        scripts = []
        for location in ("head", "body"):
            try:
                elements = driver.find_elements(By.CSS_SELECTOR, f"{location} script")
            except WebDriverException as e:
                logger.warning(f"Error detecting {location} scripts: {e}")
                continue
            for element in elements:
                src = element.get_attribute("src") or ""
                scripts.append(DetectedScript(
                    src=src,
                    type="script" if src else "inline",
                    location=location,
                    is_async=element.get_attribute("async") is not None,
                    defer=element.get_attribute("defer") is not None,
                ))
        return scripts

    @staticmethod
    def collect_network_requests(driver, page_url: str) -> List[NetworkRequest]:
        try:
            entries = driver.execute_script(_RESOURCE_ENTRIES_JS) or []
        except WebDriverException as e:
            logger.warning(f"Error reading resource timings: {e}")
            return []

        requests = []
        for entry in entries:
            request_url = entry.get("url") or ""
            resource_type = entry.get("type") or "other"
            if resource_type == "xmlhttprequest":
                resource_type = "xhr"
            if is_tracking_request(request_url) or resource_type in ("script", "xhr", "fetch"):
                requests.append(NetworkRequest(url=request_url, type=resource_type, initiator=page_url))
            if len(requests) >= MAX_COLLECTED_REQUESTS:
                break
        return requests

    @staticmethod
    def collect_performance_metrics(driver) -> PerformanceMetrics:
        try:
            data: Dict[str, Any] = driver.execute_script(_PERFORMANCE_JS) or {}
        except WebDriverException as e:
            logger.warning(f"Error capturing performance metrics: {e}")
            return PerformanceMetrics()
        return PerformanceMetrics.model_validate(data)
