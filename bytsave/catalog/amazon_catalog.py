# bytsave/catalog/amazon_catalog.py

"""Amazon product-page catalog provider."""

import logging
import re
import threading
import time
from decimal import Decimal
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from bytsave.catalog.asin import extract_asin
from bytsave.catalog.base import CatalogProvider
from bytsave.config.settings import Settings
from bytsave.models.errors import SnapshotNotFoundError
from bytsave.models.money import to_money
from bytsave.models.snapshot import ProductSnapshot

SELECTORS: dict[str, list[str]] = {
    "title": ["#productTitle", "#title"],
    "price": [
        "#corePrice_feature_div .a-offscreen",
        "#corePriceDisplay_desktop_feature_div .priceToPay .a-offscreen",
        "#priceblock_dealprice",
        "#priceblock_ourprice",
        ".a-price .a-offscreen",
    ],
    "original_price": [
        "#corePriceDisplay_desktop_feature_div .basisPrice .a-offscreen",
        "#corePriceDisplay_desktop_feature_div .a-text-price .a-offscreen",
        "#priceblock_listprice",
        ".a-text-price .a-offscreen",
    ],
    "image": ["#landingImage", "#imgBlkFront"],
}


class AmazonCatalog(CatalogProvider):
    """Reads price and metadata from an Amazon ``/dp/<ASIN>`` page.

    One instance serves every worker thread of an alert run.  Breaker
    and delay state sit behind ``_state_lock``; HTTP sessions are kept
    per thread because a curl session must not be shared between
    threads.
    """

    # Cloudflare / bot-wall markers (checked before keyword scan)
    _CHALLENGE_MARKERS: list[str] = [
        "/errors/validatecaptcha",
        "api-services-support@amazon.com",
        "cf-turnstile",
    ]

    def __init__(self, base_url: str | None = None) -> None:
        self.logger = logging.getLogger("bytsave.catalog.amazon")
        self.settings = Settings()
        self.base_url = (base_url or self.settings.AMAZON_BASE_URL).rstrip("/")
        self._state_lock = threading.Lock()
        self._local = threading.local()
        self._local.session = self._new_session()
        self._current_delay: float = self.settings.REQUEST_DELAY
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    # ── Sessions ─────────────────────────────────────────

    def _new_session(self) -> curl_requests.Session:
        return curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )

    @property
    def session(self) -> curl_requests.Session:
        """HTTP session owned by the calling thread."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._new_session()
            self._local.session = session
            self.logger.debug(
                "[amazon] New session for %s", threading.current_thread().name,
            )
        return session

    # ── Resilience ───────────────────────────────────────

    def _delay(self) -> float:
        with self._state_lock:
            return self._current_delay

    def _wait(self) -> None:
        """Sleep using the current (possibly escalated) delay."""
        time.sleep(self._delay())

    def _validate_response(self, text: str) -> bool:
        """Reject CAPTCHA and robot-check pages."""
        lower = text.lower()
        for marker in self._CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[amazon] Bot wall detected (marker: '%s')", marker,
                )
                return False
        if "productTitle" in text:
            return True
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                self.logger.warning(
                    "[amazon] CAPTCHA keyword '%s' detected", keyword,
                )
                return False
        return True

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request.

        After CIRCUIT_BREAKER_COOLDOWN seconds the breaker goes
        half-open and lets a single trial request through.
        """
        with self._state_lock:
            if not self._circuit_open:
                return False
            elapsed = time.time() - self._circuit_opened_at
            if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
                self.logger.info(
                    "[amazon] Circuit breaker half-open after %.0fs",
                    elapsed,
                )
                self._circuit_open = False
                return False
            return True

    def _record_success(self) -> None:
        with self._state_lock:
            self._consecutive_failures = 0
            self._circuit_open = False
            self._circuit_opened_at = 0.0
            self._current_delay = self.settings.REQUEST_DELAY

    def _record_failure(self) -> None:
        threshold = self.settings.CIRCUIT_BREAKER_THRESHOLD
        with self._state_lock:
            self._consecutive_failures += 1
            if self._consecutive_failures >= threshold:
                self._circuit_open = True
                self._circuit_opened_at = time.time()
                self.logger.error(
                    "[amazon] Circuit breaker opened after %d "
                    "consecutive failures",
                    self._consecutive_failures,
                )

    def _escalate_delay(self) -> float:
        """Double the current delay up to the configured max."""
        max_delay = (
            self.settings.REQUEST_DELAY * self.settings.MAX_DELAY_MULTIPLIER
        )
        with self._state_lock:
            self._current_delay = min(self._current_delay * 2, max_delay)
            delay = self._current_delay
        self.logger.warning(
            "[amazon] Rate-limited, delay escalated to %.1fs", delay,
        )
        return delay

    def _fetch_get(
        self, url: str, headers: dict[str, str],
    ) -> curl_requests.Response | None:
        """GET with retries and adaptive delay."""
        session = self.session
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = session.get(
                    url, headers=headers, timeout=self._request_timeout,
                )
                if resp.status_code == 200:
                    if not self._validate_response(resp.text):
                        time.sleep(self._escalate_delay())
                        continue
                    return resp
                self.logger.warning(
                    "[amazon] HTTP %d on attempt %d for %s",
                    resp.status_code,
                    attempt + 1,
                    url,
                )
                if resp.status_code == 404:
                    return None
                if resp.status_code in (429, 503):
                    time.sleep(self._escalate_delay())
            except Exception as exc:
                self.logger.warning(
                    "[amazon] Request error on attempt %d: %s",
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self._delay() * (attempt + 1))
        return None

    def _get_page(self, url: str) -> BeautifulSoup | None:
        """Fetch a page, falling back to cloudscraper on failure."""
        if self._check_circuit():
            return None
        headers: dict[str, str] = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": f"{self.base_url}/",
        }
        self._wait()

        resp = self._fetch_get(url, headers)
        if resp:
            self._record_success()
            return BeautifulSoup(resp.text, "lxml")

        self.logger.info(
            "[amazon] curl_cffi exhausted, falling back to cloudscraper",
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback_resp: Any = scraper.get(
                url, headers=headers, timeout=self._request_timeout,
            )
            text = str(fallback_resp.text)
            if (
                fallback_resp.status_code == 200
                and self._validate_response(text)
            ):
                self._record_success()
                return BeautifulSoup(text, "lxml")
        except Exception as e:
            self.logger.error(
                "[amazon] cloudscraper fallback also failed: %s",
                e,
                exc_info=True,
            )

        self._record_failure()
        return None

    # ── Parsing ──────────────────────────────────────────

    @staticmethod
    def extract_price(text: str | None) -> Decimal | None:
        """Extract a price from a string like '$1,299.00'."""
        if not text:
            return None
        cleaned = text.replace(",", "")
        numbers = re.findall(r"\d+(?:\.\d+)?", cleaned)
        if not numbers:
            return None
        amount = to_money(numbers[0])
        return amount if amount > 0 else None

    @staticmethod
    def _first_text(soup: BeautifulSoup, selectors: list[str]) -> str:
        for selector in selectors:
            el = soup.select_one(selector)
            if el is not None:
                text = el.get_text(strip=True)
                if text:
                    return text
        return ""

    def parse_product(
        self, asin: str, soup: BeautifulSoup,
    ) -> ProductSnapshot:
        """Turn a product page into a snapshot."""
        price = self.extract_price(
            self._first_text(soup, SELECTORS["price"])
        )
        if price is None:
            raise SnapshotNotFoundError(asin, "no price on product page")

        original = self.extract_price(
            self._first_text(soup, SELECTORS["original_price"])
        )
        if original is not None and original < price:
            self.logger.debug(
                "[amazon] %s list price %s below price %s, ignored",
                asin,
                original,
                price,
            )
            original = None

        image_url = ""
        for selector in SELECTORS["image"]:
            img = soup.select_one(selector)
            if img is not None:
                image_url = str(
                    img.get("data-old-hires") or img.get("src") or ""
                )
                if image_url:
                    break

        return ProductSnapshot(
            identifier=asin,
            current_price=price,
            original_price=original,
            title=self._first_text(soup, SELECTORS["title"]) or asin,
            url=f"{self.base_url}/dp/{asin}",
            image_url=image_url,
        )

    def get_snapshot(self, identifier: str) -> ProductSnapshot:
        asin = extract_asin(identifier)
        if asin is None:
            raise SnapshotNotFoundError(identifier, "not a valid ASIN")

        self.logger.info("[amazon] Fetching %s", asin)
        soup = self._get_page(f"{self.base_url}/dp/{asin}")
        if soup is None:
            raise SnapshotNotFoundError(asin, "product page unavailable")
        return self.parse_product(asin, soup)
