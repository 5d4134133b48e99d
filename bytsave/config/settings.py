# bytsave/config/settings.py

"""Central configuration for the BytSave alert pipeline."""

import os
from decimal import Decimal
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    """Read a truthy/falsy environment flag."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Central configuration for the BytSave alert pipeline."""

    # --- Alert policy ---
    DEFAULT_COOLDOWN_HOURS: int = 48    # Min hours between two alerts
    REBOUND_PCT: Decimal = Decimal("10")  # Rise above last alert price
    MAX_WORKERS: int = 4                # Items processed concurrently
    RUN_INTERVAL_MINUTES: int = 60      # `watch` scheduling interval
    RUN_LEASE_SECONDS: float = 7200.0   # Stale alert-run lease expiry

    # --- Email ---
    SENDGRID_API_KEY: str = os.getenv("SENDGRID_API_KEY", "")
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "alerts@bytsave.com")
    SMTP_HOST: str = os.getenv("SMTP_HOST", "")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_TLS: bool = _env_bool("SMTP_TLS", True)
    MAX_EMAILS_PER_HOUR: int = 3        # Per recipient
    AFFILIATE_TAG: str = os.getenv("AMAZON_AFFILIATE_TAG", "bytsave-20")

    # --- Catalog fetching ---
    AMAZON_BASE_URL: str = "https://www.amazon.com"
    REQUEST_DELAY: float = 2.0          # Seconds between requests
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    SNAPSHOT_CACHE_TTL: float = 900.0   # Seconds a fetched price stays fresh

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 300.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "enter the characters you see below",
        "sorry, we just need to make sure you're not a robot",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    DB_PATH: Path = Path(
        os.getenv("BYTSAVE_DB_PATH", str(DATA_DIR / "bytsave.db"))
    )
