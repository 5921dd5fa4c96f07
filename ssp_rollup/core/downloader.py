"""
Source Downloader - fetches one year's spreadsheet

The publisher serves one CSV per year (VeiculosSubtraidos_{year}.csv).
With no URL template configured the downloader runs in local mode and
simply hands back the file already sitting in raw_dir.

Key features:
- Exponential backoff on connection errors, timeouts, 429 and 5xx
- 404 (year not published yet) and other 4xx fail fast
- Downloads land in a temp file and are renamed into place
- Every failure surfaces as TransientSourceError for that year only
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import requests

from .errors import TransientSourceError

logger = logging.getLogger(__name__)

FILENAME_TEMPLATE = 'VeiculosSubtraidos_{year}.csv'


@dataclass
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 2.0
    factor: float = 2.0
    max_delay: float = 60.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)


class SourceDownloader:
    """
    Resolves a year to a local CSV path, downloading it when configured.

    Args:
        raw_dir: Directory holding the yearly CSV files
        url_template: URL with a {year} placeholder, or None for local mode
        policy: Retry policy for remote fetches
        session: requests.Session (or compatible) used for HTTP
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        raw_dir: Path,
        url_template: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        session=None,
        timeout: float = 60.0,
    ):
        self.raw_dir = Path(raw_dir)
        self.url_template = url_template
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.timeout = timeout

    def local_path(self, year: int) -> Path:
        return self.raw_dir / FILENAME_TEMPLATE.format(year=year)

    def fetch(self, year: int) -> Path:
        if not self.url_template:
            path = self.local_path(year)
            if not path.exists():
                raise TransientSourceError(year, f"{path} not found")
            logger.info(f"Using local source {path.name}")
            return path
        return self._download(year, self.url_template.format(year=year))

    def _download(self, year: int, url: str) -> Path:
        last_error = ''
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status == 200:
                    return self._save(year, response.content)
                if status == 404:
                    raise TransientSourceError(year, f"{url} returned 404 (not published)", attempt)
                if 400 <= status < 500 and status != 429:
                    raise TransientSourceError(year, f"{url} returned {status}", attempt)
                last_error = f"HTTP {status}"

            if attempt < self.policy.max_attempts:
                wait = self.policy.delay(attempt)
                logger.warning(f"⚠️  Download of {year} failed ({last_error}); "
                               f"retry {attempt}/{self.policy.max_attempts - 1} in {wait:.1f}s")
                self.policy.sleep(wait)

        raise TransientSourceError(year, last_error, self.policy.max_attempts)

    def _save(self, year: int, content: bytes) -> Path:
        path = self.local_path(year)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.part')
        with open(tmp_path, 'wb') as f:
            f.write(content)
        os.replace(tmp_path, path)
        logger.info(f"✅ Downloaded {path.name} ({len(content) / (1024 * 1024):.1f} MB)")
        return path
