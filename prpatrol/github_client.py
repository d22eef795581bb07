from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from http.client import HTTPException
from urllib.parse import urlencode

from . import http_client
from .errors import AuthError, RateLimited, RemoteError
from .models import ResultItem, normalize_url

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_WEB_URL = "https://github.com"
DEFAULT_PAGE_SIZE = 50
RATE_LIMIT_FALLBACK_S = 60.0


def build_item_pattern(web_url: str = DEFAULT_WEB_URL) -> re.Pattern[str]:
    base = re.escape(normalize_url(web_url))
    return re.compile(rf"^{base}/[\w.-]+/[\w.-]+/(pull|issue)s?/\d+$")


def _header_number(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value.strip())
    except ValueError:
        return None


def rate_limit_resume_at(
    retry_after: str | None,
    rate_limit_reset: str | None,
    *,
    now: float,
) -> float:
    """Resolve when requests may resume, in epoch seconds."""
    delay = _header_number(retry_after)
    if delay is not None:
        return now + delay
    reset = _header_number(rate_limit_reset)
    if reset is not None:
        return reset
    return now + RATE_LIMIT_FALLBACK_S


class GitHubClient:
    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        web_url: str = DEFAULT_WEB_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_url = http_client.build_base_url(api_url)
        self.page_size = page_size
        self.timeout_s = timeout_s
        self._clock = clock
        self._item_pattern = build_item_pattern(web_url)

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "prpatrol",
        }

    def _get(self, token: str, url: str) -> http_client.JsonResponse:
        try:
            return http_client.request_json(
                "GET", url, headers=self._headers(token), timeout_s=self.timeout_s
            )
        except (OSError, HTTPException) as exc:
            raise RemoteError(0, str(exc) or type(exc).__name__) from exc

    def search(self, token: str, query: str) -> list[ResultItem]:
        """Run one search page for ``query`` and return the matching PR/issue items."""
        params = urlencode({"q": query, "per_page": self.page_size})
        response = self._get(token, f"{self.api_url}/search/issues?{params}")
        if response.status == 401:
            raise AuthError()
        if response.status in {403, 429}:
            resume_at = rate_limit_resume_at(
                response.header("Retry-After"),
                response.header("X-RateLimit-Reset"),
                now=self._clock(),
            )
            logger.warning("search rate limited until %.0f", resume_at)
            raise RateLimited(resume_at)
        if not response.ok:
            raise RemoteError(response.status)
        items = response.payload.get("items") if response.payload else None
        if not isinstance(items, list):
            raise RemoteError(response.status, "invalid search response")
        return self._parse_items(items)

    def _parse_items(self, items: list[object]) -> list[ResultItem]:
        results: list[ResultItem] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            url = item.get("html_url")
            if not isinstance(url, str):
                continue
            url = normalize_url(url)
            if not self._item_pattern.match(url):
                continue
            number = item.get("number")
            results.append(
                ResultItem(
                    url=url,
                    title=str(item.get("title") or ""),
                    number=int(number) if isinstance(number, int) else 0,
                )
            )
        return results

    def fetch_login(self, token: str) -> str:
        response = self._get(token, f"{self.api_url}/user")
        if response.status in {401, 403}:
            raise AuthError("Invalid or expired token")
        if not response.ok:
            raise RemoteError(response.status)
        login = response.payload.get("login") if response.payload else None
        return str(login or "")
