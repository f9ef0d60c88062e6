# job_ingest/http_client.py
from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_USER_AGENT
from .context import RunContext

LOG = logging.getLogger(__name__)


class HttpStatusError(requests.HTTPError):
    """Response status outside 2xx; message carries a short body preview."""

    def __init__(self, status_code: int, url: str, body_preview: str) -> None:
        super().__init__(f"HTTP {status_code} from {url}: {body_preview}")
        self.status_code = status_code
        self.url = url


class HttpClient:
    """
    One requests.Session per run with default headers and JSON GETs.

    Retries (5xx/429 and transport errors) are driven here rather than inside
    the adapter, so every attempt re-checks the RunContext and a backoff never
    sleeps past the run deadline.
    """

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        retries: int = 2,
        backoff_factor: float = 0.5,
        session: requests.Session | None = None,
    ):
        self.timeout = float(timeout)
        self.user_agent = user_agent
        self.retry = Retry(
            total=max(0, int(retries)),
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["GET", "HEAD"]),
            raise_on_status=False,
        )
        if session is not None:
            # Injected sessions (tests, shared pools) are used as-is.
            self.session = session
            return

        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
        # The adapter makes a single attempt; get_json owns the retry loop.
        adapter = HTTPAdapter(max_retries=Retry(total=0, raise_on_status=False), pool_connections=10, pool_maxsize=20)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def get_json(
        self,
        url: str,
        *,
        ctx: RunContext | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """
        GET and parse JSON.

        Each attempt is refused once `ctx` is cancelled, and its timeout is
        capped by the time left in the run. Non-2xx responses that survive the
        retries raise HttpStatusError.
        """
        hdrs = {"User-Agent": self.user_agent}
        if headers:
            hdrs.update(headers)

        attempts = int(self.retry.total or 0) + 1
        for attempt in range(1, attempts + 1):
            timeout = self.timeout
            if ctx is not None:
                ctx.check()
                timeout = ctx.timeout_for(self.timeout)

            last = attempt == attempts
            try:
                resp = self.session.get(url, params=params, headers=hdrs, timeout=timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                if last:
                    raise
                LOG.debug("GET %s failed (attempt %d/%d): %s", url, attempt, attempts, e)
                self._backoff(attempt, ctx)
                continue

            if not last and self.retry.is_retry("GET", resp.status_code):
                LOG.debug("GET %s answered %d (attempt %d/%d)", url, resp.status_code, attempt, attempts)
                self._backoff(attempt, ctx)
                continue
            break

        if not 200 <= resp.status_code < 300:
            preview = (resp.text or "")[:200].replace("\n", " ")
            raise HttpStatusError(resp.status_code, url, preview)

        try:
            return resp.json()
        except ValueError as e:
            # Some boards answer text/html with a JSON body
            try:
                return json.loads(resp.text)
            except ValueError:
                preview = (resp.text or "")[:200].replace("\n", " ")
                raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e

    def _backoff(self, attempt: int, ctx: RunContext | None) -> None:
        delay = float(self.retry.backoff_factor or 0) * (2 ** (attempt - 1))
        if ctx is None:
            if delay > 0:
                time.sleep(delay)
            return
        left = ctx.remaining()
        if left is not None:
            delay = min(delay, left)
        ctx.wait(delay)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("session close failed", exc_info=True)
