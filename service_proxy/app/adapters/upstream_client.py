"""
Upstream catalogue API client for the proxy.
"""

import time
from typing import Mapping, Optional

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector

REDIRECT_STATUSES = frozenset({301, 302, 307, 308})
DEFAULT_MAX_REDIRECTS = 3


class UpstreamClient:
    """Issues upstream requests and follows a bounded redirect chain.

    Redirects are followed here rather than by httpx so the same method,
    headers and body are replayed on every hop.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        *,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.timeout = httpx.Timeout(timeout)
        self.max_redirects = max_redirects
        self.transport = transport
        self.metrics = metrics
        self.logger = get_logger("proxy.upstream_client")

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
        max_redirects: Optional[int] = None,
    ) -> httpx.Response:
        """Return the final response of the redirect chain starting at ``url``."""
        budget = self.max_redirects if max_redirects is None else max_redirects
        current_url = httpx.URL(url)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=False,
        ) as client:
            response = await self._send(client, method, current_url, headers, content)

            while response.status_code in REDIRECT_STATUSES and budget > 0:
                location = response.headers.get("location")
                if not location:
                    self.logger.warning(
                        "Redirect without Location header",
                        url=str(current_url),
                        status_code=response.status_code,
                    )
                    break

                current_url = current_url.join(location)
                budget -= 1
                self.logger.debug(
                    "Following upstream redirect",
                    status_code=response.status_code,
                    location=str(current_url),
                    remaining=budget,
                )
                response = await self._send(client, method, current_url, headers, content)

            if response.status_code in REDIRECT_STATUSES and budget == 0:
                self.logger.info("Redirect budget exhausted", url=str(current_url))

            return response

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: httpx.URL,
        headers: Optional[Mapping[str, str]],
        content: Optional[bytes],
    ) -> httpx.Response:
        start = time.perf_counter()
        status_code: Optional[int] = None
        try:
            response = await client.request(method, url, headers=dict(headers or {}), content=content)
            status_code = response.status_code
            return response
        finally:
            if self.metrics:
                self.metrics.record_upstream_request(method, status_code, time.perf_counter() - start)
