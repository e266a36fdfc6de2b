"""
Catalogue edge proxy service.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from shared.base_service import BaseService
from shared.config import ProxyConfig

from .adapters.upstream_client import UpstreamClient
from .caching.response_cache import ResponseCache
from .credentials.resolver import KeyResolver, load_tenant_key_map
from .proxy.forwarder import CACHE_TYPE, MOUNT_PREFIX, ForwardingProxy, build_upstream_url
from .site.pages import SitePages

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


class ProxyService(BaseService):
    """Owns the tenant map, cache and upstream client for one process."""

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("proxy", config)

        self.tenant_map = load_tenant_key_map(self.config.public_tenant_keys)
        self.key_resolver = KeyResolver(self.config.public_api_key_header)
        self.cache = ResponseCache(self.config.cache_max_entries, on_evict=self._record_eviction)
        self.upstream_client = UpstreamClient(
            self.config.proxy_timeout_seconds,
            max_redirects=self.config.proxy_max_redirects,
            transport=transport,
            metrics=self.metrics,
        )
        self.forwarder = ForwardingProxy(
            self.config,
            self.tenant_map,
            self.key_resolver,
            self.cache,
            self.upstream_client,
            metrics=self.metrics,
            error_reporter=self.error_reporter,
        )
        self.site = SitePages(self.config.site_root, self.config, self.tenant_map)

        @self.app.on_event("startup")
        async def _startup():
            self._log_configuration()
            if self.config.startup_probe:
                await self.probe_upstream()

        self._setup_proxy_routes()
        self.site.register(self.app)

        self.app.state.proxy_service = self

    def _setup_proxy_routes(self):
        """Mount the forwarding proxy."""

        @self.app.options(MOUNT_PREFIX)
        @self.app.options(MOUNT_PREFIX + "/{path:path}")
        async def proxy_preflight(request: Request):
            return self.forwarder.preflight(request)

        @self.app.api_route(MOUNT_PREFIX, methods=PROXY_METHODS)
        @self.app.api_route(MOUNT_PREFIX + "/{path:path}", methods=PROXY_METHODS)
        async def proxy_forward(request: Request):
            return await self.forwarder.handle(request)

    def _record_eviction(self, key: str):
        self.metrics.increment_counter("cache_evictions_total", cache_type=CACHE_TYPE)

    def _log_configuration(self):
        self.logger.info(
            "Proxy configuration",
            public_api_key_configured=bool(self.config.public_api_key),
            tenants=list(self.tenant_map),
            api_bases=self.config.api_bases or None,
            primary_api_base=self.config.primary_api_base or None,
        )
        if not self.config.primary_api_base:
            self.logger.warning("No PUBLIC_API_BASE configured; /proxy requests will fail")

    async def probe_upstream(self) -> bool:
        """Check the upstream is reachable with the configured credential; never raises."""
        base = self.config.primary_api_base
        if not base:
            return False

        path, _, query = self.config.startup_probe_path.partition("?")
        url, _ = build_upstream_url(base, path, httpx.QueryParams(query).multi_items())
        headers = {"Accept": "application/json"}
        if self.config.public_api_key:
            headers[self.config.public_api_key_header] = (
                f"{self.config.public_api_key_prefix}{self.config.public_api_key}"
            )

        try:
            response = await self.upstream_client.fetch(url, "GET", headers)
        except Exception as exc:
            self.error_reporter.report("Error connecting to API base", exc, base=base)
            return False

        if response.is_success:
            self.logger.info("Connection to API base successful", base=base)
            return True

        self.logger.error(
            "Connection to API base failed",
            base=base,
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=response.text[:500] or None,
        )
        return False

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "upstream": "configured" if self.config.primary_api_base else "not_configured",
            "cache": self.cache.stats(),
            "tenants": len(self.tenant_map),
        }


def create_app(config: Optional[ProxyConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ProxyService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = ProxyService()
    service.run()
