"""
Credential-injecting forwarding proxy.

Requests arriving under the mount prefix are rewritten onto the primary
upstream base, given the upstream credential resolved for the caller, and the
upstream answer is relayed back. Successful GETs are cached by upstream URL
within the namespace of the credential that fetched them.
"""

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.config import ProxyConfig
from shared.errors import (
    InvalidRequestBodyError,
    MissingCredentialError,
    ProxyError,
    ProxyFailureError,
    UpstreamNotConfiguredError,
    UpstreamRateLimitError,
    UpstreamStatusError,
)
from shared.logging import ErrorReporter, get_logger, set_tenant_context
from shared.metrics import MetricsCollector

from ..adapters.upstream_client import REDIRECT_STATUSES, UpstreamClient
from ..caching.response_cache import ResponseCache, ttl_for_path
from ..credentials.resolver import (
    API_KEY_QUERY_PARAM,
    TENANT_HEADER,
    KeyResolver,
    ResolvedCredential,
    TenantKeyMap,
)
from ..domain.product_mapper import is_product_path, map_payload

MOUNT_PREFIX = "/proxy"
CACHE_TYPE = "upstream"
PREFLIGHT_METHODS = "GET, POST, PUT, PATCH, DELETE, HEAD, OPTIONS"
# "%" is kept so already-encoded inbound segments are not encoded twice.
_PATH_SAFE = "/:@!$&'()*+,;=~%"

QueryItems = List[Tuple[str, str]]


@dataclass
class UpstreamRequestSpec:
    method: str
    path: str
    query: QueryItems
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    url: str = ""
    cache_key: str = ""


def build_upstream_url(base: str, path: str, params: Iterable[Tuple[str, str]]) -> Tuple[str, QueryItems]:
    """Join ``path`` onto ``base`` and merge query parameters.

    Query values already present on ``base`` are defaults; a key sent inbound
    replaces every default for that key. Repeated inbound keys are kept.
    """
    split = urlsplit(base)
    full_path = split.path.rstrip("/") + "/" + path.lstrip("/")

    inbound = list(params)
    inbound_keys = {key for key, _ in inbound}

    query: QueryItems = []
    placed = set()
    for key, value in parse_qsl(split.query, keep_blank_values=True):
        if key not in inbound_keys:
            query.append((key, value))
        elif key not in placed:
            query.extend(item for item in inbound if item[0] == key)
            placed.add(key)
    query.extend(item for item in inbound if item[0] not in placed)

    url = urlunsplit((split.scheme, split.netloc, quote(full_path, safe=_PATH_SAFE), urlencode(query), ""))
    return url, query


def credential_scope(headers: Dict[str, str], credential_header: str) -> str:
    """Cache namespace for one outbound credential: tenant label plus key digest."""
    tenant = headers.get(TENANT_HEADER, "")
    key = headers.get(credential_header, "")
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16] if key else "-"
    return f"{tenant}:{digest}"


def _redacted(spec: UpstreamRequestSpec) -> str:
    if not any(key == API_KEY_QUERY_PARAM for key, _ in spec.query):
        return spec.url
    query = [(key, "***" if key == API_KEY_QUERY_PARAM else value) for key, value in spec.query]
    split = urlsplit(spec.url)
    return urlunsplit((split.scheme, split.netloc, split.path, urlencode(query), ""))


class ForwardingProxy:
    """Forward ``/proxy/*`` requests to the configured upstream."""

    def __init__(
        self,
        config: ProxyConfig,
        tenant_map: TenantKeyMap,
        resolver: KeyResolver,
        cache: ResponseCache,
        client: UpstreamClient,
        *,
        metrics: Optional[MetricsCollector] = None,
        error_reporter: Optional[ErrorReporter] = None,
        mount_prefix: str = MOUNT_PREFIX,
    ):
        self.config = config
        self.tenant_map = tenant_map
        self.resolver = resolver
        self.cache = cache
        self.client = client
        self.metrics = metrics
        self.error_reporter = error_reporter or ErrorReporter()
        self.mount_prefix = mount_prefix.rstrip("/")
        self.logger = get_logger("proxy.forwarder")

    async def handle(self, request: Request) -> Response:
        """Forward one inbound request; always returns a response."""
        try:
            return await self._forward(request)
        except ProxyError as exc:
            if isinstance(exc, (UpstreamNotConfiguredError, MissingCredentialError, InvalidRequestBodyError)):
                self._count("proxy_rejections_total", reason=exc.code.lower())
            return self._error_response(exc)
        except Exception as exc:
            self.error_reporter.report(
                "Proxy forward error",
                exc,
                method=request.method,
                path=request.url.path,
                timeout=isinstance(exc, httpx.TimeoutException),
            )
            if self.metrics:
                self.metrics.record_error(type(exc).__name__)
            return self._error_response(ProxyFailureError())

    def preflight(self, request: Request) -> Response:
        """CORS preflight for the proxy mount."""
        origin = request.headers.get("origin")
        allowed_headers = ", ".join(
            ["Content-Type", self.config.public_api_key_header, TENANT_HEADER, "Authorization"]
        )
        headers = {
            "Access-Control-Allow-Origin": origin or "*",
            "Access-Control-Allow-Methods": PREFLIGHT_METHODS,
            "Access-Control-Allow-Headers": allowed_headers,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Max-Age": "600",
        }
        if origin:
            headers["Vary"] = "Origin"
        return Response(status_code=204, headers=headers)

    async def _forward(self, request: Request) -> Response:
        base = self.config.primary_api_base
        if not base:
            raise UpstreamNotConfiguredError()

        method = request.method.upper()
        spec = self._build_spec(request, base)

        credential = self.resolver.resolve(
            request.headers,
            request.query_params,
            self.tenant_map,
            self.config.public_api_key,
        )
        if self.tenant_map and credential.key is None:
            self.logger.info("Rejecting request without tenant or key", path=spec.path)
            raise MissingCredentialError()

        spec.headers = self._outbound_headers(request, credential)
        set_tenant_context(spec.headers.get(TENANT_HEADER))

        spec.cache_key = f"{credential_scope(spec.headers, self.config.public_api_key_header)}|{spec.url}"

        cacheable = method == "GET" and not self._bypass_requested(request)
        if cacheable:
            entry = self.cache.get_entry(spec.cache_key)
            if entry is not None:
                self._count("cache_hits_total", cache_type=CACHE_TYPE)
                self.logger.debug("Cache hit", upstream=_redacted(spec))
                return self._json_response(200, entry.data, self.cache.remaining_ttl(entry), cache_status="HIT")
            self._count("cache_misses_total", cache_type=CACHE_TYPE)

        spec.body = await self._outbound_body(request, method)

        self.logger.info(
            "Proxying",
            method=method,
            original=request.url.path,
            upstream=_redacted(spec),
            source=credential.source.value,
        )
        # Shielded so a client disconnect still lets the cache fill.
        task = asyncio.ensure_future(self._fetch_and_relay(spec, cacheable))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(self._report_detached_failure)
            raise

    def _report_detached_failure(self, task: "asyncio.Future[Response]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.error_reporter.report("Upstream request failed after client disconnect", exc)

    async def _fetch_and_relay(self, spec: UpstreamRequestSpec, cacheable: bool) -> Response:
        upstream = await self.client.fetch(spec.url, spec.method, spec.headers, spec.body)
        return self._relay(spec, upstream, cacheable)

    def _strip_mount(self, path: str) -> str:
        if self.mount_prefix and path.startswith(self.mount_prefix):
            path = path[len(self.mount_prefix):]
        return path or "/"

    def _build_spec(self, request: Request, base: str) -> UpstreamRequestSpec:
        path = self._strip_mount(request.url.path)
        # The still-encoded path keeps escapes such as %2F inside a segment.
        raw_path = request.scope.get("raw_path")
        upstream_path = self._strip_mount(raw_path.decode("latin-1")) if raw_path else path

        url, query = build_upstream_url(base, upstream_path, request.query_params.multi_items())
        return UpstreamRequestSpec(method=request.method.upper(), path=path, query=query, url=url)

    def _outbound_headers(self, request: Request, credential: ResolvedCredential) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}

        if credential.key:
            headers[self.config.public_api_key_header] = f"{self.config.public_api_key_prefix}{credential.key}"

        tenant = (request.headers.get(TENANT_HEADER) or "").strip() or credential.tenant
        if tenant:
            headers[TENANT_HEADER] = tenant
        elif self.tenant_map and credential.key:
            self.logger.warning(
                "Forwarding without tenant; key matches no configured tenant",
                source=credential.source.value,
            )

        content_type = request.headers.get("content-type")
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    @staticmethod
    def _bypass_requested(request: Request) -> bool:
        directives = request.headers.get("cache-control", "").lower()
        return "no-cache" in directives or "no-store" in directives

    @staticmethod
    async def _outbound_body(request: Request, method: str) -> Optional[bytes]:
        if method in ("GET", "HEAD"):
            return None
        raw = await request.body()
        if not raw:
            return None

        if "json" not in request.headers.get("content-type", "").lower():
            return raw

        try:
            parsed = json.loads(raw)
        except ValueError:
            raise InvalidRequestBodyError()
        if isinstance(parsed, (dict, list)) and not parsed:
            return None
        return json.dumps(parsed).encode("utf-8")

    def _relay(self, spec: UpstreamRequestSpec, upstream: httpx.Response, cacheable: bool) -> Response:
        status = upstream.status_code

        if status == 429:
            self.logger.warning("Upstream rate limited request", path=spec.path)
            raise UpstreamRateLimitError(retry_after=upstream.headers.get("retry-after"))

        if status in REDIRECT_STATUSES:
            headers = {}
            if upstream.headers.get("location"):
                headers["Location"] = upstream.headers["location"]
            return Response(
                content=upstream.content,
                status_code=status,
                headers=headers,
                media_type=upstream.headers.get("content-type"),
            )

        if not 200 <= status < 300:
            self.logger.warning(
                "Upstream returned error status",
                method=spec.method,
                path=spec.path,
                status_code=status,
                body=upstream.text[:500],
            )
            raise UpstreamStatusError(status, body=upstream.text)

        try:
            data: Any = upstream.json()
        except ValueError:
            return Response(
                content=upstream.content,
                status_code=status,
                media_type=upstream.headers.get("content-type") or "text/plain",
            )

        if is_product_path(spec.path):
            data = map_payload(spec.path, data)

        max_age: Optional[float] = None
        if cacheable:
            max_age = ttl_for_path(
                spec.path,
                self.config.cache_ttl_list_seconds,
                self.config.cache_ttl_detail_seconds,
            )
            self.cache.set(spec.cache_key, data, max_age)
            if self.metrics:
                self.metrics.set_gauge("cache_entries", len(self.cache), cache_type=CACHE_TYPE)

        return self._json_response(status, data, max_age, cache_status="MISS" if cacheable else None)

    @staticmethod
    def _json_response(status: int, data: Any, max_age: Optional[float], cache_status: Optional[str] = None) -> Response:
        headers = {
            "Cache-Control": f"public, max-age={int(max_age)}" if max_age is not None else "no-store",
        }
        if cache_status:
            headers["X-Cache"] = cache_status
        return JSONResponse(status_code=status, content=data, headers=headers)

    @staticmethod
    def _error_response(exc: ProxyError) -> Response:
        headers = {}
        if isinstance(exc, UpstreamRateLimitError) and exc.retry_after:
            headers["Retry-After"] = exc.retry_after
        return JSONResponse(status_code=exc.status_code, content=exc.to_content(), headers=headers)

    def _count(self, metric: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric, **labels)
