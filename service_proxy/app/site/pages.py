"""
Static site serving with client configuration injected into HTML pages.
"""

import os
import re
from pathlib import Path, PurePosixPath
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.types import Scope

from shared.config import ProxyConfig
from shared.logging import get_logger

from ..credentials.resolver import TenantKeyMap
from ..proxy.forwarder import MOUNT_PREFIX

SKIP_PREFIXES = ("/public", "/static", "/api", MOUNT_PREFIX)
ASSET_MAX_AGE = 3600
JSON_MAX_AGE = 300

_EXISTING_META = re.compile(r'<meta\s+name="public-(?:api-base|tenant)"[^>]*>\s*', re.IGNORECASE)
_HEAD_OPEN = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
_HTML_SUFFIX = re.compile(r"\.html$", re.IGNORECASE)


def _attr(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;")


def client_api_base(config: ProxyConfig, tenant_map: TenantKeyMap) -> str:
    """The API base browsers should call.

    With any credential configured the browser goes through the proxy so the
    key never leaves the server; otherwise it may call upstream directly.
    """
    if config.public_api_key or tenant_map:
        return MOUNT_PREFIX
    return config.primary_api_base or config.public_api_base


def inject_meta(html: str, api_base: str, tenant: Optional[str] = None) -> str:
    """Replace the client configuration meta tags right after ``<head>``."""
    tags = [f'<meta name="public-api-base" content="{_attr(api_base)}">']
    if tenant:
        tags.append(f'<meta name="public-tenant" content="{_attr(tenant)}">')
    block = "".join(f"\n    {tag}" for tag in tags)

    updated = _EXISTING_META.sub("", html)
    return _HEAD_OPEN.sub(lambda match: match.group(0) + block, updated, count=1)


def _cache_headers(path: str) -> dict:
    ext = os.path.splitext(path)[1].lower()
    if ext == ".css":
        return {"Content-Type": "text/css; charset=utf-8", "Cache-Control": f"public, max-age={ASSET_MAX_AGE}"}
    if ext == ".js":
        return {
            "Content-Type": "application/javascript; charset=utf-8",
            "Cache-Control": f"public, max-age={ASSET_MAX_AGE}",
        }
    if ext == ".json":
        return {"Content-Type": "application/json; charset=utf-8", "Cache-Control": f"public, max-age={JSON_MAX_AGE}"}
    if ext == ".html":
        return {"Cache-Control": "no-cache"}
    return {"Cache-Control": f"public, max-age={ASSET_MAX_AGE}"}


class SiteStaticFiles(StaticFiles):
    """StaticFiles with per-extension content types and cache lifetimes."""

    def file_response(self, full_path, stat_result, scope: Scope, status_code: int = 200) -> Response:
        response = super().file_response(full_path, stat_result, scope, status_code)
        for name, value in _cache_headers(str(full_path)).items():
            response.headers[name] = value
        return response


class SitePages:
    """Serves the static site rooted at ``root``."""

    def __init__(self, root: str, config: ProxyConfig, tenant_map: TenantKeyMap):
        self.root = Path(root).resolve()
        self.config = config
        self.tenant_map = tenant_map
        self.logger = get_logger("proxy.site")

    @property
    def api_base(self) -> str:
        return client_api_base(self.config, self.tenant_map)

    def register(self, app: FastAPI) -> None:
        """Mount static assets and the catch-all page route; call after all other routes."""
        static_dir = self.root / "static"
        if static_dir.is_dir():
            app.mount("/static", SiteStaticFiles(directory=str(static_dir)), name="static")
        else:
            self.logger.info("No static directory; /static disabled", directory=str(static_dir))

        @app.api_route("/{page_path:path}", methods=["GET", "HEAD"], include_in_schema=False)
        def serve_site(request: Request, page_path: str) -> Response:
            return self.serve(request, page_path)

    def serve(self, request: Request, page_path: str) -> Response:
        path = "/" + page_path.lstrip("/")

        if _HTML_SUFFIX.search(path):
            target = _HTML_SUFFIX.sub("", path) or "/"
            if target.endswith("/index"):
                target = target[: -len("index")]
            query = request.url.query
            return RedirectResponse(target + (f"?{query}" if query else ""), status_code=301)

        if not PurePosixPath(path).suffix:
            if path.startswith(SKIP_PREFIXES):
                return self.not_found()
            page = self.page_file(path)
            if page is None:
                return self.not_found()
            html = inject_meta(page.read_text(encoding="utf-8"), self.api_base, self.config.public_tenant or None)
            return HTMLResponse(html, headers={"Cache-Control": "no-cache"})

        asset = self.resolve(path.lstrip("/"))
        if asset is None:
            return self.not_found()
        return FileResponse(asset, headers=_cache_headers(str(asset)))

    def page_file(self, path: str) -> Optional[Path]:
        stripped = path.strip("/")
        candidate = "index.html" if not stripped else stripped + ".html"
        page = self.resolve(candidate)
        if page is None and stripped:
            page = self.resolve(stripped + "/index.html")
        return page

    def resolve(self, relative: str) -> Optional[Path]:
        """Resolve ``relative`` inside the site root; ``None`` if missing or outside it."""
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            self.logger.warning("Refusing path outside site root", path=relative)
            return None
        if not candidate.is_file():
            return None
        return candidate

    @staticmethod
    def not_found() -> Response:
        return PlainTextResponse("404: File not found", status_code=404)
