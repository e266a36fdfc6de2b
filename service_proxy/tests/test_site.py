"""
Tests for static site serving and HTML meta injection.
"""

import pytest
from fastapi.testclient import TestClient

from service_proxy.app.credentials.resolver import TenantKeyMap
from service_proxy.app.main import create_app
from service_proxy.app.site.pages import client_api_base, inject_meta
from shared.test_helpers import make_config

PAGE = """<!DOCTYPE html>
<html>
<head>
    <meta name="public-api-base" content="http://stale">
    <title>Catalogue</title>
</head>
<body>catalogue</body>
</html>
"""


@pytest.fixture
def site_root(tmp_path):
    (tmp_path / "index.html").write_text(PAGE, encoding="utf-8")
    (tmp_path / "catalogue.html").write_text(PAGE.replace("catalogue</body>", "list</body>"), encoding="utf-8")
    static = tmp_path / "static"
    (static / "js").mkdir(parents=True)
    (static / "data").mkdir()
    (static / "js" / "main.js").write_text("console.log('hi');", encoding="utf-8")
    (static / "data" / "public_routes.json").write_text('{"routes": []}', encoding="utf-8")
    (tmp_path / "favicon.ico").write_bytes(b"\x00\x00")
    return tmp_path


def site_client(site_root, **overrides) -> TestClient:
    return TestClient(create_app(make_config(site_root=str(site_root), **overrides)))


class TestInjectMeta:
    """Test cases for inject_meta."""

    def test_replaces_existing_meta(self):
        html = inject_meta(PAGE, "/proxy")

        assert 'content="http://stale"' not in html
        assert html.count('name="public-api-base"') == 1
        assert '<head>\n    <meta name="public-api-base" content="/proxy">' in html

    def test_tenant_meta(self):
        html = inject_meta(PAGE, "/proxy", tenant="acme")
        assert '<meta name="public-tenant" content="acme">' in html

    def test_head_with_attributes(self):
        html = inject_meta('<html><head lang="en"></head></html>', "https://api.example.com")
        assert html.startswith('<html><head lang="en">\n    <meta name="public-api-base"')

    def test_attribute_escaping(self):
        html = inject_meta("<head></head>", 'x" onload="evil')
        assert 'content="x&quot; onload=&quot;evil"' in html


class TestClientApiBase:
    """Test cases for the browser-facing API base."""

    def test_proxy_when_key_configured(self):
        config = make_config(public_api_key="secret")
        assert client_api_base(config, TenantKeyMap()) == "/proxy"

    def test_proxy_when_tenants_configured(self):
        assert client_api_base(make_config(), TenantKeyMap({"acme": "k1"})) == "/proxy"

    def test_upstream_when_no_credentials(self):
        config = make_config(public_api_base="https://a.example.com,https://b.example.com")
        assert client_api_base(config, TenantKeyMap()) == "https://a.example.com"


class TestSiteRoutes:
    """Test cases for the site routes."""

    def test_index_page(self, site_root):
        client = site_client(site_root, public_api_key="secret", public_tenant="acme")

        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-cache"
        assert '<meta name="public-api-base" content="/proxy">' in response.text
        assert '<meta name="public-tenant" content="acme">' in response.text
        assert "secret" not in response.text

    def test_pretty_url(self, site_root):
        client = site_client(site_root)

        response = client.get("/catalogue")

        assert response.status_code == 200
        assert "list" in response.text
        assert 'content="https://catalogue.example.com"' in response.text

    def test_legacy_html_redirect_keeps_query(self, site_root):
        client = site_client(site_root)

        response = client.get("/catalogue.html?q=panadol", follow_redirects=False)

        assert response.status_code == 301
        assert response.headers["location"] == "/catalogue?q=panadol"

    def test_index_html_redirects_to_root(self, site_root):
        client = site_client(site_root)

        response = client.get("/index.html", follow_redirects=False)

        assert response.status_code == 301
        assert response.headers["location"] == "/"

    def test_static_javascript(self, site_root):
        client = site_client(site_root)

        response = client.get("/static/js/main.js")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/javascript; charset=utf-8"
        assert response.headers["cache-control"] == "public, max-age=3600"

    def test_static_json_short_cache(self, site_root):
        client = site_client(site_root)

        response = client.get("/static/data/public_routes.json")

        assert response.json() == {"routes": []}
        assert response.headers["cache-control"] == "public, max-age=300"

    def test_root_asset(self, site_root):
        client = site_client(site_root)

        response = client.get("/favicon.ico")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=3600"

    def test_missing_page(self, site_root):
        client = site_client(site_root)

        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.text == "404: File not found"

    def test_reserved_prefix_not_served_as_page(self, site_root):
        (site_root / "public").mkdir()
        (site_root / "public.html").write_text(PAGE, encoding="utf-8")
        client = site_client(site_root)

        assert client.get("/public/products").status_code == 404

    def test_path_traversal_refused(self, site_root, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside")
        (outside / "secret.txt").write_text("nope", encoding="utf-8")
        client = site_client(site_root)

        response = client.get(f"/..%2F{outside.name}%2Fsecret.txt")

        assert response.status_code == 404
