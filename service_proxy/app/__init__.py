"""
Catalogue edge proxy service package.

The service fronts a third-party product catalogue API for a small static
site:
- Forwarding: /proxy/* is relayed to the primary upstream base
- Credentials: per-tenant upstream keys resolved server-side and injected
- Caching: bounded in-memory TTL/LRU cache for GET responses
- Site: static pages with client configuration injected into <head>

Structure:
- app.main: ProxyService, route wiring, create_app().
- app.credentials: KeyResolver and the tenant key map.
- app.caching: ResponseCache and TTL classes.
- app.adapters: upstream HTTP client with redirect following.
- app.domain: product normalization.
- app.proxy: ForwardingProxy.
- app.site: static files and HTML meta injection.
"""
