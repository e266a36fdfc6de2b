"""
Upstream credential resolution for the proxy.

Each inbound request is mapped to at most one upstream credential by walking
an ordered list of strategies; the first strategy that produces a result wins:

1. the credential header sent by the caller
2. the ``api_key`` query parameter
3. the ``X-Tenant`` header, looked up in the tenant key map
4. the process-wide default credential
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from shared.logging import get_logger

TENANT_HEADER = "X-Tenant"
API_KEY_QUERY_PARAM = "api_key"

logger = get_logger("proxy.credentials")


class CredentialSource(str, Enum):
    """Where a resolved credential came from."""

    INBOUND_HEADER = "inbound-header"
    QUERY_PARAM = "query-param"
    TENANT_HEADER_LOOKUP = "tenant-header-lookup"
    GLOBAL_DEFAULT = "global-default"
    NONE = "none"


@dataclass(frozen=True)
class ResolvedCredential:
    key: Optional[str]
    source: CredentialSource
    tenant: Optional[str] = None


NO_CREDENTIAL = ResolvedCredential(key=None, source=CredentialSource.NONE, tenant=None)


class TenantKeyMap:
    """Immutable tenant -> credential mapping loaded at startup."""

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        self._entries: Tuple[Tuple[str, str], ...] = tuple((entries or {}).items())
        self._exact: Dict[str, str] = dict(self._entries)
        self._lowered: Dict[str, str] = {}
        for tenant, key in self._entries:
            self._lowered.setdefault(tenant.lower(), key)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __iter__(self) -> Iterator[str]:
        return (tenant for tenant, _ in self._entries)

    def lookup(self, tenant: str) -> Optional[Tuple[str, str]]:
        """Return ``(tenant, key)`` for an exact match, else a lowercased match."""
        if tenant in self._exact:
            return tenant, self._exact[tenant]
        lowered = tenant.lower()
        if lowered in self._lowered:
            for name, key in self._entries:
                if name.lower() == lowered:
                    return name, key
        return None

    def tenant_for_key(self, key: str) -> Optional[str]:
        """Reverse lookup; the first tenant configured with ``key`` wins."""
        for tenant, candidate in self._entries:
            if candidate == key:
                return tenant
        return None


def load_tenant_key_map(raw: Optional[str]) -> TenantKeyMap:
    """Parse the JSON tenant map from configuration.

    Anything malformed is logged and treated as an empty map.
    """
    if not raw or not raw.strip():
        return TenantKeyMap()

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Tenant key map is not valid JSON; ignoring it", error=str(exc))
        return TenantKeyMap()

    if not isinstance(parsed, dict):
        logger.warning("Tenant key map must be a JSON object; ignoring it", type=type(parsed).__name__)
        return TenantKeyMap()

    entries: Dict[str, str] = {}
    for tenant, key in parsed.items():
        if not isinstance(key, str) or not key:
            logger.warning("Tenant key map has a non-string credential; ignoring it", tenant=tenant)
            return TenantKeyMap()
        entries[str(tenant)] = key

    logger.info("Loaded tenant key map", tenants=list(entries))
    return TenantKeyMap(entries)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for header_name, value in headers.items():
        if header_name.lower() == wanted and value and value.strip():
            return value.strip()
    return None


Strategy = Callable[["ResolutionContext"], Optional[ResolvedCredential]]


@dataclass(frozen=True)
class ResolutionContext:
    headers: Mapping[str, str]
    query: Mapping[str, str]
    tenant_map: TenantKeyMap
    global_default: Optional[str]
    credential_header: str


def from_credential_header(ctx: ResolutionContext) -> Optional[ResolvedCredential]:
    key = _header(ctx.headers, ctx.credential_header)
    if key is None:
        return None
    return ResolvedCredential(key, CredentialSource.INBOUND_HEADER, ctx.tenant_map.tenant_for_key(key))


def from_query_param(ctx: ResolutionContext) -> Optional[ResolvedCredential]:
    key = ctx.query.get(API_KEY_QUERY_PARAM)
    if not key or not key.strip():
        return None
    key = key.strip()
    return ResolvedCredential(key, CredentialSource.QUERY_PARAM, ctx.tenant_map.tenant_for_key(key))


def from_tenant_header(ctx: ResolutionContext) -> Optional[ResolvedCredential]:
    tenant = _header(ctx.headers, TENANT_HEADER)
    if tenant is None:
        return None
    match = ctx.tenant_map.lookup(tenant)
    if match is None:
        return None
    name, key = match
    return ResolvedCredential(key, CredentialSource.TENANT_HEADER_LOOKUP, name)


def from_global_default(ctx: ResolutionContext) -> Optional[ResolvedCredential]:
    if not ctx.global_default:
        return None
    key = ctx.global_default
    return ResolvedCredential(key, CredentialSource.GLOBAL_DEFAULT, ctx.tenant_map.tenant_for_key(key))


DEFAULT_STRATEGIES: List[Strategy] = [
    from_credential_header,
    from_query_param,
    from_tenant_header,
    from_global_default,
]


class KeyResolver:
    """Apply the credential strategies in order; the first hit wins."""

    def __init__(self, credential_header: str = "X-API-Key", strategies: Optional[List[Strategy]] = None):
        self.credential_header = credential_header
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def resolve(
        self,
        headers: Mapping[str, str],
        query: Mapping[str, str],
        tenant_map: TenantKeyMap,
        global_default: Optional[str] = None,
    ) -> ResolvedCredential:
        ctx = ResolutionContext(
            headers=headers,
            query=query,
            tenant_map=tenant_map,
            global_default=global_default or None,
            credential_header=self.credential_header,
        )
        for strategy in self.strategies:
            result = strategy(ctx)
            if result is not None:
                return result
        return NO_CREDENTIAL
