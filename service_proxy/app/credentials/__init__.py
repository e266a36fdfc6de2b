"""
Credential resolution for proxied requests.
"""

from .resolver import (
    API_KEY_QUERY_PARAM,
    TENANT_HEADER,
    CredentialSource,
    KeyResolver,
    ResolvedCredential,
    TenantKeyMap,
    load_tenant_key_map,
)

__all__ = [
    "API_KEY_QUERY_PARAM",
    "TENANT_HEADER",
    "CredentialSource",
    "KeyResolver",
    "ResolvedCredential",
    "TenantKeyMap",
    "load_tenant_key_map",
]
