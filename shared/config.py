"""
Shared configuration management for the catalogue edge proxy.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)


class ProxyConfig(BaseConfig):
    """Configuration for the credential-injecting proxy and the site it serves."""

    service_name: str = Field(default="proxy")

    # Upstream catalogue API
    public_api_base: str = Field(default="")
    public_api_key: str = Field(default="")
    public_api_key_header: str = Field(default="X-API-Key")
    public_api_key_prefix: str = Field(default="")

    # Tenants
    public_tenant_keys: str = Field(default="")
    public_tenant: str = Field(default="")

    # Forwarding
    proxy_timeout_seconds: float = Field(default=15.0, gt=0)
    proxy_max_redirects: int = Field(default=3, ge=0)
    startup_probe: bool = Field(default=True)
    startup_probe_path: str = Field(default="/public/products?per_page=1")

    # Response cache
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_ttl_list_seconds: float = Field(default=600.0, gt=0)
    cache_ttl_detail_seconds: float = Field(default=300.0, gt=0)

    # Static site
    site_root: str = Field(default="site")

    @property
    def api_bases(self) -> List[str]:
        """Configured upstream bases, in order."""
        return [part.strip() for part in self.public_api_base.split(",") if part.strip()]

    @property
    def primary_api_base(self) -> str:
        """The base every proxied request is sent to."""
        bases = self.api_bases
        return bases[0] if bases else ""


def get_config(**overrides) -> ProxyConfig:
    """Get configuration for the proxy service."""
    return ProxyConfig(**overrides)
