"""
Adapters for external services used by the proxy.
"""

from .upstream_client import REDIRECT_STATUSES, UpstreamClient

__all__ = ["REDIRECT_STATUSES", "UpstreamClient"]
