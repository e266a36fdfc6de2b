"""
Forwarding proxy for the upstream catalogue API.
"""

from .forwarder import MOUNT_PREFIX, ForwardingProxy, UpstreamRequestSpec, build_upstream_url

__all__ = ["MOUNT_PREFIX", "ForwardingProxy", "UpstreamRequestSpec", "build_upstream_url"]
