"""
Static site and HTML configuration injection.
"""

from .pages import SitePages, client_api_base, inject_meta

__all__ = ["SitePages", "client_api_base", "inject_meta"]
