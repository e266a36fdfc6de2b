"""
Domain helpers for the proxy.
"""

from .product_mapper import is_product_path, map_payload, map_product

__all__ = ["is_product_path", "map_payload", "map_product"]
