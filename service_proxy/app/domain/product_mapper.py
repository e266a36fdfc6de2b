"""
Normalization of upstream product records into the catalogue page's shape.
"""

import re
from typing import Any, Dict, List, Optional

UNCATEGORIZED = "Uncategorized"

_PRODUCT_LIST = re.compile(r"(^|/)products/?$")
_PRODUCT_DETAIL = re.compile(r"(^|/)products/\d+/?$")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _price(prices: Any, price_type: str) -> Optional[Any]:
    if not isinstance(prices, list):
        return None
    for entry in prices:
        if isinstance(entry, dict) and entry.get("price_type") == price_type:
            value = entry.get("value")
            if value:
                return value
    return None


def _image_urls(raw: Dict[str, Any]) -> List[str]:
    explicit = raw.get("image_urls")
    if isinstance(explicit, list):
        return [url for url in explicit if isinstance(url, str)]

    images = raw.get("images")
    if not isinstance(images, list):
        return []
    urls = []
    for image in images:
        if isinstance(image, dict) and isinstance(image.get("url"), str):
            urls.append(image["url"])
        elif isinstance(image, str):
            urls.append(image)
    return urls


def _class_name(raw: Dict[str, Any]) -> str:
    explicit = _text(raw.get("class"))
    if explicit:
        return explicit
    category = raw.get("category")
    if isinstance(category, dict):
        name = _text(category.get("name"))
        if name:
            return name
    return UNCATEGORIZED


def map_product(raw: Any) -> Dict[str, Any]:
    """Reshape one upstream product. Never raises.

    ``generic`` and ``strength`` come from an explicit field first, then from
    the description (first word / the rest); with no description the name
    stands in for ``generic``.
    """
    if not isinstance(raw, dict):
        raw = {}

    name = _text(raw.get("name"))
    trade = name or _text(raw.get("trade"))
    description = _text(raw.get("description"))
    words = description.split()

    generic = _text(raw.get("generic"))
    if not generic:
        generic = words[0] if words else trade

    strength = _text(raw.get("strength"))
    if not strength and words:
        strength = " ".join(words[1:])

    fallback_price = raw.get("price") or None
    trade_price = _price(raw.get("prices"), "trade") or fallback_price or 0
    retail_price = _price(raw.get("prices"), "retail") or fallback_price

    return {
        "id": raw.get("id"),
        "name": name,
        "trade": trade,
        "generic": generic,
        "strength": strength,
        "description": description,
        "class": _class_name(raw),
        "category_id": raw.get("category_id"),
        "tradePrice": trade_price,
        "retailPrice": retail_price,
        "image_urls": _image_urls(raw),
    }


def is_product_path(path: str) -> bool:
    return bool(_PRODUCT_LIST.search(path) or _PRODUCT_DETAIL.search(path))


def map_payload(path: str, body: Any) -> Any:
    """Apply :func:`map_product` to product list/detail payloads; pass anything else through."""
    if _PRODUCT_DETAIL.search(path):
        if isinstance(body, dict) and isinstance(body.get("product"), dict):
            return {**body, "product": map_product(body["product"])}
        if isinstance(body, dict):
            return map_product(body)
        return body

    if _PRODUCT_LIST.search(path):
        if isinstance(body, list):
            return [map_product(item) for item in body]
        if isinstance(body, dict) and isinstance(body.get("products"), list):
            return {**body, "products": [map_product(item) for item in body["products"]]}

    return body
