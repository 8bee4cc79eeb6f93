"""
Cache key construction and entity type detection.

Keys look like ``storefront:<prefix>:<param>=<value>&...`` with params
sorted by name, so the same inputs always produce the same key.
"""

import json
import re
from typing import Any, Mapping, Optional
from urllib.parse import quote

KEY_NAMESPACE = "storefront"
MAX_VALUE_LENGTH = 100

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

# Field that identifies an entity type, checked in order
_ENTITY_MARKERS = (
    (("article_id", "article_title"), "blog_article"),
    (("template_id", "template_name"), "template"),
    (("application_id", "application_name"), "application"),
    (("order_id", "order_payment_status"), "order"),
    (("platform_id", "platform_name"), "platform"),
    (("public_id", "cdn_url"), "cdn_asset"),
)


def _clean_value(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)

    if len(text) > MAX_VALUE_LENGTH:
        text = text[:MAX_VALUE_LENGTH - 3] + "..."

    return quote(text, safe="")


def generate_cache_key(prefix: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a deterministic cache key.

    None values are dropped, param names are stripped to [A-Za-z0-9_-],
    values longer than 100 characters are truncated and every value is
    percent-encoded.

    Example:
        >>> generate_cache_key("templates", {"page": 2, "category": "shop"})
        'storefront:templates:category=shop&page=2'
    """
    clean = {}
    for name, value in (params or {}).items():
        if value is None:
            continue
        clean[_UNSAFE_CHARS.sub("", str(name))] = _clean_value(value)

    query = "&".join(f"{name}={clean[name]}" for name in sorted(clean))
    safe_prefix = _UNSAFE_CHARS.sub("", str(prefix))

    return f"{KEY_NAMESPACE}:{safe_prefix}:{query or 'default'}"


def detect_entity_type(value: Any) -> str:
    """
    Guess the entity type from the shape of a cached value.

    Returns "primitive" for scalars, "<type>_list" for lists and
    "generic" when no marker field is present.
    """
    if isinstance(value, list):
        if value:
            return f"{detect_entity_type(value[0])}_list"
        return "empty_list"

    if not isinstance(value, Mapping):
        return "primitive"

    for fields, entity_type in _ENTITY_MARKERS:
        if any(value.get(f) for f in fields):
            return entity_type

    return "generic"
