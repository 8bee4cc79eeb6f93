"""
HTTP caching headers per resource type.

Builds Cache-Control / CDN-Cache-Control / Cache-Tag headers from a
policy table. Unknown resource types use the static_pages policy.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HttpCachePolicy(BaseModel):
    """Browser and CDN caching rules for one resource type."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_age: int = Field(default=0, ge=0)
    stale_while_revalidate: int = Field(default=0, ge=0)
    s_max_age: Optional[int] = Field(default=None, ge=0)
    private: bool = False
    must_revalidate: bool = False
    immutable: bool = False
    no_store: bool = False


DEFAULT_RESOURCE_TYPE = "static_pages"

HTTP_CACHE_POLICIES: Dict[str, HttpCachePolicy] = {
    # Critical data
    "server_actions": HttpCachePolicy(no_store=True, private=True, must_revalidate=True),
    "orders": HttpCachePolicy(max_age=30, stale_while_revalidate=15, private=True, must_revalidate=True, s_max_age=0),
    "user_sessions": HttpCachePolicy(max_age=120, stale_while_revalidate=30, private=True, must_revalidate=True, s_max_age=0),
    # Catalogue
    "templates": HttpCachePolicy(max_age=600, stale_while_revalidate=300, s_max_age=1800),
    "single_template": HttpCachePolicy(max_age=900, stale_while_revalidate=600, s_max_age=3600),
    "applications": HttpCachePolicy(max_age=900, stale_while_revalidate=300, s_max_age=1800),
    "single_application": HttpCachePolicy(max_age=1200, stale_while_revalidate=600, s_max_age=7200),
    "platforms": HttpCachePolicy(max_age=300, stale_while_revalidate=120, must_revalidate=True, s_max_age=600),
    # Blog
    "blog_articles": HttpCachePolicy(max_age=300, stale_while_revalidate=120, s_max_age=900),
    "single_blog_article": HttpCachePolicy(max_age=1800, stale_while_revalidate=900, s_max_age=7200),
    # CDN media
    "cdn_images": HttpCachePolicy(max_age=3600, stale_while_revalidate=1800, s_max_age=86400),
    "cdn_signatures": HttpCachePolicy(max_age=300, private=True, must_revalidate=True, s_max_age=0),
    # Static
    "static_assets": HttpCachePolicy(max_age=7 * 86400, s_max_age=30 * 86400, immutable=True),
    "static_pages": HttpCachePolicy(max_age=900, stale_while_revalidate=600, s_max_age=3600),
    # Monitoring endpoints
    "monitoring": HttpCachePolicy(no_store=True, private=True, must_revalidate=True),
}


def cache_control_headers(resource_type: str) -> Dict[str, str]:
    """
    Response headers for a resource type.

    Example:
        >>> cache_control_headers("orders")["Cache-Control"]
        'max-age=30, stale-while-revalidate=15, private, must-revalidate'
    """
    policy = HTTP_CACHE_POLICIES.get(resource_type)
    if policy is None:
        resource_type = DEFAULT_RESOURCE_TYPE
        policy = HTTP_CACHE_POLICIES[DEFAULT_RESOURCE_TYPE]

    if policy.no_store:
        return {
            "Cache-Control": "no-store, no-cache, must-revalidate",
            "CDN-Cache-Control": "no-store",
        }

    directives = [f"max-age={policy.max_age}"]
    if policy.stale_while_revalidate:
        directives.append(f"stale-while-revalidate={policy.stale_while_revalidate}")
    directives.append("private" if policy.private else "public")
    if policy.must_revalidate:
        directives.append("must-revalidate")
    if policy.immutable:
        directives.append("immutable")

    headers = {
        "Cache-Control": ", ".join(directives),
        "Cache-Tag": resource_type,
    }

    if policy.s_max_age and not policy.private:
        headers["CDN-Cache-Control"] = f"s-maxage={policy.s_max_age}"

    return headers
