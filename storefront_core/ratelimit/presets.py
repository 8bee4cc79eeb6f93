"""
Rate limit presets, violation tiers and localized messages.

Presets can be overridden from configuration with a rate string in the
``limits`` notation ("30/minute", "5 per 10 minutes").
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

import limits

from storefront_core.core.errors import ConfigurationError
from storefront_core.ratelimit.models import RateLimitPreset, Severity, ViolationLevel

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "PUBLIC_PAGES"

PRESETS: Dict[str, RateLimitPreset] = {
    preset.name: preset
    for preset in (
        RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=50),
        RateLimitPreset(name="ORDER_ACTIONS", window_seconds=300, max_requests=3, skip_successful_requests=True),
        RateLimitPreset(name="CONTACT_FORM", window_seconds=600, max_requests=5, skip_successful_requests=True),
        RateLimitPreset(name="IMAGE_REQUESTS", window_seconds=120, max_requests=100, skip_failed_requests=True),
        RateLimitPreset(name="BLOG_API", window_seconds=60, max_requests=30),
        RateLimitPreset(name="TEMPLATES_API", window_seconds=60, max_requests=40),
        RateLimitPreset(name="PRESENTATION_INTERACTIONS", window_seconds=60, max_requests=200),
    )
}

# Ascending thresholds; the highest tier reached wins
VIOLATION_LEVELS: Tuple[ViolationLevel, ...] = (
    ViolationLevel(Severity.LOW, threshold=1.3, block_seconds=0, log_level=logging.INFO),
    ViolationLevel(Severity.MEDIUM, threshold=2.5, block_seconds=3 * 60, log_level=logging.WARNING),
    ViolationLevel(Severity.HIGH, threshold=5, block_seconds=15 * 60, log_level=logging.WARNING),
    ViolationLevel(Severity.SEVERE, threshold=10, block_seconds=60 * 60, log_level=logging.ERROR),
)

SERVER_ACTION_PRESETS = {
    "order": "ORDER_ACTIONS",
    "contact": "CONTACT_FORM",
    "general": "PUBLIC_PAGES",
}

API_PRESETS = {
    "blog": "BLOG_API",
    "templates": "TEMPLATES_API",
    "images": "IMAGE_REQUESTS",
    "presentation": "PRESENTATION_INTERACTIONS",
}

MESSAGES: Dict[str, Dict[str, str]] = {
    "fr": {
        "error": "Limite de requêtes dépassée",
        "blocked_error": "Accès temporairement restreint",
        "blocked": "Votre accès est temporairement restreint en raison d'un usage abusif.",
        "order": "Trop de tentatives de commande. Veuillez patienter avant de réessayer.",
        "contact": "Trop de messages envoyés. Veuillez patienter avant de renvoyer un message.",
        "templates": "Trop de requêtes sur nos templates. Veuillez ralentir votre navigation.",
        "PUBLIC_PAGES": "Trop de requêtes sur cette page, veuillez réessayer plus tard",
        "ORDER_ACTIONS": "Trop de tentatives de commande, veuillez patienter avant de réessayer",
        "CONTACT_FORM": "Trop de messages envoyés, veuillez patienter avant de renvoyer",
        "IMAGE_REQUESTS": "Trop de requêtes d'images, veuillez réessayer plus tard",
        "BLOG_API": "Trop de requêtes sur le blog, veuillez réessayer plus tard",
        "TEMPLATES_API": "Trop de requêtes sur les templates, veuillez réessayer plus tard",
        "PRESENTATION_INTERACTIONS": "Trop d'interactions, veuillez ralentir",
    },
    "en": {
        "error": "Rate limit exceeded",
        "blocked_error": "Access temporarily restricted",
        "blocked": "Your access is temporarily restricted due to abusive usage.",
        "order": "Too many order attempts. Please wait before trying again.",
        "contact": "Too many messages sent. Please wait before sending another message.",
        "templates": "Too many requests on our templates. Please slow down.",
        "PUBLIC_PAGES": "Too many requests on this page, please try again later",
        "ORDER_ACTIONS": "Too many order attempts, please wait before trying again",
        "CONTACT_FORM": "Too many messages sent, please wait before sending again",
        "IMAGE_REQUESTS": "Too many image requests, please try again later",
        "BLOG_API": "Too many requests on the blog, please try again later",
        "TEMPLATES_API": "Too many requests on templates, please try again later",
        "PRESENTATION_INTERACTIONS": "Too many interactions, please slow down",
    },
}


def violation_level(ratio: float) -> ViolationLevel:
    """Highest tier whose threshold the ratio reaches (LOW below every threshold)."""
    level = VIOLATION_LEVELS[0]
    for candidate in VIOLATION_LEVELS:
        if ratio >= candidate.threshold:
            level = candidate
    return level


def preset_from_rate(name: str, rate: str, base: Optional[RateLimitPreset] = None) -> RateLimitPreset:
    """
    Build a preset from a ``limits`` rate string.

    Skip flags are inherited from ``base``.
    """
    try:
        item = limits.parse(rate)
    except ValueError as e:
        raise ConfigurationError(f"Invalid rate limit for {name}: {rate!r} ({e})") from e

    return RateLimitPreset(
        name=name,
        window_seconds=item.get_expiry(),
        max_requests=item.amount,
        skip_successful_requests=base.skip_successful_requests if base else False,
        skip_failed_requests=base.skip_failed_requests if base else False,
    )


def build_presets(overrides: Optional[Mapping[str, str]] = None) -> Dict[str, RateLimitPreset]:
    """Default presets with configured overrides applied."""
    presets = dict(PRESETS)
    for name, rate in (overrides or {}).items():
        name = name.upper()
        presets[name] = preset_from_rate(name, rate, presets.get(name))
        logger.info(
            f"[RATE LIMIT] Preset {name} overridden: "
            f"{presets[name].max_requests} per {presets[name].window_seconds:g}s"
        )
    return presets


def messages_for(locale: str) -> Dict[str, str]:
    return MESSAGES.get(locale, MESSAGES["fr"])


def contextual_message(path: str, preset: str, locale: str = "fr") -> str:
    """Rejection message tailored to the endpoint category."""
    messages = messages_for(locale)
    if "/order" in path or "createOrder" in path:
        return messages["order"]
    if "/contact" in path:
        return messages["contact"]
    if "/templates" in path:
        return messages["templates"]
    return messages.get(preset, messages[DEFAULT_PRESET])
