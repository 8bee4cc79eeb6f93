"""
Unit tests for RateLimiter
Feature: rate-limiting

Covers the sliding window boundary, severity escalation and blocking,
fail-open behaviour, allowlisting, skip_* presets and maintenance.
"""
import pytest

from storefront_core.core.events import RateLimitBlocked, RateLimitViolated
from storefront_core.ratelimit.limiter import RateLimiter
from storefront_core.ratelimit.models import (
    RateLimitPreset,
    RejectionKind,
    RequestDescriptor,
    Severity,
)
from storefront_core.ratelimit.presets import PRESETS, build_presets


def limiter_with(clock, preset: RateLimitPreset, **kwargs) -> RateLimiter:
    presets = dict(PRESETS)
    presets[preset.name] = preset
    return RateLimiter(presets=presets, clock=clock, **kwargs)


@pytest.fixture
def limiter(clock, null_reporter, event_bus):
    preset = RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=5)
    return limiter_with(clock, preset, events=event_bus, error_reporter=null_reporter)


# =============================================================================
# Window boundary
# =============================================================================

class TestSlidingWindow:
    """Allow up to max_requests per window"""

    def test_requests_up_to_limit_allowed(self, limiter, make_request):
        request = make_request("/shop")

        for _ in range(5):
            assert limiter.check(request) is None

    def test_request_over_limit_rejected(self, limiter, make_request):
        request = make_request("/shop")
        for _ in range(5):
            limiter.check(request)

        rejection = limiter.check(request)

        assert rejection is not None
        assert rejection.status == 429
        assert rejection.kind == RejectionKind.RATE_LIMITED
        assert rejection.severity == Severity.LOW
        assert rejection.retry_after == 60
        assert rejection.reference

    def test_window_slides(self, limiter, make_request, clock):
        request = make_request("/shop")
        for _ in range(5):
            limiter.check(request)
            clock.advance(10)
        clock.advance(10)

        # Oldest attempt (t=0) leaves the window at t=60
        assert limiter.check(request) is None
        assert limiter.check(request) is not None

    def test_retry_after_tracks_oldest_blocking_attempt(self, limiter, make_request, clock):
        request = make_request("/shop")
        for _ in range(5):
            limiter.check(request)
            clock.advance(5)

        rejection = limiter.check(request)

        # attempts at 0,5,10,15,20 and now=25: the t=5 attempt frees a slot at 65
        assert rejection.retry_after == 40

    def test_keys_are_isolated_by_ip_and_path(self, limiter, make_request):
        for _ in range(5):
            limiter.check(make_request("/shop", ip="198.51.100.1"))

        assert limiter.check(make_request("/shop", ip="198.51.100.2")) is None
        assert limiter.check(make_request("/about", ip="198.51.100.1")) is None
        assert limiter.check(make_request("/shop", ip="198.51.100.1")) is not None

    def test_rejection_headers(self, limiter, make_request, clock):
        request = make_request("/shop")
        for _ in range(6):
            rejection = limiter.check(request)

        headers = rejection.headers()
        assert headers["Retry-After"] == "60"
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == str(int(clock.now + 60))

    def test_unknown_preset_uses_public_limits(self, limiter, make_request):
        request = make_request("/shop")
        for _ in range(5):
            assert limiter.check(request, "NOT_A_PRESET") is None

        assert limiter.check(request, "NOT_A_PRESET") is not None


# =============================================================================
# Severity and blocking
# =============================================================================

class TestEscalation:
    """Overage ratio tiers and IP blocks"""

    def test_severe_violation_blocks_ip(self, clock, null_reporter, event_bus, recorded_events, make_request):
        preset = RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=10)
        limiter = limiter_with(clock, preset, events=event_bus, error_reporter=null_reporter)
        request = make_request("/shop")

        for _ in range(99):
            limiter.check(request)
        assert not limiter.is_blocked("203.0.113.7")

        rejection = limiter.check(request)

        assert rejection.severity == Severity.SEVERE
        assert rejection.kind == RejectionKind.RATE_LIMITED
        assert rejection.retry_after >= 3600
        assert limiter.is_blocked("203.0.113.7")
        assert limiter.counters.blocks_created == 1

        blocked = [e for e in recorded_events if isinstance(e, RateLimitBlocked)]
        assert len(blocked) == 1
        assert blocked[0].ip == "203.0.xx.xx"

    def test_blocked_ip_rejected_on_every_path(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=10)
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        for _ in range(100):
            limiter.check(make_request("/shop"))

        rejection = limiter.check(make_request("/other-page"))

        assert rejection.kind == RejectionKind.BLOCKED
        assert rejection.is_blocked
        assert rejection.severity == Severity.SEVERE
        assert limiter.counters.blocked_requests == 1

    def test_block_expires(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=10)
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        for _ in range(100):
            limiter.check(make_request("/shop"))
        block = limiter.get_block("203.0.113.7")

        clock.now = block.blocked_until

        assert limiter.check(make_request("/shop")) is None
        assert limiter.get_block("203.0.113.7") is None

    def test_severity_tiers_increase(self, clock, null_reporter, event_bus, recorded_events, make_request):
        preset = RateLimitPreset(name="PUBLIC_PAGES", window_seconds=60, max_requests=10)
        limiter = limiter_with(clock, preset, events=event_bus, error_reporter=null_reporter)
        for _ in range(100):
            limiter.check(make_request("/shop"))

        severities = [e.severity for e in recorded_events if isinstance(e, RateLimitViolated)]

        assert severities[0] == "low"
        assert severities[-1] == "severe"
        order = ["low", "medium", "high", "severe"]
        assert [order.index(s) for s in severities] == sorted(order.index(s) for s in severities)

    def test_medium_violation_does_not_block(self, limiter, make_request):
        request = make_request("/shop")
        for _ in range(13):
            rejection = limiter.check(request)

        assert rejection.severity == Severity.MEDIUM
        assert not limiter.is_blocked("203.0.113.7")


# =============================================================================
# Fail-open and allowlist
# =============================================================================

class TestResilience:
    """Internal errors allow the request"""

    def test_internal_error_fails_open(self, clock):
        reports = []

        class RecordingReporter:
            def capture_exception(self, error, *, tags=None, extra=None):
                reports.append(type(error).__name__)

            def capture_message(self, message, *, level="info", tags=None, extra=None):
                pass

        limiter = RateLimiter(error_reporter=RecordingReporter(), clock=clock)
        broken = RequestDescriptor(path=None, headers={"x-forwarded-for": "203.0.113.9"})

        assert limiter.check(broken) is None
        assert limiter.counters.internal_errors == 1
        assert reports == ["RateLimiterInternalError"]

    def test_allowlisted_ip_never_limited(self, limiter, make_request):
        request = make_request("/shop", ip="127.0.0.1")

        for _ in range(50):
            assert limiter.check(request) is None
        assert limiter.counters.allowlisted == 50

    def test_allowlist_management(self, limiter, make_request):
        request = make_request("/shop", ip="192.0.2.10")
        limiter.add_to_allowlist("192.0.2.10")

        for _ in range(10):
            assert limiter.check(request) is None

        assert limiter.remove_from_allowlist("192.0.2.10") is True
        assert limiter.remove_from_allowlist("192.0.2.10") is False
        assert not limiter.is_allowlisted("192.0.2.10")

    def test_ipv4_mapped_address_matches_allowlist(self, limiter):
        request = RequestDescriptor(path="/", client_host="::ffff:127.0.0.1")

        for _ in range(10):
            assert limiter.check(request) is None

    def test_spoofed_forwarded_header_ignored_from_untrusted_peer(self, limiter):
        request = RequestDescriptor(
            path="/order",
            headers={"x-forwarded-for": "127.0.0.1"},
            client_host="198.51.100.4",
        )

        results = [limiter.check(request, "ORDER_ACTIONS", "order") for _ in range(4)]

        assert results[:3] == [None, None, None]
        assert results[3] is not None
        assert limiter.counters.allowlisted == 0

    def test_forwarded_header_trusted_from_known_proxy(self, clock, null_reporter):
        limiter = RateLimiter(trusted_proxies=["10.0.0.2"], error_reporter=null_reporter, clock=clock)
        request = RequestDescriptor(
            path="/shop",
            headers={"x-forwarded-for": "127.0.0.1, 198.51.100.4"},
            client_host="10.0.0.2",
        )

        # The proxy appended the real client after the forged hop
        assert limiter.check(request) is None
        assert limiter.counters.allowlisted == 0
        assert limiter.behavior.get("198.51.100.4") is not None


# =============================================================================
# Behaviour scoring through check()
# =============================================================================

class TestBehaviourScoring:
    """Behaviour records follow the client across paths"""

    def test_scanning_detected_across_paths(self, limiter, make_request):
        for i in range(40):
            assert limiter.check(make_request(f"/templates/{i}")) is None

        record = limiter.behavior.get("203.0.113.7")
        analysis = limiter.behavior.analyze("203.0.113.7", "/templates/0")

        assert len(record.endpoints) == 40
        assert "template_scanning_behavior" in analysis.detection_points
        assert analysis.threat_level >= 6

    def test_scanning_raises_threat_on_violation(self, limiter, make_request, recorded_events):
        for i in range(20):
            limiter.check(make_request(f"/templates/{i}"))
        for _ in range(6):
            limiter.check(make_request("/templates/0"))

        violation = next(e for e in recorded_events if isinstance(e, RateLimitViolated))

        assert "template_scanning_behavior" in violation.detection_points
        assert violation.threat_level >= 6

    def test_image_scraping_detected_across_paths(self, limiter, make_request):
        for i in range(51):
            limiter.check(make_request(f"/_next/image/{i}.png"))

        analysis = limiter.behavior.analyze("203.0.113.7")

        assert "image_scraping_pattern" in analysis.detection_points


# =============================================================================
# Outcomes and skip presets
# =============================================================================

class TestOutcomes:
    """record_outcome feedback"""

    def test_skip_successful_requests(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(
            name="ORDER_ACTIONS", window_seconds=300, max_requests=3, skip_successful_requests=True
        )
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        policy = limiter.for_server_action("order")
        request = make_request("/api/orders", body={"email": "client@example.com"})

        for _ in range(10):
            assert policy(request) is None
            policy.record_outcome(request, success=True)

    def test_failed_attempts_count(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(
            name="ORDER_ACTIONS", window_seconds=300, max_requests=3, skip_successful_requests=True
        )
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        policy = limiter.for_server_action("order")
        request = make_request("/api/orders", body={"email": "client@example.com"})

        for _ in range(3):
            assert policy(request) is None
            policy.record_outcome(request, success=False)

        rejection = policy(request)
        assert rejection is not None
        assert "commande" in rejection.message

        attempts = limiter.behavior.order_attempts("203.0.113.7")
        assert attempts.failed_attempts == 3

    def test_skip_failed_requests(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(
            name="IMAGE_REQUESTS", window_seconds=120, max_requests=2, skip_failed_requests=True
        )
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        policy = limiter.for_api("images")
        request = make_request("/api/images/1.png")

        for _ in range(5):
            assert policy(request) is None
            policy.record_outcome(request, success=False)

    def test_order_email_key_shared_across_paths(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(name="ORDER_ACTIONS", window_seconds=300, max_requests=2)
        limiter = limiter_with(clock, preset, error_reporter=null_reporter)
        policy = limiter.for_server_action("order")

        policy(make_request("/checkout", body={"email": "A@Example.com"}))
        policy(make_request("/api/orders", body={"email": " a@example.com "}))

        assert policy(make_request("/order/new", body={"email": "a@example.com"})) is not None


# =============================================================================
# Policies, locale and presets
# =============================================================================

class TestConfiguration:
    """Presets, locales and policies"""

    def test_for_server_action_presets(self, limiter):
        assert limiter.for_server_action("order").preset == "ORDER_ACTIONS"
        assert limiter.for_server_action("contact").preset == "CONTACT_FORM"
        assert limiter.for_server_action("unknown").preset == "PUBLIC_PAGES"

    def test_for_api_presets(self, limiter):
        assert limiter.for_api("templates").preset == "TEMPLATES_API"
        assert limiter.for_api("presentation").preset == "PRESENTATION_INTERACTIONS"
        assert limiter.for_api("unknown").preset == "BLOG_API"

    def test_english_messages(self, clock, null_reporter, make_request):
        preset = RateLimitPreset(name="BLOG_API", window_seconds=60, max_requests=1)
        limiter = limiter_with(clock, preset, error_reporter=null_reporter, locale="en")
        request = make_request("/api/blog/posts")

        limiter.check(request, "BLOG_API")
        rejection = limiter.check(request, "BLOG_API")

        assert rejection.error == "Rate limit exceeded"
        assert rejection.message == "Too many requests on the blog, please try again later"

    def test_from_settings_overrides(self, test_settings, make_request):
        settings = test_settings.model_copy(update={
            "rate_limit_overrides": {"blog_api": "2/minute"},
            "rate_limit_allowlist": "",
        })
        limiter = RateLimiter.from_settings(settings)

        assert limiter.presets["BLOG_API"].max_requests == 2
        assert limiter.presets["BLOG_API"].window_seconds == 60
        assert not limiter.is_allowlisted("127.0.0.1")

    def test_build_presets_keeps_skip_flags(self):
        presets = build_presets({"ORDER_ACTIONS": "5 per 10 minutes"})

        assert presets["ORDER_ACTIONS"].max_requests == 5
        assert presets["ORDER_ACTIONS"].window_seconds == 600
        assert presets["ORDER_ACTIONS"].skip_successful_requests is True


# =============================================================================
# Maintenance
# =============================================================================

class TestMaintenance:
    """Stats, sweep and reset"""

    def test_stats_shape(self, limiter, make_request):
        limiter.check(make_request("/shop"))

        stats = limiter.get_stats()

        assert stats["memory"]["active_keys"] == 1
        assert stats["memory"]["max_cache_size"] == 10000
        assert stats["security"]["blocked_ips"] == 0
        assert stats["counters"]["allowed"] == 1
        assert stats["config"]["locale"] == "fr"
        assert "timestamp" in stats

    def test_sweep_removes_idle_windows(self, limiter, make_request, clock):
        limiter.check(make_request("/shop"))
        clock.advance(3601)

        assert limiter.sweep() >= 1
        assert limiter.get_stats()["memory"]["active_keys"] == 0

    def test_reset(self, limiter, make_request):
        limiter.check(make_request("/shop"))

        before = limiter.reset()

        assert before["windows"] == 1
        assert limiter.counters.allowed == 0
        assert limiter.get_stats()["memory"]["active_keys"] == 0

    def test_window_capacity_is_bounded(self, clock, null_reporter, make_request):
        limiter = RateLimiter(max_windows=10, error_reporter=null_reporter, clock=clock)

        for i in range(50):
            limiter.check(make_request(f"/page/{i}"))

        assert limiter.get_stats()["memory"]["active_keys"] == 10

    @pytest.mark.asyncio
    async def test_init_and_shutdown(self, limiter):
        await limiter.init()
        task = limiter._cleanup_task

        await limiter.shutdown()

        assert task.cancelled() or task.done()
        assert limiter._cleanup_task is None
