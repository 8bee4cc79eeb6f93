"""
Unit tests for behavioural threat scoring
Feature: rate-limiting
"""
from storefront_core.ratelimit.behavior import BehaviorTracker


class TestAnalyze:
    """Detection points and threat levels"""

    def test_unknown_key_is_clean(self):
        analysis = BehaviorTracker().analyze("nobody")

        assert analysis.threat_level == 0
        assert not analysis.is_suspicious

    def test_order_violations(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for _ in range(20):
            tracker.record_violation("k")

        analysis = tracker.analyze("k", "/order/new")

        assert "multiple_order_violations" in analysis.detection_points
        assert "sensitive_endpoint_access" in analysis.detection_points
        assert analysis.threat_level == 7

    def test_high_violation_count_elsewhere(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for _ in range(50):
            tracker.record_violation("k")

        analysis = tracker.analyze("k", "/shop")

        assert analysis.detection_points == ("high_violation_count",)
        assert analysis.is_suspicious

    def test_template_scanning(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for i in range(15):
            tracker.observe("k", f"/templates/{i}")

        assert "template_scanning_behavior" in tracker.analyze("k").detection_points

    def test_presentation_automation(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for i in range(11):
            tracker.observe("k", f"/api/presentation/{i}")

        assert "presentation_automation_detected" in tracker.analyze("k").detection_points

    def test_failed_orders(self, clock):
        tracker = BehaviorTracker(clock=clock)
        tracker.observe("k", "/checkout")
        for _ in range(3):
            tracker.track_order_attempt("k", success=False)

        assert "multiple_failed_orders" in tracker.analyze("k").detection_points

    def test_high_error_rate(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for _ in range(4):
            tracker.observe("k", "/shop")
        for _ in range(2):
            tracker.record_outcome("k", success=False)

        assert "high_error_rate_critical_endpoints" in tracker.analyze("k").detection_points

    def test_image_scraping(self, clock):
        tracker = BehaviorTracker(clock=clock)
        for i in range(51):
            tracker.observe("k", f"/_next/image/{i}.png")

        assert "image_scraping_pattern" in tracker.analyze("k").detection_points


class TestRecords:
    """Record lifecycle"""

    def test_outcome_without_record_is_ignored(self, clock):
        tracker = BehaviorTracker(clock=clock)
        tracker.record_outcome("k", success=False)

        assert tracker.get("k") is None

    def test_order_attempt_counters(self, clock):
        tracker = BehaviorTracker(clock=clock)
        tracker.track_order_attempt("k", success=True)
        attempt = tracker.track_order_attempt("k", success=False)

        assert attempt.total_attempts == 2
        assert attempt.successful_orders == 1
        assert attempt.failed_attempts == 1

    def test_sweep_drops_idle_records(self, clock):
        tracker = BehaviorTracker(clock=clock)
        tracker.observe("idle", "/")
        tracker.track_order_attempt("idle", success=True)
        clock.advance(4000)
        tracker.observe("active", "/")

        removed = tracker.sweep(suspicious_retention=7200, order_retention=3600)

        assert removed == 1
        assert tracker.order_attempts("idle") is None
        assert tracker.get("idle") is not None

    def test_capacity_is_bounded(self, clock):
        tracker = BehaviorTracker(max_records=3, clock=clock)
        for i in range(10):
            tracker.observe(f"k{i}", "/")

        assert tracker.get_stats()["suspicious_behaviors"] == 3

    def test_clear(self, clock):
        tracker = BehaviorTracker(clock=clock)
        tracker.observe("k", "/")
        tracker.track_order_attempt("k", success=False)

        assert tracker.clear() == {"suspicious_behavior": 1, "order_attempts": 1}
