"""
Behavioural threat scoring.

Accumulates per-client signals (violations, distinct endpoints hit, error ratio,
failed orders) and turns them into a threat score that amplifies block
durations for high and severe violations.

Feature: rate-limiting
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from storefront_core.core.bounded_map import BoundedMap
from storefront_core.ratelimit.models import (
    BehaviorAnalysis,
    OrderAttemptRecord,
    SuspiciousBehaviorRecord,
)

logger = logging.getLogger(__name__)

SUSPICIOUS_THRESHOLD = 4

# Distinct endpoints remembered per key
MAX_TRACKED_ENDPOINTS = 500

SENSITIVE_ENDPOINTS = ("/contact", "/templates", "/_next/action", "/order")
IMAGE_MARKERS = ("cloudinary", "image", "_next/image")


class BehaviorTracker:
    """
    Per-client behaviour records and order attempt history.

    Keys are client IPs rather than window keys, so one record sees every
    endpoint the client touches.

    Usage:
        tracker = BehaviorTracker()
        tracker.observe(ip, "/templates/42")
        tracker.record_violation(ip)
        analysis = tracker.analyze(ip, "/templates/42")
        if analysis.is_suspicious:
            ...
    """

    def __init__(
        self,
        max_records: int = 5000,
        max_order_attempts: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._records: BoundedMap[str, SuspiciousBehaviorRecord] = BoundedMap(max_records)
        self._orders: BoundedMap[str, OrderAttemptRecord] = BoundedMap(max_order_attempts)
        self._clock = clock

    def _record(self, key: str, now: float) -> SuspiciousBehaviorRecord:
        record = self._records.get(key)
        if record is None:
            record = SuspiciousBehaviorRecord(key=key, last_seen=now)
        self._records.set(key, record)
        return record

    def observe(self, key: str, endpoint: str, now: Optional[float] = None) -> None:
        """Count a request and remember the endpoint."""
        now = self._clock() if now is None else now
        record = self._record(key, now)
        record.total_requests += 1
        record.last_seen = now
        if len(record.endpoints) < MAX_TRACKED_ENDPOINTS:
            record.endpoints.add(endpoint)

    def record_violation(self, key: str, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        record = self._record(key, now)
        record.violations += 1
        record.last_seen = now

    def record_outcome(self, key: str, success: bool, now: Optional[float] = None) -> None:
        """Count an error response against the key (successes only refresh last_seen)."""
        record = self._records.get(key)
        if record is None:
            return
        if not success:
            record.error_requests += 1
        record.last_seen = self._clock() if now is None else now

    def track_order_attempt(self, key: str, success: bool, now: Optional[float] = None) -> OrderAttemptRecord:
        now = self._clock() if now is None else now
        attempt = self._orders.get(key)
        if attempt is None:
            attempt = OrderAttemptRecord(key=key, first_attempt=now)

        attempt.total_attempts += 1
        attempt.last_attempt = now
        if success:
            attempt.successful_orders += 1
        else:
            attempt.failed_attempts += 1

        self._orders.set(key, attempt)
        return attempt

    def get(self, key: str) -> Optional[SuspiciousBehaviorRecord]:
        return self._records.get(key)

    def order_attempts(self, key: str) -> Optional[OrderAttemptRecord]:
        return self._orders.get(key)

    def analyze(self, key: str, endpoint: str = "") -> BehaviorAnalysis:
        """
        Threat score for a key.

        Signals:
        - >= 20 violations on an order endpoint (+6), else >= 50 violations (+4)
        - >= 15 distinct endpoints including a template page (+5)
        - > 10 presentation endpoints (+3)
        - >= 3 failed order attempts (+4)
        - error ratio > 0.4 over more than 3 requests (+3)
        - sensitive endpoint (+1)
        - > 50 image endpoints (+2)
        """
        record = self._records.get(key)
        if record is None:
            return BehaviorAnalysis()

        score = 0
        points: List[str] = []

        if record.violations >= 20 and "order" in endpoint:
            score += 6
            points.append("multiple_order_violations")
        elif record.violations >= 50:
            score += 4
            points.append("high_violation_count")

        if len(record.endpoints) >= 15 and any("template" in ep for ep in record.endpoints):
            score += 5
            points.append("template_scanning_behavior")

        presentation = sum(1 for ep in record.endpoints if "presentation" in ep)
        if presentation > 10:
            score += 3
            points.append("presentation_automation_detected")

        attempts = self._orders.get(key)
        if attempts is not None and attempts.failed_attempts >= 3:
            score += 4
            points.append("multiple_failed_orders")

        if record.error_ratio > 0.4 and record.total_requests > 3:
            score += 3
            points.append("high_error_rate_critical_endpoints")

        if any(ep in endpoint for ep in SENSITIVE_ENDPOINTS):
            score += 1
            points.append("sensitive_endpoint_access")

        images = sum(1 for ep in record.endpoints if any(m in ep for m in IMAGE_MARKERS))
        if images > 50:
            score += 2
            points.append("image_scraping_pattern")

        return BehaviorAnalysis(threat_level=score, detection_points=tuple(points))

    def sweep(self, suspicious_retention: float, order_retention: float, now: Optional[float] = None) -> int:
        """Drop behaviour and order records idle beyond their retention."""
        now = self._clock() if now is None else now
        removed = 0

        for key, record in self._records.items():
            if now - record.last_seen > suspicious_retention:
                self._records.pop(key)
                removed += 1

        for key, attempt in self._orders.items():
            if now - attempt.last_attempt > order_retention:
                self._orders.pop(key)
                removed += 1

        return removed

    def clear(self) -> Dict[str, int]:
        return {
            "suspicious_behavior": self._records.clear(),
            "order_attempts": self._orders.clear(),
        }

    def get_stats(self) -> Dict[str, int]:
        return {
            "suspicious_behaviors": len(self._records),
            "order_attempts": len(self._orders),
        }
