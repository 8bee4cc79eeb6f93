"""
Sliding-window rate limiter with progressive violation scoring.

Flow per request:
1. Allowlisted IP → allow
2. Active block for the IP → reject (kind=blocked)
3. Record the attempt in the key's window; allow while attempts <= max
4. Over the limit → score the overage ratio and behaviour, maybe block
   the IP, reject (kind=rate_limited)

Any internal failure fails open: the request is allowed and the error is
logged and reported.

Feature: rate-limiting
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from storefront_core.core.bounded_map import BoundedMap
from storefront_core.core.config import Settings
from storefront_core.core.errors import RateLimiterInternalError
from storefront_core.core.error_reporting import ErrorReporter, LoggingErrorReporter
from storefront_core.core.events import (
    EventBus,
    RateLimitAllowed,
    RateLimitBlocked,
    RateLimitViolated,
)
from storefront_core.ratelimit.behavior import BehaviorTracker
from storefront_core.ratelimit.keys import UNKNOWN_IP, anonymize_ip, derive_key, extract_real_ip
from storefront_core.ratelimit.models import (
    BlockRecord,
    RateLimitPreset,
    RateLimitRejection,
    RejectionKind,
    RequestDescriptor,
    Severity,
    WindowRecord,
)
from storefront_core.ratelimit.presets import (
    API_PRESETS,
    DEFAULT_PRESET,
    PRESETS,
    SERVER_ACTION_PRESETS,
    build_presets,
    contextual_message,
    messages_for,
    violation_level,
)

logger = logging.getLogger(__name__)

DEFAULT_ALLOWLIST = ("127.0.0.1", "::1")

_ESCALATED = (Severity.HIGH, Severity.SEVERE)


@dataclass
class RateLimitCounters:
    allowed: int = 0
    allowlisted: int = 0
    rejected: int = 0
    blocked_requests: int = 0
    blocks_created: int = 0
    internal_errors: int = 0


class RateLimitPolicy:
    """
    A limiter bound to one preset and key prefix.

    Usage:
        order_limit = limiter.for_server_action("order")

        rejection = order_limit(descriptor)
        if rejection is not None:
            return rejection.body()
        ...
        order_limit.record_outcome(descriptor, success=True)
    """

    def __init__(self, limiter: "RateLimiter", preset: str, prefix: Optional[str] = None):
        self.limiter = limiter
        self.preset = preset
        self.prefix = prefix

    def __call__(self, request: RequestDescriptor) -> Optional[RateLimitRejection]:
        return self.limiter.check(request, self.preset, self.prefix)

    def record_outcome(self, request: RequestDescriptor, success: bool) -> None:
        self.limiter.record_outcome(request, success, self.preset, self.prefix)

    def __repr__(self) -> str:
        return f"RateLimitPolicy(preset={self.preset}, prefix={self.prefix})"


class RateLimiter:
    """
    In-process rate limiter for storefront traffic.

    Usage:
        limiter = RateLimiter.from_settings(get_settings(), events=bus)
        await limiter.init()

        rejection = limiter.check(descriptor, "BLOG_API")
        if rejection is not None:
            return JSONResponse(rejection.body(), status_code=429, headers=rejection.headers())

    Args:
        presets: Preset table (defaults to PRESETS)
        allowlist: IPs that bypass every check
        trusted_proxies: Socket peers whose forwarded headers are believed
        locale: Message language ("fr" or "en")
        events: Bus receiving rate-limit events
        error_reporter: External error tracker
        max_windows / max_blocked / max_suspicious / max_order_attempts:
            Bounded map capacities
        window_retention / suspicious_retention / order_retention:
            Idle horizons (seconds) used by sweep()
        cleanup_interval: Seconds between background sweeps
        clock: Wall-clock time source in seconds
    """

    def __init__(
        self,
        *,
        presets: Optional[Mapping[str, RateLimitPreset]] = None,
        allowlist: Optional[Iterable[str]] = None,
        trusted_proxies: Optional[Iterable[str]] = None,
        locale: str = "fr",
        events: Optional[EventBus] = None,
        error_reporter: Optional[ErrorReporter] = None,
        max_windows: int = 10000,
        max_blocked: int = 1000,
        max_suspicious: int = 5000,
        max_order_attempts: int = 2000,
        window_retention: float = 3600,
        suspicious_retention: float = 7200,
        order_retention: float = 3600,
        cleanup_interval: float = 600,
        clock: Callable[[], float] = time.time,
    ):
        self.presets: Dict[str, RateLimitPreset] = dict(presets or PRESETS)
        self.locale = locale
        self.events = events
        self._reporter = error_reporter or LoggingErrorReporter()
        self._clock = clock

        self._allowlist = set(DEFAULT_ALLOWLIST if allowlist is None else allowlist)
        self.trusted_proxies = frozenset(trusted_proxies or ())

        self._windows: BoundedMap[str, WindowRecord] = BoundedMap(max_windows)
        self._blocked: BoundedMap[str, BlockRecord] = BoundedMap(max_blocked)
        self._behavior = BehaviorTracker(max_suspicious, max_order_attempts, clock=clock)

        self.window_retention = window_retention
        self.suspicious_retention = suspicious_retention
        self.order_retention = order_retention
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None

        self.counters = RateLimitCounters()

        logger.info(
            f"RateLimiter initialized: {len(self.presets)} presets, "
            f"{len(self._allowlist)} allowlisted IPs, locale={locale}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        presets: Optional[Mapping[str, RateLimitPreset]] = None,
        events: Optional[EventBus] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> "RateLimiter":
        return cls(
            presets=presets or build_presets(settings.rate_limit_overrides),
            allowlist=settings.allowlisted_ips,
            trusted_proxies=settings.trusted_proxy_ips,
            locale=settings.rate_limit_locale,
            events=events,
            error_reporter=error_reporter,
            max_windows=settings.rate_limit_max_cache_size,
            max_blocked=settings.rate_limit_max_blocked,
            max_suspicious=settings.rate_limit_max_suspicious,
            max_order_attempts=settings.rate_limit_max_order_attempts,
            window_retention=settings.rate_limit_window_retention_seconds,
            suspicious_retention=settings.rate_limit_suspicious_retention_seconds,
            order_retention=settings.rate_limit_order_retention_seconds,
            cleanup_interval=settings.effective_cleanup_interval,
        )

    @property
    def behavior(self) -> BehaviorTracker:
        return self._behavior

    # =========================================================================
    # Checking
    # =========================================================================

    def check(
        self,
        request: RequestDescriptor,
        preset: str = DEFAULT_PRESET,
        prefix: Optional[str] = None,
    ) -> Optional[RateLimitRejection]:
        """
        Decide whether a request may proceed.

        Args:
            request: Request descriptor
            preset: Preset name (unknown names use PUBLIC_PAGES limits)
            prefix: Key prefix (defaults to the lowercased preset name)

        Returns:
            None to allow, or a RateLimitRejection
        """
        ip = UNKNOWN_IP
        path = ""

        try:
            path = request.path
            ip = extract_real_ip(request, self.trusted_proxies)

            if ip in self._allowlist:
                self.counters.allowlisted += 1
                logger.debug(f"[RATE LIMIT] Allowlisted IP: {anonymize_ip(ip)}")
                return None

            now = self._clock()
            config = self.presets.get(preset) or self.presets[DEFAULT_PRESET]

            block = self._blocked.get(ip)
            if block is not None:
                if block.is_active(now):
                    return self._reject_blocked(block, ip, path, config, now)
                self._blocked.pop(ip)

            key = derive_key(request, prefix or preset.lower(), ip)
            self._behavior.observe(ip, path, now)

            window = self._windows.get(key) or WindowRecord(key=key)
            window.prune(now - config.window_seconds)
            window.timestamps.append(now)
            window.last_seen = now
            self._windows.set(key, window)

            attempts = len(window.timestamps)
            if attempts <= config.max_requests:
                self.counters.allowed += 1
                if self.events is not None:
                    self.events.publish(RateLimitAllowed(key, path, config.name))
                return None

            return self._reject_over_limit(key, ip, path, config, window, now)

        except Exception as e:
            self.counters.internal_errors += 1
            logger.error(f"[RATE LIMIT] Internal error, failing open for {anonymize_ip(ip)} -> {path!r}: {e}")
            self._report_exception(
                RateLimiterInternalError(f"{type(e).__name__}: {e}"),
                extra={"path": str(path), "ip": anonymize_ip(ip)},
            )
            return None

    def _reject_over_limit(
        self,
        key: str,
        ip: str,
        path: str,
        config: RateLimitPreset,
        window: WindowRecord,
        now: float,
    ) -> RateLimitRejection:
        self._behavior.record_violation(ip, now)
        analysis = self._behavior.analyze(ip, path)

        attempts = len(window.timestamps)
        ratio = attempts / config.max_requests
        level = violation_level(ratio)

        block_seconds = level.block_seconds
        if analysis.is_suspicious and level.severity in _ESCALATED:
            block_seconds *= 1 + min(analysis.threat_level, 8) / 4

        reference = str(uuid.uuid4())
        masked_ip = anonymize_ip(ip)

        logger.log(
            level.log_level,
            f"[RATE LIMIT] Violation ({level.severity.value}) {masked_ip} -> {path}: "
            f"{attempts}/{config.max_requests} in {config.window_seconds:g}s, "
            f"threat={analysis.threat_level} points={list(analysis.detection_points)} ref={reference}",
        )

        if level.severity in _ESCALATED:
            self._report_message(
                "Rate limit violation",
                level="error" if level.severity == Severity.SEVERE else "warning",
                extra={
                    "reference": reference,
                    "ip": masked_ip,
                    "path": path,
                    "severity": level.severity.value,
                    "threat_level": analysis.threat_level,
                },
            )

        if self.events is not None:
            self.events.publish(RateLimitViolated(
                key=key,
                ip=masked_ip,
                path=path,
                preset=config.name,
                severity=level.severity.value,
                ratio=ratio,
                threat_level=analysis.threat_level,
                detection_points=analysis.detection_points,
                reference=reference,
            ))

        should_block = level.severity == Severity.SEVERE or (
            level.severity == Severity.HIGH and analysis.threat_level >= 6
        )

        if should_block:
            blocked_until = now + block_seconds
            self._blocked.set(ip, BlockRecord(
                ip=ip,
                blocked_until=blocked_until,
                reason=f"{level.severity.value} rate limit violation",
                severity=level.severity,
                reference=reference,
            ))
            self.counters.blocks_created += 1

            logger.warning(f"[RATE LIMIT] Blocked {masked_ip} for {block_seconds:.0f}s ref={reference}")
            if self.events is not None:
                self.events.publish(RateLimitBlocked(
                    ip=masked_ip,
                    blocked_until=blocked_until,
                    severity=level.severity.value,
                    reason=f"{level.severity.value} rate limit violation",
                    reference=reference,
                ))
            retry_after = block_seconds
        else:
            # Time until the oldest attempt that keeps the window full expires
            oldest_blocking = window.timestamps[attempts - config.max_requests]
            retry_after = oldest_blocking + config.window_seconds - now

        self.counters.rejected += 1
        messages = messages_for(self.locale)

        return RateLimitRejection(
            error=messages["error"],
            message=contextual_message(path, config.name, self.locale),
            retry_after=max(1, math.ceil(retry_after)),
            reference=reference,
            kind=RejectionKind.RATE_LIMITED,
            severity=level.severity,
            limit=config.max_requests,
            reset_at=math.ceil(now + config.window_seconds),
        )

    def _reject_blocked(
        self,
        block: BlockRecord,
        ip: str,
        path: str,
        config: RateLimitPreset,
        now: float,
    ) -> RateLimitRejection:
        reference = str(uuid.uuid4())
        masked_ip = anonymize_ip(ip)

        self.counters.blocked_requests += 1
        logger.warning(f"[RATE LIMIT] Blocked IP request rejected: {masked_ip} -> {path} ref={reference}")
        self._report_message(
            "Request from blocked IP",
            level="warning",
            extra={"reference": reference, "ip": masked_ip, "path": path},
        )

        messages = messages_for(self.locale)
        return RateLimitRejection(
            error=messages["blocked_error"],
            message=messages["blocked"],
            retry_after=max(1, math.ceil(block.blocked_until - now)),
            reference=reference,
            kind=RejectionKind.BLOCKED,
            severity=block.severity,
            limit=config.max_requests,
            reset_at=math.ceil(block.blocked_until),
        )

    # =========================================================================
    # Outcomes
    # =========================================================================

    def record_outcome(
        self,
        request: RequestDescriptor,
        success: bool,
        preset: str = DEFAULT_PRESET,
        prefix: Optional[str] = None,
    ) -> None:
        """
        Feed the handler result back into the limiter.

        Honours skip_successful_requests / skip_failed_requests by removing
        the attempt from the window, counts error responses for behaviour
        scoring and tracks order attempts.
        """
        try:
            ip = extract_real_ip(request, self.trusted_proxies)
            if ip in self._allowlist:
                return

            now = self._clock()
            config = self.presets.get(preset) or self.presets[DEFAULT_PRESET]
            prefix = prefix or preset.lower()
            key = derive_key(request, prefix, ip)

            window = self._windows.get(key)
            if window is not None:
                if success:
                    window.success_count += 1
                else:
                    window.error_count += 1

                skip = (success and config.skip_successful_requests) or (
                    not success and config.skip_failed_requests
                )
                if skip and window.timestamps:
                    window.timestamps.pop()

            self._behavior.record_outcome(ip, success, now)

            if prefix == "order" or "order" in request.path or "createOrder" in request.path:
                self._behavior.track_order_attempt(ip, success, now)

        except Exception as e:
            self.counters.internal_errors += 1
            logger.error(f"[RATE LIMIT] Failed to record outcome: {e}")
            self._report_exception(RateLimiterInternalError(f"{type(e).__name__}: {e}"))

    # =========================================================================
    # Bound policies
    # =========================================================================

    def policy(self, preset: str, prefix: Optional[str] = None) -> RateLimitPolicy:
        return RateLimitPolicy(self, preset, prefix)

    def for_server_action(self, action: str = "order") -> RateLimitPolicy:
        """Policy for a server action: order, contact or general."""
        preset = SERVER_ACTION_PRESETS.get(action, SERVER_ACTION_PRESETS["general"])
        return RateLimitPolicy(self, preset, prefix=action)

    def for_api(self, api: str = "blog") -> RateLimitPolicy:
        """Policy for an API route: blog, templates, images or presentation."""
        preset = API_PRESETS.get(api, API_PRESETS["blog"])
        return RateLimitPolicy(self, preset, prefix=api)

    # =========================================================================
    # Administration
    # =========================================================================

    def add_to_allowlist(self, ip: str) -> None:
        self._allowlist.add(ip)
        logger.info(f"[RATE LIMIT] Added IP to allowlist: {anonymize_ip(ip)}")

    def remove_from_allowlist(self, ip: str) -> bool:
        if ip not in self._allowlist:
            return False
        self._allowlist.discard(ip)
        logger.info(f"[RATE LIMIT] Removed IP from allowlist: {anonymize_ip(ip)}")
        return True

    def is_allowlisted(self, ip: str) -> bool:
        return ip in self._allowlist

    def is_blocked(self, ip: str) -> bool:
        block = self._blocked.get(ip)
        return block is not None and block.is_active(self._clock())

    def get_block(self, ip: str) -> Optional[BlockRecord]:
        return self._blocked.get(ip)

    def get_stats(self) -> Dict[str, Any]:
        max_windows = self._windows.max_size
        return {
            "memory": {
                "active_keys": len(self._windows),
                "max_cache_size": max_windows,
                "memory_usage": f"{len(self._windows) / max_windows * 100:.1f}%",
            },
            "security": {
                **self._behavior.get_stats(),
                "blocked_ips": len(self._blocked),
                "allowlisted_ips": len(self._allowlist),
            },
            "counters": asdict(self.counters),
            "config": {
                "locale": self.locale,
                "presets": {
                    name: {"window_seconds": p.window_seconds, "max_requests": p.max_requests}
                    for name, p in self.presets.items()
                },
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def reset(self) -> Dict[str, int]:
        """Drop every window, block and behaviour record."""
        before = {
            "windows": self._windows.clear(),
            "blocked_ips": self._blocked.clear(),
            **self._behavior.clear(),
        }
        self.counters = RateLimitCounters()
        logger.info(f"[RATE LIMIT] All data reset: {before}")
        return before

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired blocks and records idle beyond their retention."""
        now = self._clock() if now is None else now
        removed = 0

        for ip, block in self._blocked.items():
            if not block.is_active(now):
                self._blocked.pop(ip)
                removed += 1

        for key, window in self._windows.items():
            if now - window.last_seen > self.window_retention:
                self._windows.pop(key)
                removed += 1

        removed += self._behavior.sweep(self.suspicious_retention, self.order_retention, now)

        if removed:
            logger.info(f"[RATE LIMIT] Cleanup completed: {removed} items removed")
        return removed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """Start the background sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info(f"[RATE LIMIT] Cleanup started (interval={self.cleanup_interval}s)")

    async def shutdown(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"[RATE LIMIT] Cleanup error: {e}")

    # =========================================================================
    # Reporting
    # =========================================================================

    def _report_exception(self, error: Exception, extra: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._reporter.capture_exception(error, tags={"component": "rate_limit"}, extra=extra)
        except Exception as report_error:
            logger.error(f"[RATE LIMIT] Error reporter failed: {report_error}")

    def _report_message(self, message: str, level: str, extra: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._reporter.capture_message(message, level=level, tags={"component": "rate_limit"}, extra=extra)
        except Exception as report_error:
            logger.error(f"[RATE LIMIT] Error reporter failed: {report_error}")
