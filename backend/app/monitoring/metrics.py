"""
Application Metrics
"""

import time
from functools import wraps
from typing import Callable, Dict, Any
from datetime import datetime
import structlog

logger = structlog.get_logger()

TIMING_WINDOW = 1000


class MetricsCollector:
    """Collect in-process referral program metrics"""

    def __init__(self):
        self.reset()

    def reset(self):
        self.metrics = {
            "order_paid_events": 0,
            "referrals_recorded": 0,
            "rewards_created": 0,
            "rewards_settled": 0,
            "refund_fallbacks": 0,
            "discount_sync_failures": 0,
            "referrers_provisioned": 0,
            "errors": 0,
        }
        self.timing_metrics = {}
        self.error_counts = {}

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric"""
        self.metrics[metric_name] = self.metrics.get(metric_name, 0) + value
        logger.debug("Metric incremented", metric=metric_name, value=value)

    def record_timing(self, operation: str, duration_ms: float):
        """Record operation timing"""
        timings = self.timing_metrics.setdefault(operation, [])
        timings.append(duration_ms)

        if len(timings) > TIMING_WINDOW:
            self.timing_metrics[operation] = timings[-TIMING_WINDOW:]

    def record_error(self, error_type: str, error_message: str):
        """Record error occurrence"""
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1
        self.metrics["errors"] += 1

        logger.warning("Error recorded",
                       error_type=error_type,
                       error_message=error_message,
                       count=self.error_counts[error_type])

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get metrics summary"""
        timing_stats = {}

        for operation, timings in self.timing_metrics.items():
            if timings:
                ordered = sorted(timings)
                timing_stats[operation] = {
                    "count": len(timings),
                    "avg_ms": sum(timings) / len(timings),
                    "min_ms": ordered[0],
                    "max_ms": ordered[-1],
                    "p95_ms": ordered[int(len(ordered) * 0.95)] if len(ordered) > 1 else ordered[0],
                }

        return {
            "counters": dict(self.metrics),
            "timing_stats": timing_stats,
            "error_counts": dict(self.error_counts),
            "collected_at": datetime.utcnow().isoformat(),
        }


# Global metrics collector
metrics_collector = MetricsCollector()


def track_timing(operation_name: str):
    """Decorator to track operation timing"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                metrics_collector.record_timing(operation_name, (time.perf_counter() - start_time) * 1000)
                return result
            except Exception as e:
                metrics_collector.record_timing(f"{operation_name}_failed", (time.perf_counter() - start_time) * 1000)
                metrics_collector.record_error(type(e).__name__, str(e))
                raise
        return wrapper
    return decorator


def track_counter(metric_name: str):
    """Decorator to count successful calls"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
                metrics_collector.increment_counter(metric_name)
                return result
            except Exception:
                metrics_collector.increment_counter(f"{metric_name}_failed")
                raise
        return wrapper
    return decorator
