"""
Metrics Collection
In-process counters, gauges and timers for the rules engine.
"""
import re
import time
import logging
from typing import Dict, Any, Optional
from collections import defaultdict
from threading import Lock


logger = logging.getLogger("HomeGuardMetrics")

_MAX_TIMER_SAMPLES = 100


class MetricsCollector:
    """
    Collects and aggregates engine metrics.
    Thread-safe singleton.
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timers: Dict[str, list] = defaultdict(list)
        self._lock = Lock()
        self._initialized = True

        logger.debug("Metrics collector initialized")

    def increment(self, metric_name: str, value: int = 1, tags: Optional[Dict] = None) -> None:
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the metric
            value: Value to increment by
            tags: Optional tags for the metric
        """
        with self._lock:
            self.counters[self._make_key(metric_name, tags)] += value

    def gauge(self, metric_name: str, value: float, tags: Optional[Dict] = None) -> None:
        """Set a gauge metric to its current value."""
        with self._lock:
            self.gauges[self._make_key(metric_name, tags)] = value

    def timing(self, metric_name: str, duration_ms: float, tags: Optional[Dict] = None) -> None:
        """
        Record a timing metric.

        Only the most recent samples per key are kept.
        """
        with self._lock:
            samples = self.timers[self._make_key(metric_name, tags)]
            samples.append(duration_ms)
            if len(samples) > _MAX_TIMER_SAMPLES:
                del samples[:-_MAX_TIMER_SAMPLES]

    def get_counter(self, metric_name: str, tags: Optional[Dict] = None) -> int:
        with self._lock:
            return self.counters.get(self._make_key(metric_name, tags), 0)

    def _make_key(self, metric_name: str, tags: Optional[Dict] = None) -> str:
        if not tags:
            return metric_name

        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{metric_name}[{tag_str}]"

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of all collected metrics.

        Returns:
            Dict: Metrics summary
        """
        with self._lock:
            summary = {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "timers": {}
            }

            for key, values in self.timers.items():
                if values:
                    summary["timers"][key] = {
                        "count": len(values),
                        "min": min(values),
                        "max": max(values),
                        "mean": sum(values) / len(values),
                        "p50": self._percentile(values, 50),
                        "p95": self._percentile(values, 95),
                        "p99": self._percentile(values, 99)
                    }

            return summary

    def _percentile(self, values: list, percentile: int) -> float:
        if not values:
            return 0.0

        sorted_values = sorted(values)
        index = min(int((percentile / 100.0) * len(sorted_values)), len(sorted_values) - 1)
        return sorted_values[index]

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.timers.clear()

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Returns:
            str: Prometheus-formatted metrics
        """
        lines = []

        with self._lock:
            for key, value in sorted(self.counters.items()):
                lines.append(f"homeguard_{self._prometheus_key(key)} {value}")

            for key, value in sorted(self.gauges.items()):
                lines.append(f"homeguard_{self._prometheus_key(key)} {value}")

            for key, values in sorted(self.timers.items()):
                if values:
                    avg = sum(values) / len(values)
                    lines.append(f"homeguard_{self._prometheus_key(key, suffix='_avg')} {avg:.3f}")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _prometheus_key(key: str, suffix: str = "") -> str:
        # "name[a=1,b=2]" -> 'name{a="1",b="2"}'
        match = re.match(r'^([^\[]+)(?:\[(.*)\])?$', key)
        name = re.sub(r'[^a-zA-Z0-9_]', '_', match.group(1)) + suffix
        if not match.group(2):
            return name
        labels = ",".join(
            f'{k}="{v}"' for k, v in (pair.split("=", 1) for pair in match.group(2).split(","))
        )
        return f"{name}{{{labels}}}"


class Timer:
    """
    Context manager for timing code blocks.

    Example:
        with Timer("alert_write_duration_ms"):
            historian.save_alerts(alerts)
    """

    def __init__(self, metric_name: str, tags: Optional[Dict] = None,
                 collector: Optional[MetricsCollector] = None):
        self.metric_name = metric_name
        self.tags = tags
        self.collector = collector or MetricsCollector()
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        self.collector.timing(self.metric_name, self.duration_ms, self.tags)


class EngineMetrics:
    """
    High-level metrics for the rules engine.
    """

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()

    def record_event_received(self, source: str) -> None:
        self.collector.increment("events_received_total", tags={"source": source})

    def record_event_dropped(self) -> None:
        self.collector.increment("events_dropped_total")

    def record_queue_depth(self, depth: int) -> None:
        self.collector.gauge("queue_depth", depth)

    def record_evaluation(self, duration_ms: float, rules_evaluated: int, matched: int, degraded: bool) -> None:
        """Record one completed evaluation cycle."""
        self.collector.increment("evaluations_total")
        self.collector.increment("rules_matched_total", value=matched)
        self.collector.gauge("rules_active", rules_evaluated)
        self.collector.timing("evaluation_duration_ms", duration_ms)

        if degraded:
            self.collector.increment("evaluations_degraded_total")

    def record_action(self, action_type: str, status: str, duration_ms: float) -> None:
        """Record one dispatched action."""
        self.collector.increment("actions_total", tags={"type": action_type, "status": status})
        self.collector.timing("action_duration_ms", duration_ms, {"type": action_type})

    def record_alerts(self, count: int, persisted: bool) -> None:
        if persisted:
            self.collector.increment("alerts_written_total", value=count)
        else:
            self.collector.increment("alert_write_failures_total")

    def record_rule_error(self, rule_id: str) -> None:
        self.collector.increment("rule_config_errors_total", tags={"rule": rule_id})

    def record_store_unavailable(self) -> None:
        self.collector.increment("store_unavailable_total")

    def record_error(self, component: str, error_type: str) -> None:
        """Record an error."""
        self.collector.increment("errors_total", tags={"component": component, "type": error_type})

    def get_summary(self) -> Dict[str, Any]:
        return self.collector.get_summary()
