"""
Prometheus Metrics

Provides application metrics in Prometheus text format:
- HTTP request metrics (count, duration)
- Webhook outcomes per event kind
- Conversation resolver strategy hits and identity conflicts
- Push delivery outcomes and notification queue results
"""

from typing import Dict, List, Union
from collections import defaultdict
from threading import Lock


class Counter:
    """Simple counter metric."""

    metric_type = "counter"

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, **label_values):
        """Increment counter."""
        key = tuple(str(label_values.get(l, '')) for l in self.labels)
        with self._lock:
            self._values[key] += value

    def get(self, **label_values) -> float:
        key = tuple(str(label_values.get(l, '')) for l in self.labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def get_all(self) -> Dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return dict(self._values)


class Histogram:
    """Simple histogram metric (sum + count per label set)."""

    metric_type = "histogram"

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._sums: Dict[tuple, float] = defaultdict(float)
        self._totals: Dict[tuple, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, **label_values):
        """Record an observation."""
        key = tuple(str(label_values.get(l, '')) for l in self.labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1

    def get_all(self) -> Dict:
        with self._lock:
            return {'sums': dict(self._sums), 'totals': dict(self._totals)}


# ================================
# APPLICATION METRICS
# ================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labels=("method", "path", "status_code")
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labels=("method", "path")
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Lodgify webhook deliveries by outcome",
    labels=("event_type", "status")
)

resolver_strategy_total = Counter(
    "resolver_strategy_total",
    "Conversation resolver hits per lookup strategy",
    labels=("strategy",)
)

identity_conflicts_total = Counter(
    "identity_conflicts_total",
    "Populated conversation identifiers that disagreed with an inbound event",
    labels=("field",)
)

push_notifications_total = Counter(
    "push_notifications_total",
    "Push sends per device by outcome",
    labels=("source", "status")
)

notification_jobs_total = Counter(
    "notification_jobs_total",
    "Notification queue jobs processed by outcome",
    labels=("status",)
)

emergency_analyses_total = Counter(
    "emergency_analyses_total",
    "Emergency analyses by result",
    labels=("result",)
)

REGISTRY: List[Union[Counter, Histogram]] = [
    http_requests_total,
    http_request_duration_seconds,
    webhook_events_total,
    resolver_strategy_total,
    identity_conflicts_total,
    push_notifications_total,
    notification_jobs_total,
    emergency_analyses_total,
]


def _label_str(labels: tuple, key: tuple) -> str:
    pairs = ",".join(f'{k}="{v}"' for k, v in zip(labels, key))
    return f"{{{pairs}}}" if pairs else ""


def format_prometheus_metrics() -> str:
    """Format all metrics in Prometheus text format."""
    lines = []

    for metric in REGISTRY:
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} {metric.metric_type}")

        if isinstance(metric, Histogram):
            data = metric.get_all()
            for key, total in data['sums'].items():
                labels = _label_str(metric.labels, key)
                lines.append(f"{metric.name}_sum{labels} {total}")
                lines.append(f"{metric.name}_count{labels} {data['totals'][key]}")
        else:
            for key, value in metric.get_all().items():
                lines.append(f"{metric.name}{_label_str(metric.labels, key)} {value}")

    return "\n".join(lines) + "\n"


# ================================
# CONVENIENCE FUNCTIONS
# ================================

def record_http_request(method: str, path: str, status_code: int, duration: float):
    """Record an HTTP request."""
    http_requests_total.inc(method=method, path=path, status_code=str(status_code))
    http_request_duration_seconds.observe(duration, method=method, path=path)


def record_webhook_event(event_type: str, status: str):
    """Record a webhook outcome (success, duplicate, rejected, error)."""
    webhook_events_total.inc(event_type=event_type, status=status)


def record_resolver_strategy(strategy: str):
    resolver_strategy_total.inc(strategy=strategy)


def record_identity_conflict(field: str):
    identity_conflicts_total.inc(field=field)


def record_push(source: str, success: bool, invalid_token: bool = False):
    """Record a single device push (source: webhook or queue)."""
    if success:
        status = "success"
    elif invalid_token:
        status = "invalid_token"
    else:
        status = "error"
    push_notifications_total.inc(source=source, status=status)


def record_notification_job(status: str):
    notification_jobs_total.inc(status=status)


def record_emergency_analysis(result: str):
    emergency_analyses_total.inc(result=result)
