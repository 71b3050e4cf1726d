"""
In-memory metrics exported in Prometheus text format at /metrics.

Only counters and gauges are needed: webhook outcomes, role changes, HTTP
requests and main-stream sockets. Values live for the life of the process.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelValues = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = ""):
        self.name = name
        self.label_names = list(label_names or [])
        self.help_text = help_text
        self._values: Dict[LabelValues, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelValues:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def export(self) -> List[str]:
        lines = []
        if self.help_text:
            lines.append(f"# HELP {self.name} {self.help_text}")
        lines.append(f"# TYPE {self.name} {self.kind}")
        with self._lock:
            samples = sorted(self._values.items())
        for label_values, value in samples:
            if self.label_names:
                pairs = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, label_values))
                lines.append(f"{self.name}{{{pairs}}} {value}")
            else:
                lines.append(f"{self.name} {value}")
        return lines


class Counter(_Metric):
    kind = "counter"

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)


class Gauge(_Metric):
    kind = "gauge"

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)


class MetricsRegistry:
    def __init__(self):
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _register(self, cls, name: str, label_names, help_text: str):
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = cls(name, label_names, help_text)
            elif not isinstance(metric, cls):
                raise ValueError(f"metric {name} already registered as {metric.kind}")
            return metric

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Counter:
        return self._register(Counter, name, label_names, help_text)

    def gauge(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, help_text)

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in list(self._metrics.values()):
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for metric in list(self._metrics.values()):
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", ["method", "path", "status"], "HTTP requests by route and status."
)
subscription_webhook_events_total = METRICS.counter(
    "subscription_webhook_events_total",
    ["event_type", "outcome"],
    "Subscription webhook deliveries by outcome "
    "(accepted, rejected, unhandled, profile_missing, applied, skipped, failed).",
)
role_changes_total = METRICS.counter(
    "role_changes_total", ["action"], "Role assignments and removals."
)
main_stream_messages_sent_total = METRICS.counter(
    "main_stream_messages_sent_total", ["event_type"], "Messages pushed to main-stream sockets."
)
main_stream_active_connections = METRICS.gauge(
    "main_stream_active_connections", help_text="Open main-stream websockets."
)


_ID_SEGMENT_RE = re.compile(r"^([0-9a-fA-F-]{8,}|\d+|(cus|sub|evt|price)_[A-Za-z0-9]+)$")


def normalize_path(path: str) -> str:
    """Collapse id-like path segments (numbers, UUIDs, Stripe ids) to :id."""
    parts = [":id" if _ID_SEGMENT_RE.match(seg) else seg for seg in path.split("/") if seg]
    return "/" + "/".join(parts)
