from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from flask import g, has_request_context, request


_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("cad_request_id", default="")

# Atributos padrao do LogRecord; o resto veio de `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


def _clean_request_id(value: str | None) -> str:
    return str(value or "").strip()


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    """Amarra um request id aos logs emitidos fora de uma requisicao (scripts, jobs)."""
    token = _REQUEST_ID.set(_clean_request_id(request_id) or "n/a")
    try:
        yield _REQUEST_ID.get()
    finally:
        _REQUEST_ID.reset(token)


def ensure_request_id() -> str:
    request_id = _clean_request_id(getattr(g, "request_id", None))
    if not request_id:
        request_id = _clean_request_id(request.headers.get("X-Request-Id")) or uuid.uuid4().hex
        g.request_id = request_id
    _REQUEST_ID.set(request_id)
    return request_id


def current_request_id(default: str = "n/a") -> str:
    if has_request_context():
        request_id = _clean_request_id(getattr(g, "request_id", None))
        if request_id:
            return request_id
    return _REQUEST_ID.get() or default


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id()
            payload["method"] = request.method
            payload["path"] = request.path
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            payload["request_id"] = _clean_request_id(getattr(record, "request_id", None)) or current_request_id()

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and not callable(value)
        }
        for key, value in extras.items():
            payload.setdefault(key, value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).strip().upper(), logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


class Histogram:
    """Histograma cumulativo no formato do Prometheus."""

    def __init__(self, limits: Iterable[float]) -> None:
        self.limits = tuple(sorted(float(limit) for limit in limits))
        self.reset()

    def reset(self) -> None:
        self.count = 0
        self.total = 0.0
        self.hits = [0] * len(self.limits)

    def observe(self, value: float) -> None:
        amount = max(0.0, float(value))
        self.count += 1
        self.total += amount
        for index, limit in enumerate(self.limits):
            if amount <= limit:
                self.hits[index] += 1

    def export(self) -> dict:
        buckets = {f"{limit:g}": hits for limit, hits in zip(self.limits, self.hits)}
        buckets["+Inf"] = self.count
        return {"count": self.count, "sum": self.total, "buckets": buckets}


HTTP_DURATION_LIMITS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
RECOMPUTE_NODE_LIMITS = (1, 5, 10, 50, 100, 500, 1000, 5000)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.http_requests: Counter = Counter()
        self.http_durations: Dict[tuple[str, str], Histogram] = {}
        self.route_latency_max: Dict[tuple[str, str], float] = {}
        self.domain_events: Counter = Counter()
        self.category_mutations: Counter = Counter()
        self.recompute_nodes = Histogram(RECOMPUTE_NODE_LIMITS)

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        route_key = ((method or "GET").upper(), route or "unknown")
        with self._lock:
            self.http_requests[(*route_key, str(int(status_code)))] += 1
            histogram = self.http_durations.get(route_key)
            if histogram is None:
                histogram = self.http_durations[route_key] = Histogram(HTTP_DURATION_LIMITS_MS)
            histogram.observe(duration_ms)
            self.route_latency_max[route_key] = max(self.route_latency_max.get(route_key, 0.0), float(duration_ms))

    def count_domain_event(self, event_type: str) -> None:
        with self._lock:
            self.domain_events[event_type or "unknown"] += 1

    def count_category_mutation(self, operation: str) -> None:
        with self._lock:
            self.category_mutations[operation or "unknown"] += 1

    def observe_recompute(self, nodes: int) -> None:
        with self._lock:
            self.recompute_nodes.observe(nodes)

    def snapshot(self) -> dict:
        with self._lock:
            routes: Dict[tuple[str, str], dict] = {}
            for (method, route, status), value in self.http_requests.items():
                stats = routes.setdefault((method, route), {"requests": 0, "errors": 0})
                stats["requests"] += value
                if int(status) >= 400:
                    stats["errors"] += value

            by_route = []
            for key, stats in routes.items():
                histogram = self.http_durations[key]
                by_route.append(
                    {
                        "route": " ".join(key),
                        **stats,
                        "avg_latency_ms": round(histogram.total / histogram.count, 2) if histogram.count else 0.0,
                        "max_latency_ms": round(self.route_latency_max.get(key, 0.0), 2),
                    }
                )
            by_route.sort(key=lambda item: item["requests"], reverse=True)

            return {
                "requests_total": sum(stats["requests"] for stats in routes.values()),
                "errors_total": sum(stats["errors"] for stats in routes.values()),
                "by_route": by_route[:40],
                "domain_events": {
                    "emitted_total": sum(self.domain_events.values()),
                    "by_type": dict(sorted(self.domain_events.items())),
                },
                "categories": {
                    "mutations_total": sum(self.category_mutations.values()),
                    "by_operation": dict(sorted(self.category_mutations.items())),
                    "hierarchy_recompute_count": self.recompute_nodes.count,
                    "hierarchy_recompute_nodes_sum": int(self.recompute_nodes.total),
                },
            }

    def prometheus_lines(self) -> List[str]:
        with self._lock:
            lines = _prom_header("http_request_total", "counter", "Total HTTP requests by method, route and status.")
            for (method, route, status), value in sorted(self.http_requests.items()):
                lines.append(_prom_line("http_request_total", value, {"method": method, "route": route, "status": status}))

            lines += _prom_header("http_request_duration_ms", "histogram", "HTTP request duration in milliseconds.")
            for (method, route), histogram in sorted(self.http_durations.items()):
                lines += _prom_histogram("http_request_duration_ms", histogram, {"method": method, "route": route})

            lines += _prom_header("domain_event_emitted_total", "counter", "Domain events published by type.")
            for event_type, value in sorted(self.domain_events.items()):
                lines.append(_prom_line("domain_event_emitted_total", value, {"event_type": event_type}))

            lines += _prom_header("category_mutations_total", "counter", "Committed category mutations by operation.")
            for operation, value in sorted(self.category_mutations.items()):
                lines.append(_prom_line("category_mutations_total", value, {"operation": operation}))

            lines += _prom_header(
                "category_hierarchy_recompute_nodes", "histogram", "Nodes touched per level/path recompute."
            )
            lines += _prom_histogram("category_hierarchy_recompute_nodes", self.recompute_nodes)
            return lines

    def reset(self) -> None:
        with self._lock:
            self.http_requests.clear()
            self.http_durations.clear()
            self.route_latency_max.clear()
            self.domain_events.clear()
            self.category_mutations.clear()
            self.recompute_nodes.reset()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g.request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.count_domain_event(event_type)


def observe_category_mutation(operation: str) -> None:
    _METRICS.count_category_mutation(operation)


def observe_hierarchy_recompute(nodes: int) -> None:
    _METRICS.observe_recompute(nodes)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()


def _prom_header(name: str, kind: str, description: str) -> List[str]:
    return [f"# HELP {name} {description}", f"# TYPE {name} {kind}"]


def _prom_line(name: str, value: int | float, labels: dict | None = None) -> str:
    if not labels:
        return f"{name} {value}"
    rendered = ",".join(
        '{}="{}"'.format(key, str(val).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"'))
        for key, val in sorted(labels.items())
    )
    return f"{name}{{{rendered}}} {value}"


def _prom_histogram(name: str, histogram: Histogram, labels: dict | None = None) -> List[str]:
    exported = histogram.export()
    labels = dict(labels or {})
    lines = [_prom_line(f"{name}_bucket", hits, {**labels, "le": le}) for le, hits in exported["buckets"].items()]
    lines.append(_prom_line(f"{name}_sum", float(exported["sum"]), labels))
    lines.append(_prom_line(f"{name}_count", exported["count"], labels))
    return lines


def prometheus_metrics_text() -> str:
    return "\n".join(_METRICS.prometheus_lines()) + "\n"
