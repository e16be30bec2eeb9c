from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests_total = 0
        self._errors_total = 0
        self._by_route: Dict[str, Dict[str, float]] = {}
        self._http_request_total: Dict[tuple[str, str, str], int] = {}
        self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}

        self._domain_event_emitted_total: Dict[str, int] = {}
        self._quote_transition_total: Dict[tuple[str, str], int] = {}
        self._access_grant_created_total = 0
        self._dependency_failure_total: Dict[str, int] = {}
        self._notification_outbox_total: Dict[str, int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _increment(counter: dict, key, amount: int = 1) -> None:
        counter[key] = int(counter.get(key, 0)) + amount

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))

        key = f"{method_key} {route_key}"
        with self._lock:
            bucket = self._by_route.setdefault(
                key,
                {
                    "requests": 0.0,
                    "errors": 0.0,
                    "latency_sum_ms": 0.0,
                    "latency_max_ms": 0.0,
                },
            )
            bucket["requests"] += 1
            bucket["latency_sum_ms"] += max(0.0, float(duration_ms))
            bucket["latency_max_ms"] = max(bucket["latency_max_ms"], max(0.0, float(duration_ms)))
            self._requests_total += 1
            if int(status_code) >= 400:
                bucket["errors"] += 1
                self._errors_total += 1

            self._increment(self._http_request_total, (method_key, route_key, status_key))
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_domain_event_emitted(self, event_type: str) -> None:
        key = str(event_type or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._domain_event_emitted_total, key)

    def observe_quote_transition(self, entity: str, to_status: str) -> None:
        key = (str(entity or "unknown"), str(to_status or "unknown"))
        with self._lock:
            self._increment(self._quote_transition_total, key)

    def observe_access_grant_created(self) -> None:
        with self._lock:
            self._access_grant_created_total += 1

    def observe_dependency_failure(self, dependency: str) -> None:
        key = str(dependency or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._dependency_failure_total, key)

    def observe_notification_outbox(self, result: str, count: int = 1) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        key = str(result or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._notification_outbox_total, key, increment)

    def snapshot(self) -> dict:
        with self._lock:
            routes = {}
            for key, bucket in self._by_route.items():
                requests = max(1.0, bucket["requests"])
                routes[key] = {
                    "requests": int(bucket["requests"]),
                    "errors": int(bucket["errors"]),
                    "avg_latency_ms": round(bucket["latency_sum_ms"] / requests, 2),
                    "max_latency_ms": round(bucket["latency_max_ms"], 2),
                }
            return {
                "requests_total": self._requests_total,
                "errors_total": self._errors_total,
                "routes": routes,
                "domain_events": dict(self._domain_event_emitted_total),
                "access_grants_created": self._access_grant_created_total,
                "dependency_failures": dict(self._dependency_failure_total),
                "notification_outbox": dict(self._notification_outbox_total),
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": [
                    {"method": method, "route": route, "status": status, "value": value}
                    for (method, route, status), value in sorted(self._http_request_total.items())
                ],
                "http_request_duration_ms": [
                    {
                        "method": method,
                        "route": route,
                        "count": state["count"],
                        "sum": state["sum"],
                        "buckets": dict(state["buckets"]),
                    }
                    for (method, route), state in sorted(self._http_request_duration_ms.items())
                ],
                "domain_event_emitted_total": dict(self._domain_event_emitted_total),
                "quote_transition_total": dict(self._quote_transition_total),
                "access_grant_created_total": self._access_grant_created_total,
                "dependency_failure_total": dict(self._dependency_failure_total),
                "notification_outbox_total": dict(self._notification_outbox_total),
            }

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._by_route.clear()
            self._http_request_total.clear()
            self._http_request_duration_ms.clear()
            self._domain_event_emitted_total.clear()
            self._quote_transition_total.clear()
            self._access_grant_created_total = 0
            self._dependency_failure_total.clear()
            self._notification_outbox_total.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_quote_transition(entity: str, to_status: str) -> None:
    _METRICS.observe_quote_transition(entity, to_status)


def observe_access_grant_created() -> None:
    _METRICS.observe_access_grant_created()


def observe_dependency_failure(dependency: str) -> None:
    _METRICS.observe_dependency_failure(dependency)


def observe_notification_outbox(result: str, count: int = 1) -> None:
    _METRICS.observe_notification_outbox(result, count)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def prometheus_metrics_text(*, outbox_state: dict | None = None) -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for sample in snapshot["http_request_total"]:
        lines.append(
            _prom_line(
                "http_request_total",
                int(sample["value"]),
                labels={"method": sample["method"], "route": sample["route"], "status": sample["status"]},
            )
        )

    lines.append("# HELP http_request_duration_ms HTTP request duration in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for hist in snapshot["http_request_duration_ms"]:
        base_labels = {"method": hist["method"], "route": hist["route"]}
        for le_label, bucket_value in hist["buckets"].items():
            lines.append(
                _prom_line("http_request_duration_ms_bucket", int(bucket_value), labels=base_labels | {"le": le_label})
            )
        lines.append(_prom_line("http_request_duration_ms_sum", float(hist["sum"]), labels=base_labels))
        lines.append(_prom_line("http_request_duration_ms_count", int(hist["count"]), labels=base_labels))

    lines.append("# HELP domain_event_emitted_total Domain events published on the event bus.")
    lines.append("# TYPE domain_event_emitted_total counter")
    for event_type, value in sorted(snapshot["domain_event_emitted_total"].items()):
        lines.append(_prom_line("domain_event_emitted_total", int(value), labels={"event_type": event_type}))

    lines.append("# HELP quote_transition_total Quote and response state transitions.")
    lines.append("# TYPE quote_transition_total counter")
    for (entity, to_status), value in sorted(snapshot["quote_transition_total"].items()):
        lines.append(_prom_line("quote_transition_total", int(value), labels={"entity": entity, "to": to_status}))

    lines.append("# HELP access_grant_created_total Access grants created by quote acceptance.")
    lines.append("# TYPE access_grant_created_total counter")
    lines.append(_prom_line("access_grant_created_total", int(snapshot["access_grant_created_total"])))

    lines.append("# HELP dependency_failure_total Best-effort collaborator failures.")
    lines.append("# TYPE dependency_failure_total counter")
    for dependency, value in sorted(snapshot["dependency_failure_total"].items()):
        lines.append(_prom_line("dependency_failure_total", int(value), labels={"dependency": dependency}))

    queue = ((outbox_state or {}).get("queue") or {}) if isinstance(outbox_state, dict) else {}
    lines.append("# HELP notification_outbox_queue_size Notification outbox size by state.")
    lines.append("# TYPE notification_outbox_queue_size gauge")
    for state in ("pending", "sent", "failed"):
        lines.append(
            _prom_line("notification_outbox_queue_size", int(queue.get(state) or 0), labels={"state": state})
        )

    lines.append("# HELP notification_outbox_total Notification outbox processing results.")
    lines.append("# TYPE notification_outbox_total counter")
    for result, value in sorted(snapshot["notification_outbox_total"].items()):
        lines.append(_prom_line("notification_outbox_total", int(value), labels={"result": result}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)


def outbox_health(db) -> dict:
    rows = db.execute(
        """
        SELECT status, COUNT(*) AS total
        FROM notification_outbox
        GROUP BY status
        """
    ).fetchall()
    queue = {"pending": 0, "sent": 0, "failed": 0}
    for row in rows:
        queue[str(row["status"])] = int(row["total"] or 0)
    status = "degraded" if queue["failed"] > 0 else "ok"
    return {"worker_status": status, "queue": queue}
