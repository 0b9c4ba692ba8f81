from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


http_requests_total = Counter(
    "app_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)
http_request_duration_seconds = Histogram(
    "app_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
cfi_api_call_duration_milliseconds = Histogram(
    "cfi_api_call_duration_milliseconds",
    "CFI API call duration in milliseconds",
    ["service", "method"],
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)
cfi_api_errors_total = Counter(
    "cfi_api_errors_total",
    "CFI API errors",
    ["service", "error_type"],
)
cache_operations_total = Counter(
    "app_cache_operations_total",
    "Read-through cache operations",
    ["status"],
)
ai_requests_total = Counter(
    "ai_requests_total",
    "LLM requests",
    ["model", "tenant_id"],
)
ai_tokens_used = Histogram(
    "ai_tokens_used",
    "Tokens used per LLM request",
    ["model"],
    buckets=(10, 50, 100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000),
)
ai_errors_total = Counter(
    "ai_errors_total",
    "LLM errors",
    ["type"],
)
generation_tasks_total = Counter(
    "generation_tasks_total",
    "Generation tasks reaching a terminal state",
    ["type", "status"],
)


def record_request(*, method: str, route: str, status_code: int, latency_s: float) -> None:
    http_requests_total.labels(method=method, route=route, status=str(status_code)).inc()
    http_request_duration_seconds.labels(method=method, route=route).observe(latency_s)


def record_cfi_call(*, service: str, method: str, latency_ms: float, error_type: str | None = None) -> None:
    cfi_api_call_duration_milliseconds.labels(service=service, method=method).observe(latency_ms)
    if error_type is not None:
        cfi_api_errors_total.labels(service=service, error_type=error_type).inc()


def record_cache(status: str) -> None:
    # status: hit | miss | skip
    cache_operations_total.labels(status=status).inc()


def record_ai_request(*, model: str, tenant_id: int | str, tokens: int) -> None:
    ai_requests_total.labels(model=model, tenant_id=str(tenant_id)).inc()
    if tokens > 0:
        ai_tokens_used.labels(model=model).observe(tokens)


def record_ai_error(error_type: str) -> None:
    ai_errors_total.labels(type=error_type).inc()


def record_task_terminal(*, task_type: str, status: str) -> None:
    generation_tasks_total.labels(type=task_type, status=status).inc()


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
