"""Prometheus metric definitions shared across the portal apps."""

from time import perf_counter

from fastapi import Request
from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


approvals_processed_total = Counter(
    "approvals_processed_total",
    "Application review decisions recorded",
    ["service", "decision"],
)
approval_emails_total = Counter(
    "approval_emails_total",
    "Approval/rejection email outcomes",
    ["service", "outcome"],
)
payment_tokens_issued_total = Counter(
    "payment_tokens_issued_total",
    "Payment tokens issued",
    ["service", "payment_type"],
)
payment_token_rejections_total = Counter(
    "payment_token_rejections_total",
    "Payment tokens rejected at redirect time",
    ["service", "reason"],
)
payment_links_created_total = Counter(
    "payment_links_created_total",
    "Hosted payment links created at the gateway",
    ["service", "payment_type"],
)
gateway_errors_total = Counter("gateway_errors_total", "Payment gateway call failures", ["service"])
gateway_latency_seconds = Histogram("gateway_latency_seconds", "Payment link creation latency", ["service"])
webhooks_received_total = Counter("webhooks_received_total", "Verified gateway webhooks", ["service", "event"])
webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Webhooks rejected for missing or invalid signature",
    ["service"],
)
duplicate_webhooks_skipped_total = Counter(
    "duplicate_webhooks_skipped_total",
    "Webhook deliveries skipped because the event id was already processed",
    ["service"],
)
webhook_dead_letters_total = Counter(
    "webhook_dead_letters_total",
    "Webhooks stored as dead letters",
    ["service", "reason"],
)
payment_status_anomalies_total = Counter(
    "payment_status_anomalies_total",
    "Payment status transitions refused by the state machine",
    ["service", "from_state", "to_state"],
)
concurrent_update_retries_total = Counter(
    "concurrent_update_retries_total",
    "Application writes retried after a version conflict",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


async def track_http_metrics(request: Request, call_next, service_name: str):
    """Record request count and latency for one HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=service_name, route=route, method=method).observe(elapsed)
        http_requests_total.labels(
            service=service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
