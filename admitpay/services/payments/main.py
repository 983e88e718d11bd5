"""Public payment endpoints: pay-link redirect, checkout callback, webhook.

None of these routes take a session; the pay link is authorized by its token
and the webhook by its HMAC signature.
"""

from uuid import uuid4

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from admitpay.common.config import settings
from admitpay.common.db import SessionLocal
from admitpay.common.logging import configure_logging, logger, request_id_ctx
from admitpay.common.metrics import metrics_response, track_http_metrics
from admitpay.common.rate_limit import TokenBucketLimiter
from admitpay.common.startup import log_startup_config
from admitpay.common.tracing import instrument_app, setup_tracing
from admitpay.services.payments.gateway import RazorpayClient
from admitpay.services.payments.service import PaymentRedirectService
from admitpay.services.payments.webhook import WebhookService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "REDIS_URL",
        "APP_BASE_URL",
        "RAZORPAY_KEY_ID",
        "RAZORPAY_API_BASE",
        "RATE_LIMIT_PER_MINUTE",
    ],
)
service = PaymentRedirectService(
    SessionLocal,
    RazorpayClient.from_settings(settings),
    base_url=settings.base_url,
    currency=settings.payment_currency,
    limiter=TokenBucketLimiter.from_url(settings.redis_url, settings.rate_limit_per_minute),
)
webhooks = WebhookService(SessionLocal, settings.razorpay_webhook_secret)

app = FastAPI(title="AdmitPay Payments")
instrument_app(app)


@app.middleware("http")
async def context_middleware(request: Request, call_next):
    """Bind a request id and record HTTP metrics for every call."""

    request_id_ctx.set(request.headers.get("x-request-id") or str(uuid4()))
    return await track_http_metrics(request, call_next, settings.service_name)


@app.get("/api/pay")
async def pay(
    request: Request,
    v: str | None = None,
    payment_type: str | None = Query(default=None, alias="type"),
):
    """Redirect an emailed pay link to the gateway's hosted checkout.

    `type` picks the route; when absent or unknown it falls back to the route
    the token was issued for.
    """

    if not v:
        return JSONResponse(status_code=400, content={"error": "Missing payment token"})
    client_key = request.client.host if request.client else "unknown"
    try:
        target = await service.start_payment(v, payment_type, client_key)
    except Exception:
        logger.exception("payment_redirect_failed")
        target = service.error_url("Internal server error")
    return RedirectResponse(target, status_code=302)


@app.get("/payment/callback")
def payment_callback(request: Request):
    """Browser return from hosted checkout; the webhook is authoritative."""

    return RedirectResponse(service.callback_target(dict(request.query_params)), status_code=302)


@app.post("/api/razorpay/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
):
    """Verify and apply one gateway event."""

    body = await request.body()
    try:
        result = webhooks.handle(body, x_razorpay_signature, x_razorpay_event_id)
    except Exception as exc:
        logger.exception("webhook_processing_failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
