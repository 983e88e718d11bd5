"""HTTP surface for admin review decisions."""

from uuid import uuid4

from fastapi import FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from admitpay.common.applications import ApplicationNotFound
from admitpay.common.auth import ADMIN_ROLES, AuthError, authorize
from admitpay.common.config import settings
from admitpay.common.db import SessionLocal
from admitpay.common.logging import application_id_ctx, configure_logging, logger, request_id_ctx
from admitpay.common.metrics import metrics_response, track_http_metrics
from admitpay.common.startup import log_startup_config
from admitpay.common.tracing import instrument_app, setup_tracing
from admitpay.services.approvals.mailer import GraphMailer
from admitpay.services.approvals.schemas import ApproveRequest
from admitpay.services.approvals.service import ApprovalService, DecisionStorageError

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "APP_BASE_URL", "AZ_TENANT_ID", "AZ_CLIENT_ID", "AZ_SENDER_USER"],
)
service = ApprovalService(
    SessionLocal,
    GraphMailer.from_settings(settings),
    base_url=settings.base_url,
    help_desk_email=settings.help_desk_email,
    token_ttl_days=settings.payment_token_ttl_days,
)

app = FastAPI(title="AdmitPay Approvals")
instrument_app(app)

INVALID_PAYLOAD = "Invalid payload - id and status (Approved/Rejected) required"


@app.middleware("http")
async def context_middleware(request: Request, call_next):
    """Bind a request id and record HTTP metrics for every call."""

    request_id_ctx.set(request.headers.get("x-request-id") or str(uuid4()))
    return await track_http_metrics(request, call_next, settings.service_name)


def _error(status_code: int, message: str, details=None) -> JSONResponse:
    content = {"error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@app.post("/api/applications/approve")
async def approve(request: Request, authorization: str | None = Header(default=None)):
    """Record Approved/Rejected for one application and notify the applicant."""

    try:
        user = authorize(authorization, ADMIN_ROLES)
    except AuthError as exc:
        return _error(exc.status_code, exc.message)

    try:
        body = await request.json()
        req = ApproveRequest.model_validate(body)
    except ValidationError as exc:
        details = [
            {"path": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error(400, INVALID_PAYLOAD, details)
    except ValueError:
        return _error(400, INVALID_PAYLOAD)

    application_id_ctx.set(req.id)
    logger.info("approval_requested id=%s status=%s", req.id, req.status)
    try:
        outcome = await service.process(req.id, req.status, user.email or "admin")
    except ApplicationNotFound:
        logger.warning("approval_application_missing id=%s", req.id)
        return _error(404, "Application not found")
    except DecisionStorageError as exc:
        return _error(500, str(exc))
    except Exception as exc:
        logger.exception("approval_failed id=%s", req.id)
        return _error(500, "Internal server error", str(exc))
    return JSONResponse(content=jsonable_encoder(outcome.as_response()))


@app.get("/api/applications/{application_id}/payment")
def payment_summary(application_id: str, authorization: str | None = Header(default=None)):
    """Admin read of one application's payment status and history."""

    try:
        authorize(authorization, ADMIN_ROLES)
    except AuthError as exc:
        return _error(exc.status_code, exc.message)
    try:
        return service.payment_summary(application_id)
    except ApplicationNotFound:
        return _error(404, "Application not found")


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
