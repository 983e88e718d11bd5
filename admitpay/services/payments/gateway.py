"""Razorpay payment-link API client."""

from dataclasses import dataclass

import httpx

from admitpay.common.metrics import gateway_latency_seconds
from admitpay.common.tracing import outbound_span


class GatewayError(RuntimeError):
    """Payment link could not be created."""


@dataclass(frozen=True)
class PaymentLink:
    id: str
    short_url: str
    raw: dict


class RazorpayClient:
    """Creates hosted payment links with HTTP basic auth."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "payments",
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.service_name = service_name

    @classmethod
    def from_settings(cls, settings) -> "RazorpayClient":
        return cls(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            api_base=settings.razorpay_api_base,
            timeout=settings.http_timeout_seconds,
        )

    async def create_payment_link(self, payload: dict) -> PaymentLink:
        if not self.key_id or not self.key_secret:
            raise GatewayError("Razorpay credentials not configured")
        span_attributes = {"payment.gateway": "razorpay", "payment.amount_minor": payload.get("amount")}
        latency = gateway_latency_seconds.labels(service=self.service_name)
        with outbound_span("razorpay.create_payment_link", span_attributes) as span, latency.time():
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    resp = await client.post(
                        f"{self.api_base}/payment_links",
                        json=payload,
                        auth=(self.key_id, self.key_secret),
                    )
            except httpx.HTTPError as exc:
                raise GatewayError(f"Failed to contact Razorpay: {exc}") from exc
            span.set_attribute("http.status_code", resp.status_code)

        if resp.status_code >= 400:
            raise GatewayError(f"Razorpay rejected payment link: {resp.status_code} {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayError("Invalid response received from Razorpay") from exc
        if not isinstance(data, dict) or not data.get("id") or not data.get("short_url"):
            raise GatewayError("Unexpected response format from Razorpay")
        return PaymentLink(id=data["id"], short_url=data["short_url"], raw=data)
