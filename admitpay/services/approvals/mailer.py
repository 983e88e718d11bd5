"""Microsoft Graph mail client (client-credentials OAuth + sendMail)."""

from urllib.parse import quote

import httpx

from admitpay.common.logging import logger
from admitpay.common.tracing import outbound_span

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_BASE = "https://graph.microsoft.com/v1.0"
LOGIN_BASE = "https://login.microsoftonline.com"


class MailError(RuntimeError):
    """Token fetch or send failed."""


class GraphMailer:
    """Sends HTML mail as a configured mailbox user."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        sender: str,
        reply_to: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.sender = sender
        self.reply_to = reply_to
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings) -> "GraphMailer":
        return cls(
            tenant_id=settings.az_tenant_id,
            client_id=settings.az_client_id,
            client_secret=settings.az_client_secret,
            sender=settings.az_sender_user,
            reply_to=settings.help_desk_email,
            timeout=settings.http_timeout_seconds,
        )

    def is_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        resp = await client.post(
            f"{LOGIN_BASE}/{self.tenant_id}/oauth2/v2.0/token",
            data={
                "client_id": self.client_id,
                "scope": GRAPH_SCOPE,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        if resp.status_code >= 400:
            logger.error("graph_token_failed status=%s body=%s", resp.status_code, resp.text)
            raise MailError(f"Failed to get Graph token: {resp.status_code}")
        token = resp.json().get("access_token")
        if not token:
            raise MailError("Graph token response missing access_token")
        return token

    async def send(self, to_email: str, subject: str, html_body: str) -> None:
        """Fetch an app token and send one HTML message."""

        if not self.sender:
            raise MailError("AZ_SENDER_USER not configured for sending mail")
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": to_email}}],
                "replyTo": [{"emailAddress": {"address": self.reply_to}}] if self.reply_to else [],
            },
            "saveToSentItems": True,
        }
        with outbound_span("graph.send_mail", {"mail.provider": "microsoft_graph"}):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    token = await self._access_token(client)
                    resp = await client.post(
                        f"{GRAPH_BASE}/users/{quote(self.sender, safe='')}/sendMail",
                        headers={"Authorization": f"Bearer {token}"},
                        json=payload,
                    )
            except httpx.HTTPError as exc:
                raise MailError(f"Mail API unreachable: {exc}") from exc
            if resp.status_code >= 400:
                raise MailError(f"Failed to send email: {resp.status_code} {resp.text}")
