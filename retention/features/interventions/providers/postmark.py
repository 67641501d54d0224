"""
Postmark email provider.
"""

import httpx

from retention.config import settings
from retention.infrastructure.observability.logging import get_logger

from .base import DispatchError, SendEmailInput, SendResult

logger = get_logger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com/email"
MESSAGE_STREAM = "outbound"


class PostmarkEmailProvider:
    """Sends plain-text email through the Postmark HTTP API."""

    name = "postmark"

    def __init__(
        self,
        server_token: str,
        from_email: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.server_token = server_token
        self.from_email = from_email
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.PROVIDER_TIMEOUT_SECONDS)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send_email(self, message: SendEmailInput) -> SendResult:
        try:
            response = await self._client.post(
                POSTMARK_API_URL,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "X-Postmark-Server-Token": self.server_token,
                },
                json={
                    "From": self.from_email,
                    "To": message.to,
                    "Subject": message.subject,
                    "TextBody": message.body,
                    "MessageStream": MESSAGE_STREAM,
                },
            )
        except httpx.RequestError as e:
            logger.error("Postmark request failed", error=str(e))
            raise DispatchError(f"Postmark request failed: {e}", provider=self.name) from e

        if not response.is_success:
            logger.error(
                "Postmark rejected email",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise DispatchError(
                f"Postmark failed: {response.status_code} {response.text}",
                provider=self.name,
                status_code=response.status_code,
            )

        data = response.json()
        message_id = data.get("MessageID")
        if not message_id:
            raise DispatchError("Postmark response missing MessageID", provider=self.name)

        return SendResult(provider_message_id=message_id, raw=data)
