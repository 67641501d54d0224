"""
Twilio provider for SMS and WhatsApp.

Both channels use the same Messages endpoint; WhatsApp addresses carry a
``whatsapp:`` prefix on To and From.
"""

import httpx

from retention.config import settings
from retention.infrastructure.observability.logging import get_logger

from .base import DispatchError, SendChatMessageInput, SendResult, SendSmsInput

logger = get_logger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


def _whatsapp_address(number: str) -> str:
    return number if number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{number}"


class TwilioProvider:
    name = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_sms: str | None = None,
        from_whatsapp: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.account_sid = account_sid
        self.from_sms = from_sms
        self.from_whatsapp = from_whatsapp or from_sms
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.PROVIDER_TIMEOUT_SECONDS)
        )
        self._auth = httpx.BasicAuth(account_sid, auth_token)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}/Messages.json"

    async def close(self) -> None:
        await self._client.aclose()

    async def _create_message(self, to: str, from_: str, body: str, operation: str) -> SendResult:
        try:
            response = await self._client.post(
                self.messages_url,
                auth=self._auth,
                data={"To": to, "From": from_, "Body": body},
            )
        except httpx.RequestError as e:
            logger.error(f"Twilio {operation} request failed", error=str(e))
            raise DispatchError(f"Twilio {operation} request failed: {e}", provider=self.name) from e

        if not response.is_success:
            logger.error(
                f"Twilio rejected {operation}",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise DispatchError(
                f"Twilio {operation} failed: {response.status_code} {response.text}",
                provider=self.name,
                status_code=response.status_code,
            )

        data = response.json()
        sid = data.get("sid")
        if not sid:
            raise DispatchError(f"Twilio {operation} response missing sid", provider=self.name)

        return SendResult(provider_message_id=sid, raw=data)

    async def send_sms(self, message: SendSmsInput) -> SendResult:
        if not self.from_sms:
            raise DispatchError("Twilio SMS sender number not configured", provider=self.name)
        return await self._create_message(message.to, self.from_sms, message.body, "SMS")

    async def send_chat_message(self, message: SendChatMessageInput) -> SendResult:
        if not self.from_whatsapp:
            raise DispatchError("Twilio WhatsApp sender number not configured", provider=self.name)
        return await self._create_message(
            _whatsapp_address(message.to),
            _whatsapp_address(self.from_whatsapp),
            message.body,
            "WhatsApp",
        )
