"""
Stub providers for local development.

Only wired in when PROVIDER_STUB_WHEN_UNCONFIGURED is set and real
credentials are missing. Nothing leaves the process.
"""

import secrets
import time

from retention.infrastructure.observability.logging import get_logger

from .base import SendChatMessageInput, SendEmailInput, SendResult, SendSmsInput

logger = get_logger(__name__)


def stub_message_id() -> str:
    return f"stub-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class StubProvider:
    name = "stub"

    async def send_email(self, message: SendEmailInput) -> SendResult:
        logger.warning("Email provider not configured; stubbing send", to=message.to)
        return SendResult(provider_message_id=stub_message_id())

    async def send_sms(self, message: SendSmsInput) -> SendResult:
        logger.warning("SMS provider not configured; stubbing send", to=message.to)
        return SendResult(provider_message_id=stub_message_id())

    async def send_chat_message(self, message: SendChatMessageInput) -> SendResult:
        logger.warning("WhatsApp provider not configured; stubbing send", to=message.to)
        return SendResult(provider_message_id=stub_message_id())
