"""
Provider contract for outbound channels.

Providers speak a vendor API (send_email / send_sms / send_chat_message).
A ChannelDispatcher adapts one provider method to one Channel so the engine
can look up "how do I send on WHATSAPP" by tag and never branch on channel.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from retention.features.interventions.domain import Channel, Member


class ProviderConfigurationError(Exception):
    """A channel is in use but its provider credentials are missing."""

    def __init__(self, channel: Channel, message: str):
        super().__init__(message)
        self.channel = channel


class DispatchError(Exception):
    """A provider rejected or failed to deliver a send request."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.response_data = response_data or {}


@dataclass(slots=True, frozen=True)
class SendEmailInput:
    to: str
    subject: str
    body: str


@dataclass(slots=True, frozen=True)
class SendSmsInput:
    to: str
    body: str


@dataclass(slots=True, frozen=True)
class SendChatMessageInput:
    to: str
    body: str


@dataclass(slots=True, frozen=True)
class SendResult:
    provider_message_id: str
    raw: dict[str, Any] = field(default_factory=dict)


class EmailProvider(Protocol):
    async def send_email(self, message: SendEmailInput) -> SendResult: ...


class SmsProvider(Protocol):
    async def send_sms(self, message: SendSmsInput) -> SendResult: ...


class ChatProvider(Protocol):
    async def send_chat_message(self, message: SendChatMessageInput) -> SendResult: ...


class ChannelDispatcher(Protocol):
    channel: Channel

    async def dispatch(self, member: Member, subject: str | None, body: str) -> SendResult: ...
