"""
Channel dispatchers and the registry the engine resolves them from.
"""

from __future__ import annotations

from retention.config import Settings, settings
from retention.features.interventions.domain import Channel, Member
from retention.infrastructure.observability.logging import get_logger

from .base import (
    ChannelDispatcher,
    ChatProvider,
    DispatchError,
    EmailProvider,
    ProviderConfigurationError,
    SendChatMessageInput,
    SendEmailInput,
    SendResult,
    SendSmsInput,
    SmsProvider,
)
from .postmark import PostmarkEmailProvider
from .stub import StubProvider
from .twilio import TwilioProvider

logger = get_logger(__name__)


class EmailDispatcher:
    channel = Channel.EMAIL

    def __init__(self, provider: EmailProvider):
        self.provider = provider

    async def dispatch(self, member: Member, subject: str | None, body: str) -> SendResult:
        if not member.email:
            raise DispatchError("Member has no email")
        return await self.provider.send_email(
            SendEmailInput(to=member.email, subject=subject or "", body=body)
        )


class SmsDispatcher:
    channel = Channel.SMS

    def __init__(self, provider: SmsProvider):
        self.provider = provider

    async def dispatch(self, member: Member, subject: str | None, body: str) -> SendResult:
        if not member.phone:
            raise DispatchError("Member has no phone")
        return await self.provider.send_sms(SendSmsInput(to=member.phone, body=body))


class WhatsAppDispatcher:
    channel = Channel.WHATSAPP

    def __init__(self, provider: ChatProvider):
        self.provider = provider

    async def dispatch(self, member: Member, subject: str | None, body: str) -> SendResult:
        if not member.phone:
            raise DispatchError("Member has no phone")
        return await self.provider.send_chat_message(
            SendChatMessageInput(to=member.phone, body=body)
        )


class ProviderRegistry:
    """
    Maps each Channel to the dispatcher that sends on it.

    A channel can be registered as unavailable with a reason; ``require``
    then raises ProviderConfigurationError instead of returning a dispatcher.
    """

    def __init__(self, dispatchers: list[ChannelDispatcher] | None = None):
        self._dispatchers: dict[Channel, ChannelDispatcher] = {}
        self._unavailable: dict[Channel, str] = {}
        for dispatcher in dispatchers or []:
            self.register(dispatcher)

    def register(self, dispatcher: ChannelDispatcher) -> None:
        self._dispatchers[dispatcher.channel] = dispatcher
        self._unavailable.pop(dispatcher.channel, None)

    def mark_unavailable(self, channel: Channel, reason: str) -> None:
        self._dispatchers.pop(channel, None)
        self._unavailable[channel] = reason

    def require(self, channel: Channel) -> ChannelDispatcher:
        dispatcher = self._dispatchers.get(channel)
        if dispatcher is None:
            reason = self._unavailable.get(channel, f"No provider registered for {channel}")
            raise ProviderConfigurationError(channel, reason)
        return dispatcher

    @property
    def channels(self) -> list[Channel]:
        return list(self._dispatchers)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ProviderRegistry:
        config = config or settings
        registry = cls()
        stub = StubProvider() if config.PROVIDER_STUB_WHEN_UNCONFIGURED else None

        if config.postmark_configured():
            registry.register(
                EmailDispatcher(
                    PostmarkEmailProvider(config.POSTMARK_SERVER_TOKEN, config.POSTMARK_FROM_EMAIL)
                )
            )
        elif stub:
            registry.register(EmailDispatcher(stub))
        else:
            registry.mark_unavailable(
                Channel.EMAIL, "POSTMARK_SERVER_TOKEN and POSTMARK_FROM_EMAIL must be set"
            )

        twilio = (
            TwilioProvider(
                config.TWILIO_ACCOUNT_SID,
                config.TWILIO_AUTH_TOKEN,
                from_sms=config.TWILIO_FROM_SMS,
                from_whatsapp=config.TWILIO_FROM_WHATSAPP,
            )
            if config.twilio_configured()
            else None
        )
        for channel, dispatcher_cls, sender in (
            (Channel.SMS, SmsDispatcher, config.TWILIO_FROM_SMS),
            (Channel.WHATSAPP, WhatsAppDispatcher, config.TWILIO_FROM_WHATSAPP or config.TWILIO_FROM_SMS),
        ):
            if twilio and sender:
                registry.register(dispatcher_cls(twilio))
            elif stub:
                registry.register(dispatcher_cls(stub))
            else:
                registry.mark_unavailable(
                    channel, f"Twilio credentials and a sender number are required for {channel}"
                )

        logger.info(
            "Provider registry built",
            channels=[str(c) for c in registry.channels],
            stub_fallback=bool(stub),
        )
        return registry
