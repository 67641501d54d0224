from .base import (
    ChannelDispatcher,
    DispatchError,
    ProviderConfigurationError,
    SendChatMessageInput,
    SendEmailInput,
    SendResult,
    SendSmsInput,
)
from .postmark import PostmarkEmailProvider
from .registry import EmailDispatcher, ProviderRegistry, SmsDispatcher, WhatsAppDispatcher
from .stub import StubProvider
from .twilio import TwilioProvider

__all__ = [
    "ChannelDispatcher",
    "DispatchError",
    "EmailDispatcher",
    "PostmarkEmailProvider",
    "ProviderConfigurationError",
    "ProviderRegistry",
    "SendChatMessageInput",
    "SendEmailInput",
    "SendResult",
    "SendSmsInput",
    "SmsDispatcher",
    "StubProvider",
    "TwilioProvider",
    "WhatsAppDispatcher",
]
