from __future__ import annotations

from typing import TYPE_CHECKING

from .dispatcher import Channel, LoggingChannel, ReportDispatcher
from .telegram import TelegramChannel

if TYPE_CHECKING:
    from clinicslots.config import Settings


def build_channel(settings: "Settings") -> Channel:
    if settings.telegram_enabled:
        return TelegramChannel(settings.telegram_bot_token, settings.telegram_chat_ids)
    return LoggingChannel()


__all__ = ["Channel", "LoggingChannel", "ReportDispatcher", "TelegramChannel", "build_channel"]
