"""
Notifier: outbound budget notifications.

Notifier.send() raises NotifyFailure when the message could not be
delivered; callers log it and carry on.
"""
import html
import logging
from typing import Protocol

import requests

from lifeledger.application.errors import NotifyFailure
from lifeledger.config import Settings

logger = logging.getLogger(__name__)

SEVERITY_INFO = "info"
SEVERITY_WARN = "warn"
SEVERITY_DANGER = "danger"

_SEVERITY_ICONS = {
    SEVERITY_INFO: "⏳",
    SEVERITY_WARN: "🟡",
    SEVERITY_DANGER: "🔴",
}


class Notifier(Protocol):

    def send(self, budget_id: str, title: str, body: str, severity: str) -> None:
        ...


class LoggingNotifier:
    """Writes notifications to the application log (default when no channel is configured)."""

    def send(self, budget_id: str, title: str, body: str, severity: str) -> None:
        logger.info("Budget notification [%s] budget_id=%s: %s: %s", severity, budget_id, title, body)


class TelegramNotifier:
    """Delivers notifications through the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 5):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def send(self, budget_id: str, title: str, body: str, severity: str) -> None:
        icon = _SEVERITY_ICONS.get(severity, "")
        text = f"{icon} <b>{html.escape(title)}</b>\n{html.escape(body)}".strip()
        try:
            resp = requests.post(
                f"https://api.telegram.org/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotifyFailure(f"Telegram send failed for budget {budget_id}: {exc}") from exc

        if resp.status_code != 200:
            raise NotifyFailure(
                f"Telegram send failed for budget {budget_id}: HTTP {resp.status_code}"
            )


def build_notifier(settings: Settings) -> Notifier:
    if settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
        return TelegramNotifier(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID)
    logger.warning("Telegram is not configured, budget notifications go to the log")
    return LoggingNotifier()
