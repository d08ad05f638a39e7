"""
Telegram messaging provider.

send(chat_handle, text) -> SendResult(ok). Unreachable provider raises
TransportFailure; a reachable provider that refuses the message returns
ok=False. Callers decide whether either is fatal.
"""

import time
from dataclasses import dataclass
from typing import Optional

import requests

from pollcast.core.errors import TransportFailure
from pollcast.core.relay_logging import broadcast_logger

DEFAULT_TITLE = '🔔 Poll Started!'
DEFAULT_MESSAGE = 'A new question is live - time to answer!'


def format_poll_message(title: Optional[str] = None, message: Optional[str] = None) -> str:
    """Markdown body used for both broadcast and single-user notify"""
    return f"*{title or DEFAULT_TITLE}*\n\n{message or DEFAULT_MESSAGE}"


@dataclass
class SendResult:
    ok: bool
    description: Optional[str] = None


class TelegramMessenger:
    """Sends Markdown messages through the Bot API sendMessage method"""

    def __init__(self, bot_token: str, api_base: str = 'https://api.telegram.org/bot',
                 timeout: int = 10, session: Optional[requests.Session] = None):
        self.bot_token = bot_token
        self.api_base = api_base
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "TelegramMessenger":
        return cls(
            bot_token=config.TELEGRAM_BOT_TOKEN,
            api_base=config.TELEGRAM_API_BASE,
            timeout=config.PROVIDER_TIMEOUT
        )

    @property
    def send_url(self) -> str:
        return f"{self.api_base}{self.bot_token}/sendMessage"

    def send(self, chat_handle: str, text: str) -> SendResult:
        start_time = time.time()
        try:
            response = self.session.post(self.send_url, json={
                'chat_id': chat_handle,
                'text': text,
                'parse_mode': 'Markdown'
            }, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            broadcast_logger.log_warning("PROVIDER_TIMEOUT", "Telegram request timed out", {
                "timeout": self.timeout
            })
            raise TransportFailure(cause=e) from e
        except requests.exceptions.RequestException as e:
            broadcast_logger.log_warning("PROVIDER_UNAVAILABLE", f"Telegram request failed: {e}")
            raise TransportFailure(cause=e) from e

        duration = time.time() - start_time
        try:
            payload = response.json()
        except ValueError:
            payload = {}

        ok = bool(payload.get('ok'))
        if not ok:
            broadcast_logger.log_warning("PROVIDER_REJECTED", "Telegram refused message", {
                "status_code": response.status_code,
                "description": payload.get('description'),
                "duration": f"{duration:.3f}s"
            })
        return SendResult(ok=ok, description=payload.get('description'))


def send_quietly(messenger, chat_handle: str, text: str) -> bool:
    """Send a side-effect message (welcome, confirmation); failure only logs."""
    try:
        return messenger.send(chat_handle, text).ok
    except TransportFailure as e:
        broadcast_logger.log_warning("SIDE_EFFECT_DROPPED", "Side-effect message not delivered", {
            "chat_handle": chat_handle,
            "cause": str(e.cause)
        })
        return False
