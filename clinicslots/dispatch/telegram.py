from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"


def _check(response: httpx.Response) -> None:
    response.raise_for_status()
    data = response.json()
    if not data.get("ok", False):
        raise RuntimeError(f"Telegram API error: {data}")


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = API_URL.format(token=bot_token, method="sendMessage")
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    with httpx.Client(timeout=timeout_seconds) as client:
        _check(client.post(url, json=payload))


def send_telegram_document(
    *,
    bot_token: str,
    chat_id: str,
    path: str | Path,
    caption: str,
    timeout_seconds: float = 60.0,
) -> None:
    url = API_URL.format(token=bot_token, method="sendDocument")
    path = Path(path)

    with httpx.Client(timeout=timeout_seconds) as client, open(path, "rb") as fh:
        _check(
            client.post(
                url,
                data={"chat_id": chat_id, "caption": caption},
                files={"document": (path.name, fh, "text/csv")},
            )
        )


class TelegramChannel:
    """Delivers report messages and files to every configured chat.

    A failing chat does not stop delivery to the others; the failures are
    logged and reported together once every chat has been tried.
    """

    def __init__(self, bot_token: str, chat_ids: tuple[str, ...]) -> None:
        self.bot_token = bot_token
        self.chat_ids = chat_ids

    def _broadcast(self, what: str, send: Callable[[str], None]) -> None:
        failed: list[str] = []
        for chat_id in self.chat_ids:
            try:
                send(chat_id)
            except Exception:
                logger.exception("Failed to send %s to Telegram chat %s", what, chat_id)
                failed.append(chat_id)
        if failed:
            raise RuntimeError(f"Telegram {what} failed for chat(s): {', '.join(failed)}")

    def send_text(self, text: str) -> None:
        self._broadcast(
            "message",
            lambda chat_id: send_telegram_message(bot_token=self.bot_token, chat_id=chat_id, text=text),
        )

    def send_file(self, path: Path, caption: str) -> None:
        self._broadcast(
            "document",
            lambda chat_id: send_telegram_document(
                bot_token=self.bot_token, chat_id=chat_id, path=path, caption=caption
            ),
        )
