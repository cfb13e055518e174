"""Outbound user notices over the Telegram Bot API."""

import logging

import httpx

from settlement.config import settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends plain-text messages with ``sendMessage``; the user id is the chat id.

    Delivery failures are logged and swallowed so one blocked chat does not
    abort a recipient batch. The bot token is part of the URL and is never
    logged.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: str,
        api_url: str | None = None,
    ) -> None:
        self._client = client
        self._url = f"{(api_url or settings.telegram_api_url).rstrip('/')}/bot{bot_token}/sendMessage"

    async def send_message(self, user_id: str, text: str) -> None:
        try:
            response = await self._client.post(self._url, json={"chat_id": user_id, "text": text})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Telegram rejected notice for user %s: HTTP %d", user_id, e.response.status_code
            )
        except httpx.HTTPError as e:
            logger.warning("Could not deliver notice to user %s: %s", user_id, type(e).__name__)


class LoggingNotifier:
    """Used when no bot token is configured."""

    async def send_message(self, user_id: str, text: str) -> None:
        logger.info("Notice for user %s (not sent, no bot token): %s", user_id, text)


def get_notifier(client: httpx.AsyncClient) -> TelegramNotifier | LoggingNotifier:
    """Pick the notifier for the configured environment."""
    if settings.telegram_bot_token:
        return TelegramNotifier(client, settings.telegram_bot_token)
    return LoggingNotifier()
