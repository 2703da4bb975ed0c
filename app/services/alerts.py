"""
 * @file: alerts.py
 * @description: Оповещения оператора о сбоях синхронизации через Telegram Bot API
 * @dependencies: httpx, settings
 * @created: 2025-09-02
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger("alerts")


class AlertService:
    """
    Отправка оповещений в Telegram.
    Если бот или чат не настроены, оповещение только пишется в лог.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.bot_token = bot_token or settings.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id or settings.TELEGRAM_ALERT_CHAT_ID
        self._client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=f"https://api.telegram.org/bot{self.bot_token}", timeout=10.0)
        return self._client

    def send(self, title: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Отправляет оповещение.

        Returns:
            bool: True, если сообщение доставлено в Telegram
        """
        lines = [f"⚠️ <b>{title}</b>"]
        for key, value in (details or {}).items():
            lines.append(f"<b>{key}:</b> {value}")
        text = "\n".join(lines)

        logger.error(f"ALERT: {title} | {details or {}}")
        if not self.enabled:
            return False

        try:
            response = self._get_client().post(
                "/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Не удалось отправить оповещение в Telegram: {e}")
            return False

        if not result.get("ok", False):
            logger.error(f"Telegram отклонил оповещение: {result.get('description', 'Unknown error')}")
            return False
        return True

    def sync_failed(self, run_stats: Dict[str, Any], reason: str) -> bool:
        details = {
            "Коллекция": run_stats.get("collection"),
            "Запуск": run_stats.get("run_id"),
            "Попыток": run_stats.get("attempts"),
            "Ошибка": reason,
        }
        return self.send("Синхронизация NuvemShop не выполнена", details)


alert_service = AlertService()
