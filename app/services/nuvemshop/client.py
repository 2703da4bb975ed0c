"""
 * @file: client.py
 * @description: Синхронный клиент REST API NuvemShop с повторами и постраничной загрузкой
 * @dependencies: httpx, settings, sync_config
 * @created: 2025-09-02
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

import httpx

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.sync_config import sync_config
from app.utils.date_utils import format_api_datetime

logger = logging.getLogger("nuvemshop.api")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
# POST повторяется только при 429
NON_IDEMPOTENT_RETRY_STATUS_CODES = {429}


class NuvemshopClient:
    """
    Клиент NuvemShop API: {base_url}/{store_id}/{collection} и регистрация вебхуков.

    Повторяет запросы при 429/5xx и сетевых ошибках с экспоненциальной задержкой,
    остальные ошибки отдаёт сразу как UpstreamUnavailable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        store_id: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        :param base_url: Базовый URL API, например "https://api.nuvemshop.com.br/v1"
        :param store_id: ID магазина (user_id приложения)
        :param access_token: Токен доступа приложения
        :param http_client: Готовый httpx.Client (в тестах с MockTransport)
        """
        self.base_url = (base_url or settings.NUVEMSHOP_API_URL).rstrip("/")
        self.store_id = store_id or settings.NUVEMSHOP_STORE_ID
        self.access_token = access_token or settings.NUVEMSHOP_ACCESS_TOKEN
        self.max_retries = sync_config.api_max_retries if max_retries is None else max_retries
        self.backoff_base = sync_config.api_backoff_base_seconds
        self.backoff_max = sync_config.api_backoff_max_seconds
        self.sleep = sleep
        self.headers = {
            "Authentication": f"bearer {self.access_token}",
            "Content-Type": "application/json",
            "User-Agent": settings.NUVEMSHOP_USER_AGENT,
        }
        self.client = http_client or httpx.Client(timeout=timeout or settings.NUVEMSHOP_TIMEOUT_SECONDS)

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _url(self, collection: str) -> str:
        return f"{self.base_url}/{self.store_id}/{collection}"

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    def _get(self, collection: str, params: Dict[str, Any]) -> httpx.Response:
        """GET с повторами. Возвращает ответ со статусом < 400 или 404."""
        return self._request("GET", collection, params=params)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        retry_statuses: Set[int] = RETRYABLE_STATUS_CODES,
    ) -> httpx.Response:
        """Запрос с повторами. Возвращает ответ со статусом < 400 или 404."""
        if not self.store_id or not self.access_token:
            raise UpstreamUnavailable(path, response_text="NuvemShop credentials are not configured")

        url = self._url(path)
        last_status = None
        last_text = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.client.request(method, url, params=params, json=json, headers=self.headers)
            except httpx.HTTPError as e:
                last_status, last_text = None, str(e)
                logger.warning(f"Сетевая ошибка NuvemShop {method} {path} (попытка {attempt + 1}): {e}")
            else:
                if response.status_code < 400 or response.status_code == 404:
                    return response
                last_status, last_text = response.status_code, response.text
                if response.status_code not in retry_statuses:
                    logger.error(f"Ошибка NuvemShop {method} {path}: {response.status_code} - {response.text[:200]}")
                    raise UpstreamUnavailable(path, response.status_code, response.text)
                logger.warning(
                    f"NuvemShop {method} {path} ответил {response.status_code} "
                    f"(попытка {attempt + 1}/{self.max_retries + 1})"
                )

            if attempt < self.max_retries:
                self.sleep(self._backoff(attempt))

        raise UpstreamUnavailable(path, last_status, last_text)

    def list_page(
        self,
        collection: str,
        updated_at_min: Optional[datetime] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Одна страница коллекции, отсортированной платформой.

        Returns:
            List[Dict[str, Any]]: Записи страницы; пустой список, если страниц больше нет
        """
        params: Dict[str, Any] = {"page": page, "per_page": per_page or sync_config.page_size}
        if updated_at_min:
            params["updated_at_min"] = format_api_datetime(updated_at_min)

        response = self._get(collection, params)
        if response.status_code == 404:
            # NuvemShop отвечает 404 "Last page is N" за пределами последней страницы
            if page > 1 or "last page" in response.text.lower():
                return []
            raise UpstreamUnavailable(collection, 404, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(collection, response.status_code, f"invalid JSON: {e}") from e
        if not isinstance(data, list):
            raise UpstreamUnavailable(collection, response.status_code, "unexpected response shape")
        return data

    def iter_pages(
        self,
        collection: str,
        updated_at_min: Optional[datetime] = None,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> Iterator[List[Dict[str, Any]]]:
        """Итерирует страницы, пока платформа отдаёт полные страницы."""
        per_page = per_page or sync_config.page_size
        max_pages = max_pages or sync_config.max_pages_per_run
        page = 1
        while page <= max_pages:
            records = self.list_page(collection, updated_at_min, page, per_page)
            if not records:
                return
            logger.info(f"NuvemShop {collection}: страница {page}, записей {len(records)}")
            yield records
            if len(records) < per_page:
                return
            page += 1
        logger.warning(f"NuvemShop {collection}: достигнут лимит страниц {max_pages}")

    def iter_updated(
        self,
        collection: str,
        updated_at_min: Optional[datetime] = None,
        per_page: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        for records in self.iter_pages(collection, updated_at_min, per_page):
            yield from records

    def _json(self, path: str, response: httpx.Response) -> Any:
        if response.status_code == 404:
            raise UpstreamUnavailable(path, 404, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(path, response.status_code, f"invalid JSON: {e}") from e

    def list_webhooks(self) -> List[Dict[str, Any]]:
        """Вебхуки, зарегистрированные приложением в магазине."""
        data = self._json("webhooks", self._get("webhooks", {}))
        return data if isinstance(data, list) else []

    def register_webhook(self, event: str, url: str) -> Dict[str, Any]:
        """
        Регистрирует вебхук event -> url.

        Returns:
            Dict[str, Any]: Созданный вебхук (id, event, url, created_at)
        """
        response = self._request(
            "POST", "webhooks", json={"event": event, "url": url},
            retry_statuses=NON_IDEMPOTENT_RETRY_STATUS_CODES,
        )
        webhook = self._json("webhooks", response)
        logger.info(f"Вебхук {event} зарегистрирован: id={webhook.get('id')}, url={url}")
        return webhook

    def update_webhook(self, webhook_id: str, event: Optional[str] = None, url: Optional[str] = None) -> Dict[str, Any]:
        body = {k: v for k, v in (("event", event), ("url", url)) if v is not None}
        path = f"webhooks/{webhook_id}"
        webhook = self._json(path, self._request("PUT", path, json=body))
        logger.info(f"Вебхук {webhook_id} обновлён: {body}")
        return webhook

    def delete_webhook(self, webhook_id: str) -> bool:
        """
        Удаляет вебхук.

        Returns:
            bool: False, если вебхука уже нет
        """
        response = self._request("DELETE", f"webhooks/{webhook_id}")
        if response.status_code == 404:
            logger.info(f"Вебхук {webhook_id} уже удалён")
            return False
        logger.info(f"Вебхук {webhook_id} удалён")
        return True
