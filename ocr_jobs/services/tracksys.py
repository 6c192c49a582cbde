"""
Клиент Tracksys API — источник списка страниц документа.

Tracksys возвращает страницы в порядке документа:
    [{"pid": "...", "filename": "...", "title": "..."}, ...]
"""

import logging
from typing import Optional

import httpx

from ocr_jobs.errors import MetadataError
from ocr_jobs.schemas import PageInfo

logger = logging.getLogger(__name__)


class TracksysClient:
    """
    Клиент Tracksys API.

    Args:
        api_url: базовый URL API
        timeout: таймаут запроса в секундах
        client: HTTP клиент (для тестов — с httpx.MockTransport)
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def get_pages(self, pid: str, unit_id: int = 0) -> list[PageInfo]:
        """
        Получает страницы документа (или одного юнита).

        Args:
            pid: идентификатор документа
            unit_id: идентификатор юнита (0 — весь документ)

        Returns:
            list[PageInfo]: страницы в порядке документа

        Raises:
            MetadataError: ошибка сети, ответ не 200 или некорректный JSON
        """
        url = f"{self.api_url}/pid/{pid}/pages"
        params = {"unit": str(unit_id)} if unit_id > 0 else None

        logger.info(f"Tracksys: запрос страниц {url} {params or ''}")

        try:
            response = self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise MetadataError(f"Tracksys недоступен: {e}") from e

        if response.status_code != 200:
            raise MetadataError(
                f"Tracksys вернул ошибку: {response.status_code} - {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise MetadataError(f"Некорректный JSON от Tracksys: {e}") from e

        if not isinstance(payload, list):
            raise MetadataError("Tracksys вернул не список страниц")

        pages = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            pages.append(
                PageInfo(
                    pid=str(item.get("pid") or ""),
                    filename=str(item.get("filename") or ""),
                    title=item.get("title"),
                )
            )

        return pages
