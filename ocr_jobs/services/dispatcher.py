"""
Диспетчер OCR запросов.

Последовательность (каждый шаг может завершить обработку):
    1. Ключ задания (400 если pages без token), проверка scale и lang
    2. Задание уже есть → 303 на статус (+ монитор уведомления)
    3. Страницы из Tracksys (404 при ошибке API)
    4. Нет пригодных страниц → 404
    5. Манифест задания + по одному запуску пайплайна на страницу в очередь
    6. 202 сразу, не дожидаясь пайплайнов
"""

import logging
import math
import os
import posixpath
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

from ocr_jobs.config import Settings
from ocr_jobs.errors import InvalidRequestError, MetadataError
from ocr_jobs.schemas import (
    JOB_MANIFEST_NAME,
    JobManifest,
    OCRRequest,
    PageInfo,
    RecognitionJobConfig,
)
from ocr_jobs.services.identity import check_existing, job_prefix, resolve_identity
from ocr_jobs.services.job_queue import JobQueue
from ocr_jobs.services.languages import invalid_languages
from ocr_jobs.services.notifier import Notifier
from ocr_jobs.services.object_store import ObjectStore
from ocr_jobs.services.pipeline import OCRPipeline
from ocr_jobs.services.tracksys import TracksysClient

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """
    Результат обработки запроса диспетчером.

    Attributes:
        status_code: HTTP код ответа
        body: тело ответа
        key: ключ задания (если удалось вычислить)
        location: адрес статуса для редиректа
    """

    status_code: int
    body: dict = field(default_factory=dict)
    key: Optional[str] = None
    location: Optional[str] = None


def _error(status_code: int, error: str, message: str, key: Optional[str] = None) -> DispatchResult:
    return DispatchResult(
        status_code=status_code,
        body={"error": error, "message": message},
        key=key,
    )


def _valid_scale(scale: str) -> bool:
    try:
        value = float(scale)
    except ValueError:
        return False
    return math.isfinite(value) and value > 0


def _safe_page_pid(pid: str) -> bool:
    return "/" not in pid and pid not in (".", "..")


class Dispatcher:
    """
    Принимает OCR запросы и ставит пайплайны в очередь.

    Args:
        settings: настройки сервиса
        store: хранилище результатов
        tracksys: клиент Tracksys API
        pipeline: пайплайн распознавания
        queue: очередь фоновых заданий
        notifier: уведомления о завершении
    """

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        tracksys: TracksysClient,
        pipeline: OCRPipeline,
        queue: JobQueue,
        notifier: Notifier,
    ):
        self.settings = settings
        self.store = store
        self.tracksys = tracksys
        self.pipeline = pipeline
        self.queue = queue
        self.notifier = notifier

    def handle(self, request: OCRRequest) -> DispatchResult:
        """
        Обрабатывает запрос на OCR документа.

        Args:
            request: запрос клиента

        Returns:
            DispatchResult: 202 (задание принято), 303 (задание уже есть),
                400 (ошибка клиента), 404 (нет страниц / ошибка Tracksys)
        """
        # 1. Ключ задания
        try:
            key = resolve_identity(request)
        except InvalidRequestError as e:
            logger.warning(f"Некорректный запрос {request.pid}: {e}")
            return _error(400, "invalid_request", str(e))

        scale = request.scale or self.settings.default_scale
        if not _valid_scale(scale):
            return _error(400, "invalid_scale", f"Некорректный масштаб: {scale}", key)

        bad_languages = invalid_languages(request.lang or "")
        if bad_languages:
            return _error(
                400, "invalid_lang", f"Некорректные коды языков: {', '.join(bad_languages)}", key
            )

        if request.pages:
            logger.info(f"Запрос частичного OCR, страницы: {request.pages}")

        query = self._status_query(request)
        location = f"/ocr/{request.pid}/status" + (f"?{query}" if query else "")

        # 2. Задание уже принято или завершено
        prefix = job_prefix(self.settings.results_prefix, key)
        if check_existing(self.store, self.settings.results_bucket, prefix):
            logger.info(f"Задание {key} уже запущено или завершено")
            if request.email:
                self.queue.monitor(
                    self.notifier.monitor_and_notify, key, request.pid, request.email, query
                )
            return DispatchResult(
                status_code=303,
                body={"status": "exists", "key": key},
                key=key,
                location=location,
            )

        # 3. Страницы из Tracksys
        try:
            tracksys_pages = self.tracksys.get_pages(request.pid, request.unit_id())
        except MetadataError as e:
            logger.error(f"Ошибка Tracksys API: {e}")
            return _error(404, "metadata_error", f"Tracksys API error: [{e}]", key)

        # 4. Отбор пригодных страниц
        pages = self._select_pages(request, tracksys_pages)
        if not pages:
            logger.info(f"Нет страниц для {request.pid}")
            return _error(404, "no_pages", "No pages found for this PID", key)

        logger.info(f"{len(pages)} страниц: [{' '.join(p.pid for p in pages)}]")

        # 5. Манифест и запуск пайплайнов
        manifest = JobManifest(
            key=key,
            pid=request.pid,
            unit=request.unit,
            token=request.token,
            pages=pages,
        )
        self.store.put_bytes(
            self.settings.results_bucket,
            posixpath.join(prefix, JOB_MANIFEST_NAME),
            manifest.model_dump_json(indent=2).encode("utf-8"),
        )

        for page in pages:
            job = self.build_job_config(prefix, page, scale)
            self.queue.submit(self.pipeline.run, job)

        if request.email:
            self.queue.monitor(
                self.notifier.monitor_and_notify, key, request.pid, request.email, query
            )

        # 6. Ответ без ожидания пайплайнов
        return DispatchResult(
            status_code=202,
            body={
                "status": "accepted",
                "key": key,
                "pages": len(pages),
                "status_url": location,
            },
            key=key,
            location=location,
        )

    def _select_pages(
        self, request: OCRRequest, tracksys_pages: list[PageInfo]
    ) -> list[PageInfo]:
        wanted = set(request.page_pids())
        lang = request.lang or self.settings.default_language

        pages = []
        for page in tracksys_pages:
            if not page.pid:
                logger.warning(f"Пропуск страницы без pid: {page.model_dump()}")
                continue

            if not _safe_page_pid(page.pid):
                logger.warning(f"Пропуск страницы с недопустимым pid: {page.pid}")
                continue

            if wanted and page.pid not in wanted:
                continue

            stem = os.path.splitext(page.filename)[0] if page.filename else page.pid
            pages.append(
                page.model_copy(update={"lang": lang, "txt_file": f"{stem}.txt"})
            )

        return pages

    def build_job_config(self, prefix: str, page: PageInfo, scale: str) -> RecognitionJobConfig:
        """Параметры пайплайна для одной страницы."""
        return RecognitionJobConfig(
            bucket=self.settings.source_bucket,
            key=self.settings.source_key_template.format(
                pid=page.pid, filename=page.filename
            ),
            results_bucket=self.settings.results_bucket,
            remote_results_prefix=posixpath.join(prefix, page.pid),
            languages=page.lang,
            scale=scale,
            additional_formats=tuple(self.settings.additional_formats),
        )

    @staticmethod
    def _status_query(request: OCRRequest) -> str:
        params = {}
        if request.unit_id() > 0:
            params["unit"] = str(request.unit_id())
        if request.pages and request.token:
            params["token"] = request.token
        return urlencode(params)
