"""
Статус, выдача и удаление результатов задания.

Состояние не хранится отдельно и вычисляется по хранилищу:
    - нет job.json                       → unknown
    - есть страница без results.json     → in_progress
    - есть страница в состоянии failed   → failed
    - иначе                              → complete
"""

import io
import logging
import posixpath
import zipfile
from typing import Optional

from pydantic import ValidationError

from ocr_jobs.errors import JobNotFoundError
from ocr_jobs.schemas import (
    JOB_MANIFEST_NAME,
    RESULT_MANIFEST_NAME,
    RESULTS_BASE,
    JobManifest,
    JobStatus,
    JobStatusResponse,
    PipelineState,
    ResultManifest,
)
from ocr_jobs.services.identity import job_prefix
from ocr_jobs.services.object_store import ObjectStore

logger = logging.getLogger(__name__)


class StatusService:
    """
    Статус задания и доступ к его результатам.

    Args:
        store: хранилище результатов
        bucket: бакет результатов
        results_prefix: общий префикс результатов
    """

    def __init__(self, store: ObjectStore, bucket: str, results_prefix: str):
        self.store = store
        self.bucket = bucket
        self.results_prefix = results_prefix

    def prefix(self, key: str) -> str:
        return job_prefix(self.results_prefix, key)

    def page_prefix(self, key: str, page_pid: str) -> str:
        return posixpath.join(self.prefix(key), page_pid)

    def load_manifest(self, key: str) -> Optional[JobManifest]:
        data = self.store.get_bytes(
            self.bucket, posixpath.join(self.prefix(key), JOB_MANIFEST_NAME)
        )
        if data is None:
            return None
        try:
            return JobManifest.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Повреждённый манифест задания {key}: {e}")
            return None

    def load_page_result(self, key: str, page_pid: str) -> Optional[ResultManifest]:
        data = self.store.get_bytes(
            self.bucket,
            posixpath.join(self.page_prefix(key, page_pid), RESULT_MANIFEST_NAME),
        )
        if data is None:
            return None
        try:
            return ResultManifest.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Повреждённый маркер страницы {key}/{page_pid}: {e}")
            return None

    def status(self, key: str) -> JobStatusResponse:
        """
        Вычисляет статус задания.

        Args:
            key: ключ задания

        Returns:
            JobStatusResponse: статус и счётчики страниц
        """
        manifest = self.load_manifest(key)
        if manifest is None:
            return JobStatusResponse(key=key, status=JobStatus.UNKNOWN)

        done = 0
        failed = 0
        for page in manifest.pages:
            result = self.load_page_result(key, page.pid)
            if result is None:
                continue
            done += 1
            if result.state != PipelineState.SUCCEEDED:
                failed += 1

        total = len(manifest.pages)
        if done < total:
            status = JobStatus.IN_PROGRESS
        elif failed:
            status = JobStatus.FAILED
        else:
            status = JobStatus.COMPLETE

        return JobStatusResponse(
            key=key,
            status=status,
            pages_total=total,
            pages_done=done,
            pages_failed=failed,
        )

    def fetch_text(self, key: str) -> str:
        """
        Собирает текст всех страниц в порядке документа.

        Страницы без results.txt (ещё не готовы или с ошибкой) пропускаются.

        Raises:
            JobNotFoundError: задания нет
        """
        manifest = self._require_manifest(key)

        parts = []
        for page in manifest.pages:
            data = self.store.get_bytes(
                self.bucket,
                posixpath.join(self.page_prefix(key, page.pid), f"{RESULTS_BASE}.txt"),
            )
            if data is None:
                continue

            header = page.title or page.pid
            parts.append(f"{header}\n\n{data.decode('utf-8', errors='replace').strip()}")

        return "\n\n".join(parts) + ("\n" if parts else "")

    def fetch_bundle(self, key: str) -> bytes:
        """
        Упаковывает все артефакты задания в zip.

        Имена внутри архива: job.json, <page pid>/<artifact>, а также
        <txt_file> с текстом каждой страницы.

        Raises:
            JobNotFoundError: задания нет
        """
        manifest = self._require_manifest(key)
        prefix = self.prefix(key)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for object_key in self.store.list_keys(self.bucket, prefix):
                data = self.store.get_bytes(self.bucket, object_key)
                if data is None:
                    continue
                zf.writestr(posixpath.relpath(object_key, prefix), data)

            for page in manifest.pages:
                if not page.txt_file:
                    continue
                data = self.store.get_bytes(
                    self.bucket,
                    posixpath.join(self.page_prefix(key, page.pid), f"{RESULTS_BASE}.txt"),
                )
                if data is not None:
                    zf.writestr(page.txt_file, data)

        return buffer.getvalue()

    def delete(self, key: str) -> int:
        """
        Удаляет весь префикс задания.

        После удаления статус задания — unknown, и тот же запрос
        запускает новое задание.

        Returns:
            int: количество удалённых объектов

        Raises:
            JobNotFoundError: задания нет
        """
        prefix = self.prefix(key)
        if not self.store.exists(self.bucket, prefix):
            raise JobNotFoundError(f"OCR job not found: {key}")

        removed = self.store.delete_prefix(self.bucket, prefix)
        logger.info(f"Задание {key} удалено: {removed} объектов")
        return removed

    def _require_manifest(self, key: str) -> JobManifest:
        manifest = self.load_manifest(key)
        if manifest is None:
            raise JobNotFoundError(f"OCR job not found: {key}")
        return manifest
