"""
Ключ задания и проверка на повторный запрос.

Ключ зависит только от формы запроса:
    - весь документ:          <pid>
    - юнит документа:         <pid>/<unit>
    - явный список страниц:   <token>

Поля email, lang, scale на ключ не влияют, поэтому повторный запрос
присоединяется к уже запущенному или завершённому заданию.
"""

import posixpath
from typing import Optional

from ocr_jobs.errors import InvalidRequestError
from ocr_jobs.schemas import JOB_MANIFEST_NAME, OCRRequest
from ocr_jobs.services.object_store import ObjectStore


def resolve_identity(request: OCRRequest) -> str:
    """
    Вычисляет ключ задания.

    Args:
        request: запрос клиента

    Returns:
        str: ключ задания (путь относительно префикса результатов)

    Raises:
        InvalidRequestError: pages без token или ключ с недопустимыми сегментами
    """
    key = request.pid

    unit_id = request.unit_id()
    if unit_id > 0:
        key = f"{request.pid}/{unit_id}"

    if request.pages:
        if not request.token:
            raise InvalidRequestError("Missing token")
        key = request.token

    _validate_key(key)
    return key


def lookup_identity(pid: str, unit: Optional[str] = None, token: Optional[str] = None) -> str:
    """
    Ключ задания для запросов статуса, выдачи и удаления.

    Список страниц здесь не передаётся, поэтому token сам по себе
    указывает на частичное задание.

    Raises:
        InvalidRequestError: ключ с недопустимыми сегментами
    """
    if token:
        key = token
    else:
        key = resolve_identity(OCRRequest(pid=pid, unit=unit))

    _validate_key(key)
    return key


def _validate_key(key: str) -> None:
    if not key or key.startswith("/"):
        raise InvalidRequestError(f"Invalid job key: {key!r}")

    for segment in key.split("/"):
        if segment in ("", ".", ".."):
            raise InvalidRequestError(f"Invalid job key: {key!r}")


def job_prefix(results_prefix: str, key: str) -> str:
    """Префикс задания в бакете результатов."""
    return posixpath.join(results_prefix, key) if results_prefix else key


def check_existing(store: ObjectStore, bucket: str, prefix: str) -> bool:
    """
    Проверяет, было ли задание с этим префиксом уже принято.

    Признак — манифест задания, который диспетчер пишет до запуска
    пайплайнов. Проверка не атомарна с последующей записью: два
    одновременных запроса могут запустить задание дважды.
    """
    return store.exists(bucket, posixpath.join(prefix, JOB_MANIFEST_NAME))
