"""
Сервисы OCR веб-сервиса.

Модули:
    - command_runner: запуск внешних программ с журналом команд
    - languages: языковые файлы Tesseract
    - image_converter: нормализация изображения (magick)
    - recognizer: распознавание (tesseract)
    - pipeline: пайплайн одной страницы
    - identity: ключ задания и проверка повторов
    - dispatcher: приём запросов и постановка в очередь
    - status: статус, выдача и удаление результатов
    - job_queue: ограниченный пул фоновых заданий
    - object_store: хранилище (каталог или S3)
    - tracksys: клиент Tracksys API
    - notifier: уведомления о завершении по email
"""

from ocr_jobs.services.dispatcher import Dispatcher, DispatchResult
from ocr_jobs.services.identity import check_existing, lookup_identity, resolve_identity
from ocr_jobs.services.languages import LanguageResolver, expand_languages
from ocr_jobs.services.pipeline import OCRPipeline
from ocr_jobs.services.status import StatusService

__all__ = [
    "Dispatcher",
    "DispatchResult",
    "resolve_identity",
    "lookup_identity",
    "check_existing",
    "LanguageResolver",
    "expand_languages",
    "OCRPipeline",
    "StatusService",
]
