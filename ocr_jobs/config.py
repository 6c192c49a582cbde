"""
Конфигурация OCR веб-сервиса.

Все значения читаются из .env файла (или переменных окружения).
Единый префикс: OCRWS_

Значения по умолчанию подходят для локального запуска с файловым
хранилищем; для S3 достаточно указать OCRWS_STORE_BACKEND=s3 и бакеты.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR веб-сервиса.

    Читает переменные с префиксом OCRWS_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCRWS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8080
    # Внешний адрес сервиса (для ссылок в уведомлениях)
    service_url: str = "http://localhost:8080"

    # --- Хранилище ---
    # local: каталог storage_dir (подкаталог на бакет), s3: Amazon S3
    store_backend: str = "local"
    storage_dir: str = "/tmp/ocr-ws/storage"
    source_bucket: str = "ocr-source"
    results_bucket: str = "ocr-results"
    results_prefix: str = "ocr"
    # Ключ исходного изображения страницы: поля {pid}, {filename}
    source_key_template: str = "{filename}"

    # --- Пайплайн ---
    work_dir: str = "/tmp/ocr-ws/work"
    tessdata_dir: str = "/tmp/tessdata"
    # Каталог с собранными magick/tesseract (bin/, lib/), если есть
    toolchain_home: Optional[str] = None
    default_language: str = "eng"
    default_scale: str = "100"
    ocr_psm: int = 1
    additional_formats: list[str] = ["hocr"]
    max_workers: int = 4
    # None: без ограничения времени внешних команд
    command_timeout_seconds: Optional[float] = None

    # --- Языковые файлы Tesseract ---
    lang_type: str = "fast"
    lang_branch: str = "4.0.0"
    lang_url_template: str = (
        "https://github.com/tesseract-ocr/tessdata_{type}/raw/{branch}/"
        "{script}{lang}.traineddata"
    )

    # --- Tracksys API ---
    tracksys_api_url: str = "http://localhost:8085/api"
    tracksys_timeout_seconds: float = 10.0

    # --- Уведомления ---
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_sender: str = "no-reply@ocr-ws.local"
    notify_poll_seconds: float = 10.0
    notify_max_wait_seconds: float = 6 * 60 * 60


# Глобальный экземпляр настроек
settings = Settings()
