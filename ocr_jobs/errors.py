"""
Исключения OCR веб-сервиса.

HTTP слой переводит их в ответы 4xx, пайплайн — в PipelineResult(success=False).
"""


class OCRJobError(Exception):
    """Базовое исключение сервиса."""


class InvalidRequestError(OCRJobError):
    """Некорректный запрос клиента (например pages без token)."""


class MetadataError(OCRJobError):
    """Ошибка Tracksys API."""


class JobNotFoundError(OCRJobError):
    """Задание с таким ключом отсутствует в хранилище."""


class UnhandledRequestError(OCRJobError):
    """Запрос воркеру неизвестного формата."""


class PipelineError(OCRJobError):
    """Ошибка этапа пайплайна распознавания."""


class CommandError(PipelineError):
    """
    Внешняя команда завершилась с ошибкой.

    Attributes:
        command: имя программы
        output: объединённый вывод команды
    """

    def __init__(self, message: str, command: str = "", output: str = ""):
        super().__init__(message)
        self.command = command
        self.output = output


class LanguageFetchError(PipelineError):
    """Не удалось получить языковой файл Tesseract."""


class ConversionError(PipelineError):
    """Ошибка нормализации изображения (magick)."""


class RecognitionError(PipelineError):
    """Ошибка распознавания (tesseract)."""


class ObjectStoreError(OCRJobError):
    """Ошибка чтения или записи в хранилище объектов."""
