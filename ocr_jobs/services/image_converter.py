"""
Нормализация изображения перед OCR через ImageMagick.

Результат: первая страница исходника, grayscale, без сжатия,
со сброшенной геометрией страницы, масштабированная фильтром Lanczos.
"""

import logging

from ocr_jobs.errors import CommandError, ConversionError
from ocr_jobs.services.command_runner import CommandRunner

logger = logging.getLogger(__name__)

MAGICK = "magick"


def convert_args(source: str, dest: str, scale: str) -> list[str]:
    """Аргументы magick для нормализации изображения."""
    return [
        "convert",
        "-units", "PixelsPerInch",
        "-type", "Grayscale",
        "+compress",
        "+repage",
        f"{source}[0]",
        "-filter", "Lanczos",
        "-resize", f"{scale}%",
        dest,
    ]


def convert_image(runner: CommandRunner, source: str, dest: str, scale: str) -> None:
    """
    Конвертирует исходное изображение в TIFF для распознавания.

    Args:
        runner: исполнитель команд текущего задания
        source: путь к исходному изображению
        dest: путь к результату
        scale: масштаб в процентах по обеим осям ("50" → 50%)

    Raises:
        ConversionError: magick завершился с ошибкой
    """
    logger.info(f"Конвертация изображения: {source} → {dest}, масштаб {scale}%")

    try:
        runner.run(MAGICK, *convert_args(source, dest, scale))
    except CommandError as e:
        raise ConversionError(
            f"failed to convert source image: [{e}] ({e.output})"
        ) from e
