"""
Распознавание нормализованного изображения через Tesseract CLI.

Tesseract пишет по одному файлу на каждый формат: <base>.txt,
<base>.hocr, <base>.pdf ...
"""

import logging
from typing import Sequence

from ocr_jobs.errors import CommandError, RecognitionError
from ocr_jobs.services.command_runner import CommandRunner

logger = logging.getLogger(__name__)

TESSERACT = "tesseract"


def output_formats(additional: Sequence[str]) -> list[str]:
    """Список форматов Tesseract: txt всегда первый, без повторов."""
    formats = ["txt"]
    for fmt in additional:
        if fmt and fmt not in formats:
            formats.append(fmt)
    return formats


def recognize_image(
    runner: CommandRunner,
    image: str,
    results_base: str,
    languages: str,
    additional_formats: Sequence[str] = (),
    psm: int = 1,
) -> None:
    """
    Распознаёт изображение.

    Args:
        runner: исполнитель команд текущего задания
        image: путь к нормализованному изображению
        results_base: путь к результатам без расширения
        languages: языки через "+"
        additional_formats: форматы помимо txt (hocr, pdf, ...)
        psm: режим сегментации страницы

    Raises:
        RecognitionError: tesseract завершился с ошибкой
    """
    formats = output_formats(additional_formats)
    logger.info(f"Распознавание: {image}, языки {languages}, форматы {formats}")

    args = [image, results_base, "--psm", str(psm), "-l", languages, *formats]

    try:
        runner.run(TESSERACT, *args)
    except CommandError as e:
        raise RecognitionError(
            f"failed to ocr converted image: [{e}] ({e.output})"
        ) from e
