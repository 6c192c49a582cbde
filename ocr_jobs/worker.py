"""
Прямой запуск пайплайна для одного изображения.

Поддерживаются два вида запросов:
    - workflow: {"pid", "parentpid", "bucket", "key", "lang", "scale"}
      результаты: results/[<parentpid>/]<pid>/<scale>, форматы txt+hocr
    - событие S3 о загрузке в standalone/requests/...
      результаты: standalone/results/<путь без standalone/requests/>,
      масштаб 100, форматы txt+hocr+pdf

Запуск:
    python -m ocr_jobs.worker event.json
"""

import argparse
import json
import logging
import posixpath
import sys
from typing import Optional

from ocr_jobs.config import Settings, settings
from ocr_jobs.errors import UnhandledRequestError
from ocr_jobs.schemas import RecognitionJobConfig
from ocr_jobs.services.languages import LanguageResolver
from ocr_jobs.services.object_store import build_object_store
from ocr_jobs.services.pipeline import OCRPipeline

logger = logging.getLogger(__name__)

STANDALONE_REQUESTS_PREFIX = "standalone/requests/"
STANDALONE_RESULTS_PREFIX = "standalone/results"
WORKFLOW_RESULTS_PREFIX = "results"


def workflow_job_config(event: dict) -> RecognitionJobConfig:
    """Параметры пайплайна для запроса workflow."""
    pid = event["pid"]
    parent_pid = event.get("parentpid") or ""
    scale = event.get("scale") or "100"

    remote_sub_dir = pid
    if parent_pid and parent_pid != pid:
        remote_sub_dir = posixpath.join(parent_pid, pid)

    return RecognitionJobConfig(
        bucket=event["bucket"],
        key=event["key"],
        results_bucket=event["bucket"],
        remote_results_prefix=posixpath.join(WORKFLOW_RESULTS_PREFIX, remote_sub_dir, scale),
        languages=event.get("lang") or "",
        scale=scale,
        additional_formats=("hocr",),
    )


def standalone_job_config(event: dict) -> RecognitionJobConfig:
    """Параметры пайплайна для события S3 (первая запись)."""
    s3 = event["Records"][0]["s3"]
    bucket = s3["bucket"]["name"]
    key = s3["object"]["key"]

    stripped = key.replace(STANDALONE_REQUESTS_PREFIX, "")
    prefix = posixpath.join(STANDALONE_RESULTS_PREFIX, stripped)
    logger.info(f"key: [{key}] => [{stripped}] => [{prefix}]")

    return RecognitionJobConfig(
        bucket=bucket,
        key=key,
        results_bucket=bucket,
        remote_results_prefix=prefix,
        languages="",
        scale="100",
        additional_formats=("hocr", "pdf"),
    )


def job_config_from_event(event: dict) -> RecognitionJobConfig:
    """
    Определяет тип запроса и строит параметры пайплайна.

    Raises:
        UnhandledRequestError: запрос неизвестного формата
    """
    if event.get("pid"):
        logger.info("Запрос workflow")
        return workflow_job_config(event)

    if event.get("Records"):
        logger.info("Запрос standalone (событие S3)")
        return standalone_job_config(event)

    raise UnhandledRequestError("unhandled request type")


def handle_ocr_request(
    event: dict,
    pipeline: Optional[OCRPipeline] = None,
    config: Optional[Settings] = None,
) -> dict:
    """
    Выполняет пайплайн синхронно и возвращает распознанный текст.

    Args:
        event: запрос workflow или событие S3
        pipeline: пайплайн (по умолчанию строится из настроек)
        config: настройки сервиса

    Returns:
        dict: {"text": "..."}

    Raises:
        UnhandledRequestError: запрос неизвестного формата
        RuntimeError: пайплайн завершился с ошибкой
    """
    job = job_config_from_event(event)

    if pipeline is None:
        config = config or settings
        pipeline = OCRPipeline(
            build_object_store(config.store_backend, config.storage_dir),
            LanguageResolver(
                config.tessdata_dir,
                config.lang_url_template,
                lang_type=config.lang_type,
                lang_branch=config.lang_branch,
            ),
            config,
        )

    result = pipeline.run(job)
    if not result.success:
        raise RuntimeError(result.error)

    return {"text": result.text}


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [OCR-Worker] %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="Распознавание одного изображения")
    parser.add_argument("event", help="JSON файл с запросом ('-' — stdin)")
    args = parser.parse_args(argv)

    if args.event == "-":
        event = json.load(sys.stdin)
    else:
        with open(args.event, encoding="utf-8") as f:
            event = json.load(f)

    try:
        response = handle_ocr_request(event)
    except (UnhandledRequestError, RuntimeError) as e:
        logger.error(f"Ошибка: {e}")
        return 1

    json.dump(response, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
