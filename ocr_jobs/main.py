"""
OCR веб-сервис — FastAPI приложение.

Принимает запросы на OCR документов по PID, ставит распознавание страниц
в фоновую очередь и отдаёт статус и результаты из хранилища.

Эндпоинты:
    GET    /                      — версия сервиса
    GET    /healthcheck           — проверка хранилища и Tesseract
    GET    /ocr/{pid}             — запуск OCR (unit, pages, token, email, lang, scale)
    GET    /ocr/{pid}/status      — статус задания
    GET    /ocr/{pid}/download    — результаты (txt или zip)
    GET    /ocr/{pid}/delete      — удаление задания
    DELETE /ocr/{pid}             — удаление задания

Запуск:
    uvicorn ocr_jobs.main:app --host 0.0.0.0 --port 8080
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.concurrency import run_in_threadpool

from ocr_jobs import __version__
from ocr_jobs.config import Settings, settings
from ocr_jobs.errors import InvalidRequestError, JobNotFoundError
from ocr_jobs.schemas import JobStatus, JobStatusResponse, OCRRequest
from ocr_jobs.services.dispatcher import Dispatcher
from ocr_jobs.services.identity import lookup_identity
from ocr_jobs.services.job_queue import JobQueue
from ocr_jobs.services.languages import LanguageResolver
from ocr_jobs.services.notifier import Notifier
from ocr_jobs.services.object_store import ObjectStore, build_object_store
from ocr_jobs.services.pipeline import OCRPipeline
from ocr_jobs.services.status import StatusService
from ocr_jobs.services.tracksys import TracksysClient

# Настройка логгера
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [OCR-WS] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _key_or_400(pid: str, unit: Optional[str], token: Optional[str]) -> str:
    try:
        return lookup_identity(pid, unit, token)
    except InvalidRequestError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "message": str(e)},
        )


def _not_found(key: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"error": "not_found", "message": f"OCR job not found: {key}"},
    )


def create_app(
    config: Optional[Settings] = None,
    store: Optional[ObjectStore] = None,
    tracksys: Optional[TracksysClient] = None,
    resolver: Optional[LanguageResolver] = None,
    queue: Optional[JobQueue] = None,
    pipeline: Optional[OCRPipeline] = None,
) -> FastAPI:
    """
    Собирает приложение и его зависимости.

    Все зависимости можно подменить (тесты, другие бэкенды);
    по умолчанию они строятся из настроек.

    Args:
        config: настройки сервиса
        store: хранилище объектов
        tracksys: клиент Tracksys API
        resolver: загрузчик языковых файлов
        queue: очередь фоновых заданий
        pipeline: пайплайн распознавания страниц

    Returns:
        FastAPI: приложение
    """
    config = config or settings
    store = store or build_object_store(config.store_backend, config.storage_dir)
    tracksys = tracksys or TracksysClient(
        config.tracksys_api_url, timeout=config.tracksys_timeout_seconds
    )
    resolver = resolver or LanguageResolver(
        config.tessdata_dir,
        config.lang_url_template,
        lang_type=config.lang_type,
        lang_branch=config.lang_branch,
    )
    queue = queue or JobQueue(max_workers=config.max_workers)

    status_service = StatusService(store, config.results_bucket, config.results_prefix)
    notifier = Notifier(status_service, config)
    pipeline = pipeline or OCRPipeline(store, resolver, config)
    dispatcher = Dispatcher(config, store, tracksys, pipeline, queue, notifier)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(f"===> OCR-WS {__version__} запущен <===")
        logger.info(
            f"Хранилище: {config.store_backend}, результаты: "
            f"{config.results_bucket}/{config.results_prefix}, воркеров: {config.max_workers}"
        )
        yield
        queue.shutdown(wait_for_jobs=True)

    app = FastAPI(
        title="OCR Web Service",
        description="Асинхронный OCR документов по PID (ImageMagick + Tesseract)",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.state.status_service = status_service
    app.state.queue = queue

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return f"OCR service version {__version__}"

    @app.get("/healthcheck")
    async def health_check() -> dict:
        """
        Проверка работоспособности сервиса.

        Returns:
            dict: статус хранилища, Tesseract и размер очереди
        """
        tesseract_ok = False
        try:
            import pytesseract
            tesseract_version = str(pytesseract.get_tesseract_version())
            tesseract_ok = True
        except Exception as e:
            tesseract_version = f"error: {e}"

        store_status = "ok"
        try:
            await run_in_threadpool(store.exists, config.results_bucket, config.results_prefix)
        except Exception as e:
            store_status = f"error: {e}"

        healthy = tesseract_ok and store_status == "ok"
        return {
            "status": "ok" if healthy else "degraded",
            "service": "ocr-ws",
            "version": __version__,
            "tesseract": {"available": tesseract_ok, "version": tesseract_version},
            "store": {"backend": config.store_backend, "status": store_status},
            "queue": {"pending": queue.pending(), "max_workers": config.max_workers},
        }

    @app.get("/ocr/{pid}")
    async def generate(
        pid: str,
        unit: Optional[str] = Query(default=None, description="ID юнита"),
        pages: Optional[str] = Query(default=None, description="PID страниц через запятую"),
        token: Optional[str] = Query(default=None, description="Ключ частичного задания"),
        email: Optional[str] = Query(default=None, description="Адрес для уведомления"),
        lang: Optional[str] = Query(default=None, description="Языки Tesseract: eng+deu"),
        scale: Optional[str] = Query(default=None, description="Масштаб в процентах"),
    ) -> Response:
        """
        Запускает OCR документа.

        Returns:
            202 — задание принято; 303 — задание уже существует (редирект на статус);
            400 — pages без token; 404 — нет страниц или ошибка Tracksys
        """
        request = OCRRequest(
            pid=pid,
            unit=unit,
            pages=pages,
            token=token,
            email=email,
            lang=lang,
            scale=scale,
        )
        logger.info(f"Запрос OCR: {request.model_dump(exclude_none=True)}")

        result = await run_in_threadpool(dispatcher.handle, request)

        if result.status_code == 303 and result.location:
            return RedirectResponse(result.location, status_code=303)

        if result.status_code >= 400:
            raise HTTPException(status_code=result.status_code, detail=result.body)

        return JSONResponse(result.body, status_code=result.status_code)

    @app.get("/ocr/{pid}/status", response_model=JobStatusResponse)
    async def job_status(
        pid: str,
        unit: Optional[str] = None,
        token: Optional[str] = None,
    ) -> JobStatusResponse:
        key = _key_or_400(pid, unit, token)
        status = await run_in_threadpool(status_service.status, key)

        if status.status == JobStatus.UNKNOWN:
            raise _not_found(key)

        return status

    @app.get("/ocr/{pid}/download")
    async def download(
        pid: str,
        unit: Optional[str] = None,
        token: Optional[str] = None,
        fmt: str = Query(default="txt", alias="format", pattern="^(txt|zip)$"),
    ) -> Response:
        """
        Отдаёт результаты задания.

        format=txt — текст всех страниц одним файлом,
        format=zip — все артефакты (txt, hocr, журналы, маркеры).
        """
        key = _key_or_400(pid, unit, token)
        filename = key.replace("/", "_")

        try:
            if fmt == "zip":
                data = await run_in_threadpool(status_service.fetch_bundle, key)
                return Response(
                    content=data,
                    media_type="application/zip",
                    headers={"Content-Disposition": f'attachment; filename="{filename}.zip"'},
                )

            text = await run_in_threadpool(status_service.fetch_text, key)
        except JobNotFoundError:
            raise _not_found(key)

        return PlainTextResponse(
            text,
            headers={"Content-Disposition": f'attachment; filename="{filename}.txt"'},
        )

    async def _delete(pid: str, unit: Optional[str], token: Optional[str]) -> dict:
        key = _key_or_400(pid, unit, token)
        try:
            removed = await run_in_threadpool(status_service.delete, key)
        except JobNotFoundError:
            raise _not_found(key)
        return {"status": "deleted", "key": key, "objects": removed}

    @app.get("/ocr/{pid}/delete")
    async def delete_get(pid: str, unit: Optional[str] = None, token: Optional[str] = None) -> dict:
        return await _delete(pid, unit, token)

    @app.delete("/ocr/{pid}")
    async def delete(pid: str, unit: Optional[str] = None, token: Optional[str] = None) -> dict:
        return await _delete(pid, unit, token)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск OCR-WS на {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
