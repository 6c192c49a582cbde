"""
Пайплайн распознавания одного изображения.

Этапы (строго последовательно):
    1. Downloading: исходное изображение из хранилища
    2. VersionCheck: версии magick/tesseract/библиотек в журнал (не влияет на результат)
    3. LanguageResolution: проверка и загрузка языковых файлов
    4. Converting: нормализация изображения (magick)
    5. Recognizing: распознавание (tesseract)
    6. ReadingResult: чтение results.txt

Ошибка любого этапа переводит пайплайн в Failed. Очистка выполняется всегда:
журнал команд, все файлы results.* и терминальный маркер results.json
выгружаются в хранилище, рабочий каталог удаляется.
"""

import glob
import json
import logging
import os
import posixpath
import shutil
import tempfile
from typing import Callable, Optional

from ocr_jobs.config import Settings
from ocr_jobs.errors import CommandError, OCRJobError
from ocr_jobs.schemas import (
    COMMAND_LOG_NAME,
    RESULT_MANIFEST_NAME,
    RESULTS_BASE,
    CommandHistory,
    PipelineResult,
    PipelineState,
    RecognitionJobConfig,
    ResultManifest,
)
from ocr_jobs.services.command_runner import CommandRunner
from ocr_jobs.services.image_converter import MAGICK, convert_image
from ocr_jobs.services.languages import LanguageResolver
from ocr_jobs.services.object_store import ObjectStore
from ocr_jobs.services.recognizer import TESSERACT, recognize_image

logger = logging.getLogger(__name__)

CONVERTED_IMAGE_NAME = "source-converted.tif"


class OCRPipeline:
    """
    Выполняет пайплайн распознавания для RecognitionJobConfig.

    Экземпляр не хранит состояния запусков и может использоваться
    из нескольких потоков: каждый run() получает свой рабочий каталог
    и свой журнал команд.

    Args:
        store: хранилище исходников и результатов
        resolver: загрузчик языковых файлов
        settings: настройки сервиса
        runner_factory: конструктор исполнителя команд (history, env, timeout)
    """

    def __init__(
        self,
        store: ObjectStore,
        resolver: LanguageResolver,
        settings: Settings,
        runner_factory: Callable[..., CommandRunner] = CommandRunner,
    ):
        self.store = store
        self.resolver = resolver
        self.settings = settings
        self.runner_factory = runner_factory

        # Языки, поставляемые с toolchain, не скачиваются
        if settings.toolchain_home:
            resolver.seed_from(os.path.join(settings.toolchain_home, "share", "tessdata"))

    def command_env(self) -> dict[str, str]:
        """Окружение внешних команд: TESSDATA_PREFIX и собранный toolchain."""
        env = dict(os.environ)
        env["TESSDATA_PREFIX"] = self.settings.tessdata_dir

        home = self.settings.toolchain_home
        if home:
            env["PATH"] = f"{home}/bin:{env.get('PATH', '')}"
            env["LD_LIBRARY_PATH"] = f"{home}/lib:{env.get('LD_LIBRARY_PATH', '')}"

        return env

    def run(self, job: RecognitionJobConfig) -> PipelineResult:
        """
        Запускает пайплайн.

        Args:
            job: параметры запуска

        Returns:
            PipelineResult: успех и текст либо ошибка и этап, на котором она произошла
        """
        history = CommandHistory()
        runner = self.runner_factory(
            history=history,
            env=self.command_env(),
            timeout=self.settings.command_timeout_seconds,
        )

        languages = job.languages or self.settings.default_language
        state = PipelineState.CREATED
        result: Optional[PipelineResult] = None
        work_dir: Optional[str] = None

        logger.info(
            f"Запуск пайплайна: {job.bucket}/{job.key} → "
            f"{job.results_bucket}/{job.remote_results_prefix}, "
            f"языки {languages}, масштаб {job.scale}%"
        )

        try:
            # 0. Рабочий каталог запуска
            os.makedirs(self.settings.work_dir, exist_ok=True)
            work_dir = tempfile.mkdtemp(prefix="ocr-job-", dir=self.settings.work_dir)
            results_base = os.path.join(work_dir, RESULTS_BASE)
            source_image = os.path.join(work_dir, f"source-{posixpath.basename(job.key)}")
            converted_image = os.path.join(work_dir, CONVERTED_IMAGE_NAME)

            # 1. Загрузка исходного изображения
            state = PipelineState.DOWNLOADING
            self.store.download(job.bucket, job.key, source_image)

            # 2. Версии используемого ПО (только для журнала)
            state = PipelineState.VERSION_CHECK
            self._log_software_versions(runner)

            # 3. Языковые файлы (список tessdata до и после загрузки)
            state = PipelineState.LANGUAGE_RESOLUTION
            self._log_tessdata(runner)
            self.resolver.ensure_languages(languages)
            self._log_tessdata(runner)

            # 4. Нормализация изображения
            state = PipelineState.CONVERTING
            convert_image(runner, source_image, converted_image, job.scale)

            # 5. Распознавание
            state = PipelineState.RECOGNIZING
            recognize_image(
                runner,
                converted_image,
                results_base,
                languages,
                job.additional_formats,
                psm=self.settings.ocr_psm,
            )

            # 6. Чтение результата
            state = PipelineState.READING_RESULT
            try:
                with open(f"{results_base}.txt", encoding="utf-8") as f:
                    text = f.read()
            except OSError as e:
                raise OCRJobError(f"failed to read ocr results file: [{e}]") from e

            result = PipelineResult(
                success=True, state=PipelineState.SUCCEEDED, text=text
            )
            logger.info(f"Пайплайн завершён: {len(text)} символов")

        except Exception as e:
            logger.exception(f"Ошибка пайплайна на этапе {state.value}: {e}")
            result = PipelineResult(
                success=False, state=state, error=str(e)
            )

        finally:
            self._cleanup(job, work_dir, history, result)

        return result

    def _log_software_versions(self, runner: CommandRunner) -> None:
        for command in (MAGICK, TESSERACT):
            self._diagnostic(runner, command, "--version")

        home = self.settings.toolchain_home
        if home:
            files = sorted(
                glob.glob(os.path.join(home, "bin", "*"))
                + glob.glob(os.path.join(home, "lib", "*"))
            )
            if files:
                self._diagnostic(runner, "ldd", *files)

    def _log_tessdata(self, runner: CommandRunner) -> None:
        self._diagnostic(runner, "ls", "-laFR", self.settings.tessdata_dir)

    @staticmethod
    def _diagnostic(runner: CommandRunner, command: str, *args: str) -> None:
        try:
            runner.run(command, *args)
        except CommandError as e:
            logger.warning(f"Диагностическая команда {command} не выполнена: {e}")

    def _cleanup(
        self,
        job: RecognitionJobConfig,
        work_dir: Optional[str],
        history: CommandHistory,
        result: Optional[PipelineResult],
    ) -> None:
        """
        Сохраняет журнал, выгружает results.* и маркер, удаляет рабочий каталог.

        Ошибки выгрузки только логируются: задание остаётся незавершённым
        до повторной отправки. Если рабочий каталог создать не удалось,
        журнал команд пишется в хранилище напрямую.
        """
        try:
            if work_dir is None:
                uploaded = self._put_command_history(job, history)
            else:
                uploaded = self._upload_artifacts(job, work_dir, history)

            if result is None:
                result = PipelineResult(
                    success=False,
                    state=PipelineState.CREATED,
                    error="pipeline interrupted",
                )

            manifest = ResultManifest(
                state=PipelineState.SUCCEEDED if result.success else PipelineState.FAILED,
                failed_state=None if result.success else result.state,
                error=result.error,
                artifacts=uploaded,
            )
            # Маркер выгружается последним
            try:
                self.store.put_bytes(
                    job.results_bucket,
                    posixpath.join(job.remote_results_prefix, RESULT_MANIFEST_NAME),
                    manifest.model_dump_json(indent=2).encode("utf-8"),
                )
            except OCRJobError as e:
                logger.error(f"Не удалось записать маркер завершения: {e}")

        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)

    def _upload_artifacts(
        self, job: RecognitionJobConfig, work_dir: str, history: CommandHistory
    ) -> list[str]:
        self._save_command_history(history, work_dir)

        results_base = os.path.join(work_dir, RESULTS_BASE)
        artifacts = sorted(
            os.path.basename(p)
            for p in glob.glob(f"{results_base}.*")
            if os.path.basename(p) != RESULT_MANIFEST_NAME
        )

        uploaded = []
        for name in artifacts:
            key = posixpath.join(job.remote_results_prefix, name)
            try:
                self.store.upload(os.path.join(work_dir, name), job.results_bucket, key)
                uploaded.append(name)
            except OCRJobError as e:
                logger.error(f"Не удалось выгрузить {name}: {e}")

        return uploaded

    def _put_command_history(self, job: RecognitionJobConfig, history: CommandHistory) -> list[str]:
        try:
            self.store.put_bytes(
                job.results_bucket,
                posixpath.join(job.remote_results_prefix, COMMAND_LOG_NAME),
                json.dumps(history.to_dict(), ensure_ascii=False).encode("utf-8"),
            )
        except OCRJobError as e:
            logger.error(f"Не удалось выгрузить журнал команд: {e}")
            return []
        return [COMMAND_LOG_NAME]

    @staticmethod
    def _save_command_history(history: CommandHistory, work_dir: str) -> None:
        path = os.path.join(work_dir, COMMAND_LOG_NAME)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(history.to_dict(), f, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Не удалось сохранить журнал команд: {e}")
