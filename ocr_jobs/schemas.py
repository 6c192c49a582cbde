"""
Схемы данных OCR веб-сервиса.

Включает:
    - Pydantic модели запроса и манифестов, которые сохраняются в хранилище
    - Внутренние dataclass'ы пайплайна (конфигурация задания, журнал команд)
    - Перечисления состояний пайплайна и статуса задания
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Все файлы с этим префиксом загружаются в хранилище по завершении пайплайна
RESULTS_BASE = "results"
# Терминальный маркер одного запуска пайплайна
RESULT_MANIFEST_NAME = f"{RESULTS_BASE}.json"
# Журнал выполненных команд
COMMAND_LOG_NAME = f"{RESULTS_BASE}.log"
# Манифест задания, записывается диспетчером при приёме запроса
JOB_MANIFEST_NAME = "job.json"


class JobStatus(str, Enum):
    """Статус задания, вычисляемый по содержимому хранилища."""

    UNKNOWN = "unknown"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class PipelineState(str, Enum):
    """Состояния пайплайна распознавания одной страницы."""

    CREATED = "created"
    DOWNLOADING = "downloading"
    VERSION_CHECK = "version_check"
    LANGUAGE_RESOLUTION = "language_resolution"
    CONVERTING = "converting"
    RECOGNIZING = "recognizing"
    READING_RESULT = "reading_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OCRRequest(BaseModel):
    """
    Запрос на OCR документа.

    Attributes:
        pid: идентификатор документа (из пути запроса)
        unit: идентификатор юнита (опционально)
        pages: PID страниц через запятую (частичный OCR)
        token: ключ задания, обязателен вместе с pages
        email: адрес для уведомления о завершении
        lang: языки Tesseract через "+" (например "eng+deu")
        scale: масштаб изображения в процентах
    """

    pid: str
    unit: Optional[str] = None
    pages: Optional[str] = None
    token: Optional[str] = None
    email: Optional[str] = None
    lang: Optional[str] = None
    scale: Optional[str] = None

    def unit_id(self) -> int:
        """Числовой идентификатор юнита, 0 если не задан или не число."""
        try:
            return int(self.unit or "")
        except ValueError:
            return 0

    def page_pids(self) -> list[str]:
        """Список запрошенных PID страниц (пустой для всего документа)."""
        if not self.pages:
            return []
        return [p.strip() for p in self.pages.split(",") if p.strip()]


class PageInfo(BaseModel):
    """
    Страница документа из Tracksys.

    Attributes:
        pid: идентификатор страницы
        filename: имя файла изображения
        title: заголовок страницы (подсказка)
        lang: языки распознавания для этой страницы
        txt_file: имя текстового файла страницы в итоговом архиве
    """

    pid: str = ""
    filename: str = ""
    title: Optional[str] = None
    lang: str = ""
    txt_file: str = ""


class JobManifest(BaseModel):
    """
    Манифест задания (job.json в корне префикса задания).

    Attributes:
        key: ключ задания
        pid: идентификатор документа
        unit: идентификатор юнита
        token: ключ частичного запроса
        created_at: время приёма запроса
        pages: страницы задания в порядке документа
    """

    key: str
    pid: str
    unit: Optional[str] = None
    token: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    pages: list[PageInfo] = []


class ResultManifest(BaseModel):
    """
    Терминальный маркер одного запуска пайплайна (results.json).

    Загружается последним, поэтому все перечисленные артефакты
    уже находятся в хранилище к моменту его появления.
    """

    state: PipelineState
    failed_state: Optional[PipelineState] = None
    error: Optional[str] = None
    artifacts: list[str] = []
    finished_at: datetime = Field(default_factory=datetime.now)


@dataclass(frozen=True)
class RecognitionJobConfig:
    """
    Параметры одного запуска пайплайна, не зависящие от источника запроса.

    Attributes:
        bucket: бакет исходного изображения
        key: ключ исходного изображения
        results_bucket: бакет для результатов
        remote_results_prefix: префикс результатов в results_bucket
        languages: языки через "+" (пусто — язык по умолчанию)
        scale: масштаб в процентах
        additional_formats: форматы Tesseract помимо txt
    """

    bucket: str
    key: str
    results_bucket: str
    remote_results_prefix: str
    languages: str = ""
    scale: str = "100"
    additional_formats: tuple[str, ...] = ()


@dataclass
class CommandRecord:
    """
    Запись о выполненной внешней команде.

    Attributes:
        command: имя программы
        arguments: аргументы
        output: объединённый stdout+stderr
        duration: длительность в секундах ("%0.3f")
    """

    command: str
    arguments: list[str]
    output: str
    duration: str


@dataclass
class CommandHistory:
    """Журнал команд одного запуска пайплайна."""

    commands: list[CommandRecord] = field(default_factory=list)

    def append(self, record: CommandRecord) -> None:
        self.commands.append(record)

    def to_dict(self) -> dict:
        return {"commands": [asdict(c) for c in self.commands]}


@dataclass
class PipelineResult:
    """
    Результат запуска пайплайна.

    Attributes:
        success: успешность
        state: последнее достигнутое состояние
        text: распознанный текст (при успехе)
        error: сообщение об ошибке (при неудаче)
    """

    success: bool
    state: PipelineState
    text: str = ""
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    """Ответ эндпоинта статуса."""

    key: str
    status: JobStatus
    pages_total: int = 0
    pages_done: int = 0
    pages_failed: int = 0
