"""Общие фикстуры: настройки во временном каталоге, фейковые внешние программы."""

import os
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ocr_jobs.config import Settings  # noqa: E402
from ocr_jobs.errors import CommandError  # noqa: E402
from ocr_jobs.schemas import CommandRecord, PageInfo  # noqa: E402
from ocr_jobs.services.command_runner import CommandRunner  # noqa: E402
from ocr_jobs.services.languages import LanguageResolver  # noqa: E402
from ocr_jobs.services.object_store import LocalObjectStore  # noqa: E402
from ocr_jobs.services.tracksys import TracksysClient  # noqa: E402

RECOGNIZED_TEXT = "Recognized page text\n"


class FakeRunner(CommandRunner):
    """
    Исполнитель команд без запуска процессов.

    magick создаёт файл назначения, tesseract — по файлу на формат.
    Команды из fail завершаются ошибкой; элемент fail совпадает либо
    с именем программы, либо с полной строкой "программа аргументы".
    """

    def __init__(self, history=None, env=None, timeout=None, fail=(), text=RECOGNIZED_TEXT):
        super().__init__(history=history, env=env, timeout=timeout)
        self.fail = set(fail)
        self.text = text

    def run(self, command: str, *arguments: str) -> str:
        args = list(arguments)
        full = " ".join([command, *args])
        failed = command in self.fail or full in self.fail
        output = "boom" if failed else f"{command} ok"

        self.history.append(CommandRecord(command=command, arguments=args, output=output, duration="0.000"))

        if failed:
            raise CommandError("exit status 1", command=command, output=output)

        if command == "magick" and args and args[0] == "convert":
            Path(args[-1]).write_bytes(b"II*\x00converted")
        elif command == "tesseract" and len(args) > 5:
            base = args[1]
            for fmt in args[6:]:
                content = self.text if fmt == "txt" else f"<{fmt}/>"
                Path(f"{base}.{fmt}").write_text(content, encoding="utf-8")

        return output


class RunnerFactory:
    """Создаёт FakeRunner для пайплайна и запоминает созданные экземпляры."""

    def __init__(self, fail=(), text=RECOGNIZED_TEXT):
        self.fail = fail
        self.text = text
        self.runners: list[FakeRunner] = []

    def __call__(self, history=None, env=None, timeout=None) -> FakeRunner:
        runner = FakeRunner(history=history, env=env, timeout=timeout, fail=self.fail, text=self.text)
        self.runners.append(runner)
        return runner


class LanguageServer:
    """MockTransport для загрузки *.traineddata."""

    def __init__(self, languages=("osd", "eng", "aze", "aze_cyrl"), scripts=("Latin",)):
        self.languages = set(languages)
        self.scripts = set(scripts)
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        name = path.rsplit("/", 1)[-1].replace(".traineddata", "")

        available = self.scripts if "/script/" in path else self.languages
        if name in available:
            return httpx.Response(200, content=f"traineddata:{name}".encode())
        return httpx.Response(404, text="Not Found")


class TracksysServer:
    """MockTransport для Tracksys API: {pid: [страницы]}."""

    def __init__(self, documents=None, status_code=200):
        self.documents = documents or {}
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="error")

        pid = request.url.path.split("/pid/", 1)[1].rsplit("/pages", 1)[0]
        if pid not in self.documents:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json=self.documents[pid])


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_dir=str(tmp_path / "storage"),
        work_dir=str(tmp_path / "work"),
        tessdata_dir=str(tmp_path / "tessdata"),
        source_bucket="source",
        results_bucket="results",
        results_prefix="ocr",
        tracksys_api_url="http://tracksys.test/api",
        max_workers=2,
        notify_poll_seconds=0.01,
        notify_max_wait_seconds=5,
        smtp_host=None,
    )


@pytest.fixture
def store(settings) -> LocalObjectStore:
    return LocalObjectStore(settings.storage_dir)


@pytest.fixture
def language_server() -> LanguageServer:
    return LanguageServer()


@pytest.fixture
def resolver(settings, language_server) -> LanguageResolver:
    client = httpx.Client(transport=httpx.MockTransport(language_server))
    return LanguageResolver(
        settings.tessdata_dir,
        settings.lang_url_template,
        lang_type=settings.lang_type,
        lang_branch=settings.lang_branch,
        client=client,
    )


@pytest.fixture
def runner_factory() -> RunnerFactory:
    return RunnerFactory()


@pytest.fixture
def tracksys_server() -> TracksysServer:
    return TracksysServer(
        documents={
            "doc:1": [
                {"pid": "page:1", "filename": "doc_0001.tif", "title": "Page 1"},
                {"pid": "page:2", "filename": "doc_0002.tif", "title": "Page 2"},
                {"pid": "", "filename": "doc_0003.tif", "title": "Broken"},
            ],
            "doc:empty": [],
        }
    )


@pytest.fixture
def tracksys(settings, tracksys_server) -> TracksysClient:
    client = httpx.Client(transport=httpx.MockTransport(tracksys_server))
    return TracksysClient(settings.tracksys_api_url, client=client)


def put_source_images(store: LocalObjectStore, settings: Settings, pages: list[PageInfo]) -> None:
    for page in pages:
        store.put_bytes(settings.source_bucket, page.filename, b"JP2K source image")


@pytest.fixture
def source_images(store, settings):
    put_source_images(
        store,
        settings,
        [
            PageInfo(pid="page:1", filename="doc_0001.tif"),
            PageInfo(pid="page:2", filename="doc_0002.tif"),
        ],
    )


def work_dir_entries(settings: Settings) -> list[str]:
    if not os.path.isdir(settings.work_dir):
        return []
    return os.listdir(settings.work_dir)
