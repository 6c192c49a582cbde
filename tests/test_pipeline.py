import json

from conftest import RECOGNIZED_TEXT, RunnerFactory, work_dir_entries
from ocr_jobs.schemas import PipelineState, RecognitionJobConfig, ResultManifest
from ocr_jobs.services.pipeline import OCRPipeline


def _job(**overrides) -> RecognitionJobConfig:
    values = dict(
        bucket="source",
        key="doc_0001.tif",
        results_bucket="results",
        remote_results_prefix="ocr/doc:1/page:1",
        languages="eng",
        scale="50",
        additional_formats=("hocr",),
    )
    values.update(overrides)
    return RecognitionJobConfig(**values)


def _manifest(store) -> ResultManifest:
    return ResultManifest.model_validate_json(
        store.get_bytes("results", "ocr/doc:1/page:1/results.json")
    )


def test_successful_run_uploads_results(store, resolver, settings, source_images) -> None:
    factory = RunnerFactory()
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=factory)

    result = pipeline.run(_job())

    assert result.success
    assert result.state == PipelineState.SUCCEEDED
    assert result.text == RECOGNIZED_TEXT
    assert store.list_keys("results", "ocr/doc:1/page:1") == [
        "ocr/doc:1/page:1/results.hocr",
        "ocr/doc:1/page:1/results.json",
        "ocr/doc:1/page:1/results.log",
        "ocr/doc:1/page:1/results.txt",
    ]

    manifest = _manifest(store)
    assert manifest.state == PipelineState.SUCCEEDED
    assert manifest.artifacts == ["results.hocr", "results.log", "results.txt"]

    log = json.loads(store.get_bytes("results", "ocr/doc:1/page:1/results.log"))
    commands = [(c["command"], c["arguments"][:1]) for c in log["commands"]]
    assert ("magick", ["--version"]) in commands
    assert ("tesseract", ["--version"]) in commands
    assert ("magick", ["convert"]) in commands

    assert work_dir_entries(settings) == []


def test_default_language_when_none_requested(store, resolver, settings, source_images) -> None:
    factory = RunnerFactory()
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=factory)

    pipeline.run(_job(languages=""))

    tesseract = [
        c for c in factory.runners[0].history.commands
        if c.command == "tesseract" and c.arguments[0] != "--version"
    ][0]
    assert tesseract.arguments[tesseract.arguments.index("-l") + 1] == settings.default_language


def test_recognition_failure_still_uploads_log(store, resolver, settings, source_images) -> None:
    pipeline = OCRPipeline(
        store,
        resolver,
        settings,
        runner_factory=RunnerFactory(fail={"tesseract"}),
    )

    result = pipeline.run(_job())

    assert not result.success
    assert result.state == PipelineState.RECOGNIZING
    assert "failed to ocr converted image" in result.error

    keys = store.list_keys("results", "ocr/doc:1/page:1")
    assert "ocr/doc:1/page:1/results.log" in keys
    assert "ocr/doc:1/page:1/results.txt" not in keys

    manifest = _manifest(store)
    assert manifest.state == PipelineState.FAILED
    assert manifest.failed_state == PipelineState.RECOGNIZING
    assert work_dir_entries(settings) == []


def test_version_check_never_fails(store, resolver, settings, source_images) -> None:
    factory = RunnerFactory(fail={"magick --version", "tesseract --version", "ls"})
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=factory)

    result = pipeline.run(_job())

    assert result.success


def test_missing_source_fails_at_download(store, resolver, settings) -> None:
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())

    result = pipeline.run(_job(key="missing.tif"))

    assert not result.success
    assert result.state == PipelineState.DOWNLOADING
    assert _manifest(store).failed_state == PipelineState.DOWNLOADING
    assert store.get_bytes("results", "ocr/doc:1/page:1/results.log") is not None


def test_language_fetch_failure(store, resolver, settings, source_images) -> None:
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())

    result = pipeline.run(_job(languages="xyz"))

    assert not result.success
    assert result.state == PipelineState.LANGUAGE_RESOLUTION


def test_command_environment(store, resolver, settings) -> None:
    settings.toolchain_home = "/opt/ocr"
    pipeline = OCRPipeline(store, resolver, settings)

    env = pipeline.command_env()

    assert env["TESSDATA_PREFIX"] == settings.tessdata_dir
    assert env["PATH"].startswith("/opt/ocr/bin:")
    assert env["LD_LIBRARY_PATH"].startswith("/opt/ocr/lib:")


def test_tessdata_listed_before_and_after_language_resolution(store, resolver, settings, source_images) -> None:
    factory = RunnerFactory()
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=factory)

    pipeline.run(_job())

    commands = [c.command for c in factory.runners[0].history.commands]
    first_ls = commands.index("ls")
    assert commands[first_ls + 1] == "ls"
    assert commands.index("magick", first_ls) > first_ls + 1


def test_bundled_tessdata_is_used_without_downloads(
    store, resolver, language_server, settings, source_images, tmp_path
) -> None:
    bundled = tmp_path / "toolchain" / "share" / "tessdata"
    bundled.mkdir(parents=True)
    for lang in ("osd", "eng"):
        (bundled / f"{lang}.traineddata").write_bytes(b"bundled")
    settings.toolchain_home = str(tmp_path / "toolchain")

    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())
    result = pipeline.run(_job(languages="eng"))

    assert result.success
    assert language_server.requests == []


def test_work_dir_failure_is_recorded(store, resolver, settings, tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    settings.work_dir = str(blocker / "work")
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())

    result = pipeline.run(_job())

    assert not result.success
    assert result.state == PipelineState.CREATED
    manifest = _manifest(store)
    assert manifest.failed_state == PipelineState.CREATED
    assert manifest.artifacts == ["results.log"]
    assert json.loads(store.get_bytes("results", "ocr/doc:1/page:1/results.log")) == {"commands": []}
