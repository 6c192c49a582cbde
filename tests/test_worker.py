import json

import pytest

from conftest import RECOGNIZED_TEXT, RunnerFactory
from ocr_jobs import worker
from ocr_jobs.errors import UnhandledRequestError
from ocr_jobs.services.pipeline import OCRPipeline


def test_workflow_request_with_parent() -> None:
    job = worker.job_config_from_event(
        {"pid": "page:1", "parentpid": "doc:1", "bucket": "archive", "key": "a/b.tif", "lang": "deu", "scale": "50"}
    )

    assert job.bucket == "archive"
    assert job.key == "a/b.tif"
    assert job.results_bucket == "archive"
    assert job.remote_results_prefix == "results/doc:1/page:1/50"
    assert job.languages == "deu"
    assert job.scale == "50"
    assert job.additional_formats == ("hocr",)


@pytest.mark.parametrize("parent", ["", "page:1"])
def test_workflow_request_without_distinct_parent(parent) -> None:
    job = worker.job_config_from_event(
        {"pid": "page:1", "parentpid": parent, "bucket": "archive", "key": "b.tif"}
    )

    assert job.remote_results_prefix == "results/page:1/100"


def test_standalone_s3_event() -> None:
    event = {
        "Records": [
            {"s3": {"bucket": {"name": "uploads"}, "object": {"key": "standalone/requests/batch/img.jpg"}}}
        ]
    }

    job = worker.job_config_from_event(event)

    assert job.bucket == "uploads"
    assert job.key == "standalone/requests/batch/img.jpg"
    assert job.remote_results_prefix == "standalone/results/batch/img.jpg"
    assert job.scale == "100"
    assert job.languages == ""
    assert job.additional_formats == ("hocr", "pdf")


def test_unhandled_event() -> None:
    with pytest.raises(UnhandledRequestError):
        worker.job_config_from_event({"foo": "bar"})


def test_handle_request_returns_text(store, resolver, settings) -> None:
    store.put_bytes("archive", "b.tif", b"image")
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())

    response = worker.handle_ocr_request(
        {"pid": "page:1", "bucket": "archive", "key": "b.tif", "lang": "eng"}, pipeline=pipeline
    )

    assert response == {"text": RECOGNIZED_TEXT}
    assert store.get_bytes("archive", "results/page:1/100/results.txt") is not None


def test_handle_request_failure(store, resolver, settings) -> None:
    pipeline = OCRPipeline(store, resolver, settings, runner_factory=RunnerFactory())

    with pytest.raises(RuntimeError, match="failed to download"):
        worker.handle_ocr_request(
            {"pid": "page:1", "bucket": "archive", "key": "missing.tif"}, pipeline=pipeline
        )


def test_main_reports_unhandled_event(tmp_path, capsys) -> None:
    event_file = tmp_path / "event.json"
    event_file.write_text(json.dumps({"foo": "bar"}), encoding="utf-8")

    assert worker.main([str(event_file)]) == 1
    assert capsys.readouterr().out == ""
