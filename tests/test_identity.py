import pytest

from ocr_jobs.errors import InvalidRequestError
from ocr_jobs.schemas import OCRRequest
from ocr_jobs.services.identity import (
    check_existing,
    job_prefix,
    lookup_identity,
    resolve_identity,
)


def test_full_document_key() -> None:
    assert resolve_identity(OCRRequest(pid="doc:1")) == "doc:1"


def test_unit_key() -> None:
    assert resolve_identity(OCRRequest(pid="doc:1", unit="42")) == "doc:1/42"


@pytest.mark.parametrize("unit", ["", "0", "-3", "abc"])
def test_unit_without_positive_id_is_ignored(unit) -> None:
    assert resolve_identity(OCRRequest(pid="doc:1", unit=unit)) == "doc:1"


def test_page_subset_uses_token() -> None:
    request = OCRRequest(pid="doc:1", unit="42", pages="page:1,page:2", token="abc123")
    assert resolve_identity(request) == "abc123"


def test_page_subset_without_token_is_rejected() -> None:
    with pytest.raises(InvalidRequestError, match="Missing token"):
        resolve_identity(OCRRequest(pid="doc:1", pages="page:1"))


def test_irrelevant_fields_do_not_change_key() -> None:
    plain = OCRRequest(pid="doc:1", unit="7")
    decorated = OCRRequest(pid="doc:1", unit="7", email="a@b.c", lang="deu", scale="50")
    assert resolve_identity(plain) == resolve_identity(decorated)


@pytest.mark.parametrize("token", ["..", "../etc", "a//b", "/abs"])
def test_unsafe_keys_are_rejected(token) -> None:
    with pytest.raises(InvalidRequestError):
        resolve_identity(OCRRequest(pid="doc:1", pages="p", token=token))


def test_lookup_identity_matches_dispatch_key() -> None:
    assert lookup_identity("doc:1") == "doc:1"
    assert lookup_identity("doc:1", unit="42") == "doc:1/42"
    assert lookup_identity("doc:1", token="abc123") == "abc123"


def test_job_prefix() -> None:
    assert job_prefix("ocr", "doc:1/42") == "ocr/doc:1/42"
    assert job_prefix("", "doc:1") == "doc:1"


def test_check_existing_looks_for_job_manifest(store) -> None:
    assert not check_existing(store, "results", "ocr/doc:1")

    # Задание юнита не делает существующим задание всего документа
    store.put_bytes("results", "ocr/doc:1/42/job.json", b"{}")
    assert not check_existing(store, "results", "ocr/doc:1")
    assert check_existing(store, "results", "ocr/doc:1/42")
