"""Tests for dispatch_app/services/document_pipeline.py

Run with:  pytest tests/test_document_pipeline.py -v
"""
from pathlib import Path

import pytest

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import CompressionFailure, NotFoundError, PersistenceError, ValidationError
from dispatch_app.models.operations import ActivityLog, LoadDocument
from dispatch_app.services import document_pipeline, document_storage
from dispatch_app.services.document_pipeline import (
    PipelineStage,
    process_document_upload,
    process_large_document,
    start_large_document,
)
from dispatch_app.services.document_registry import DocumentStatus, list_load_documents, serialize_document
from dispatch_app.services.document_storage import save_bytes_by_key
from dispatch_app.services.pdf_compression import CompressionResult
from dispatch_app.services.storage_keys import temp_upload_key
from tests.conftest import add_driver, add_load


class _Compressor:
    def __init__(self, result_factory):
        self.result_factory = result_factory
        self.calls = []

    def __call__(self, file_bytes, filename, **kwargs):
        self.calls.append(filename)
        return self.result_factory(file_bytes)


def _shrinks(file_bytes):
    compressed = file_bytes[: len(file_bytes) // 2]
    return CompressionResult(
        success=True,
        compressed_bytes=compressed,
        original_size=len(file_bytes),
        compressed_size=len(compressed),
        compression_ratio=50.0,
    )


def _grows(file_bytes):
    compressed = file_bytes + b"padding"
    return CompressionResult(
        success=True,
        compressed_bytes=compressed,
        original_size=len(file_bytes),
        compressed_size=len(compressed),
        compression_ratio=-1.0,
    )


def _rejects(file_bytes):
    return CompressionResult(
        success=False,
        error="Invalid API credentials",
        failure=CompressionFailure.INVALID_CREDENTIALS,
        original_size=len(file_bytes),
    )


@pytest.fixture(autouse=True)
def _local_storage(monkeypatch):
    monkeypatch.setattr(document_storage, "_spaces_client", lambda: None)
    monkeypatch.setattr(core_settings, "COMPRESSION_ENABLED", True)


@pytest.fixture
def load(db_session):
    driver = add_driver(db_session, name="Jane Driver")
    return add_load(db_session, driver=driver, reference_id="REF-1", status="In-Transit")


# ── Synchronous path ───────────────────────────────────────────────────────────

def test_non_pdf_is_rejected_before_compression(monkeypatch, db_session, load, tmp_path):
    compressor = _Compressor(_shrinks)
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", compressor)

    with pytest.raises(ValidationError, match="Please upload a PDF file"):
        process_document_upload(
            db_session,
            load_id=load.id,
            filename="notes.txt",
            content_type="text/plain",
            file_bytes=b"hello",
            local_root=tmp_path,
        )

    assert compressor.calls == []
    assert db_session.query(LoadDocument).count() == 0


def test_unknown_load(db_session, pdf_bytes, tmp_path):
    with pytest.raises(NotFoundError):
        process_document_upload(
            db_session,
            load_id=999,
            filename="bol.pdf",
            content_type="application/pdf",
            file_bytes=pdf_bytes,
            local_root=tmp_path,
        )


def test_successful_upload_records_document_and_activity(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_shrinks))

    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    assert outcome.ok
    assert outcome.stage == PipelineStage.COMPLETED
    assert outcome.storage_path.startswith(f"load_{load.id}/")
    assert outcome.storage_path.endswith("_bol.pdf")
    assert (tmp_path / outcome.storage_path).read_bytes() == pdf_bytes[: len(pdf_bytes) // 2]

    document = db_session.get(LoadDocument, outcome.document_id)
    assert document.status == DocumentStatus.UPLOADED.value
    assert document.original_size == len(pdf_bytes)
    assert document.compressed_size == len(pdf_bytes) // 2
    assert document.compression_ratio == 50.0

    activity = db_session.query(ActivityLog).one()
    assert activity.message == "Jane Driver uploaded bol.pdf for Load #REF-1"
    assert activity.load_id == load.id


def test_compression_failure_is_recorded(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_rejects))

    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    assert not outcome.ok
    assert outcome.failed_stage == PipelineStage.COMPRESSING
    assert outcome.error == "Invalid API credentials"

    [document] = list_load_documents(db_session, load.id)
    assert document.status == DocumentStatus.FAILED.value
    assert document.error_message == "Invalid API credentials"
    assert document.storage_path is None
    assert not (tmp_path / f"load_{load.id}").exists()
    assert db_session.query(ActivityLog).count() == 0


def test_original_kept_when_compression_does_not_shrink(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_grows))

    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    assert outcome.ok
    assert (tmp_path / outcome.storage_path).read_bytes() == pdf_bytes
    assert outcome.compressed_size == len(pdf_bytes) + len(b"padding")
    assert outcome.compression_ratio == -1.0
    document = db_session.get(LoadDocument, outcome.document_id)
    assert document.compressed_size == len(pdf_bytes) + len(b"padding")
    assert document.compression_ratio == -1.0


def test_compression_can_be_disabled(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    compressor = _Compressor(_shrinks)
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", compressor)
    monkeypatch.setattr(core_settings, "COMPRESSION_ENABLED", False)

    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    assert outcome.ok
    assert compressor.calls == []
    assert outcome.compressed_size is None


def test_storage_failure_is_recorded(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_shrinks))
    monkeypatch.setattr(
        document_pipeline,
        "save_bytes_by_key",
        lambda key, data, **kwargs: {"saved": False, "error": "disk full", "key": key},
    )

    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    assert outcome.failed_stage == PipelineStage.UPLOADING
    document = db_session.get(LoadDocument, outcome.document_id)
    assert document.status == DocumentStatus.FAILED.value
    assert document.error_message == "disk full"


def test_failed_final_write_marks_document_failed(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_shrinks))
    real_commit = document_pipeline.commit_or_raise
    calls = []

    def _commit_failing_once(db):
        calls.append(db)
        if len(calls) == 2:
            db.rollback()
            raise PersistenceError("Database write failed: OperationalError")
        real_commit(db)

    monkeypatch.setattr(document_pipeline, "commit_or_raise", _commit_failing_once)

    with pytest.raises(PersistenceError, match="Database write failed"):
        process_document_upload(
            db_session,
            load_id=load.id,
            filename="bol.pdf",
            content_type="application/pdf",
            file_bytes=pdf_bytes,
            local_root=tmp_path,
        )

    db_session.expire_all()
    [document] = list_load_documents(db_session, load.id)
    assert document.status == DocumentStatus.FAILED.value
    assert document.error_message == "Database write failed: OperationalError"
    assert document.storage_path is None
    assert list(tmp_path.rglob("*.pdf")) == []
    assert db_session.query(ActivityLog).count() == 0


def test_serialized_document_has_no_url_without_spaces(monkeypatch, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_shrinks))
    outcome = process_document_upload(
        db_session,
        load_id=load.id,
        filename="bol.pdf",
        content_type="application/pdf",
        file_bytes=pdf_bytes,
        local_root=tmp_path,
    )

    payload = serialize_document(db_session.get(LoadDocument, outcome.document_id), include_url=True)
    assert payload["status"] == "uploaded"
    assert payload["url"] is None


# ── Large-file path ────────────────────────────────────────────────────────────

def _stage_temp(data: bytes, root: Path) -> str:
    key = temp_upload_key("big bol.pdf")
    assert save_bytes_by_key(key, data, local_root=root)["saved"]
    return key


def test_large_document_success_removes_temp_object(monkeypatch, session_factory, db_session, load, pdf_bytes, tmp_path):
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", _Compressor(_shrinks))
    temp_key = _stage_temp(pdf_bytes, tmp_path)

    document = start_large_document(db_session, load_id=load.id, temp_key=temp_key)
    assert document.status == DocumentStatus.PROCESSING.value
    assert document.file_name == "big_bol.pdf"

    outcome = process_large_document(document.id, temp_key, session_factory=session_factory, local_root=tmp_path)

    assert outcome.ok
    assert not (tmp_path / temp_key).exists()
    db_session.expire_all()
    assert db_session.get(LoadDocument, document.id).status == DocumentStatus.UPLOADED.value


def test_large_document_failure_removes_temp_object(monkeypatch, session_factory, db_session, load, tmp_path):
    compressor = _Compressor(_shrinks)
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", compressor)
    temp_key = _stage_temp(b"garbage" * 100, tmp_path)

    document = start_large_document(db_session, load_id=load.id, temp_key=temp_key)
    outcome = process_large_document(document.id, temp_key, session_factory=session_factory, local_root=tmp_path)

    assert outcome.failed_stage == PipelineStage.VALIDATING
    assert outcome.error == "File is not a valid PDF (missing PDF header)"
    assert compressor.calls == []
    assert not (tmp_path / temp_key).exists()
    db_session.expire_all()
    stored = db_session.get(LoadDocument, document.id)
    assert stored.status == DocumentStatus.FAILED.value
    assert stored.error_message == outcome.error


def test_large_document_missing_temp_object(session_factory, db_session, load, tmp_path):
    document = start_large_document(db_session, load_id=load.id, temp_key="tmp/uploads/1_gone.pdf")
    outcome = process_large_document(document.id, "tmp/uploads/1_gone.pdf", session_factory=session_factory, local_root=tmp_path)

    assert outcome.error == "Failed to download PDF from temporary storage"


def test_large_document_already_processed_is_skipped(monkeypatch, session_factory, db_session, load, pdf_bytes, tmp_path):
    compressor = _Compressor(_shrinks)
    monkeypatch.setattr(document_pipeline, "compress_pdf_bytes", compressor)
    temp_key = _stage_temp(pdf_bytes, tmp_path)

    document = start_large_document(db_session, load_id=load.id, temp_key=temp_key)
    process_large_document(document.id, temp_key, session_factory=session_factory, local_root=tmp_path)
    repeat = process_large_document(document.id, temp_key, session_factory=session_factory, local_root=tmp_path)

    assert repeat.ok
    assert len(compressor.calls) == 1
