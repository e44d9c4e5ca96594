"""
Load document pipeline: validate -> compress -> upload -> record.

Failures after validation are persisted on the document row (status ``failed`` plus
the reason) instead of being raised, so the listing shows them to anyone who
missed the original response. Temporary files and temporary storage objects are
removed on every exit path.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import NotFoundError, PersistenceError, ValidationError
from dispatch_app.database import SessionLocal, commit_or_raise
from dispatch_app.models.load import Load
from dispatch_app.models.operations import LoadDocument
from dispatch_app.services.activity_log import log_document_upload_activity
from dispatch_app.services.document_registry import (
    DocumentStatus,
    create_document,
    get_document,
    mark_document_failed,
    mark_document_uploaded,
)
from dispatch_app.services.document_storage import delete_by_key, read_bytes_by_key, save_bytes_by_key
from dispatch_app.services.pdf_compression import CompressionResult, compress_pdf_bytes
from dispatch_app.services.pdf_validation import pdf_page_count, validate_pdf, validate_upload
from dispatch_app.services.storage_keys import filename_from_key, load_document_key


logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    VALIDATING = "validating"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineOutcome:
    stage: PipelineStage
    document_id: int | None
    storage_path: str | None = None
    error: str | None = None
    failed_stage: PipelineStage | None = None
    original_size: int | None = None
    compressed_size: int | None = None
    compression_ratio: float | None = None

    @property
    def ok(self) -> bool:
        return self.stage == PipelineStage.COMPLETED

    def as_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "document_id": self.document_id,
            "storage_path": self.storage_path,
            "error": self.error,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
        }


def _require_load(db: Session, load_id: int) -> Load:
    load = db.get(Load, load_id)
    if load is None:
        raise NotFoundError("Load not found")
    return load


@contextmanager
def temporary_upload(temp_key: str, *, local_root: str | Path | None = None) -> Iterator[bytes | None]:
    """Yield the bytes of a temporary upload and delete the object however the block exits."""
    try:
        yield read_bytes_by_key(temp_key, local_root=local_root)
    finally:
        if delete_by_key(temp_key, local_root=local_root):
            logger.info("document_pipeline: temp upload removed key=%s", temp_key)
        else:
            logger.warning("document_pipeline: temp upload cleanup failed key=%s", temp_key)


def _fail(
    db: Session,
    document: LoadDocument,
    *,
    stage: PipelineStage,
    reason: str,
    original_size: int | None = None,
) -> PipelineOutcome:
    mark_document_failed(db, document, reason)
    commit_or_raise(db)
    logger.info(
        "document_pipeline: failed doc=%s load=%s stage=%s reason=%s",
        document.id,
        document.load_id,
        stage.value,
        reason,
    )
    return PipelineOutcome(
        stage=PipelineStage.FAILED,
        document_id=int(document.id),
        error=reason,
        failed_stage=stage,
        original_size=original_size,
    )


def _compress(file_bytes: bytes, filename: str, compress: bool) -> tuple[bytes | None, CompressionResult | None]:
    if not compress or not core_settings.COMPRESSION_ENABLED:
        return file_bytes, None

    result = compress_pdf_bytes(file_bytes, filename)
    if not result.success:
        return None, result

    if result.compressed_bytes is None or (result.compressed_size or 0) >= len(file_bytes):
        logger.info(
            "document_pipeline: compression did not shrink file=%s original=%d compressed=%s",
            filename,
            len(file_bytes),
            result.compressed_size,
        )
        # Stats still describe the service result; the original bytes are stored.
        return file_bytes, result
    return result.compressed_bytes, result


def _log_upload_activity(db: Session, *, load_id: int, file_name: str) -> None:
    try:
        log_document_upload_activity(db, load_id=load_id, file_name=file_name)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("document_pipeline: activity log failed load=%s file=%s error=%s", load_id, file_name, exc)


def _run_stages(
    db: Session,
    document: LoadDocument,
    *,
    file_bytes: bytes,
    filename: str,
    compress: bool,
    local_root: str | Path | None,
) -> PipelineOutcome:
    original_size = len(file_bytes)

    upload_bytes, compression = _compress(file_bytes, filename, compress)
    if upload_bytes is None:
        reason = (compression.error if compression else None) or "Compression failed"
        return _fail(db, document, stage=PipelineStage.COMPRESSING, reason=reason, original_size=original_size)

    storage_key = load_document_key(document.load_id, filename)
    saved = save_bytes_by_key(storage_key, upload_bytes, content_type="application/pdf", local_root=local_root)
    if not saved["saved"]:
        reason = str(saved.get("error") or "Storage upload failed")
        return _fail(db, document, stage=PipelineStage.UPLOADING, reason=reason, original_size=original_size)

    compressed_size = compression.compressed_size if compression else None
    ratio = compression.compression_ratio if compression else None
    mark_document_uploaded(
        db,
        document,
        storage_path=storage_key,
        original_size=original_size,
        compressed_size=compressed_size,
        compression_ratio=ratio,
        page_count=pdf_page_count(upload_bytes),
    )
    try:
        commit_or_raise(db)
    except PersistenceError:
        # The row never recorded the object, so the object would be orphaned.
        delete_by_key(storage_key, local_root=local_root)
        raise

    logger.info(
        "document_pipeline: completed doc=%s load=%s key=%s original=%d compressed=%s",
        document.id,
        document.load_id,
        storage_key,
        original_size,
        compressed_size,
    )
    _log_upload_activity(db, load_id=document.load_id, file_name=filename)

    return PipelineOutcome(
        stage=PipelineStage.COMPLETED,
        document_id=int(document.id),
        storage_path=storage_key,
        original_size=original_size,
        compressed_size=compressed_size,
        compression_ratio=ratio,
    )


def process_document_upload(
    db: Session,
    *,
    load_id: int,
    filename: str,
    content_type: str | None,
    file_bytes: bytes,
    compress: bool = True,
    local_root: str | Path | None = None,
) -> PipelineOutcome:
    """
    Synchronous upload path. Validation problems raise ``ValidationError`` before
    anything is persisted or sent to the compression service. A failed database
    write after the row exists marks the row failed and is re-raised.
    """
    _require_load(db, load_id)
    validate_upload(content_type, file_bytes)

    document = create_document(db, load_id=load_id, file_name=filename, original_size=len(file_bytes))
    commit_or_raise(db)
    document_id = int(document.id)
    try:
        return _run_stages(
            db,
            document,
            file_bytes=file_bytes,
            filename=filename,
            compress=compress,
            local_root=local_root,
        )
    except PersistenceError as exc:
        logger.error("document_pipeline: persistence failure doc=%s error=%s", document_id, exc.message)
        try:
            _fail(db, document, stage=PipelineStage.UPLOADING, reason=exc.message)
        except PersistenceError as mark_exc:
            logger.error("document_pipeline: could not mark doc=%s failed error=%s", document_id, mark_exc.message)
        raise


def start_large_document(db: Session, *, load_id: int, temp_key: str) -> LoadDocument:
    """Create the ``processing`` row the UI polls while the background job runs."""
    if not temp_key:
        raise ValidationError("No file provided")
    _require_load(db, load_id)

    document = create_document(db, load_id=load_id, file_name=filename_from_key(temp_key))
    commit_or_raise(db)
    logger.info("document_pipeline: large upload queued doc=%s load=%s key=%s", document.id, load_id, temp_key)
    return document


def process_large_document(
    document_id: int,
    temp_key: str,
    *,
    compress: bool = True,
    session_factory: Callable[[], Session] = SessionLocal,
    local_root: str | Path | None = None,
) -> PipelineOutcome:
    """Background half of the large-file path; owns its session and the temp object."""
    with session_factory() as db:
        document = get_document(db, document_id)
        if document is None:
            logger.error("document_pipeline: document %s vanished before processing", document_id)
            delete_by_key(temp_key, local_root=local_root)
            return PipelineOutcome(stage=PipelineStage.FAILED, document_id=None, error="Document not found")

        if document.status != DocumentStatus.PROCESSING.value:
            logger.info("document_pipeline: doc=%s already %s; skipping", document_id, document.status)
            delete_by_key(temp_key, local_root=local_root)
            return PipelineOutcome(
                stage=PipelineStage.COMPLETED if document.status == DocumentStatus.UPLOADED.value else PipelineStage.FAILED,
                document_id=document_id,
                storage_path=document.storage_path,
                error=document.error_message,
            )

        with temporary_upload(temp_key, local_root=local_root) as file_bytes:
            if not file_bytes:
                return _fail(
                    db,
                    document,
                    stage=PipelineStage.VALIDATING,
                    reason="Failed to download PDF from temporary storage",
                )

            if len(file_bytes) > core_settings.max_upload_bytes:
                return _fail(
                    db,
                    document,
                    stage=PipelineStage.VALIDATING,
                    reason=f"PDF file is too large. Maximum size is {core_settings.MAX_UPLOAD_MB}MB",
                    original_size=len(file_bytes),
                )

            validation = validate_pdf(file_bytes)
            if not validation.is_valid:
                return _fail(
                    db,
                    document,
                    stage=PipelineStage.VALIDATING,
                    reason=validation.error or "Invalid PDF file",
                    original_size=len(file_bytes),
                )

            try:
                return _run_stages(
                    db,
                    document,
                    file_bytes=file_bytes,
                    filename=document.file_name,
                    compress=compress,
                    local_root=local_root,
                )
            except PersistenceError as exc:
                logger.error("document_pipeline: persistence failure doc=%s error=%s", document_id, exc.message)
                try:
                    return _fail(db, document, stage=PipelineStage.UPLOADING, reason=exc.message)
                except PersistenceError:
                    return PipelineOutcome(
                        stage=PipelineStage.FAILED,
                        document_id=document_id,
                        error=exc.message,
                        failed_stage=PipelineStage.UPLOADING,
                    )
