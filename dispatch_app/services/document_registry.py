from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from dispatch_app.models.operations import LoadDocument
from dispatch_app.services.document_storage import generate_presigned_get_url


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    UPLOADED = "uploaded"
    FAILED = "failed"


def create_document(
    db: Session,
    *,
    load_id: int,
    file_name: str,
    original_size: int | None = None,
) -> LoadDocument:
    document = LoadDocument(
        load_id=load_id,
        file_name=file_name,
        status=DocumentStatus.PROCESSING.value,
        original_size=original_size,
    )
    db.add(document)
    db.flush()
    return document


def mark_document_uploaded(
    db: Session,
    document: LoadDocument,
    *,
    storage_path: str,
    original_size: int | None = None,
    compressed_size: int | None = None,
    compression_ratio: float | None = None,
    page_count: int | None = None,
) -> LoadDocument:
    document.status = DocumentStatus.UPLOADED.value
    document.storage_path = storage_path
    document.error_message = None
    if original_size is not None:
        document.original_size = original_size
    document.compressed_size = compressed_size
    document.compression_ratio = compression_ratio
    document.page_count = page_count
    db.flush()
    return document


def mark_document_failed(db: Session, document: LoadDocument, reason: str) -> LoadDocument:
    document.status = DocumentStatus.FAILED.value
    document.storage_path = None
    document.error_message = reason
    db.flush()
    return document


def get_document(db: Session, document_id: int) -> LoadDocument | None:
    return db.get(LoadDocument, document_id)


def list_load_documents(db: Session, load_id: int) -> list[LoadDocument]:
    return (
        db.query(LoadDocument)
        .filter(LoadDocument.load_id == load_id)
        .order_by(LoadDocument.uploaded_at.asc(), LoadDocument.id.asc())
        .all()
    )


def serialize_document(document: LoadDocument, *, include_url: bool = False, url_ttl_seconds: int = 3600) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": int(document.id),
        "load_id": int(document.load_id),
        "file_name": document.file_name,
        "status": document.status,
        "storage_path": document.storage_path,
        "error_message": document.error_message,
        "original_size": document.original_size,
        "compressed_size": document.compressed_size,
        "compression_ratio": document.compression_ratio,
        "page_count": document.page_count,
        "uploaded_at": document.uploaded_at.isoformat() if document.uploaded_at else None,
    }
    if include_url:
        payload["url"] = (
            generate_presigned_get_url(document.storage_path, url_ttl_seconds)
            if document.status == DocumentStatus.UPLOADED.value and document.storage_path
            else None
        )
    return payload
