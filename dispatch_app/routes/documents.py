import asyncio

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import CompressionFailure, ExternalServiceError, ValidationError
from dispatch_app.database import get_db
from dispatch_app.dependencies.auth import require_session_user
from dispatch_app.services.document_pipeline import process_document_upload, process_large_document, start_large_document
from dispatch_app.services.document_registry import list_load_documents, serialize_document
from dispatch_app.services.pdf_compression import compress_pdf_bytes
from dispatch_app.services.pdf_validation import validate_upload
from dispatch_app.services.storage_keys import temp_upload_prefix


router = APIRouter(prefix="/api", tags=["documents"], dependencies=[Depends(require_session_user)])


class LargePdfCallback(BaseModel):
    load_id: int
    temp_key: str
    compress: bool = True


@router.post("/compress-pdf")
async def compress_pdf(file: UploadFile = File(...)):
    file_bytes = await file.read()
    validate_upload(file.content_type, file_bytes)

    filename = file.filename or "document.pdf"
    result = await asyncio.to_thread(compress_pdf_bytes, file_bytes, filename)
    if not result.success or result.compressed_bytes is None:
        raise ExternalServiceError(result.error or "Compression failed", kind=result.failure or CompressionFailure.UNKNOWN)

    return Response(
        content=result.compressed_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="compressed_{filename}"',
            "X-Original-Size": str(result.original_size),
            "X-Compressed-Size": str(result.compressed_size),
            "X-Compression-Ratio": str(result.compression_ratio),
        },
    )


@router.post("/loads/{load_id}/documents")
async def upload_load_document(
    load_id: int,
    file: UploadFile = File(...),
    compress: bool = Form(default=True),
    db: Session = Depends(get_db),
):
    file_bytes = await file.read()
    outcome = await asyncio.to_thread(
        process_document_upload,
        db,
        load_id=load_id,
        filename=file.filename or "document.pdf",
        content_type=file.content_type,
        file_bytes=file_bytes,
        compress=compress,
    )
    body = outcome.as_dict()
    if not outcome.ok:
        return JSONResponse(status_code=502, content=body)
    return JSONResponse(status_code=201, content=body)


@router.get("/loads/{load_id}/documents")
def list_documents(load_id: int, db: Session = Depends(get_db)) -> dict:
    documents = list_load_documents(db, load_id)
    return {
        "documents": [
            serialize_document(document, include_url=True, url_ttl_seconds=core_settings.SIGNED_URL_TTL_SECONDS)
            for document in documents
        ]
    }


@router.post("/process-large-pdf", status_code=202)
def process_large_pdf(
    payload: LargePdfCallback,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> dict:
    temp_key = payload.temp_key.strip()
    if not temp_key.startswith(temp_upload_prefix()):
        raise ValidationError("Invalid temporary upload key")

    document = start_large_document(db, load_id=payload.load_id, temp_key=temp_key)
    background_tasks.add_task(process_large_document, int(document.id), temp_key, compress=payload.compress)
    return {"document_id": int(document.id), "status": document.status}
