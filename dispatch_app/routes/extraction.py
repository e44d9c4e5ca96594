from fastapi import APIRouter, Depends, File, UploadFile

from dispatch_app.dependencies.auth import require_session_user
from dispatch_app.services.ai_extraction import extract_load_data
from dispatch_app.services.pdf_validation import validate_upload


router = APIRouter(prefix="/api", tags=["extraction"], dependencies=[Depends(require_session_user)])


@router.post("/ai-extract-pdf")
async def ai_extract_pdf(file: UploadFile = File(...)) -> dict:
    file_bytes = await file.read()
    validate_upload(file.content_type, file_bytes)

    extracted = await extract_load_data(file_bytes, file.filename or "document.pdf")
    return {"success": True, "data": extracted.model_dump(by_alias=True)}
