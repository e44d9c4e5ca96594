from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dispatch_app.dependencies.auth import require_session_user
from dispatch_app.services.pdf_compression import check_compression_credentials


router = APIRouter(prefix="/api", tags=["diagnostics"], dependencies=[Depends(require_session_user)])


@router.get("/test-ilovepdf")
def test_ilovepdf():
    result = check_compression_credentials()
    if result["ok"]:
        return {"success": True, "message": result["message"], "details": result["details"]}
    return JSONResponse(status_code=500, content={"error": result["error"], "details": result["details"]})
