import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import DispatchError
from dispatch_app.database import check_database_connection
from dispatch_app.routes.diagnostics import router as diagnostics_router
from dispatch_app.routes.documents import router as documents_router
from dispatch_app.routes.extraction import router as extraction_router
from dispatch_app.routes.loads import router as loads_router
from dispatch_app.routes.pay_statements import router as pay_statements_router


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title=core_settings.APP_NAME)
env_lower = (core_settings.ENV or "").strip().lower()
session_https_only = env_lower in {"production", "prod"}
app.add_middleware(
    SessionMiddleware,
    secret_key=core_settings.SESSION_SECRET_KEY,
    same_site="lax",
    https_only=session_https_only,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=core_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(pay_statements_router)
app.include_router(documents_router)
app.include_router(extraction_router)
app.include_router(diagnostics_router)
app.include_router(loads_router)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed: %s %s status=%s error=%s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    first = errors[0]
    field_path = ".".join(str(part) for part in first.get("loc", ()) if part not in {"body", "query", "path"})
    message = first.get("msg") or "Invalid value"
    return JSONResponse(status_code=400, content={"error": f"{field_path}: {message}" if field_path else message})


@app.get("/health")
def health() -> dict[str, str]:
    database = "connected"
    status_value = "healthy"
    try:
        check_database_connection()
    except SQLAlchemyError:
        database = "disconnected"
        status_value = "degraded"

    return {
        "status": status_value,
        "database": database,
        "environment": core_settings.ENV,
    }
