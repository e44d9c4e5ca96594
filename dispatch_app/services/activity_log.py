from sqlalchemy.orm import Session

from dispatch_app.models.driver import Driver
from dispatch_app.models.load import Load
from dispatch_app.models.operations import ActivityLog


DOCUMENT_UPLOAD = "document_upload"


def log_activity(db: Session, *, activity_type: str, message: str, load_id: int | None = None) -> int | None:
    entry = ActivityLog(activity_type=activity_type, message=message, load_id=load_id)
    db.add(entry)
    db.flush()
    return int(entry.id) if entry.id is not None else None


def document_upload_message(driver_name: str, load_reference: str, file_name: str) -> str:
    return f"{driver_name} uploaded {file_name} for Load #{load_reference}"


def log_document_upload_activity(db: Session, *, load_id: int, file_name: str) -> int | None:
    row = (
        db.query(Load.reference_id, Driver.name)
        .outerjoin(Driver, Driver.id == Load.driver_id)
        .filter(Load.id == load_id)
        .first()
    )
    if not row:
        return None

    reference_id, driver_name = row
    return log_activity(
        db,
        activity_type=DOCUMENT_UPLOAD,
        message=document_upload_message(driver_name or "Unknown Driver", reference_id, file_name),
        load_id=load_id,
    )
