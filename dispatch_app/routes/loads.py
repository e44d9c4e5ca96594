from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from dispatch_app.database import get_db
from dispatch_app.dependencies.auth import require_session_user
from dispatch_app.services.loads import change_load_status, driver_availability


router = APIRouter(prefix="/api", tags=["loads"], dependencies=[Depends(require_session_user)])


class LoadStatusUpdate(BaseModel):
    status: str


@router.patch("/loads/{load_id}/status")
def update_load_status(load_id: int, payload: LoadStatusUpdate, db: Session = Depends(get_db)) -> dict:
    load = change_load_status(db, load_id=load_id, new_status=payload.status)
    return {"id": int(load.id), "reference_id": load.reference_id, "status": load.status}


@router.get("/drivers/{driver_id}/availability")
def read_driver_availability(driver_id: int, db: Session = Depends(get_db)) -> dict:
    return {"driver_id": driver_id, "availability": driver_availability(db, driver_id=driver_id).value}
