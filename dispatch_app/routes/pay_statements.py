from datetime import date

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from dispatch_app.database import get_db
from dispatch_app.dependencies.auth import require_session_user
from dispatch_app.services.pay_statements import (
    calculate_gross_pay,
    create_pay_statement,
    delete_pay_statement,
    get_pay_statement,
    list_pay_statements,
    refresh_lumper_reimbursement,
    serialize_pay_statement,
    update_pay_statement,
)


router = APIRouter(prefix="/api/pay-statements", tags=["pay-statements"], dependencies=[Depends(require_session_user)])


class GrossPayRequest(BaseModel):
    driver_id: int
    period_start: date
    period_end: date


class PayStatementCreate(GrossPayRequest):
    additions: dict[str, float] = Field(default_factory=dict)
    deductions: dict[str, float] = Field(default_factory=dict)
    notes: str | None = None
    include_lumper: bool = True


class PayStatementUpdate(BaseModel):
    period_start: date | None = None
    period_end: date | None = None
    additions: dict[str, float] | None = None
    deductions: dict[str, float] | None = None
    notes: str | None = None
    recalculate: bool = False


@router.post("/calculate")
def calculate(payload: GrossPayRequest, db: Session = Depends(get_db)) -> dict:
    result = calculate_gross_pay(
        db,
        driver_id=payload.driver_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
    )
    return {
        "gross_pay": result.gross_pay,
        "trips": [trip.as_dict() for trip in result.trips],
        "skipped": result.skipped,
    }


@router.get("")
def list_statements(driver_id: int | None = None, db: Session = Depends(get_db)) -> dict:
    statements = list_pay_statements(db, driver_id=driver_id)
    return {"pay_statements": [serialize_pay_statement(statement) for statement in statements]}


@router.post("", status_code=201)
def create_statement(payload: PayStatementCreate, db: Session = Depends(get_db)) -> dict:
    statement = create_pay_statement(
        db,
        driver_id=payload.driver_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        additions=payload.additions,
        deductions=payload.deductions,
        notes=payload.notes,
        include_lumper=payload.include_lumper,
    )
    return serialize_pay_statement(statement)


@router.get("/{statement_id}")
def read_statement(statement_id: int, db: Session = Depends(get_db)) -> dict:
    return serialize_pay_statement(get_pay_statement(db, statement_id))


@router.patch("/{statement_id}")
def patch_statement(statement_id: int, payload: PayStatementUpdate, db: Session = Depends(get_db)) -> dict:
    statement = update_pay_statement(
        db,
        statement_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        additions=payload.additions,
        deductions=payload.deductions,
        notes=payload.notes,
        recalculate=payload.recalculate,
    )
    return serialize_pay_statement(statement)


@router.delete("/{statement_id}")
def remove_statement(statement_id: int, db: Session = Depends(get_db)):
    delete_pay_statement(db, statement_id)
    return JSONResponse(content={"deleted": True, "id": statement_id})


@router.post("/{statement_id}/lumper-reimbursement")
def apply_lumper(statement_id: int, db: Session = Depends(get_db)) -> dict:
    return serialize_pay_statement(refresh_lumper_reimbursement(db, statement_id))
