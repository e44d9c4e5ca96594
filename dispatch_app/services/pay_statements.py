from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session, selectinload

from dispatch_app.core.errors import NotFoundError, ValidationError
from dispatch_app.database import commit_or_raise
from dispatch_app.models.driver import Driver
from dispatch_app.models.load import Load
from dispatch_app.models.operations import PayStatement
from dispatch_app.services.loads import LoadStatus


logger = logging.getLogger(__name__)


class AdditionKey(str, Enum):
    DISPATCH_DIFFERENCE = "dispatch_difference"
    BONUS = "bonus"
    LUMPER_REIMBURSEMENT = "lumper_reimbursement"
    OTHER_ADDITION = "other_addition"


class DeductionKey(str, Enum):
    FACTORING = "factoring"
    INSURANCE = "insurance"
    PARKING = "parking"
    DISPATCH_CHARGES = "dispatch_charges"
    TRUCK_FUEL = "truck_fuel"
    TRAILER_FUEL = "trailer_fuel"
    CASH_ADVANCE = "cash_advance"
    OTHER_DEDUCTION = "other_deduction"


ADDITION_LABELS: dict[AdditionKey, str] = {
    AdditionKey.DISPATCH_DIFFERENCE: "Dispatch Difference",
    AdditionKey.BONUS: "Bonus",
    AdditionKey.LUMPER_REIMBURSEMENT: "Lumper Reimbursement",
    AdditionKey.OTHER_ADDITION: "Other Addition",
}

DEDUCTION_LABELS: dict[DeductionKey, str] = {
    DeductionKey.FACTORING: "Factoring",
    DeductionKey.INSURANCE: "Insurance",
    DeductionKey.PARKING: "Parking",
    DeductionKey.DISPATCH_CHARGES: "Dispatch Charges",
    DeductionKey.TRUCK_FUEL: "Fuel Expenses (TOC) Truck Fuel",
    DeductionKey.TRAILER_FUEL: "Fuel Expenses (TOC) Trailer Fuel",
    DeductionKey.CASH_ADVANCE: "Fuel Expenses (TOC) Cash Advance From Card",
    DeductionKey.OTHER_DEDUCTION: "Other Deduction",
}

LUMPER_NOTES_HEADER = "Lumper reimbursements:"


@dataclass(frozen=True)
class TripSummary:
    trip_number: str
    picked_date: datetime
    pickup_locations: str
    drop_date: datetime
    delivery_locations: str
    amount: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "trip_number": self.trip_number,
            "picked_date": self.picked_date.isoformat(),
            "pickup_locations": self.pickup_locations,
            "drop_date": self.drop_date.isoformat(),
            "delivery_locations": self.delivery_locations,
            "amount": self.amount,
        }


@dataclass
class GrossPayResult:
    gross_pay: float = 0.0
    trips: list[TripSummary] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class LumperReimbursement:
    total: float = 0.0
    lines: list[str] = field(default_factory=list)

    @property
    def breakdown(self) -> str:
        return "\n".join(self.lines)


@dataclass(frozen=True)
class PayStatementTotals:
    gross_pay: float
    total_additions: float
    total_deductions: float
    net_pay: float


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    if period_end < period_start:
        raise ValidationError("Period end must be on or after period start")
    return (
        datetime.combine(period_start, time(0, 0, 0)),
        datetime.combine(period_end, time(23, 59, 59, 999999)),
    )


def _wall_clock(value: Any) -> datetime | None:
    # Appointment times are compared as local wall-clock times against calendar days.
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0, 0))
    return None


def _stop_times(stops: Iterable[Any] | None) -> list[datetime]:
    times = [_wall_clock(getattr(stop, "datetime", None)) for stop in (stops or [])]
    return [value for value in times if value is not None]


def format_stop_locations(stops: Iterable[Any] | None) -> str:
    lines = []
    for index, stop in enumerate(stops or [], start=1):
        name = getattr(stop, "name", None) or ""
        address = getattr(stop, "address", None) or ""
        state = getattr(stop, "state", None) or ""
        lines.append(f"{index}. {name} - {address}, {state}")
    return "\n".join(lines)


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _reference(load: Any) -> str:
    return str(getattr(load, "reference_id", None) or getattr(load, "id", ""))


def earliest_pickup(load: Any) -> datetime | None:
    times = _stop_times(getattr(load, "pickups", None))
    return min(times) if times else None


def _is_delivered(load: Any) -> bool:
    return getattr(load, "status", None) == LoadStatus.DELIVERED.value


def loads_in_period(loads: Iterable[Any], period_start: date, period_end: date) -> list[Any]:
    start_at, end_at = period_bounds(period_start, period_end)
    selected = []
    for load in loads:
        if not _is_delivered(load):
            continue
        picked = earliest_pickup(load)
        if picked is None or not _stop_times(getattr(load, "deliveries", None)):
            continue
        if start_at <= picked <= end_at:
            selected.append(load)
    return selected


def summarize_trips(loads: Iterable[Any], period_start: date, period_end: date) -> GrossPayResult:
    """
    Gross pay and trip summaries for delivered loads whose earliest pickup falls
    inside the period (both ends inclusive, whole days).

    Loads missing pickup or delivery times cannot be placed on a statement; they
    are reported in ``skipped`` instead of failing the whole calculation.
    """
    start_at, end_at = period_bounds(period_start, period_end)
    result = GrossPayResult()
    qualifying: list[tuple[datetime, int, TripSummary]] = []

    for load in loads:
        if not _is_delivered(load):
            continue

        pickups = list(getattr(load, "pickups", None) or [])
        deliveries = list(getattr(load, "deliveries", None) or [])
        pickup_times = _stop_times(pickups)
        if not pickup_times:
            logger.warning("pay_statements: load %s has no pickup times; skipped", _reference(load))
            result.skipped.append(_reference(load))
            continue

        picked = min(pickup_times)
        if not (start_at <= picked <= end_at):
            continue

        delivery_times = _stop_times(deliveries)
        if not delivery_times:
            logger.warning("pay_statements: load %s has no delivery times; skipped", _reference(load))
            result.skipped.append(_reference(load))
            continue

        amount = _as_number(getattr(load, "rate", None)) or 0.0
        result.gross_pay += amount
        trip = TripSummary(
            trip_number=_reference(load),
            picked_date=picked,
            pickup_locations=format_stop_locations(pickups),
            drop_date=max(delivery_times),
            delivery_locations=format_stop_locations(deliveries),
            amount=amount,
        )
        qualifying.append((picked, int(getattr(load, "id", 0) or 0), trip))

    qualifying.sort(key=lambda item: (item[0], item[1]))
    result.trips = [trip for _, _, trip in qualifying]
    return result


def _format_amount(amount: float) -> str:
    return f"{int(amount)}" if float(amount).is_integer() else f"{amount:.2f}"


def aggregate_lumper_reimbursements(loads: Iterable[Any]) -> LumperReimbursement:
    reimbursement = LumperReimbursement()
    for load in loads:
        lumper = getattr(load, "lumper_service", None)
        if lumper is None or not getattr(lumper, "paid_by_driver", False):
            continue
        amount = _as_number(getattr(lumper, "driver_amount", None))
        if amount is None:
            continue

        reimbursement.total += amount
        line = f"Load #{_reference(load)}: ${_format_amount(amount)}"
        reason = (getattr(lumper, "driver_payment_reason", None) or "").strip()
        if reason:
            line += f" ({reason})"
        reimbursement.lines.append(line)
    return reimbursement


def _strip_lumper_block(notes: str | None) -> str:
    text_value = notes or ""
    marker = text_value.rfind(LUMPER_NOTES_HEADER)
    # Only a block that starts its own line counts.
    if marker == 0 or (marker > 0 and text_value[marker - 1] == "\n"):
        text_value = text_value[:marker]
    return text_value.rstrip()


def apply_lumper_reimbursement(
    additions: Mapping[str, float],
    notes: str | None,
    reimbursement: LumperReimbursement,
) -> tuple[dict[str, float], str]:
    """
    Put the reimbursement total under the lumper addition key and replace the
    breakdown block in the notes. The block always sits at the end of the notes,
    so applying twice gives the same result as applying once.
    """
    updated = dict(additions)
    base_notes = _strip_lumper_block(notes)

    if reimbursement.total <= 0:
        updated.pop(AdditionKey.LUMPER_REIMBURSEMENT.value, None)
        return updated, base_notes

    updated[AdditionKey.LUMPER_REIMBURSEMENT.value] = reimbursement.total
    block = f"{LUMPER_NOTES_HEADER}\n{reimbursement.breakdown}"
    return updated, f"{base_notes}\n\n{block}" if base_notes else block


def compute_totals(
    gross_pay: float,
    additions: Mapping[str, float] | None,
    deductions: Mapping[str, float] | None,
) -> PayStatementTotals:
    gross = float(gross_pay or 0)
    total_additions = sum(float(value) for value in (additions or {}).values())
    total_deductions = sum(float(value) for value in (deductions or {}).values())
    return PayStatementTotals(
        gross_pay=gross,
        total_additions=total_additions,
        total_deductions=total_deductions,
        net_pay=gross + total_additions - total_deductions,
    )


def format_usd(value: float) -> str:
    amount = float(value or 0)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def normalize_line_items(
    raw_items: Mapping[str, Any] | None,
    key_type: type[AdditionKey] | type[DeductionKey],
    kind: str,
) -> dict[str, float]:
    """Reject unknown keys and bad amounts; zero amounts are dropped."""
    normalized: dict[str, float] = {}
    for raw_key, raw_value in (raw_items or {}).items():
        try:
            key = key_type(str(raw_key).strip())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in key_type)
            raise ValidationError(f"Unknown {kind} '{raw_key}'. Expected one of: {allowed}") from exc

        amount = _as_number(raw_value)
        if amount is None:
            raise ValidationError(f"{kind.capitalize()} '{key.value}' must be a number")
        if amount < 0:
            raise ValidationError(f"{kind.capitalize()} '{key.value}' cannot be negative")
        if amount > 0:
            normalized[key.value] = amount
    return normalized


# ---------------------------------------------------------------------------
# Database-backed operations
# ---------------------------------------------------------------------------

def _require_driver(db: Session, driver_id: int) -> Driver:
    driver = db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver not found")
    return driver


def delivered_loads_for_driver(db: Session, driver_id: int) -> list[Load]:
    return (
        db.query(Load)
        .options(
            selectinload(Load.pickups),
            selectinload(Load.deliveries),
            selectinload(Load.lumper_service),
        )
        .filter(Load.driver_id == driver_id, Load.status == LoadStatus.DELIVERED.value)
        .order_by(Load.id.asc())
        .all()
    )


def calculate_gross_pay(db: Session, *, driver_id: int, period_start: date, period_end: date) -> GrossPayResult:
    period_bounds(period_start, period_end)
    _require_driver(db, driver_id)
    return summarize_trips(delivered_loads_for_driver(db, driver_id), period_start, period_end)


def lumper_reimbursement_for_period(
    db: Session,
    *,
    driver_id: int,
    period_start: date,
    period_end: date,
) -> LumperReimbursement:
    loads = loads_in_period(delivered_loads_for_driver(db, driver_id), period_start, period_end)
    return aggregate_lumper_reimbursements(loads)


def get_pay_statement(db: Session, statement_id: int) -> PayStatement:
    statement = db.get(PayStatement, statement_id)
    if statement is None:
        raise NotFoundError("Pay statement not found")
    return statement


def list_pay_statements(db: Session, *, driver_id: int | None = None) -> list[PayStatement]:
    query = db.query(PayStatement)
    if driver_id is not None:
        query = query.filter(PayStatement.driver_id == driver_id)
    return query.order_by(PayStatement.created_at.desc(), PayStatement.id.desc()).all()


def create_pay_statement(
    db: Session,
    *,
    driver_id: int,
    period_start: date,
    period_end: date,
    additions: Mapping[str, Any] | None = None,
    deductions: Mapping[str, Any] | None = None,
    notes: str | None = None,
    include_lumper: bool = True,
) -> PayStatement:
    clean_additions = normalize_line_items(additions, AdditionKey, "addition")
    clean_deductions = normalize_line_items(deductions, DeductionKey, "deduction")

    gross = calculate_gross_pay(db, driver_id=driver_id, period_start=period_start, period_end=period_end)
    if gross.gross_pay <= 0:
        raise ValidationError("No delivered loads found for this driver in the selected period")

    clean_notes = (notes or "").strip()
    if include_lumper:
        reimbursement = lumper_reimbursement_for_period(
            db,
            driver_id=driver_id,
            period_start=period_start,
            period_end=period_end,
        )
        clean_additions, clean_notes = apply_lumper_reimbursement(clean_additions, clean_notes, reimbursement)

    statement = PayStatement(
        driver_id=driver_id,
        period_start=period_start,
        period_end=period_end,
        gross_pay=gross.gross_pay,
        additions=clean_additions,
        deductions=clean_deductions,
        notes=clean_notes or None,
    )
    db.add(statement)
    commit_or_raise(db)
    db.refresh(statement)
    logger.info(
        "pay_statements: created id=%s driver=%s period=%s..%s gross=%.2f trips=%d",
        statement.id,
        driver_id,
        period_start,
        period_end,
        gross.gross_pay,
        len(gross.trips),
    )
    return statement


def update_pay_statement(
    db: Session,
    statement_id: int,
    *,
    period_start: date | None = None,
    period_end: date | None = None,
    additions: Mapping[str, Any] | None = None,
    deductions: Mapping[str, Any] | None = None,
    notes: str | None = None,
    recalculate: bool = False,
) -> PayStatement:
    statement = get_pay_statement(db, statement_id)

    if additions is not None:
        clean_additions = normalize_line_items(additions, AdditionKey, "addition")
        # The lumper line is owned by the reimbursement refresh, not the form.
        existing_lumper = (statement.additions or {}).get(AdditionKey.LUMPER_REIMBURSEMENT.value)
        if AdditionKey.LUMPER_REIMBURSEMENT.value not in clean_additions and existing_lumper:
            clean_additions[AdditionKey.LUMPER_REIMBURSEMENT.value] = float(existing_lumper)
        statement.additions = clean_additions
    if deductions is not None:
        statement.deductions = normalize_line_items(deductions, DeductionKey, "deduction")
    if notes is not None:
        statement.notes = notes.strip() or None

    period_changed = False
    if period_start is not None and period_start != statement.period_start:
        statement.period_start = period_start
        period_changed = True
    if period_end is not None and period_end != statement.period_end:
        statement.period_end = period_end
        period_changed = True

    if recalculate or period_changed:
        gross = calculate_gross_pay(
            db,
            driver_id=statement.driver_id,
            period_start=statement.period_start,
            period_end=statement.period_end,
        )
        statement.gross_pay = gross.gross_pay
        # Lumper line and notes block follow the statement's period.
        reimbursement = lumper_reimbursement_for_period(
            db,
            driver_id=statement.driver_id,
            period_start=statement.period_start,
            period_end=statement.period_end,
        )
        refreshed_additions, refreshed_notes = apply_lumper_reimbursement(statement.additions or {}, statement.notes, reimbursement)
        statement.additions = refreshed_additions
        statement.notes = refreshed_notes or None

    commit_or_raise(db)
    db.refresh(statement)
    return statement


def refresh_lumper_reimbursement(db: Session, statement_id: int) -> PayStatement:
    statement = get_pay_statement(db, statement_id)
    reimbursement = lumper_reimbursement_for_period(
        db,
        driver_id=statement.driver_id,
        period_start=statement.period_start,
        period_end=statement.period_end,
    )
    additions, notes = apply_lumper_reimbursement(statement.additions or {}, statement.notes, reimbursement)
    statement.additions = additions
    statement.notes = notes or None
    commit_or_raise(db)
    db.refresh(statement)
    return statement


def delete_pay_statement(db: Session, statement_id: int) -> None:
    statement = get_pay_statement(db, statement_id)
    db.delete(statement)
    commit_or_raise(db)
    logger.info("pay_statements: deleted id=%s", statement_id)


def _labelled(items: Mapping[str, float] | None, labels: Mapping[Any, str]) -> list[dict[str, Any]]:
    by_value = {key.value: label for key, label in labels.items()}
    return [
        {"key": key, "label": by_value.get(key, key), "amount": float(amount)}
        for key, amount in (items or {}).items()
    ]


def serialize_pay_statement(statement: PayStatement) -> dict[str, Any]:
    totals = compute_totals(float(statement.gross_pay or 0), statement.additions, statement.deductions)
    return {
        "id": int(statement.id),
        "driver_id": int(statement.driver_id),
        "period_start": statement.period_start.isoformat(),
        "period_end": statement.period_end.isoformat(),
        "gross_pay": totals.gross_pay,
        "additions": dict(statement.additions or {}),
        "deductions": dict(statement.deductions or {}),
        "addition_items": _labelled(statement.additions, ADDITION_LABELS),
        "deduction_items": _labelled(statement.deductions, DEDUCTION_LABELS),
        "total_additions": totals.total_additions,
        "total_deductions": totals.total_deductions,
        "net_pay": totals.net_pay,
        "net_pay_display": format_usd(totals.net_pay),
        "notes": statement.notes,
        "created_at": statement.created_at.isoformat() if statement.created_at else None,
    }
