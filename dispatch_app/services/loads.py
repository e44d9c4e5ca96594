import logging
from enum import Enum

from sqlalchemy.orm import Session

from dispatch_app.core.errors import NotFoundError, ValidationError
from dispatch_app.database import commit_or_raise
from dispatch_app.models.driver import Driver
from dispatch_app.models.load import Load


logger = logging.getLogger(__name__)


class LoadStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_TRANSIT = "In-Transit"
    DELIVERED = "Delivered"


class DriverAvailability(str, Enum):
    AVAILABLE = "Available"
    ON_LOAD = "On Load"


_STATUS_ORDER = (LoadStatus.SCHEDULED, LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED)


def parse_load_status(value: str | None) -> LoadStatus:
    try:
        return LoadStatus((value or "").strip())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in LoadStatus)
        raise ValidationError(f"Invalid load status '{value}'. Expected one of: {allowed}") from exc


def is_allowed_transition(current: LoadStatus, target: LoadStatus) -> bool:
    """Forward-only, one step at a time; re-setting the current status is a no-op."""
    if current == target:
        return True
    return _STATUS_ORDER.index(target) == _STATUS_ORDER.index(current) + 1


def change_load_status(db: Session, *, load_id: int, new_status: str) -> Load:
    load = db.get(Load, load_id)
    if load is None:
        raise NotFoundError("Load not found")

    target = parse_load_status(new_status)
    current = parse_load_status(load.status)
    if not is_allowed_transition(current, target):
        raise ValidationError(f"Cannot change load status from {current.value} to {target.value}")

    if current != target:
        load.status = target.value
        commit_or_raise(db)
        logger.info("loads: status load=%s %s -> %s", load.id, current.value, target.value)
    return load


def driver_availability(db: Session, *, driver_id: int) -> DriverAvailability:
    if db.get(Driver, driver_id) is None:
        raise NotFoundError("Driver not found")

    active_loads = (
        db.query(Load.id)
        .filter(Load.driver_id == driver_id, Load.status != LoadStatus.DELIVERED.value)
        .count()
    )
    return DriverAvailability.ON_LOAD if active_loads else DriverAvailability.AVAILABLE
