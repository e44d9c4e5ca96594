import sqlite3
from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pytest
from PyPDF2 import PdfWriter
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dispatch_app.database import Base
from dispatch_app.models.driver import Driver
from dispatch_app.models.load import Delivery, Load, LumperService, Pickup
from dispatch_app.models import operations  # noqa: F401


sqlite3.register_adapter(Decimal, float)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def add_driver(db, name="Jane Driver", **kwargs) -> Driver:
    driver = Driver(name=name, **kwargs)
    db.add(driver)
    db.commit()
    return driver


def add_load(
    db,
    *,
    driver=None,
    reference_id="REF-1",
    rate=1000,
    status="Delivered",
    pickups=(),
    deliveries=(),
    lumper=None,
) -> Load:
    load = Load(
        reference_id=reference_id,
        rate=rate,
        status=status,
        driver_id=driver.id if driver is not None else None,
    )
    for index, when in enumerate(pickups, start=1):
        load.pickups.append(
            Pickup(name=f"Shipper {index}", address=f"{index} Dock Rd", state="TX", datetime=when)
        )
    for index, when in enumerate(deliveries, start=1):
        load.deliveries.append(
            Delivery(name=f"Receiver {index}", address=f"{index} Market St", state="GA", datetime=when)
        )
    if lumper is not None:
        load.lumper_service = LumperService(**lumper)
    db.add(load)
    db.commit()
    return load


def at(day: str, clock: str = "08:00") -> datetime:
    return datetime.fromisoformat(f"{day}T{clock}:00")
