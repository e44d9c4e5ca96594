from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dispatch_app.database import Base


class Load(Base):
    __tablename__ = "loads"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_loads_rate_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reference_id = Column(String(64), index=True, nullable=False)
    rate = Column(Integer, nullable=False, default=0)  # whole USD
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="Scheduled", index=True)  # Scheduled|In-Transit|Delivered
    load_type = Column(String(20), nullable=True)
    temperature = Column(Numeric(6, 1), nullable=True)
    broker_name = Column(String(255), nullable=True)
    broker_contact = Column(String(30), nullable=True)
    broker_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    driver = relationship("Driver")
    pickups = relationship(
        "Pickup",
        back_populates="load",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Pickup.datetime",
    )
    deliveries = relationship(
        "Delivery",
        back_populates="load",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Delivery.datetime",
    )
    lumper_service = relationship(
        "LumperService",
        back_populates="load",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Pickup(Base):
    __tablename__ = "pickups"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(30), nullable=True)
    postal_code = Column(String(20), nullable=True)
    datetime = Column(DateTime(timezone=True), nullable=True, index=True)

    load = relationship("Load", back_populates="pickups")


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(30), nullable=True)
    postal_code = Column(String(20), nullable=True)
    datetime = Column(DateTime(timezone=True), nullable=True, index=True)

    load = relationship("Load", back_populates="deliveries")


class LumperService(Base):
    __tablename__ = "lumper_services"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    no_lumper = Column(Boolean, nullable=False, default=False)
    paid_by_broker = Column(Boolean, nullable=False, default=False)
    paid_by_company = Column(Boolean, nullable=False, default=False)
    paid_by_driver = Column(Boolean, nullable=False, default=False)
    broker_amount = Column(Numeric(10, 2), nullable=True)
    company_amount = Column(Numeric(10, 2), nullable=True)
    driver_amount = Column(Numeric(10, 2), nullable=True)
    driver_payment_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    load = relationship("Load", back_populates="lumper_service")
