from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from dispatch_app.database import Base


class LoadDocument(Base):
    __tablename__ = "load_documents"

    id = Column(Integer, primary_key=True, index=True)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="processing", index=True)  # processing|uploaded|failed
    storage_path = Column(String(1024), nullable=True)
    error_message = Column(Text, nullable=True)
    original_size = Column(Integer, nullable=True)
    compressed_size = Column(Integer, nullable=True)
    compression_ratio = Column(Float, nullable=True)
    page_count = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PayStatement(Base):
    __tablename__ = "pay_statements"

    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    gross_pay = Column(Numeric(12, 2), nullable=False, default=0)
    additions = Column(JSON, nullable=False, default=dict)
    deductions = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    activity_type = Column(String(40), nullable=False, index=True)
    message = Column(Text, nullable=False)
    load_id = Column(Integer, ForeignKey("loads.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
