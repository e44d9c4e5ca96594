from sqlalchemy import Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func

from dispatch_app.database import Base


class Driver(Base):
	__tablename__ = "drivers"

	id = Column(Integer, primary_key=True, index=True)
	name = Column(String(120), nullable=False)
	email = Column(String(255), unique=True, index=True, nullable=True)
	phone = Column(String(30), nullable=True)
	pay_rate = Column(Numeric(10, 2), nullable=True)
	# Soft delete: inactive drivers keep their loads and statements.
	driver_status = Column(String(20), nullable=False, default="active", index=True)
	auth_user_id = Column(String(64), unique=True, nullable=True)
	created_at = Column(DateTime(timezone=True), server_default=func.now())
	updated_at = Column(
		DateTime(timezone=True),
		server_default=func.now(),
		onupdate=func.now(),
	)
