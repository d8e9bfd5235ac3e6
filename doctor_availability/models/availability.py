"""Doctor availability model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, UniqueConstraint
from doctor_availability.database import Base


class DoctorAvailability(Base):
    """Recurring weekly schedule for one doctor on one day of the week."""
    __tablename__ = "doctor_availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", name="uq_doctor_availability_doctor_day"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    is_available = Column(Boolean, nullable=False, default=True)
    slots = Column(JSON, nullable=False, default=list)

    added_by_id = Column(String, nullable=False)
    added_by_role = Column(String, nullable=False)
    added_by_name = Column(String, nullable=False)
    added_by_at = Column(DateTime(timezone=True), nullable=False)
    updated_by_id = Column(String)
    updated_by_role = Column(String)
    updated_by_name = Column(String)
    updated_by_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=1)
