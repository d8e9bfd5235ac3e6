"""Doctor model definitions."""

from sqlalchemy import Boolean, Column, String
from doctor_availability.database import Base


class Doctor(Base):
    """Doctor as published by staff management. Read-only here."""
    __tablename__ = "doctors"

    id = Column(String, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    specialization = Column(String)
    department = Column(String)
    email = Column(String, unique=True, index=True)
    phone_number = Column(String)
    branch_id = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
