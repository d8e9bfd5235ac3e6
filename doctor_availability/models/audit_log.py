"""Audit log model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from doctor_availability.database import Base


class AuditLogEntry(Base):
    """Who did what to which schedule, and whether it was allowed."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    actor_id = Column(String, nullable=False, index=True)
    actor_role = Column(String, nullable=False)
    branch_id = Column(String, index=True)
    action = Column(String, nullable=False, index=True)  # CREATE/READ/UPDATE/DELETE/RESERVE/RELEASE/DENIED
    resource = Column(String, nullable=False)
    resource_id = Column(String)
    details = Column(JSON)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(String)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
