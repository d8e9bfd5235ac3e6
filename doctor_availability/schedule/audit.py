"""Audit trail: record stamps plus an append-only audit log."""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from doctor_availability.models.audit_log import AuditLogEntry
from doctor_availability.schedule.actors import Actor
from doctor_availability.schedule.types import AuditStamp

logger = logging.getLogger(__name__)

RESOURCE = 'doctor_availability'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditTrail:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self.session_factory = session_factory

    def stamp(self, actor: Actor) -> AuditStamp:
        return AuditStamp(
            actor_id=actor.actor_id,
            role=actor.role,
            display_name=actor.display_name,
            timestamp=utcnow(),
        )

    def record(
        self,
        actor: Actor,
        action: str,
        details: dict,
        *,
        resource: str = RESOURCE,
        resource_id: str | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> None:
        """Log the event and, when a session factory is configured, persist it.

        A failed insert is logged with its traceback; it never fails the
        operation being described.
        """
        logger.info(
            'audit action=%s resource=%s id=%s actor=%s role=%s success=%s details=%s',
            action, resource, resource_id, actor.actor_id, actor.role, success, details,
        )
        if self.session_factory is None:
            return

        db = self.session_factory()
        try:
            db.add(
                AuditLogEntry(
                    actor_id=actor.actor_id,
                    actor_role=actor.role,
                    branch_id=actor.branch_id,
                    action=action,
                    resource=resource,
                    resource_id=resource_id,
                    details=details,
                    success=success,
                    error_message=error_message,
                    timestamp=utcnow(),
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Failed to save audit log entry for %s %s.', action, resource_id)
        finally:
            db.close()
