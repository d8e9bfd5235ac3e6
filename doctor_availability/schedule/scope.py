"""Branch scoping: who may read, book against, or edit which doctor."""

import logging
from enum import Enum

from doctor_availability.schedule.actors import Actor, DoctorActor, MasterAdmin, Receptionist, SubAdmin
from doctor_availability.schedule.audit import AuditTrail
from doctor_availability.schedule.errors import Forbidden, NotFound
from doctor_availability.schedule.types import DoctorProfile

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    READ = 'read'
    BOOK = 'book'
    WRITE = 'write'


class BranchScopeGuard:
    """Checked before every service operation, reads included.

    Out-of-branch access raises ``Forbidden`` rather than returning an empty
    result, and is logged as a security event.
    """

    def __init__(self, directory, audit: AuditTrail | None = None) -> None:
        self.directory = directory
        self.audit = audit

    def authorize(self, actor: Actor, doctor_id: str, permission: Permission) -> DoctorProfile:
        doctor = self.directory.get(doctor_id)
        if doctor is None:
            raise NotFound('Doctor not found.', doctor_id=doctor_id)

        reason = self._denial_reason(actor, doctor, permission)
        if reason is not None:
            self._deny(actor, doctor_id, permission, reason)
        return doctor

    def visible_branch(self, actor: Actor) -> str | None:
        """Branch filter for list operations; None means every branch."""
        if isinstance(actor, MasterAdmin):
            return None
        return actor.branch_id

    def _denial_reason(self, actor: Actor, doctor: DoctorProfile, permission: Permission) -> str | None:
        if isinstance(actor, MasterAdmin):
            return None
        if actor.branch_id != doctor.branch_id:
            return 'doctor belongs to another branch'

        if isinstance(actor, SubAdmin):
            return None
        if isinstance(actor, DoctorActor):
            if permission is Permission.WRITE and actor.doctor_id != doctor.id:
                return 'doctors may only edit their own schedule'
            return None
        if isinstance(actor, Receptionist):
            if permission is Permission.WRITE:
                return 'receptionists cannot edit schedules'
            return None

        raise TypeError(f'Unhandled actor type {type(actor).__name__}')

    def _deny(self, actor: Actor, doctor_id: str, permission: Permission, reason: str) -> None:
        logger.warning(
            'security: denied %s on doctor %s to %s %s (branch %s): %s',
            permission.value, doctor_id, actor.role, actor.actor_id, actor.branch_id, reason,
        )
        if self.audit is not None:
            self.audit.record(
                actor,
                'DENIED',
                {'permission': permission.value, 'reason': reason},
                resource_id=doctor_id,
                success=False,
                error_message=reason,
            )
        raise Forbidden(f'Access denied: {reason}.', doctor_id=doctor_id)
