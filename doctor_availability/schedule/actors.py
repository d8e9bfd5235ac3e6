"""Who is calling: one class per role, resolved from token claims."""

from dataclasses import dataclass

MASTER_ADMIN_ROLE = 'master_admin'
SUB_ADMIN_ROLE = 'sub_admin'
DOCTOR_ROLE = 'doctor'
RECEPTIONIST_ROLE = 'receptionist'


@dataclass(frozen=True)
class MasterAdmin:
    actor_id: str
    display_name: str
    role = MASTER_ADMIN_ROLE

    @property
    def branch_id(self) -> None:
        return None


@dataclass(frozen=True)
class SubAdmin:
    actor_id: str
    display_name: str
    branch_id: str
    role = SUB_ADMIN_ROLE


@dataclass(frozen=True)
class DoctorActor:
    actor_id: str
    display_name: str
    branch_id: str
    doctor_id: str
    role = DOCTOR_ROLE


@dataclass(frozen=True)
class Receptionist:
    actor_id: str
    display_name: str
    branch_id: str
    role = RECEPTIONIST_ROLE


Actor = MasterAdmin | SubAdmin | DoctorActor | Receptionist


def actor_from_claims(claims: dict) -> Actor:
    """Build an actor from already-verified token claims.

    Raises ``ValueError`` when the claims do not describe a known role with
    the fields that role needs.
    """
    actor_id = claims.get('sub')
    role = (claims.get('role') or '').strip().lower()
    branch_id = claims.get('branchId')
    display_name = claims.get('name') or actor_id

    if not actor_id:
        raise ValueError('Token has no subject.')

    if role == MASTER_ADMIN_ROLE:
        return MasterAdmin(actor_id=actor_id, display_name=display_name)

    if not branch_id:
        raise ValueError(f'Role {role or "<missing>"} requires a branchId claim.')

    if role == SUB_ADMIN_ROLE:
        return SubAdmin(actor_id=actor_id, display_name=display_name, branch_id=branch_id)
    if role == DOCTOR_ROLE:
        doctor_id = claims.get('doctorId') or actor_id
        return DoctorActor(actor_id=actor_id, display_name=display_name, branch_id=branch_id, doctor_id=doctor_id)
    if role == RECEPTIONIST_ROLE:
        return Receptionist(actor_id=actor_id, display_name=display_name, branch_id=branch_id)

    raise ValueError(f'Unknown role {role!r}.')
