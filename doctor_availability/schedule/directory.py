"""Read-only lookups against the doctors published by staff management."""

from sqlalchemy.orm import Session, sessionmaker

from doctor_availability.models.doctor import Doctor
from doctor_availability.schedule.types import DoctorProfile


def _to_profile(doctor: Doctor) -> DoctorProfile:
    return DoctorProfile(
        id=doctor.id,
        first_name=doctor.first_name,
        last_name=doctor.last_name,
        branch_id=doctor.branch_id,
        specialization=doctor.specialization,
        department=doctor.department,
        email=doctor.email,
        phone_number=doctor.phone_number,
        is_active=bool(doctor.is_active),
    )


class SqlDoctorDirectory:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get(self, doctor_id: str) -> DoctorProfile | None:
        db: Session = self.session_factory()
        try:
            doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
            return _to_profile(doctor) if doctor else None
        finally:
            db.close()

    def list_active(self, branch_id: str | None = None) -> list[DoctorProfile]:
        """Active doctors, optionally limited to one branch, sorted by name."""
        db: Session = self.session_factory()
        try:
            query = db.query(Doctor).filter(Doctor.is_active.is_(True))
            if branch_id is not None:
                query = query.filter(Doctor.branch_id == branch_id)
            doctors = query.order_by(Doctor.first_name.asc(), Doctor.last_name.asc()).all()
            return [_to_profile(doctor) for doctor in doctors]
        finally:
            db.close()


class InMemoryDoctorDirectory:
    def __init__(self, doctors: list[DoctorProfile] | None = None) -> None:
        self._doctors = {doctor.id: doctor for doctor in doctors or []}

    def get(self, doctor_id: str) -> DoctorProfile | None:
        return self._doctors.get(doctor_id)

    def list_active(self, branch_id: str | None = None) -> list[DoctorProfile]:
        doctors = [
            doctor
            for doctor in self._doctors.values()
            if doctor.is_active and (branch_id is None or doctor.branch_id == branch_id)
        ]
        return sorted(doctors, key=lambda doctor: (doctor.first_name, doctor.last_name))
