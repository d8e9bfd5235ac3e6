from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from doctor_availability.auth.dependencies import get_current_actor
from doctor_availability.core import config
from doctor_availability.schedule.actors import Actor
from doctor_availability.schedule.classifier import SlotCapacity, WeeklySummary
from doctor_availability.schedule.deadline import Deadline
from doctor_availability.schedule.service import AvailabilityView, ScheduleService
from doctor_availability.schedule.types import (
    CLOCK_PATTERN,
    AuditStamp,
    DoctorProfile,
    Reservation,
    TimeSlot,
    format_clock,
    parse_clock,
)

router = APIRouter(tags=['doctor-availability'])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimeSlotRequest(CamelModel):
    start_time: str
    end_time: str
    token_count: int
    hours_available: float | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock(cls, value: str) -> str:
        normalized = value.strip()
        if not CLOCK_PATTERN.match(normalized):
            raise ValueError('Time must be in HH:MM format.')
        return normalized

    def to_slot(self) -> TimeSlot:
        return TimeSlot(
            start_time=parse_clock(self.start_time),
            end_time=parse_clock(self.end_time),
            token_count=self.token_count,
            hours_available=self.hours_available,
        )


class UpdateDayRequest(CamelModel):
    slots: list[TimeSlotRequest]
    is_available: bool = True
    expected_version: int | None = None


class UpsertDayRequest(UpdateDayRequest):
    day_of_week: int


class ReserveTokenRequest(CamelModel):
    token_number: int | None = None
    request_key: str | None = None

    @field_validator('request_key')
    @classmethod
    def validate_request_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class AuditStampResponse(CamelModel):
    actor_id: str
    role: str
    display_name: str
    timestamp: datetime | None = None

    @classmethod
    def from_stamp(cls, stamp: AuditStamp | None) -> 'AuditStampResponse | None':
        if stamp is None:
            return None
        return cls(actor_id=stamp.actor_id, role=stamp.role, display_name=stamp.display_name, timestamp=stamp.timestamp)


class TimeSlotResponse(CamelModel):
    slot_index: int
    start_time: str
    end_time: str
    hours_available: float
    token_count: int
    booked_tokens: list[int]
    available_tokens: int
    status: str


class AvailabilityResponse(CamelModel):
    doctor_id: str
    day_of_week: int
    day_name: str
    is_available: bool
    status: str
    slots: list[TimeSlotResponse]
    added_by: AuditStampResponse
    updated_by: AuditStampResponse | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int

    @classmethod
    def from_view(cls, view: AvailabilityView) -> 'AvailabilityResponse':
        availability = view.availability
        return cls(
            doctor_id=availability.doctor_id,
            day_of_week=availability.day_of_week,
            day_name=availability.day_name,
            is_available=availability.is_available,
            status=view.status.value,
            slots=[
                TimeSlotResponse(
                    slot_index=slot_index,
                    start_time=format_clock(slot.start_time),
                    end_time=format_clock(slot.end_time),
                    hours_available=slot.hours_available,
                    token_count=slot.token_count,
                    booked_tokens=sorted(slot.booked_tokens),
                    available_tokens=capacity.available,
                    status=capacity.status.value,
                )
                for slot_index, (slot, capacity) in enumerate(zip(availability.slots, view.slot_capacities))
            ],
            added_by=AuditStampResponse.from_stamp(availability.added_by),
            updated_by=AuditStampResponse.from_stamp(availability.updated_by),
            created_at=availability.created_at,
            updated_at=availability.updated_at,
            version=availability.version,
        )


class DoctorResponse(CamelModel):
    id: str
    first_name: str
    last_name: str
    branch_id: str
    specialization: str | None = None
    department: str | None = None
    email: str | None = None
    phone_number: str | None = None

    @classmethod
    def from_profile(cls, doctor: DoctorProfile) -> 'DoctorResponse':
        return cls(
            id=doctor.id,
            first_name=doctor.first_name,
            last_name=doctor.last_name,
            branch_id=doctor.branch_id,
            specialization=doctor.specialization,
            department=doctor.department,
            email=doctor.email,
            phone_number=doctor.phone_number,
        )


class WeeklySummaryResponse(CamelModel):
    days: int
    total_hours: float
    total_tokens: int
    booked_tokens: int


class CapacityResponse(CamelModel):
    capacity: int
    booked: int
    available: int
    status: str


class TokenResponse(CamelModel):
    token_number: int


class ReservationResponse(CamelModel):
    slot_index: int
    token_number: int


class DeleteDayResponse(CamelModel):
    message: str
    revoked_reservations: list[ReservationResponse]


def get_schedule_service(request: Request) -> ScheduleService:
    return request.app.state.schedule_service


def get_deadline(x_request_timeout: float | None = Header(default=None)) -> Deadline:
    seconds = config.REQUEST_TIMEOUT_SECONDS if x_request_timeout is None else x_request_timeout
    if seconds <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='X-Request-Timeout must be a positive number of seconds.',
        )
    return Deadline.after(seconds)


def _capacity_response(capacity: SlotCapacity) -> CapacityResponse:
    return CapacityResponse(
        capacity=capacity.capacity,
        booked=capacity.booked,
        available=capacity.available,
        status=capacity.status.value,
    )


def _reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(slot_index=reservation.slot_index, token_number=reservation.token_number)


@router.get('/doctors/list', response_model=list[DoctorResponse])
def list_doctors(
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
):
    return [DoctorResponse.from_profile(doctor) for doctor in service.list_doctors_in_branch(actor)]


@router.get('', response_model=list[AvailabilityResponse])
def list_availability(
    doctor_id: str | None = Query(default=None, alias='doctorId'),
    day_of_week: int | None = Query(default=None, alias='dayOfWeek', ge=0, le=6),
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    views = service.list_availability(actor, doctor_id=doctor_id, day_of_week=day_of_week, deadline=deadline)
    return [AvailabilityResponse.from_view(view) for view in views]


@router.get('/{doctor_id}', response_model=list[AvailabilityResponse])
def get_weekly_schedule(
    doctor_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    return [AvailabilityResponse.from_view(view) for view in service.get_weekly_schedule(actor, doctor_id, deadline)]


@router.get('/{doctor_id}/summary', response_model=WeeklySummaryResponse)
def get_weekly_summary(
    doctor_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    summary: WeeklySummary = service.get_weekly_summary(actor, doctor_id, deadline)
    return WeeklySummaryResponse(
        days=summary.days,
        total_hours=summary.total_hours,
        total_tokens=summary.total_tokens,
        booked_tokens=summary.booked_tokens,
    )


@router.post('/{doctor_id}', response_model=AvailabilityResponse)
def upsert_day_slots(
    doctor_id: str,
    data: UpsertDayRequest,
    force: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    view = service.upsert_day_slots(
        actor,
        doctor_id,
        data.day_of_week,
        [slot.to_slot() for slot in data.slots],
        is_available=data.is_available,
        expected_version=data.expected_version,
        force=force,
        deadline=deadline,
    )
    return AvailabilityResponse.from_view(view)


@router.put('/{doctor_id}/{day_of_week}', response_model=AvailabilityResponse)
def update_day_slots(
    doctor_id: str,
    day_of_week: int,
    data: UpdateDayRequest,
    force: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    view = service.update_day_slots(
        actor,
        doctor_id,
        day_of_week,
        [slot.to_slot() for slot in data.slots],
        is_available=data.is_available,
        expected_version=data.expected_version,
        force=force,
        deadline=deadline,
    )
    return AvailabilityResponse.from_view(view)


@router.delete('/{doctor_id}/{day_of_week}', response_model=DeleteDayResponse)
def delete_day(
    doctor_id: str,
    day_of_week: int,
    force: bool = Query(default=False),
    expected_version: int | None = Query(default=None, alias='expectedVersion'),
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    revoked = service.delete_day(
        actor,
        doctor_id,
        day_of_week,
        force=force,
        expected_version=expected_version,
        deadline=deadline,
    )
    return DeleteDayResponse(
        message='Availability deleted successfully',
        revoked_reservations=[_reservation_response(reservation) for reservation in revoked],
    )


@router.get('/{doctor_id}/{day_of_week}/slots/{slot_index}/capacity', response_model=CapacityResponse)
def peek_capacity(
    doctor_id: str,
    day_of_week: int,
    slot_index: int,
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    return _capacity_response(service.peek_capacity(actor, doctor_id, day_of_week, slot_index, deadline))


@router.post(
    '/{doctor_id}/{day_of_week}/slots/{slot_index}/tokens',
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def reserve_token(
    doctor_id: str,
    day_of_week: int,
    slot_index: int,
    data: ReserveTokenRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    token_number = service.reserve_token(
        actor,
        doctor_id,
        day_of_week,
        slot_index,
        token_number=data.token_number if data else None,
        request_key=data.request_key if data else None,
        deadline=deadline,
    )
    return TokenResponse(token_number=token_number)


@router.delete(
    '/{doctor_id}/{day_of_week}/slots/{slot_index}/tokens/{token_number}',
    status_code=status.HTTP_204_NO_CONTENT,
)
def release_token(
    doctor_id: str,
    day_of_week: int,
    slot_index: int,
    token_number: int,
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service),
    deadline: Deadline = Depends(get_deadline),
):
    service.release_token(actor, doctor_id, day_of_week, slot_index, token_number, deadline=deadline)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
