import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DAY_NAMES: dict[int, str] = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}


class Role(str, Enum):
    """Role claim supplied by the identity collaborator."""

    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"


class AppointmentStatus(str, Enum):
    """Possible states of an appointment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

    @property
    def occupies(self) -> bool:
        return self in OCCUPYING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.occupies


# Statuses that reserve their interval against new bookings.
OCCUPYING_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}
)


class Actor(BaseModel):
    """A verified caller identity."""

    model_config = ConfigDict(frozen=True)

    actor_id: str
    role: Role


class Provider(BaseModel):
    """A provider record from the directory."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    active: bool = True
    name: str = ""
    fee: Decimal | None = None
    specialty_id: str | None = None


class Patient(BaseModel):
    """A patient record from the directory."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    name: str = ""


class AvailabilityWindow(BaseModel):
    """A recurring weekly range during which a provider accepts bookings."""

    model_config = ConfigDict(frozen=True)

    window_id: str
    provider_id: str
    day_of_week: int = Field(ge=1, le=7)
    start_time: dt.time
    end_time: dt.time
    active: bool = True
    created_at: dt.datetime

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    @property
    def time_range(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"


class AppointmentRequest(BaseModel):
    """A request to book an appointment.

    ``duration_minutes`` of ``None`` means the configured default.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    patient_id: str
    start: dt.datetime
    duration_minutes: int | None = None
    notes: str | None = None


class Appointment(BaseModel):
    """A booking of one patient with one provider."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    provider_id: str
    patient_id: str
    start: dt.datetime
    duration_minutes: int = 30
    status: AppointmentStatus = AppointmentStatus.PENDING
    patient_notes: str | None = None
    provider_notes: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def end(self) -> dt.datetime:
        return self.start + dt.timedelta(minutes=self.duration_minutes)

    @property
    def occupies(self) -> bool:
        return self.status.occupies


class Slot(BaseModel):
    """One bookable granule ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    start: dt.datetime
    end: dt.datetime
