"""
Roster data models for the Calendar Service.

The remote roster API speaks camelCase JSON; every model accepts both the
wire names and the Python attribute names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class RosterModel(BaseModel):
    """Base for records exchanged with the roster API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_api(self, **kwargs) -> Dict[str, Any]:
        """Serialize with wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class StaffRole(str, Enum):
    """Role a staff member holds on a specific shift."""
    SUPERVISOR = "supervisor"
    TEAM_MEMBER = "team_member"
    ASSIGNED = "assigned"
    COVER = "cover"


class ShiftTheme(str, Enum):
    """Calendar colour theme of a shift."""
    DANGER = "Danger"
    WARNING = "Warning"
    SUCCESS = "Success"
    PRIMARY = "Primary"


class AssignmentType(str, Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class InstructionType(str, Enum):
    OK = "ok"
    YES_NO = "yes/no"
    TEXT = "text"


class Client(RosterModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    abn: Optional[str] = None
    acn: Optional[str] = None
    address: Optional[str] = None
    client_instruction: Optional[str] = None
    client_info: Optional[str] = None
    property_info: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Location(RosterModel):
    id: int
    unit: str
    name: str
    accuracy: float = 100
    comment: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place_id: Optional[str] = None
    formatted_address: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Team(RosterModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Staff(RosterModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = "cleaner"
    access: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShiftStaff(Staff):
    """A staff member as attached to a shift."""
    role_in_shift: StaffRole = StaffRole.ASSIGNED


class ShiftInstruction(RosterModel):
    id: int
    shift_id: int
    instruction_text: str
    instruction_type: InstructionType = InstructionType.TEXT
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class ShiftMessage(RosterModel):
    id: int
    shift_id: int
    message_text: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class UserProfile(RosterModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    tax_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _unwrap_join_rows(value: Any, key: str) -> Any:
    # Relations may arrive as join rows: {"shift_teams": {...}, "teams": {...}}
    if not isinstance(value, list):
        return value
    return [item[key] if isinstance(item, dict) and key in item else item for item in value]


class Shift(RosterModel):
    """A scheduled shift with its relations."""

    id: int
    title: str
    start_time: datetime
    end_time: datetime
    theme: ShiftTheme = ShiftTheme.PRIMARY
    assignment_type: AssignmentType = AssignmentType.INDIVIDUAL
    is_published: bool = False
    include_location: bool = False
    shift_instructions: Optional[str] = None
    job_started: bool = False
    job_started_at: Optional[datetime] = None
    job_paused: bool = False
    job_ended_at: Optional[datetime] = None
    is_cancelled: bool = False
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    staff: List[ShiftStaff] = Field(default_factory=list)
    clients: List[Client] = Field(default_factory=list)
    teams: List[Team] = Field(default_factory=list)
    locations: List[Location] = Field(default_factory=list)
    instructions: List[ShiftInstruction] = Field(default_factory=list)
    messages: List[ShiftMessage] = Field(default_factory=list)

    @field_validator("teams", mode="before")
    @classmethod
    def _unwrap_teams(cls, value):
        return _unwrap_join_rows(value, "teams")

    @field_validator("locations", mode="before")
    @classmethod
    def _unwrap_locations(cls, value):
        return _unwrap_join_rows(value, "locations")

    @field_validator("staff", "clients", "teams", "locations", "instructions", "messages", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @property
    def start_utc(self) -> datetime:
        """Start time as an aware UTC datetime; naive values are taken as UTC."""
        return as_utc(self.start_time)

    def staff_ids(self, role: Optional[StaffRole] = None) -> List[int]:
        return [s.id for s in self.staff if role is None or s.role_in_shift == role]


class CreateShiftData(RosterModel):
    """Payload for creating a shift."""

    title: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    theme: ShiftTheme = ShiftTheme.PRIMARY
    assignment_type: AssignmentType = AssignmentType.INDIVIDUAL
    is_published: bool = False
    include_location: bool = False
    shift_instructions: Optional[str] = None
    staff_ids: List[int] = Field(default_factory=list)
    client_ids: List[int] = Field(default_factory=list)
    team_ids: List[int] = Field(default_factory=list)
    location_ids: List[int] = Field(default_factory=list)
    supervisor_ids: List[int] = Field(default_factory=list)
    team_member_ids: List[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_times(self):
        if as_utc(self.end_time) < as_utc(self.start_time):
            raise ValueError("end_time must not be before start_time")
        return self


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Normalized outcome of a roster API call."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    message: Optional[str] = None
    count: Optional[int] = None
    status_code: Optional[int] = None

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> "ApiResponse":
        return cls(success=False, error=error, status_code=status_code)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
