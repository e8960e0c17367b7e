"""
Calendar event view of shifts.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from ..models import (
    AssignmentType,
    InstructionType,
    RosterModel,
    Shift,
    ShiftTheme,
    StaffRole,
    as_utc,
)


class EventInstruction(RosterModel):
    id: str
    text: str
    type: InstructionType
    created_at: Optional[datetime] = None


class EventMessage(RosterModel):
    id: str
    message: str
    created_by: str = "Unknown"
    created_at: Optional[datetime] = None


class EventLocation(RosterModel):
    unit: str
    name: str
    accuracy: str
    comment: Optional[str] = None
    address: Optional[str] = None
    formatted_address: Optional[str] = None


class EventProps(RosterModel):
    calendar_type: str = "shift"
    client_ids: List[str] = Field(default_factory=list)
    staff_ids: List[str] = Field(default_factory=list)
    team_ids: List[str] = Field(default_factory=list)
    theme: ShiftTheme = ShiftTheme.PRIMARY
    assignment_type: AssignmentType = AssignmentType.INDIVIDUAL
    is_published: bool = False
    include_location: bool = False
    is_cancelled: bool = False
    shift_instructions: Optional[str] = None
    job_started: bool = False
    job_started_at: Optional[datetime] = None
    job_paused: bool = False
    supervisor_ids: List[str] = Field(default_factory=list)
    team_member_ids: List[str] = Field(default_factory=list)
    instructions: List[EventInstruction] = Field(default_factory=list)
    messages: List[EventMessage] = Field(default_factory=list)
    location: Optional[EventLocation] = None


class CalendarEvent(RosterModel):
    """A shift as rendered on the calendar."""

    id: str
    title: str
    start: datetime
    end: datetime
    extended_props: EventProps

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return as_utc(self.start) <= as_utc(end) and as_utc(self.end) >= as_utc(start)


def _ids(values) -> List[str]:
    return [str(v) for v in values]


def shift_to_calendar_event(shift: Shift) -> CalendarEvent:
    team_members = shift.staff_ids(StaffRole.TEAM_MEMBER)
    # Individual shifts list their people as "assigned" rather than team members
    if not team_members:
        team_members = shift.staff_ids(StaffRole.ASSIGNED)

    location = None
    if shift.locations:
        first = shift.locations[0]
        location = EventLocation(
            unit=first.unit,
            name=first.name,
            accuracy=f"{first.accuracy:g}",
            comment=first.comment,
            address=first.address,
            formatted_address=first.formatted_address,
        )

    props = EventProps(
        client_ids=_ids(c.id for c in shift.clients),
        staff_ids=_ids(shift.staff_ids()),
        team_ids=_ids(t.id for t in shift.teams),
        theme=shift.theme,
        assignment_type=shift.assignment_type,
        is_published=shift.is_published,
        include_location=shift.include_location,
        is_cancelled=shift.is_cancelled,
        shift_instructions=shift.shift_instructions,
        job_started=shift.job_started,
        job_started_at=shift.job_started_at,
        job_paused=shift.job_paused,
        supervisor_ids=_ids(shift.staff_ids(StaffRole.SUPERVISOR)),
        team_member_ids=_ids(team_members),
        instructions=[
            EventInstruction(
                id=str(i.id),
                text=i.instruction_text,
                type=i.instruction_type,
                created_at=i.created_at,
            )
            for i in shift.instructions
        ],
        messages=[
            EventMessage(
                id=str(m.id),
                message=m.message_text,
                created_by=str(m.created_by) if m.created_by is not None else "Unknown",
                created_at=m.created_at,
            )
            for m in shift.messages
        ],
        location=location,
    )

    return CalendarEvent(
        id=str(shift.id),
        title=shift.title,
        start=shift.start_time,
        end=shift.end_time,
        extended_props=props,
    )
