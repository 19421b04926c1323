"""
Data Models for Work Period Scheduling

Work periods, user profiles, grid cells and persisted shift records,
with conversion to and from the JSON layout used by the data store.
"""

from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


DATE_KEY_FORMAT = "%Y-%m-%d"


class InvalidInputError(ValueError):
    """Raised when a period, date or user list is malformed"""
    pass


def parse_date_key(value: Union[str, date]) -> date:
    """Parse a YYYY-MM-DD key (or pass a date through)"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidInputError(f"Expected a YYYY-MM-DD date, got {value!r}")
    try:
        return datetime.strptime(value, DATE_KEY_FORMAT).date()
    except ValueError:
        raise InvalidInputError(f"Malformed date: {value!r}")


def date_key(value: Union[str, date]) -> str:
    """Canonical YYYY-MM-DD key of a calendar date"""
    return parse_date_key(value).strftime(DATE_KEY_FORMAT)


@dataclass
class WorkPeriod:
    """A named, inclusive date range with a per-day staffing target"""
    id: str
    name: str
    start_date: date
    end_date: date
    needed_capacity: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.start_date = parse_date_key(self.start_date)
        self.end_date = parse_date_key(self.end_date)

    def validate(self):
        """Raise InvalidInputError unless the period is well formed"""
        self.start_date = parse_date_key(self.start_date)
        self.end_date = parse_date_key(self.end_date)
        if self.end_date < self.start_date:
            raise InvalidInputError(
                f"Work period {self.id!r} ends ({self.end_date}) before it starts ({self.start_date})"
            )
        if isinstance(self.needed_capacity, bool) or not isinstance(self.needed_capacity, int):
            raise InvalidInputError(f"Needed capacity must be an integer, got {self.needed_capacity!r}")
        if self.needed_capacity < 0:
            raise InvalidInputError(f"Needed capacity cannot be negative: {self.needed_capacity}")

    @property
    def days(self) -> List[date]:
        count = (self.end_date - self.start_date).days + 1
        return [self.start_date + timedelta(days=i) for i in range(max(count, 0))]

    @property
    def date_keys(self) -> List[str]:
        return [d.strftime(DATE_KEY_FORMAT) for d in self.days]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": date_key(self.start_date),
            "endDate": date_key(self.end_date),
            "neededCapacity": self.needed_capacity,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkPeriod':
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            start_date=data["startDate"],
            end_date=data["endDate"],
            needed_capacity=data.get("neededCapacity", 0),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt")
        )


@dataclass
class UserProfile:
    """User identity plus display attributes"""
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        if self.first_name or self.last_name:
            return f"{self.first_name or ''} {self.last_name or ''}".strip()
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "isAdmin": self.is_admin
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        return cls(
            id=data["id"],
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            email=data.get("email"),
            is_admin=data.get("isAdmin", False)
        )


@dataclass
class Cell:
    """State of one (user, day) pair in the schedule grid"""
    record_id: Optional[str] = None
    assigned: bool = False
    locked: bool = False
    requested_off: bool = False


@dataclass
class ShiftRecord:
    """Persisted cell state, keyed by (work period, user, date)"""
    id: str
    work_period_id: str
    user_id: str
    shift_date: str
    assigned: bool = False
    locked: bool = False
    requested_off: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.shift_date = date_key(self.shift_date)

    def to_cell(self) -> Cell:
        return Cell(
            record_id=self.id,
            assigned=self.assigned,
            locked=self.locked,
            requested_off=self.requested_off
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workPeriodId": self.work_period_id,
            "userId": self.user_id,
            "shiftDate": self.shift_date,
            "assigned": self.assigned,
            "locked": self.locked,
            "requestedOff": self.requested_off,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftRecord':
        return cls(
            id=data["id"],
            work_period_id=data["workPeriodId"],
            user_id=data["userId"],
            shift_date=data["shiftDate"],
            assigned=data.get("assigned", False),
            locked=data.get("locked", False),
            requested_off=data.get("requestedOff", False),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt")
        )
