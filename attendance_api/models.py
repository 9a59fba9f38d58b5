from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

STATUS_PRESENT = "Present"
STATUS_LATE = "Late"
STATUS_ABSENT = "Absent"
MANUAL_CONFIDENCE = "Manual"


def utc_now():
    return datetime.now(timezone.utc)


def timestamp_now():
    """ISO timestamp used for updated_at columns and sync markers."""
    return utc_now().isoformat(timespec="microseconds")


def normalize_marker(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_date(value):
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def parse_class_time(value):
    if value is None or isinstance(value, time):
        return value
    hours, minutes = str(value).split(":")[:2]
    return time(int(hours), int(minutes))


@dataclass
class Student:
    id: str
    full_name: str
    roll_number: str
    class_name: str
    section: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    face_descriptors: List[List[float]] = field(default_factory=list)
    qr_code: Optional[str] = None
    deleted_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name") or "",
            roll_number=row["roll_number"],
            class_name=row.get("class_name") or "",
            section=row.get("section"),
            parent_name=row.get("parent_name"),
            parent_phone=row.get("parent_phone"),
            parent_email=row.get("parent_email"),
            face_descriptors=list(row.get("face_descriptors") or []),
            qr_code=row.get("qr_code"),
            deleted_at=row.get("deleted_at"),
        )

    @property
    def label(self):
        return f"{self.full_name} ({self.roll_number})"

    @property
    def is_active(self):
        return self.deleted_at is None


@dataclass
class ClassSession:
    class_name: Optional[str] = None
    start_time: Optional[time] = None
    grace_period: int = 0
    date: Optional[date] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data, default_grace=0):
        data = data or {}
        grace = data.get("grace_period")
        return cls(
            class_name=data.get("class_name") or None,
            start_time=parse_class_time(data.get("class_time")),
            grace_period=default_grace if grace is None else int(grace),
            date=parse_date(data.get("date")),
            id=str(data["id"]) if data.get("id") is not None else None,
        )

    def grace_deadline(self, on_date):
        """Last instant on ``on_date`` that still counts as on time, or None without a start time.

        The class start is placed on the event's own day, not the session's.
        """
        if self.start_time is None:
            return None
        start = datetime.combine(on_date or self.date, self.start_time)
        return start + timedelta(minutes=self.grace_period)


@dataclass
class AttendanceRecord:
    id: Optional[str]
    student_id: str
    roll_number: str
    date: date
    status: str
    timestamp: Optional[str] = None
    confidence: Optional[str] = None
    class_name: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            student_id=str(row["student_id"]),
            roll_number=row.get("roll_number") or "",
            date=parse_date(row["date"]),
            status=row["status"],
            timestamp=row.get("timestamp"),
            confidence=row.get("confidence"),
            class_name=row.get("class_name"),
        )

    @property
    def is_manual(self):
        return self.confidence == MANUAL_CONFIDENCE


@dataclass
class MatchResult:
    student: Student
    distance: float

    @property
    def confidence(self):
        return 1.0 - self.distance
