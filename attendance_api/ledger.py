import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .errors import AttendanceError, DuplicateError, NotFoundError, ValidationError
from .models import (
    MANUAL_CONFIDENCE,
    STATUS_ABSENT,
    STATUS_LATE,
    STATUS_PRESENT,
    AttendanceRecord,
    ClassSession,
    Student,
    parse_date,
)

logger = logging.getLogger(__name__)

BULK_STATUSES = (STATUS_PRESENT, STATUS_ABSENT)
ATTENDED_STATUSES = (STATUS_PRESENT, STATUS_LATE)
PERIODS = ("daily", "weekly", "monthly")


@dataclass
class MarkOutcome:
    record: AttendanceRecord
    created: bool

    @property
    def status(self):
        return self.record.status


@dataclass
class Summary:
    date: date
    present: list
    late: list
    absent: list


def period_range(period, today):
    """Date range for a daily, weekly (Sunday to Saturday) or monthly report."""
    if period == "daily":
        return today, today
    if period == "weekly":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == "monthly":
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    raise ValidationError(f"Unknown report period: {period}", {"allowed": list(PERIODS)})


class AttendanceLedger:
    """One attendance entry per (student, date), classified against a ClassSession.

    Absence is never written by recognition; it is derived when a summary is
    generated. Duplicate marks are rejected by the store's unique constraint
    and swallowed here, which keeps marking idempotent under concurrent
    detections of the same face.
    """

    def __init__(self, store, enrollment, school_timezone="UTC"):
        self.store = store
        self.enrollment = enrollment
        self.tz = ZoneInfo(school_timezone)

    # ----------------------------- time helpers -----------------------------

    def local_time(self, value=None):
        """School wall-clock time (naive) for an ISO string, datetime, or now."""
        if value is None:
            return datetime.now(self.tz).replace(tzinfo=None)
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if value.tzinfo is not None:
            return value.astimezone(self.tz).replace(tzinfo=None)
        return value

    def today(self):
        return self.local_time().date()

    def _stored_timestamp(self, local):
        return local.replace(tzinfo=self.tz).astimezone(timezone.utc).isoformat()

    # ----------------------------- classification -----------------------------

    def classify(self, event_time, session):
        """Present at or before class start plus grace period, Late strictly after."""
        local = self.local_time(event_time)
        deadline = session.grace_deadline(local.date()) if session else None
        if deadline is None or local <= deadline:
            return STATUS_PRESENT
        return STATUS_LATE

    # ----------------------------- marking -----------------------------

    def _insert(self, student, on_date, status, local, confidence, class_name):
        doc = {
            "student_id": student.id,
            "roll_number": student.roll_number,
            "date": str(on_date),
            "status": status,
            "class_name": class_name,
            "confidence": confidence,
            "timestamp": self._stored_timestamp(local),
        }
        try:
            return MarkOutcome(AttendanceRecord.from_row(self.store.insert_attendance(doc)), True)
        except DuplicateError:
            logger.debug(f"{student.roll_number} already marked on {on_date}")
            existing = self.store.find_attendance(student.id, on_date)
            if existing is None:
                raise
            return MarkOutcome(AttendanceRecord.from_row(existing), False)

    def mark_present(self, student, session=None, timestamp=None, confidence=None):
        """Record a recognition (or manual "mark present") event.

        Returns a MarkOutcome; ``created`` is False when the student already
        had an entry that day, in which case the existing entry is untouched.
        """
        local = self.local_time(timestamp)
        status = self.classify(local, session)
        if confidence is not None and not isinstance(confidence, str):
            confidence = f"{confidence:.2f}"
        class_name = (session.class_name if session else None) or student.class_name
        outcome = self._insert(student, local.date(), status, local, confidence, class_name)
        if outcome.created:
            logger.info(f"Marked {student.roll_number} {status} on {local.date()}")
        return outcome

    def override(self, student, on_date=None, present=True, session=None, timestamp=None):
        """Teacher override: replace the day's entry with a Manual Present, or clear it."""
        on_date = parse_date(on_date) or self.today()
        removed = self.store.delete_attendance(student.id, on_date)
        logger.info(
            f"Override for {student.roll_number} on {on_date}: present={present} (removed {removed})"
        )
        if not present:
            return None
        local = self.local_time(timestamp)
        if local.date() != on_date:
            local = datetime.combine(on_date, local.time())
        class_name = (session.class_name if session else None) or student.class_name
        return self._insert(student, on_date, STATUS_PRESENT, local, MANUAL_CONFIDENCE, class_name)

    def bulk_mark(self, records, class_name=None):
        """Mark a batch of ``{roll_number, status, date}`` items independently.

        Unknown roll numbers, invalid statuses and already-marked days are
        skipped; they never fail the batch.
        """
        today = self.today()
        results = []
        for index, item in enumerate(records):
            roll_number = (item.get("roll_number") or "").strip()
            status = item.get("status")
            result = {"index": index, "rollNo": roll_number}
            try:
                if not roll_number or status not in BULK_STATUSES:
                    raise ValidationError("Invalid attendance record")
                student = self.enrollment.find_by_roll(roll_number)
                if student is None:
                    raise NotFoundError("Student not found")
                on_date = parse_date(item.get("date")) or today
                local = datetime.combine(on_date, self.local_time().time())
                outcome = self._insert(
                    student, on_date, status, local, MANUAL_CONFIDENCE, class_name or student.class_name
                )
                if not outcome.created:
                    raise DuplicateError("Already marked")
                result.update(result="saved", status=status, date=str(on_date))
            except AttendanceError as e:
                logger.debug(f"Bulk mark skipped {roll_number or index}: {e.message}")
                result.update(result="skipped", reason=e.message)
            except Exception as e:
                logger.error(f"Bulk mark failed for {roll_number or index}: {e}", exc_info=True)
                result.update(result="failed", reason=str(e))
            results.append(result)

        saved = sum(1 for r in results if r["result"] == "saved")
        logger.info(f"Bulk mark: {saved} saved of {len(results)}")
        return {"saved": saved, "skipped": len(results) - saved, "results": results}

    # ----------------------------- reporting -----------------------------

    def generate_summary(self, on_date=None, session=None):
        """Partition every enrolled student into present, late and absent for a day."""
        on_date = parse_date(on_date) or (session.date if session and session.date else self.today())
        class_name = session.class_name if session else None
        population = self.enrollment.list_students(class_name)
        rows = self.store.list_attendance(
            date_from=on_date, date_to=on_date, student_ids=[s.id for s in population]
        )
        by_student = {str(r["student_id"]): AttendanceRecord.from_row(r) for r in rows}

        summary = Summary(date=on_date, present=[], late=[], absent=[])
        for student in population:
            record = by_student.get(student.id)
            if record is None or record.status == STATUS_ABSENT:
                summary.absent.append(student)
            elif record.is_manual:
                summary.present.append(student)
            elif session is not None and session.start_time is not None and record.timestamp:
                if self.classify(record.timestamp, session) == STATUS_LATE:
                    summary.late.append(student)
                else:
                    summary.present.append(student)
            elif record.status == STATUS_LATE:
                summary.late.append(student)
            else:
                summary.present.append(student)

        logger.info(
            f"Summary for {on_date}: {len(summary.present)} present, "
            f"{len(summary.late)} late, {len(summary.absent)} absent"
        )
        return summary

    def _students_by_id(self, rows):
        ids = {str(r["student_id"]) for r in rows}
        students = self.store.list_students(include_deleted=True, student_ids=ids)
        return {str(s["id"]): Student.from_row(s) for s in students}

    def report(self, class_name=None, date_from=None, date_to=None, status=None, limit=None, active_only=False):
        """Attendance rows joined with their student, newest first.

        History of removed students is included unless ``active_only`` is set.
        """
        student_ids = None
        if class_name or active_only:
            population = self.store.list_students(class_name=class_name, include_deleted=not active_only)
            student_ids = [s["id"] for s in population]
        rows = self.store.list_attendance(
            date_from=date_from, date_to=date_to, student_ids=student_ids, status=status, limit=limit
        )
        students = self._students_by_id(rows)
        report = []
        for row in rows:
            record = AttendanceRecord.from_row(row)
            report.append({"record": record, "student": students.get(record.student_id)})
        return report

    def export_rows(self, class_name=None, date_from=None, date_to=None):
        """Flat (date, studentName, rollNo, className, status) rows for CSV/PDF export."""
        rows = []
        for entry in self.report(class_name, date_from, date_to):
            record, student = entry["record"], entry["student"]
            rows.append({
                "date": str(record.date),
                "studentName": student.full_name if student else "",
                "rollNo": student.roll_number if student else record.roll_number,
                "className": student.class_name if student else (record.class_name or ""),
                "status": record.status,
            })
        return rows

    def period_report(self, period="daily", class_name=None, today=None):
        start, end = period_range(period, parse_date(today) or self.today())
        total_sessions = len(self.store.list_sessions(date_from=start, date_to=end, class_name=class_name))
        students = self.enrollment.list_students(class_name)
        rows = self.store.list_attendance(
            date_from=start, date_to=end, student_ids=[s.id for s in students], status=list(ATTENDED_STATUSES)
        )
        attended = {}
        for row in rows:
            key = str(row["student_id"])
            attended[key] = attended.get(key, 0) + 1

        entries = []
        for student in students:
            count = attended.get(student.id, 0)
            percentage = int(count * 100 / total_sessions + 0.5) if total_sessions else 0
            entries.append({"student": student, "attended": count, "total": total_sessions, "percentage": percentage})
        return {
            "period": period,
            "start_date": start,
            "end_date": end,
            "total_sessions": total_sessions,
            "students": entries,
        }

    def compute_stats(self, recent_limit=10):
        """Totals over active students only; removed students keep history but leave the stats."""
        total_records = self.store.count_attendance(active_only=True)
        total_present = self.store.count_attendance(status=list(ATTENDED_STATUSES), active_only=True)
        rate = round(total_present / total_records * 100, 2) if total_records else 0
        return {
            "total_students": self.store.count_students(),
            "total_records": total_records,
            "total_present": total_present,
            "total_late": self.store.count_attendance(status=STATUS_LATE, active_only=True),
            "total_absent": self.store.count_attendance(status=STATUS_ABSENT, active_only=True),
            "attendance_rate": rate,
            "recent_absentees": self.report(status=STATUS_ABSENT, limit=recent_limit, active_only=True),
        }

    # ----------------------------- sessions -----------------------------

    def start_session(self, class_name, class_time=None, grace_period=0, on_date=None, teacher_id=None):
        if not class_name:
            raise ValidationError("Class name is required.")
        row = self.store.insert_session({
            "class_name": class_name,
            "class_time": class_time,
            "grace_period": int(grace_period or 0),
            "date": str(parse_date(on_date) or self.today()),
            "teacher_id": teacher_id,
        })
        logger.info(f"Class session started: {class_name} at {class_time}")
        return ClassSession.from_dict(row)

    def load_session(self, session_id):
        row = self.store.get_session(session_id)
        if row is None:
            raise NotFoundError("Class session not found", {"session_id": session_id})
        return ClassSession.from_dict(row)

    def list_sessions(self, on_date=None, class_name=None):
        on_date = parse_date(on_date)
        rows = self.store.list_sessions(date_from=on_date, date_to=on_date, class_name=class_name)
        return [ClassSession.from_dict(r) for r in rows]
