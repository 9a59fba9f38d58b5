import logging
from datetime import datetime, timedelta

from .enrollment import validate_descriptor
from .errors import AttendanceError, NotFoundError, ValidationError
from .models import STATUS_ABSENT, STATUS_LATE, STATUS_PRESENT, normalize_marker, parse_date, timestamp_now

logger = logging.getLogger(__name__)

COLLECTIONS = ("students", "attendance")
OPERATIONS = ("upsert", "delete")
STUDENT_FIELDS = (
    "full_name", "class_name", "section", "parent_name", "parent_phone",
    "parent_email", "face_descriptors", "qr_code", "deleted_at",
)
ATTENDANCE_FIELDS = ("status", "class_name", "confidence", "timestamp")
STATUSES = (STATUS_PRESENT, STATUS_LATE, STATUS_ABSENT)
# Seconds re-read before the client's marker on every pull
DEFAULT_PULL_OVERLAP = 5


def pull_window_start(marker, overlap):
    """Start of the pull window: the marker moved back by ``overlap`` seconds.

    updated_at is stamped before the write commits, so a row stamped just
    before a marker can become visible only after that sync's pull. Rows in
    the overlap are returned again; applying them is an idempotent upsert.
    """
    if not marker or not overlap:
        return marker
    start = datetime.fromisoformat(marker) - timedelta(seconds=overlap)
    return start.isoformat(timespec="microseconds")


class SyncService:
    """Last-writer-wins reconciliation of offline changes keyed by natural keys.

    Students are keyed by roll number, attendance by (roll number, date).
    Every change is applied on its own; a bad item is reported in the result
    list and never aborts the rest of the batch.
    """

    def __init__(self, store, descriptor_dimension=128, pull_overlap=DEFAULT_PULL_OVERLAP):
        self.store = store
        self.descriptor_dimension = descriptor_dimension
        self.pull_overlap = pull_overlap

    def sync(self, changes, last_sync_marker=None):
        try:
            since = normalize_marker(last_sync_marker)
        except ValueError:
            raise ValidationError("Invalid sync marker", {"lastSyncMarker": last_sync_marker})

        results = self.apply(changes)

        # Taken after applying pushes and before the pull so later writes land in the next sync
        marker = timestamp_now()
        pull_from = pull_window_start(since, self.pull_overlap)
        pulled = {collection: self.store.changes_since(collection, pull_from) for collection in COLLECTIONS}

        counts = {outcome: sum(1 for r in results if r["result"] == outcome)
                  for outcome in ("applied", "skipped", "failed")}
        logger.info(
            f"Sync: {counts['applied']} applied, {counts['skipped']} skipped, {counts['failed']} failed; "
            f"returning {len(pulled['students'])} students and {len(pulled['attendance'])} attendance rows"
        )
        return dict(counts, results=results, changes=pulled, marker=marker)

    def apply(self, changes):
        """Apply changes one by one; returns a result entry per change, in order."""
        return [self._apply(index, change) for index, change in enumerate(changes or [])]

    def _apply(self, index, change):
        collection = change.get("collection")
        op = change.get("op") or "upsert"
        key = change.get("key") or {}
        result = {"index": index, "collection": collection, "op": op, "key": key}
        try:
            if collection not in COLLECTIONS:
                raise ValidationError(f"Unknown collection: {collection}")
            if op not in OPERATIONS:
                raise ValidationError(f"Unknown operation: {op}")
            data = change.get("data") or {}
            if collection == "students":
                self._apply_student(op, key, data)
            else:
                self._apply_attendance(op, key, data)
            result["result"] = "applied"
        except NotFoundError as e:
            logger.warning(f"Sync item {index} skipped: {e.message} {key}")
            result.update(result="skipped", reason=e.message)
        except AttendanceError as e:
            logger.warning(f"Sync item {index} rejected: {e.message}")
            result.update(result="failed", reason=e.message)
        except Exception as e:
            logger.error(f"Sync item {index} failed: {e}", exc_info=True)
            result.update(result="failed", reason=str(e))
        return result

    def _apply_student(self, op, key, data):
        roll_number = key.get("roll_number") or data.get("roll_number")
        if not roll_number:
            raise ValidationError("Student changes need a roll_number key")

        existing = self.store.find_student_by_roll(roll_number)
        if op == "delete":
            if existing is None:
                raise NotFoundError("Student not found")
            self.store.update_student(existing["id"], {"deleted_at": data.get("deleted_at") or timestamp_now()})
            return

        doc = {k: data[k] for k in STUDENT_FIELDS if k in data}
        if existing is None and not doc.get("full_name"):
            raise ValidationError("New students need a full_name")
        if "face_descriptors" in doc:
            doc["face_descriptors"] = [
                validate_descriptor(d, self.descriptor_dimension) for d in doc["face_descriptors"] or []
            ]
        doc["roll_number"] = roll_number
        self.store.upsert_student(doc)

    def _apply_attendance(self, op, key, data):
        roll_number = key.get("roll_number")
        on_date = key.get("date")
        if not roll_number or not on_date:
            raise ValidationError("Attendance changes need roll_number and date keys")
        try:
            on_date = parse_date(on_date)
        except ValueError:
            raise ValidationError(f"Invalid date: {on_date}")

        student = self.store.find_student_by_roll(roll_number)
        if student is None or student.get("deleted_at"):
            raise NotFoundError("Student not found")

        if op == "delete":
            self.store.delete_attendance(student["id"], on_date)
            return

        if data.get("status") not in STATUSES:
            raise ValidationError(f"Invalid status: {data.get('status')}")
        doc = {k: data.get(k) for k in ATTENDANCE_FIELDS}
        doc.update(student_id=student["id"], roll_number=roll_number, date=str(on_date))
        self.store.upsert_attendance(doc)
