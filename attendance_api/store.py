from supabase import create_client, Client
from postgrest.exceptions import APIError
import logging

from .errors import ConflictError, DuplicateError
from .models import timestamp_now

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

# Natural keys used for upserts, matching the UNIQUE constraints in migrate.py
NATURAL_KEYS = {
    "students": "roll_number",
    "attendance": "student_id,date",
}


def get_supabase_client(url, key) -> Client:
    if not url or not key:
        return None
    return create_client(url, key)


def _first(response):
    return response.data[0] if response.data else None


def _is_unique_violation(error):
    return getattr(error, "code", None) == UNIQUE_VIOLATION


class SupabaseStore:
    """Persistence backed by the Supabase (Postgres) tables from migrate.py."""

    def __init__(self, client: Client):
        self.client = client

    def _table(self, name):
        return self.client.table(name)

    # ----------------------------- students -----------------------------

    def insert_student(self, doc):
        doc = dict(doc, updated_at=timestamp_now())
        logger.debug(f"Inserting student {doc.get('roll_number')}")
        try:
            return _first(self._table("students").insert(doc).execute())
        except APIError as e:
            if _is_unique_violation(e):
                raise ConflictError("Roll number exists", {"roll_number": doc.get("roll_number")})
            raise

    def get_student(self, student_id):
        return _first(self._table("students").select("*").eq("id", student_id).limit(1).execute())

    def find_student_by_roll(self, roll_number):
        return _first(
            self._table("students").select("*").eq("roll_number", roll_number).limit(1).execute()
        )

    def list_students(self, class_name=None, include_deleted=False, student_ids=None):
        query = self._table("students").select("*")
        if class_name:
            query = query.eq("class_name", class_name)
        if not include_deleted:
            query = query.is_("deleted_at", "null")
        if student_ids is not None:
            if not student_ids:
                return []
            query = query.in_("id", list(student_ids))
        return query.order("roll_number").execute().data or []

    def update_student(self, student_id, fields):
        fields = dict(fields, updated_at=timestamp_now())
        logger.debug(f"Updating student {student_id}: {sorted(fields)}")
        return _first(self._table("students").update(fields).eq("id", student_id).execute())

    def upsert_student(self, doc):
        doc = dict(doc, updated_at=timestamp_now())
        response = self._table("students").upsert(doc, on_conflict=NATURAL_KEYS["students"]).execute()
        return _first(response)

    def count_students(self):
        response = (
            self._table("students").select("id", count="exact").is_("deleted_at", "null").execute()
        )
        return response.count or 0

    # ----------------------------- attendance -----------------------------

    def insert_attendance(self, doc):
        doc = dict(doc, updated_at=timestamp_now())
        try:
            return _first(self._table("attendance").insert(doc).execute())
        except APIError as e:
            if _is_unique_violation(e):
                raise DuplicateError(
                    "Attendance already marked",
                    {"student_id": doc.get("student_id"), "date": doc.get("date")},
                )
            raise

    def find_attendance(self, student_id, on_date):
        return _first(
            self._table("attendance")
            .select("*")
            .eq("student_id", student_id)
            .eq("date", str(on_date))
            .limit(1)
            .execute()
        )

    def delete_attendance(self, student_id, on_date):
        response = (
            self._table("attendance")
            .delete()
            .eq("student_id", student_id)
            .eq("date", str(on_date))
            .execute()
        )
        return len(response.data or [])

    def upsert_attendance(self, doc):
        doc = dict(doc, updated_at=timestamp_now())
        response = (
            self._table("attendance").upsert(doc, on_conflict=NATURAL_KEYS["attendance"]).execute()
        )
        return _first(response)

    def list_attendance(self, date_from=None, date_to=None, student_ids=None, status=None, limit=None):
        query = self._table("attendance").select("*")
        if date_from:
            query = query.gte("date", str(date_from))
        if date_to:
            query = query.lte("date", str(date_to))
        if student_ids is not None:
            if not student_ids:
                return []
            query = query.in_("student_id", list(student_ids))
        if status:
            query = query.in_("status", [status] if isinstance(status, str) else list(status))
        query = query.order("date", desc=True).order("timestamp", desc=True)
        if limit:
            query = query.limit(limit)
        return query.execute().data or []

    def count_attendance(self, status=None, active_only=False):
        if active_only:
            # Inner join on the student so removed students' rows drop out
            query = (
                self._table("attendance")
                .select("id, students!inner(id)", count="exact")
                .is_("students.deleted_at", "null")
            )
        else:
            query = self._table("attendance").select("id", count="exact")
        if status:
            query = query.in_("status", [status] if isinstance(status, str) else list(status))
        return query.execute().count or 0

    # ----------------------------- class sessions -----------------------------

    def insert_session(self, doc):
        return _first(self._table("class_sessions").insert(dict(doc)).execute())

    def get_session(self, session_id):
        return _first(
            self._table("class_sessions").select("*").eq("id", session_id).limit(1).execute()
        )

    def list_sessions(self, date_from=None, date_to=None, class_name=None):
        query = self._table("class_sessions").select("*")
        if date_from:
            query = query.gte("date", str(date_from))
        if date_to:
            query = query.lte("date", str(date_to))
        if class_name:
            query = query.eq("class_name", class_name)
        return query.order("date").execute().data or []

    # ----------------------------- principals -----------------------------

    def find_principal(self, kind, email):
        return _first(self._table(kind).select("*").eq("email", email).limit(1).execute())

    def insert_principal(self, kind, doc):
        try:
            return _first(self._table(kind).insert(dict(doc)).execute())
        except APIError as e:
            if _is_unique_violation(e):
                raise ConflictError("Email already registered", {"email": doc.get("email")})
            raise

    def list_principals(self, kind):
        return self._table(kind).select("*").order("name").execute().data or []

    # ----------------------------- sync -----------------------------

    def changes_since(self, collection, marker):
        query = self._table(collection).select("*")
        if marker:
            query = query.gt("updated_at", marker)
        return query.order("updated_at").execute().data or []

    def ping(self):
        self._table("students").select("id").limit(1).execute()
        return True
