"""
SQLite persistence for offline nodes.

Implements the same interface as ``SupabaseStore`` with the same unique
constraints, so the ledger can rely on the database to reject a second
attendance row for a (student, date). With ``track_changes`` enabled every
local write is queued in an outbox that ``SyncClient`` pushes to the server.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager

from .errors import ConflictError, DuplicateError, ValidationError
from .models import timestamp_now

logger = logging.getLogger(__name__)

STUDENT_COLUMNS = (
    "full_name", "roll_number", "class_name", "section", "parent_name",
    "parent_phone", "parent_email", "face_descriptors", "qr_code",
    "created_at", "updated_at", "deleted_at",
)
ATTENDANCE_COLUMNS = (
    "student_id", "roll_number", "date", "status", "class_name",
    "confidence", "timestamp", "updated_at",
)
SESSION_COLUMNS = ("class_name", "class_time", "grace_period", "date", "teacher_id", "created_at")
PRINCIPAL_COLUMNS = {
    "admins": ("name", "email", "password_hash", "institution_domain", "created_at"),
    "teachers": ("name", "email", "password_hash", "class_assigned", "created_at"),
}
SYNCED_COLLECTIONS = ("students", "attendance")

SCHEMA = """
CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name TEXT NOT NULL,
    roll_number TEXT UNIQUE NOT NULL,
    class_name TEXT,
    section TEXT,
    parent_name TEXT,
    parent_phone TEXT,
    parent_email TEXT,
    face_descriptors TEXT NOT NULL DEFAULT '[]',
    qr_code TEXT,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT
);
CREATE TABLE IF NOT EXISTS attendance (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id),
    roll_number TEXT,
    date TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('Present', 'Late', 'Absent')),
    class_name TEXT,
    confidence TEXT,
    timestamp TEXT,
    updated_at TEXT,
    UNIQUE (student_id, date)
);
CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date);
CREATE INDEX IF NOT EXISTS idx_attendance_updated ON attendance(updated_at);
CREATE INDEX IF NOT EXISTS idx_students_updated ON students(updated_at);
CREATE TABLE IF NOT EXISTS class_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    class_name TEXT NOT NULL,
    class_time TEXT,
    grace_period INTEGER NOT NULL DEFAULT 0,
    date TEXT NOT NULL,
    teacher_id TEXT,
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS admins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    institution_domain TEXT,
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS teachers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    class_assigned TEXT,
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS outbox (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection TEXT NOT NULL,
    op TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT,
    queued_at TEXT
);
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""


def _pick(doc, columns):
    return {k: v for k, v in doc.items() if k in columns}


def _student_row(row):
    if row is None:
        return None
    data = dict(row)
    data["face_descriptors"] = json.loads(data.get("face_descriptors") or "[]")
    return data


def _encode_student(doc):
    doc = _pick(doc, STUDENT_COLUMNS)
    if "face_descriptors" in doc:
        doc["face_descriptors"] = json.dumps(doc["face_descriptors"] or [])
    return doc


class SqliteStore:
    def __init__(self, path=":memory:", track_changes=False):
        self.path = path
        self.track_changes = track_changes
        self._lock = threading.RLock()
        self._tracking = threading.local()
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.init_database()

    def init_database(self):
        with self._lock, self.conn:
            self.conn.executescript(SCHEMA)
        logger.debug(f"SQLite store ready at {self.path}")

    def close(self):
        self.conn.close()

    @contextmanager
    def untracked(self):
        """Suppress outbox entries, e.g. while applying changes pulled from the server."""
        previous = getattr(self._tracking, "suspended", False)
        self._tracking.suspended = True
        try:
            yield self
        finally:
            self._tracking.suspended = previous

    def _tracking_enabled(self):
        return self.track_changes and not getattr(self._tracking, "suspended", False)

    def _queue(self, collection, op, key, data=None):
        if not self._tracking_enabled():
            return
        self.conn.execute(
            "INSERT INTO outbox (collection, op, key, data, queued_at) VALUES (?, ?, ?, ?, ?)",
            (collection, op, json.dumps(key), json.dumps(data) if data is not None else None,
             timestamp_now()),
        )

    def _queue_student(self, row):
        if row is None:
            return
        data = {k: row[k] for k in STUDENT_COLUMNS if k in row and k != "created_at"}
        self._queue("students", "upsert", {"roll_number": row["roll_number"]}, data)

    def _queue_attendance(self, row):
        data = {k: row[k] for k in ATTENDANCE_COLUMNS if k in row and k != "student_id"}
        self._queue("attendance", "upsert", {"roll_number": row["roll_number"], "date": row["date"]}, data)

    def _insert(self, table, doc):
        columns = ", ".join(doc)
        placeholders = ", ".join("?" for _ in doc)
        cursor = self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(doc.values())
        )
        return cursor.lastrowid

    def _fetch_one(self, sql, params=()):
        return self.conn.execute(sql, params).fetchone()

    # ----------------------------- students -----------------------------

    def insert_student(self, doc):
        now = timestamp_now()
        doc = _encode_student(dict(doc, created_at=now, updated_at=now))
        with self._lock, self.conn:
            try:
                new_id = self._insert("students", doc)
            except sqlite3.IntegrityError:
                raise ConflictError("Roll number exists", {"roll_number": doc.get("roll_number")})
            row = _student_row(self._fetch_one("SELECT * FROM students WHERE id = ?", (new_id,)))
            self._queue_student(row)
        return row

    def get_student(self, student_id):
        with self._lock:
            return _student_row(self._fetch_one("SELECT * FROM students WHERE id = ?", (student_id,)))

    def find_student_by_roll(self, roll_number):
        with self._lock:
            return _student_row(
                self._fetch_one("SELECT * FROM students WHERE roll_number = ?", (roll_number,))
            )

    def list_students(self, class_name=None, include_deleted=False, student_ids=None):
        clauses, params = [], []
        if class_name:
            clauses.append("class_name = ?")
            params.append(class_name)
        if not include_deleted:
            clauses.append("deleted_at IS NULL")
        if student_ids is not None:
            if not student_ids:
                return []
            ids = list(student_ids)
            clauses.append(f"id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self.conn.execute(f"SELECT * FROM students{where} ORDER BY roll_number", params)
            return [_student_row(r) for r in rows.fetchall()]

    def update_student(self, student_id, fields):
        fields = _encode_student(dict(fields, updated_at=timestamp_now()))
        fields.pop("roll_number", None)
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._lock, self.conn:
            cursor = self.conn.execute(
                f"UPDATE students SET {assignments} WHERE id = ?", (*fields.values(), student_id)
            )
            if cursor.rowcount == 0:
                return None
            row = _student_row(self._fetch_one("SELECT * FROM students WHERE id = ?", (student_id,)))
            self._queue_student(row)
        return row

    def upsert_student(self, doc):
        now = timestamp_now()
        doc = _encode_student(dict(doc, updated_at=now))
        doc.setdefault("created_at", now)
        if not doc.get("roll_number"):
            raise ValidationError("roll_number is required")
        columns = ", ".join(doc)
        placeholders = ", ".join("?" for _ in doc)
        updates = ", ".join(f"{k} = excluded.{k}" for k in doc if k not in ("roll_number", "created_at"))
        with self._lock, self.conn:
            self.conn.execute(
                f"INSERT INTO students ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(roll_number) DO UPDATE SET {updates}",
                tuple(doc.values()),
            )
            row = _student_row(
                self._fetch_one("SELECT * FROM students WHERE roll_number = ?", (doc["roll_number"],))
            )
            self._queue_student(row)
        return row

    def count_students(self):
        with self._lock:
            return self._fetch_one("SELECT COUNT(*) FROM students WHERE deleted_at IS NULL")[0]

    # ----------------------------- attendance -----------------------------

    def insert_attendance(self, doc):
        doc = _pick(dict(doc, updated_at=timestamp_now()), ATTENDANCE_COLUMNS)
        doc["date"] = str(doc["date"])
        with self._lock, self.conn:
            try:
                new_id = self._insert("attendance", doc)
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise ValidationError(f"Invalid attendance record: {e}")
                raise DuplicateError(
                    "Attendance already marked",
                    {"student_id": doc.get("student_id"), "date": doc["date"]},
                )
            row = dict(self._fetch_one("SELECT * FROM attendance WHERE id = ?", (new_id,)))
            self._queue_attendance(row)
        return row

    def find_attendance(self, student_id, on_date):
        with self._lock:
            row = self._fetch_one(
                "SELECT * FROM attendance WHERE student_id = ? AND date = ?", (student_id, str(on_date))
            )
            return dict(row) if row else None

    def delete_attendance(self, student_id, on_date):
        with self._lock, self.conn:
            row = self._fetch_one(
                "SELECT roll_number FROM attendance WHERE student_id = ? AND date = ?",
                (student_id, str(on_date)),
            )
            cursor = self.conn.execute(
                "DELETE FROM attendance WHERE student_id = ? AND date = ?", (student_id, str(on_date))
            )
            if cursor.rowcount and row is not None:
                self._queue("attendance", "delete", {"roll_number": row["roll_number"], "date": str(on_date)})
            return cursor.rowcount

    def upsert_attendance(self, doc):
        doc = _pick(dict(doc, updated_at=timestamp_now()), ATTENDANCE_COLUMNS)
        doc["date"] = str(doc["date"])
        columns = ", ".join(doc)
        placeholders = ", ".join("?" for _ in doc)
        updates = ", ".join(f"{k} = excluded.{k}" for k in doc if k not in ("student_id", "date"))
        with self._lock, self.conn:
            self.conn.execute(
                f"INSERT INTO attendance ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(student_id, date) DO UPDATE SET {updates}",
                tuple(doc.values()),
            )
            row = dict(self._fetch_one(
                "SELECT * FROM attendance WHERE student_id = ? AND date = ?",
                (doc["student_id"], doc["date"]),
            ))
            self._queue_attendance(row)
        return row

    def list_attendance(self, date_from=None, date_to=None, student_ids=None, status=None, limit=None):
        clauses, params = [], []
        if date_from:
            clauses.append("date >= ?")
            params.append(str(date_from))
        if date_to:
            clauses.append("date <= ?")
            params.append(str(date_to))
        if student_ids is not None:
            if not student_ids:
                return []
            ids = list(student_ids)
            clauses.append(f"student_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if status:
            statuses = [status] if isinstance(status, str) else list(status)
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM attendance{where} ORDER BY date DESC, timestamp DESC"
        if limit:
            sql += f" LIMIT {int(limit)}"
        with self._lock:
            return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def count_attendance(self, status=None, active_only=False):
        sql, clauses, params = "SELECT COUNT(*) FROM attendance a", [], []
        if active_only:
            sql += " JOIN students s ON s.id = a.student_id"
            clauses.append("s.deleted_at IS NULL")
        if status:
            statuses = [status] if isinstance(status, str) else list(status)
            clauses.append(f"a.status IN ({', '.join('?' for _ in statuses)})")
            params = statuses
        if clauses:
            sql += f" WHERE {' AND '.join(clauses)}"
        with self._lock:
            return self._fetch_one(sql, params)[0]

    # ----------------------------- class sessions -----------------------------

    def insert_session(self, doc):
        doc = _pick(dict(doc), SESSION_COLUMNS)
        doc["date"] = str(doc["date"])
        doc.setdefault("created_at", timestamp_now())
        with self._lock, self.conn:
            new_id = self._insert("class_sessions", doc)
            return dict(self._fetch_one("SELECT * FROM class_sessions WHERE id = ?", (new_id,)))

    def get_session(self, session_id):
        with self._lock:
            row = self._fetch_one("SELECT * FROM class_sessions WHERE id = ?", (session_id,))
            return dict(row) if row else None

    def list_sessions(self, date_from=None, date_to=None, class_name=None):
        clauses, params = [], []
        if date_from:
            clauses.append("date >= ?")
            params.append(str(date_from))
        if date_to:
            clauses.append("date <= ?")
            params.append(str(date_to))
        if class_name:
            clauses.append("class_name = ?")
            params.append(class_name)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self.conn.execute(f"SELECT * FROM class_sessions{where} ORDER BY date, id", params)
            return [dict(r) for r in rows.fetchall()]

    # ----------------------------- principals -----------------------------

    def _principal_columns(self, kind):
        if kind not in PRINCIPAL_COLUMNS:
            raise ValueError(f"Unknown principal kind: {kind}")
        return PRINCIPAL_COLUMNS[kind]

    def find_principal(self, kind, email):
        self._principal_columns(kind)
        with self._lock:
            row = self._fetch_one(f"SELECT * FROM {kind} WHERE email = ?", (email,))
            return dict(row) if row else None

    def insert_principal(self, kind, doc):
        doc = _pick(dict(doc), self._principal_columns(kind))
        doc.setdefault("created_at", timestamp_now())
        with self._lock, self.conn:
            try:
                new_id = self._insert(kind, doc)
            except sqlite3.IntegrityError:
                raise ConflictError("Email already registered", {"email": doc.get("email")})
            return dict(self._fetch_one(f"SELECT * FROM {kind} WHERE id = ?", (new_id,)))

    def list_principals(self, kind):
        self._principal_columns(kind)
        with self._lock:
            return [dict(r) for r in self.conn.execute(f"SELECT * FROM {kind} ORDER BY name").fetchall()]

    # ----------------------------- sync -----------------------------

    def changes_since(self, collection, marker):
        if collection not in SYNCED_COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        sql, params = f"SELECT * FROM {collection}", []
        if marker:
            sql += " WHERE updated_at > ?"
            params.append(marker)
        sql += " ORDER BY updated_at"
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        if collection == "students":
            return [_student_row(r) for r in rows]
        return [dict(r) for r in rows]

    def pending_changes(self):
        with self._lock:
            rows = self.conn.execute("SELECT * FROM outbox ORDER BY id").fetchall()
        return [
            {
                "id": row["id"],
                "collection": row["collection"],
                "op": row["op"],
                "key": json.loads(row["key"]),
                "data": json.loads(row["data"]) if row["data"] else None,
            }
            for row in rows
        ]

    def clear_changes(self, change_ids):
        ids = list(change_ids)
        if not ids:
            return 0
        with self._lock, self.conn:
            cursor = self.conn.execute(
                f"DELETE FROM outbox WHERE id IN ({', '.join('?' for _ in ids)})", ids
            )
            return cursor.rowcount

    def get_sync_marker(self):
        with self._lock:
            row = self._fetch_one("SELECT value FROM sync_state WHERE key = 'last_sync_marker'")
            return row["value"] if row else None

    def set_sync_marker(self, marker):
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO sync_state (key, value) VALUES ('last_sync_marker', ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (marker,),
            )

    def ping(self):
        with self._lock:
            self._fetch_one("SELECT 1")
        return True
