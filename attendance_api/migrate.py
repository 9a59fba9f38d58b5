"""Create (or bring up to date) the Postgres schema behind Supabase.

Run with ``python -m attendance_api.migrate``. Every statement is idempotent,
so the script is safe to re-run after pulling a newer version.
"""
import psycopg2
import psycopg2.extras

from .config import Config

DB_CONFIG = {
    "host": Config.DB_HOST,
    "database": Config.DB_NAME,
    "user": Config.DB_USER,
    "password": Config.DB_PASSWORD,
    "port": Config.DB_PORT,
}

TABLES = {
    "students": """
        CREATE TABLE IF NOT EXISTS students (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            full_name TEXT NOT NULL,
            roll_number TEXT UNIQUE NOT NULL,
            class_name TEXT,
            section TEXT,
            parent_name TEXT,
            parent_phone TEXT,
            parent_email TEXT,
            face_descriptors JSONB NOT NULL DEFAULT '[]'::jsonb,
            qr_code TEXT,
            created_at TIMESTAMPTZ DEFAULT now(),
            updated_at TIMESTAMPTZ DEFAULT now(),
            deleted_at TIMESTAMPTZ
        )
    """,
    "attendance": """
        CREATE TABLE IF NOT EXISTS attendance (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            student_id UUID NOT NULL REFERENCES students(id),
            roll_number TEXT,
            date DATE NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('Present', 'Late', 'Absent')),
            class_name TEXT,
            confidence TEXT,
            timestamp TIMESTAMPTZ,
            updated_at TIMESTAMPTZ DEFAULT now(),
            CONSTRAINT attendance_student_date_key UNIQUE (student_id, date)
        )
    """,
    "class_sessions": """
        CREATE TABLE IF NOT EXISTS class_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            class_name TEXT NOT NULL,
            class_time TEXT,
            grace_period INTEGER NOT NULL DEFAULT 0 CHECK (grace_period BETWEEN 0 AND 120),
            date DATE NOT NULL,
            teacher_id TEXT,
            created_at TIMESTAMPTZ DEFAULT now()
        )
    """,
    "admins": """
        CREATE TABLE IF NOT EXISTS admins (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            institution_domain TEXT,
            created_at TIMESTAMPTZ DEFAULT now()
        )
    """,
    "teachers": """
        CREATE TABLE IF NOT EXISTS teachers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            class_assigned TEXT,
            created_at TIMESTAMPTZ DEFAULT now()
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_name)",
    "CREATE INDEX IF NOT EXISTS idx_students_updated ON students(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_updated ON attendance(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_date ON class_sessions(date)",
]

# Columns added after the first release; (table, column, type)
ADDED_COLUMNS = [
    ("students", "deleted_at", "TIMESTAMPTZ"),
    ("students", "qr_code", "TEXT"),
    ("attendance", "confidence", "TEXT"),
]


def connect_db():
    try:
        conn = psycopg2.connect(**DB_CONFIG)
        conn.autocommit = True
        return conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    except psycopg2.OperationalError as e:
        print(f"Error connecting to database: {e}")
        return None, None


def existing_columns(cur, table):
    cur.execute(
        "SELECT column_name FROM information_schema.columns WHERE table_name = %s",
        (table,),
    )
    return {row["column_name"] for row in cur.fetchall()}


def migrate():
    conn, cur = connect_db()
    if not conn:
        return False

    print("Connected to database. Starting migration...")
    cur.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    for name, ddl in TABLES.items():
        print(f"Ensuring table '{name}'...")
        cur.execute(ddl)

    for table, column, column_type in ADDED_COLUMNS:
        if column not in existing_columns(cur, table):
            print(f"Adding column '{column}' to {table} table...")
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")

    for statement in INDEXES:
        cur.execute(statement)

    print("Migration completed successfully.")
    cur.close()
    conn.close()
    return True


if __name__ == "__main__":
    migrate()
