from flask import Response, current_app
from flask_jwt_extended import jwt_required
from flask_smorest import Blueprint, abort

from .exports import attendance_csv, attendance_pdf
from .models import ClassSession
from .notifications import notices_from_summary
from .schemas import (
    AttendanceReportSchema,
    BatchResultSchema,
    BulkMarkSchema,
    NotifyRequestSchema,
    NotifyResponseSchema,
    OverrideResponseSchema,
    OverrideSchema,
    PeriodQuerySchema,
    PeriodReportSchema,
    RecognizeResponseSchema,
    RecognizeSchema,
    ReportQuerySchema,
    SessionCreateSchema,
    SessionQuerySchema,
    SessionSchema,
    StatsSchema,
    SummaryRequestSchema,
    SummaryResponseSchema,
)
from .services import ROLE_ADMIN, ROLE_TEACHER
from .utils import current_principal, get_enrollment, get_ledger, get_matcher, get_notifications, require_role

blp = Blueprint("attendance", __name__, description="Attendance marking, reports and notifications")

STAFF = (ROLE_ADMIN, ROLE_TEACHER)


def _resolve_session(args, ledger):
    """A stored session by id, an inline session, or None."""
    if args.get("session_id"):
        return ledger.load_session(args["session_id"])
    if args.get("session"):
        return ClassSession.from_dict(args["session"], default_grace=current_app.config["DEFAULT_GRACE_PERIOD"])
    return None


def _scoped_class(class_name):
    """Teachers see their assigned class unless they ask for another one."""
    principal = current_principal()
    if class_name:
        return class_name
    if principal.role == ROLE_TEACHER:
        return principal.class_assigned
    return None


def _report_row(entry):
    record, student = entry["record"], entry["student"]
    row = vars(record).copy()
    row["student"] = student
    return row


def _labels(students):
    return [s.label for s in students]


# ----------------------------- class sessions -----------------------------

@blp.route("/api/sessions", methods=["POST"])
@blp.arguments(SessionCreateSchema)
@blp.response(201, SessionSchema)
@jwt_required()
def start_session(data):
    require_role(*STAFF)
    grace = data.get("grace_period")
    if grace is None:
        grace = current_app.config["DEFAULT_GRACE_PERIOD"]
    return get_ledger().start_session(
        data["class_name"],
        class_time=data.get("class_time"),
        grace_period=grace,
        on_date=data.get("date"),
        teacher_id=current_principal().id,
    )


@blp.route("/api/sessions", methods=["GET"])
@blp.arguments(SessionQuerySchema, location="query")
@blp.response(200, SessionSchema(many=True))
@jwt_required()
def list_sessions(args):
    require_role(*STAFF)
    return get_ledger().list_sessions(args.get("date"), _scoped_class(args.get("class_name")))


# ----------------------------- marking -----------------------------

@blp.route("/api/attendance/recognize", methods=["POST"])
@blp.arguments(RecognizeSchema)
@blp.response(200, RecognizeResponseSchema)
@jwt_required()
def recognize(data):
    require_role(*STAFF)
    ledger = get_ledger()
    session = _resolve_session(data, ledger)
    matcher = get_matcher(session.class_name if session else None)

    result = matcher.match(data["descriptor"], data.get("threshold"))
    if result is None:
        current_app.logger.info("Recognition: no match")
        return {"matched": False, "created": False}

    outcome = ledger.mark_present(result.student, session, data.get("timestamp"), result.confidence)
    return {
        "matched": True,
        "created": outcome.created,
        "status": outcome.status,
        "confidence": round(result.confidence, 2),
        "distance": result.distance,
        "student": result.student,
        "record": outcome.record,
    }


@blp.route("/api/attendance/mark", methods=["POST"])
@blp.arguments(BulkMarkSchema)
@blp.response(201, BatchResultSchema)
@jwt_required()
def bulk_mark(data):
    require_role(*STAFF)
    current_app.logger.info(f"Received bulk attendance with {len(data['records'])} records")
    result = get_ledger().bulk_mark(data["records"], data.get("class_name"))
    result["message"] = f"Attendance saved for {result['saved']} students"
    return result


@blp.route("/api/attendance/override", methods=["POST"])
@blp.arguments(OverrideSchema)
@blp.response(200, OverrideResponseSchema)
@jwt_required()
def override(data):
    require_role(*STAFF)
    enrollment = get_enrollment()
    if data.get("student_id"):
        student = enrollment.get_student(data["student_id"])
    elif data.get("roll_number"):
        student = enrollment.find_by_roll(data["roll_number"])
        if student is None:
            abort(404, message="Student not found")
    else:
        abort(400, message="studentId or rollNo is required")

    ledger = get_ledger()
    session = _resolve_session(data, ledger)
    outcome = ledger.override(student, data.get("date"), data["present"], session)
    if outcome is None:
        return {"message": f"{student.label} marked absent", "record": None}
    return {"message": f"{student.label} marked present", "record": outcome.record}


# ----------------------------- reporting -----------------------------

@blp.route("/api/attendance/summary", methods=["POST"])
@blp.arguments(SummaryRequestSchema)
@blp.response(200, SummaryResponseSchema)
@jwt_required()
def summary(data):
    require_role(*STAFF)
    ledger = get_ledger()
    session = _resolve_session(data, ledger)
    result = ledger.generate_summary(data.get("date"), session)

    notifications = None
    if data.get("notify"):
        class_name = session.class_name if session else None
        notices = notices_from_summary(result, "absent", class_name) + notices_from_summary(result, "late", class_name)
        notifications = get_notifications().dispatch(notices)

    return {
        "date": result.date,
        "present": _labels(result.present),
        "late": _labels(result.late),
        "absent": _labels(result.absent),
        "notifications": notifications,
    }


@blp.route("/api/attendance/report", methods=["GET"])
@blp.arguments(ReportQuerySchema, location="query")
@blp.response(200, AttendanceReportSchema(many=True))
@jwt_required()
def report(args):
    require_role(*STAFF)
    entries = get_ledger().report(
        _scoped_class(args.get("class_name")), args.get("date_from"), args.get("date_to")
    )
    current_app.logger.info(f"Returning {len(entries)} attendance rows")
    return [_report_row(e) for e in entries]


@blp.route("/api/attendance/report/period", methods=["GET"])
@blp.arguments(PeriodQuerySchema, location="query")
@blp.response(200, PeriodReportSchema)
@jwt_required()
def period_report(args):
    require_role(*STAFF)
    result = get_ledger().period_report(args["period"], _scoped_class(args.get("class_name")))
    result["students"] = [
        dict(vars(e["student"]), attended=e["attended"], total=e["total"], percentage=e["percentage"])
        for e in result["students"]
    ]
    return result


@blp.route("/api/admin/stats", methods=["GET"])
@blp.response(200, StatsSchema)
@jwt_required()
def stats():
    require_role(ROLE_ADMIN)
    result = get_ledger().compute_stats()
    result["recent_absentees"] = [_report_row(e) for e in result["recent_absentees"]]
    return result


@blp.route("/api/attendance/export/csv", methods=["GET"])
@blp.arguments(ReportQuerySchema, location="query")
@jwt_required()
def export_csv(args):
    require_role(ROLE_ADMIN)
    rows = get_ledger().export_rows(args.get("class_name"), args.get("date_from"), args.get("date_to"))
    if not rows:
        abort(404, message="No attendance data")
    current_app.logger.info(f"Exporting {len(rows)} rows as CSV")
    return Response(
        attendance_csv(rows),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=attendance.csv"},
    )


@blp.route("/api/attendance/export/pdf", methods=["GET"])
@blp.arguments(ReportQuerySchema, location="query")
@jwt_required()
def export_pdf(args):
    require_role(ROLE_ADMIN)
    rows = get_ledger().export_rows(args.get("class_name"), args.get("date_from"), args.get("date_to"))
    current_app.logger.info(f"Exporting {len(rows)} rows as PDF")
    return Response(
        attendance_pdf(rows),
        mimetype="application/pdf",
        headers={"Content-Disposition": "attachment; filename=attendance.pdf"},
    )


# ----------------------------- notifications -----------------------------

def _notices(data):
    on_date = data.get("date") or str(get_ledger().today())
    return [
        {
            "studentName": s["full_name"],
            "rollNo": s["roll_number"],
            "contact": {"email": s.get("parent_email"), "phone": s.get("parent_phone")},
            "status": data["status"],
            "className": data["class_name"],
            "date": on_date,
        }
        for s in data["students"]
    ]


@blp.route("/api/notifications/send-email", methods=["POST"])
@blp.arguments(NotifyRequestSchema)
@blp.response(200, NotifyResponseSchema)
@jwt_required()
def send_email(data):
    require_role(*STAFF)
    details = get_notifications().send_email(_notices(data), data.get("school_name"))
    return {"message": f"Emails sent: {details['successful']}, failed: {len(details['failed'])}", "details": details}


@blp.route("/api/notifications/send-sms", methods=["POST"])
@blp.arguments(NotifyRequestSchema)
@blp.response(200, NotifyResponseSchema)
@jwt_required()
def send_sms(data):
    require_role(*STAFF)
    details = get_notifications().send_sms(_notices(data), data.get("school_name"))
    return {"message": f"SMS sent: {details['successful']}, failed: {len(details['failed'])}", "details": details}
