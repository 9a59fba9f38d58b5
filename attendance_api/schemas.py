from marshmallow import EXCLUDE, Schema, fields, validate

CLASS_TIME = validate.Regexp(r"^([01]\d|2[0-3]):[0-5]\d$", error="Use HH:MM")


class BaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE


# ----------------------------- auth -----------------------------

class AdminRegisterSchema(BaseSchema):
    name = fields.String(required=True)
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=6))
    institution_domain = fields.String(required=True, data_key="institutionDomain")


class LoginSchema(BaseSchema):
    email = fields.Email(required=True)
    password = fields.String(required=True)


class TeacherRegisterSchema(BaseSchema):
    name = fields.String(required=True)
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=6))
    class_assigned = fields.String(allow_none=True, data_key="classAssigned")


class TeacherSchema(BaseSchema):
    id = fields.String(dump_only=True)
    name = fields.String()
    email = fields.Email()
    class_assigned = fields.String(data_key="classAssigned")


class TeacherCreatedSchema(BaseSchema):
    message = fields.String()
    teacher = fields.Nested(TeacherSchema)


class AuthResponseSchema(BaseSchema):
    token = fields.String()
    name = fields.String()
    email = fields.Email()
    class_assigned = fields.String(data_key="classAssigned")


class MessageSchema(BaseSchema):
    message = fields.String()


# ----------------------------- students -----------------------------

class StudentRegisterSchema(BaseSchema):
    full_name = fields.String(required=True, data_key="fullName")
    roll_number = fields.String(required=True, data_key="rollNo")
    class_name = fields.String(required=True, data_key="className")
    section = fields.String(allow_none=True)
    parent_name = fields.String(allow_none=True, data_key="parentName")
    parent_phone = fields.String(allow_none=True, data_key="parentNumber")
    parent_email = fields.Email(allow_none=True, data_key="parentEmail")
    face_descriptors = fields.List(fields.List(fields.Float()), data_key="faceDescriptors")


class StudentBriefSchema(BaseSchema):
    id = fields.String()
    full_name = fields.String(data_key="fullName")
    roll_number = fields.String(data_key="rollNo")
    class_name = fields.String(data_key="className")


class StudentSchema(StudentBriefSchema):
    section = fields.String(allow_none=True)
    parent_name = fields.String(allow_none=True, data_key="parentName")
    parent_phone = fields.String(allow_none=True, data_key="parentNumber")
    parent_email = fields.String(allow_none=True, data_key="parentEmail")
    qr_code = fields.String(allow_none=True, data_key="qrCode")
    descriptor_count = fields.Function(lambda s: len(s.face_descriptors), data_key="descriptorCount")
    deleted_at = fields.String(allow_none=True, data_key="deletedAt")


class EnrolledStudentSchema(StudentBriefSchema):
    face_descriptors = fields.List(fields.List(fields.Float()), data_key="faceDescriptors")


class StudentCreatedSchema(BaseSchema):
    message = fields.String()
    student = fields.Nested(StudentSchema)


class StudentQuerySchema(BaseSchema):
    class_name = fields.String(data_key="className")


class DescriptorSchema(BaseSchema):
    descriptor = fields.List(fields.Float(), required=True)


class DescriptorResponseSchema(BaseSchema):
    message = fields.String()
    descriptor_count = fields.Integer(data_key="descriptorCount")


# ----------------------------- class sessions -----------------------------

class SessionInputSchema(BaseSchema):
    class_name = fields.String(allow_none=True, data_key="className")
    class_time = fields.String(allow_none=True, data_key="classTime", validate=CLASS_TIME)
    grace_period = fields.Integer(allow_none=True, data_key="gracePeriod", validate=validate.Range(min=0, max=120))
    date = fields.Date(allow_none=True)


class SessionCreateSchema(SessionInputSchema):
    class_name = fields.String(required=True, data_key="className")


class SessionSchema(BaseSchema):
    id = fields.String(allow_none=True)
    class_name = fields.String(data_key="className")
    class_time = fields.Function(
        lambda s: s.start_time.strftime("%H:%M") if s.start_time else None, data_key="classTime"
    )
    grace_period = fields.Integer(data_key="gracePeriod")
    date = fields.Date(allow_none=True)


class SessionQuerySchema(BaseSchema):
    date = fields.Date()
    class_name = fields.String(data_key="className")


# ----------------------------- attendance -----------------------------

class AttendanceRecordSchema(BaseSchema):
    id = fields.String(allow_none=True)
    date = fields.Date()
    status = fields.String()
    confidence = fields.String(allow_none=True)
    class_name = fields.String(allow_none=True, data_key="className")
    timestamp = fields.String(allow_none=True)
    roll_number = fields.String(data_key="rollNo")


class AttendanceReportSchema(AttendanceRecordSchema):
    student = fields.Nested(StudentBriefSchema, allow_none=True)


class RecognizeSchema(BaseSchema):
    descriptor = fields.List(fields.Float(), required=True)
    session = fields.Nested(SessionInputSchema, allow_none=True)
    session_id = fields.String(allow_none=True, data_key="sessionId")
    timestamp = fields.DateTime(allow_none=True)
    threshold = fields.Float(allow_none=True, validate=validate.Range(min=0))


class RecognizeResponseSchema(BaseSchema):
    matched = fields.Boolean()
    created = fields.Boolean()
    status = fields.String(allow_none=True)
    confidence = fields.Float(allow_none=True)
    distance = fields.Float(allow_none=True)
    student = fields.Nested(StudentBriefSchema, allow_none=True)
    record = fields.Nested(AttendanceRecordSchema, allow_none=True)


class BulkMarkItemSchema(BaseSchema):
    # Loose on purpose: bad rows are skipped one by one, not rejected with the batch
    roll_number = fields.String(allow_none=True, data_key="rollNo")
    status = fields.String(allow_none=True)
    date = fields.String(allow_none=True)


class BulkMarkSchema(BaseSchema):
    records = fields.List(fields.Nested(BulkMarkItemSchema), required=True, validate=validate.Length(min=1))
    class_name = fields.String(allow_none=True, data_key="className")


class BatchResultSchema(BaseSchema):
    message = fields.String()
    saved = fields.Integer()
    skipped = fields.Integer()
    results = fields.List(fields.Dict())


class OverrideSchema(BaseSchema):
    student_id = fields.String(allow_none=True, data_key="studentId")
    roll_number = fields.String(allow_none=True, data_key="rollNo")
    present = fields.Boolean(required=True)
    date = fields.Date(allow_none=True)
    session = fields.Nested(SessionInputSchema, allow_none=True)
    session_id = fields.String(allow_none=True, data_key="sessionId")


class OverrideResponseSchema(BaseSchema):
    message = fields.String()
    record = fields.Nested(AttendanceRecordSchema, allow_none=True)


class SummaryRequestSchema(BaseSchema):
    date = fields.Date(allow_none=True)
    session = fields.Nested(SessionInputSchema, allow_none=True)
    session_id = fields.String(allow_none=True, data_key="sessionId")
    notify = fields.Boolean(load_default=False)


class SummaryResponseSchema(BaseSchema):
    date = fields.Date()
    present = fields.List(fields.String())
    late = fields.List(fields.String())
    absent = fields.List(fields.String())
    notifications = fields.Dict(allow_none=True)


class ReportQuerySchema(BaseSchema):
    class_name = fields.String(data_key="className")
    date_from = fields.Date(data_key="from")
    date_to = fields.Date(data_key="to")


class PeriodQuerySchema(BaseSchema):
    period = fields.String(load_default="daily", validate=validate.OneOf(["daily", "weekly", "monthly"]))
    class_name = fields.String(data_key="className")


class PeriodEntrySchema(StudentBriefSchema):
    attended = fields.Integer()
    total = fields.Integer()
    percentage = fields.Integer()


class PeriodReportSchema(BaseSchema):
    period = fields.String()
    start_date = fields.Date(data_key="startDate")
    end_date = fields.Date(data_key="endDate")
    total_sessions = fields.Integer(data_key="totalSessions")
    students = fields.List(fields.Nested(PeriodEntrySchema))


class StatsSchema(BaseSchema):
    total_students = fields.Integer(data_key="totalStudents")
    total_records = fields.Integer(data_key="totalRecords")
    total_present = fields.Integer(data_key="totalPresent")
    total_late = fields.Integer(data_key="totalLate")
    total_absent = fields.Integer(data_key="totalAbsent")
    attendance_rate = fields.Float(data_key="attendanceRate")
    recent_absentees = fields.List(fields.Nested(AttendanceReportSchema), data_key="recentAbsentees")


# ----------------------------- notifications -----------------------------

class NotifyStudentSchema(BaseSchema):
    full_name = fields.String(required=True, data_key="fullName")
    roll_number = fields.String(required=True, data_key="rollNo")
    parent_email = fields.String(allow_none=True, data_key="parentEmail")
    parent_phone = fields.String(allow_none=True, data_key="parentNumber")


class NotifyRequestSchema(BaseSchema):
    students = fields.List(fields.Nested(NotifyStudentSchema), required=True)
    status = fields.String(required=True)
    class_name = fields.String(load_default="Class", data_key="className")
    date = fields.String(allow_none=True)
    school_name = fields.String(allow_none=True, data_key="schoolName")


class NotifyResponseSchema(BaseSchema):
    message = fields.String()
    details = fields.Dict()


# ----------------------------- sync -----------------------------

class SyncRequestSchema(BaseSchema):
    # Items are validated one by one by SyncService so one bad change cannot reject the batch
    changes = fields.List(fields.Dict(), load_default=list)
    last_sync_marker = fields.String(allow_none=True, data_key="lastSyncMarker")


class SyncResponseSchema(BaseSchema):
    applied = fields.Integer()
    skipped = fields.Integer()
    failed = fields.Integer()
    results = fields.List(fields.Dict())
    changes = fields.Dict()
    marker = fields.String()
