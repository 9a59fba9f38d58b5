from flask import Response, current_app
from flask_jwt_extended import jwt_required
from flask_smorest import Blueprint, abort

from .exports import decode_data_url, make_qr_data_url
from .enrollment import qr_payload
from .schemas import (
    DescriptorResponseSchema,
    DescriptorSchema,
    EnrolledStudentSchema,
    MessageSchema,
    StudentCreatedSchema,
    StudentQuerySchema,
    StudentRegisterSchema,
    StudentSchema,
)
from .services import ROLE_ADMIN, ROLE_TEACHER
from .utils import get_enrollment, require_role

blp = Blueprint("students", __name__, description="Student enrollment")

STAFF = (ROLE_ADMIN, ROLE_TEACHER)


@blp.route("/api/students/register", methods=["POST"])
@blp.arguments(StudentRegisterSchema)
@blp.response(201, StudentCreatedSchema)
@jwt_required()
def register_student(data):
    require_role(*STAFF)
    current_app.logger.info(f"Received request to register student: {data.get('roll_number')}")
    student = get_enrollment().register_student(data)
    return {"message": "Student registered", "student": student}


@blp.route("/api/students", methods=["GET"])
@blp.arguments(StudentQuerySchema, location="query")
@blp.response(200, StudentSchema(many=True))
@jwt_required()
def list_students(args):
    require_role(*STAFF)
    students = get_enrollment().list_students(args.get("class_name"))
    current_app.logger.info(f"Returning {len(students)} students")
    return students


@blp.route("/api/students/enrolled", methods=["GET"])
@blp.arguments(StudentQuerySchema, location="query")
@blp.response(200, EnrolledStudentSchema(many=True))
@jwt_required()
def list_enrolled(args):
    """Students with at least one reference descriptor, for client-side matching."""
    require_role(*STAFF)
    return get_enrollment().list_enrolled(args.get("class_name"))


@blp.route("/api/students/<student_id>", methods=["GET"])
@blp.response(200, StudentSchema)
@jwt_required()
def get_student(student_id):
    require_role(*STAFF)
    return get_enrollment().get_student(student_id)


@blp.route("/api/students/<student_id>", methods=["PUT"])
@blp.arguments(StudentRegisterSchema(partial=True))
@blp.response(200, StudentSchema)
@jwt_required()
def update_student(data, student_id):
    require_role(*STAFF)
    current_app.logger.info(f"Received request to update student {student_id}")
    return get_enrollment().update_student(student_id, data)


@blp.route("/api/students/<student_id>", methods=["DELETE"])
@blp.response(200, MessageSchema)
@jwt_required()
def delete_student(student_id):
    require_role(*STAFF)
    current_app.logger.info(f"Received request to delete student {student_id}")
    get_enrollment().remove_student(student_id)
    return {"message": "Student deleted"}


@blp.route("/api/students/<student_id>/descriptors", methods=["POST"])
@blp.arguments(DescriptorSchema)
@blp.response(201, DescriptorResponseSchema)
@jwt_required()
def add_descriptor(data, student_id):
    require_role(*STAFF)
    student = get_enrollment().add_descriptor(student_id, data["descriptor"])
    return {"message": "Descriptor added", "descriptor_count": len(student.face_descriptors)}


@blp.route("/api/students/<student_id>/qr", methods=["GET"])
@jwt_required()
def student_qr(student_id):
    require_role(*STAFF)
    student = get_enrollment().get_student(student_id)
    data_url = student.qr_code or make_qr_data_url(qr_payload(vars(student)))
    png = decode_data_url(data_url)
    if png is None:
        abort(404, message="QR code not available")
    return Response(
        png,
        mimetype="image/png",
        headers={"Content-Disposition": f"inline; filename=student-{student.roll_number}.png"},
    )
