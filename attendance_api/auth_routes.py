from flask import current_app
from flask_jwt_extended import jwt_required
from flask_smorest import Blueprint

from .extensions import limiter
from .schemas import (
    AdminRegisterSchema,
    AuthResponseSchema,
    LoginSchema,
    MessageSchema,
    TeacherCreatedSchema,
    TeacherRegisterSchema,
    TeacherSchema,
)
from .services import ROLE_ADMIN, ROLE_TEACHER
from .utils import get_auth_service, require_role

blp = Blueprint("auth", __name__, description="Admin and teacher accounts")


def _login_limit():
    return current_app.config.get("LOGIN_RATE_LIMIT", "10 per minute")


@blp.route("/api/admin/register", methods=["POST"])
@blp.arguments(AdminRegisterSchema)
@blp.response(201, MessageSchema)
def register_admin(data):
    current_app.logger.info(f"Received admin registration for {data.get('email')}")
    get_auth_service().register_admin(data)
    return {"message": "Admin registered"}


@blp.route("/api/admin/login", methods=["POST"])
@limiter.limit(_login_limit)
@blp.arguments(LoginSchema)
@blp.response(200, AuthResponseSchema)
def admin_login(data):
    result = get_auth_service().login(ROLE_ADMIN, data["email"], data["password"])
    user = result["user"]
    return {"token": result["token"], "name": user["name"], "email": user["email"]}


@blp.route("/api/teachers/register", methods=["POST"])
@blp.arguments(TeacherRegisterSchema)
@blp.response(201, TeacherCreatedSchema)
@jwt_required()
def register_teacher(data):
    require_role(ROLE_ADMIN)
    current_app.logger.info(f"Received teacher registration for {data.get('email')}")
    teacher = get_auth_service().register_teacher(data)
    return {"message": "Teacher registered", "teacher": teacher}


@blp.route("/api/teachers", methods=["GET"])
@blp.response(200, TeacherSchema(many=True))
@jwt_required()
def list_teachers():
    require_role(ROLE_ADMIN)
    teachers = get_auth_service().list_teachers()
    current_app.logger.info(f"Returning {len(teachers)} teachers")
    return teachers


@blp.route("/api/teachers/login", methods=["POST"])
@limiter.limit(_login_limit)
@blp.arguments(LoginSchema)
@blp.response(200, AuthResponseSchema)
def teacher_login(data):
    result = get_auth_service().login(ROLE_TEACHER, data["email"], data["password"])
    user = result["user"]
    return {
        "token": result["token"],
        "name": user["name"],
        "email": user["email"],
        "class_assigned": user.get("class_assigned"),
    }
