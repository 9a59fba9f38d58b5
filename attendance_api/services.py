from flask_jwt_extended import create_access_token
import logging

from .errors import AuthenticationError, ConflictError, ValidationError
from .extensions import bcrypt

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
PRINCIPAL_TABLES = {ROLE_ADMIN: "admins", ROLE_TEACHER: "teachers"}


def _public(principal):
    return {k: v for k, v in principal.items() if k != "password_hash"}


class AuthService:
    """Admin and teacher accounts; issues the JWTs the other blueprints trust."""

    def __init__(self, store):
        self.store = store

    def _hash(self, password):
        return bcrypt.generate_password_hash(password).decode("utf-8")

    def _issue_token(self, role, principal):
        claims = {"role": role, "email": principal["email"]}
        if role == ROLE_TEACHER:
            claims["class_assigned"] = principal.get("class_assigned")
        return create_access_token(identity=str(principal["id"]), additional_claims=claims)

    def register_admin(self, data):
        name = data.get("name")
        email = (data.get("email") or "").strip().lower()
        password = data.get("password")
        domain = (data.get("institution_domain") or "").strip().lower()
        logger.info(f"Registering admin: {email}")

        if not name or not email or not password or not domain:
            logger.warning("Missing required fields for admin registration")
            raise ValidationError("Missing fields")
        if email.split("@")[-1] != domain:
            logger.warning(f"Admin email {email} does not belong to {domain}")
            raise ValidationError("Email domain mismatch")
        if self.store.find_principal("admins", email):
            logger.warning(f"Admin already exists: {email}")
            raise ConflictError("Admin exists")

        admin = self.store.insert_principal("admins", {
            "name": name,
            "email": email,
            "password_hash": self._hash(password),
            "institution_domain": domain,
        })
        return _public(admin)

    def register_teacher(self, data):
        name = data.get("name")
        email = (data.get("email") or "").strip().lower()
        password = data.get("password")
        logger.info(f"Registering teacher: {email}")

        if not name or not email or not password:
            logger.warning("Missing required fields for teacher registration")
            raise ValidationError("Missing teacher fields")
        if self.store.find_principal("teachers", email):
            logger.warning(f"Teacher already exists: {email}")
            raise ConflictError("Teacher email exists")

        teacher = self.store.insert_principal("teachers", {
            "name": name,
            "email": email,
            "password_hash": self._hash(password),
            "class_assigned": data.get("class_assigned"),
        })
        return _public(teacher)

    def list_teachers(self):
        return [_public(t) for t in self.store.list_principals("teachers")]

    def login(self, role, email, password):
        email = (email or "").strip().lower()
        if not email or not password:
            logger.warning("Login attempted without email or password")
            raise ValidationError("Email and password required")

        logger.debug(f"Attempting {role} login for: {email}")
        principal = self.store.find_principal(PRINCIPAL_TABLES[role], email)
        if not principal or not bcrypt.check_password_hash(principal["password_hash"], password):
            logger.warning(f"Invalid credentials for {role}: {email}")
            raise AuthenticationError("Invalid credentials")

        logger.info(f"{role.capitalize()} login successful: {email}")
        return {
            "token": self._issue_token(role, principal),
            "user": _public(principal),
        }
