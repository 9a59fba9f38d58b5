import logging
import re
import smtplib
from email.message import EmailMessage

import requests

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)

PHONE_PREFIX = "+91"
LOCAL_MOBILE = re.compile(r"^[6-9]\d{9}$")


def validate_and_format_phone(phone):
    """Normalise a parent mobile number to +91XXXXXXXXXX, or None when invalid."""
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if not cleaned.startswith(PHONE_PREFIX) and LOCAL_MOBILE.match(cleaned):
        cleaned = PHONE_PREFIX + cleaned
    if cleaned.startswith(PHONE_PREFIX) and LOCAL_MOBILE.match(cleaned[len(PHONE_PREFIX):]):
        return cleaned
    return None


def build_notice(student, status, class_name, on_date):
    return {
        "studentName": student.full_name,
        "rollNo": student.roll_number,
        "contact": {"email": student.parent_email, "phone": student.parent_phone},
        "status": status,
        "className": class_name or student.class_name,
        "date": str(on_date),
    }


def notices_from_summary(summary, kind, class_name=None):
    """Notices for the absent or late students of a ledger summary."""
    students = summary.late if kind == "late" else summary.absent
    status = "Late" if kind == "late" else "Absent"
    return [build_notice(s, status, class_name, summary.date) for s in students]


def compose_message(notice, school_name):
    return (
        f"Dear parent, {notice['studentName']} ({notice['rollNo']}) was marked {notice['status']} "
        f"for {notice['className']} on {notice['date']}. Please ensure timely arrival. - {school_name}"
    )


class EmailSender:
    def __init__(self, host, port=587, user=None, password=None, use_tls=True,
                 sender="attendance@localhost", timeout=10):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, body):
        if not self.host:
            raise ExternalServiceError("Email service not configured")
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise ExternalServiceError(f"Email delivery failed: {e}")


class SmsSender:
    def __init__(self, gateway_url, api_key=None, sender_id="ATTEND", timeout=10):
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout

    def send(self, phone, body):
        if not self.gateway_url:
            raise ExternalServiceError("SMS service not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = requests.post(
                self.gateway_url,
                json={"to": phone, "message": body, "sender": self.sender_id},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ExternalServiceError(f"SMS delivery failed: {e}")


class NotificationService:
    """Fans notices out to parents; every recipient succeeds or fails on its own."""

    def __init__(self, email_sender, sms_sender, school_name="Your School"):
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.school_name = school_name

    @classmethod
    def from_config(cls, config):
        email = EmailSender(
            config.get("SMTP_HOST"),
            port=config.get("SMTP_PORT", 587),
            user=config.get("SMTP_USER"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=config.get("SMTP_USE_TLS", True),
            sender=config.get("MAIL_SENDER", "attendance@localhost"),
            timeout=config.get("NOTIFICATION_TIMEOUT", 10),
        )
        sms = SmsSender(
            config.get("SMS_GATEWAY_URL"),
            api_key=config.get("SMS_API_KEY"),
            sender_id=config.get("SMS_SENDER_ID", "ATTEND"),
            timeout=config.get("NOTIFICATION_TIMEOUT", 10),
        )
        return cls(email, sms, school_name=config.get("SCHOOL_NAME", "Your School"))

    def _deliver(self, channel, notices, school_name):
        successful, failed = 0, []
        for notice in notices:
            label = f"{notice['studentName']} ({notice['rollNo']})"
            try:
                body = compose_message(notice, school_name)
                if channel == "email":
                    address = notice["contact"].get("email")
                    if not address:
                        raise ExternalServiceError("No parent email")
                    self.email_sender.send(address, f"Attendance: {notice['status']} - {notice['className']}", body)
                else:
                    phone = validate_and_format_phone(notice["contact"].get("phone"))
                    if not phone:
                        raise ExternalServiceError("Invalid phone number")
                    self.sms_sender.send(phone, body)
                successful += 1
            except ExternalServiceError as e:
                logger.warning(f"{channel} notification failed for {label}: {e.message}")
                failed.append({"student": label, "error": e.message})
        logger.info(f"{channel} notifications: {successful}/{len(notices)} delivered")
        return {"successful": successful, "failed": failed}

    def send_email(self, notices, school_name=None):
        return self._deliver("email", notices, school_name or self.school_name)

    def send_sms(self, notices, school_name=None):
        return self._deliver("sms", notices, school_name or self.school_name)

    def dispatch(self, notices, school_name=None):
        """Email parents with an address and text parents with a valid mobile number."""
        by_email = [n for n in notices if n["contact"].get("email")]
        by_sms = [n for n in notices if validate_and_format_phone(n["contact"].get("phone"))]
        return {
            "email": self.send_email(by_email, school_name),
            "sms": self.send_sms(by_sms, school_name),
        }
