import logging
import numpy as np

from .errors import ConflictError, InvalidDescriptor, NotFoundError, ValidationError
from .exports import make_qr_data_url
from .models import Student, timestamp_now

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("full_name", "roll_number", "class_name")
EDITABLE_FIELDS = ("full_name", "class_name", "section", "parent_name", "parent_phone", "parent_email")


def validate_descriptor(descriptor, dimension):
    """Return the descriptor as a list of floats or raise InvalidDescriptor."""
    if descriptor is None or isinstance(descriptor, (str, bytes)):
        raise InvalidDescriptor("Descriptor must be a list of numbers")
    try:
        vector = np.asarray(descriptor, dtype=np.float64)
    except (TypeError, ValueError):
        raise InvalidDescriptor("Descriptor must be a list of numbers")
    if vector.ndim != 1 or vector.shape[0] != dimension:
        raise InvalidDescriptor(
            f"Descriptor must have {dimension} values",
            {"expected": dimension, "received": int(vector.size)},
        )
    if not np.all(np.isfinite(vector)):
        raise InvalidDescriptor("Descriptor contains non-finite values")
    return vector.tolist()


def qr_payload(student_doc):
    return {
        "fullName": student_doc.get("full_name"),
        "rollNo": student_doc.get("roll_number"),
        "className": student_doc.get("class_name"),
        "section": student_doc.get("section"),
        "parentName": student_doc.get("parent_name"),
        "parentNumber": student_doc.get("parent_phone"),
    }


class EnrollmentStore:
    """Student identities and their reference face descriptors."""

    def __init__(self, store, descriptor_dimension=128):
        self.store = store
        self.descriptor_dimension = descriptor_dimension

    def register_student(self, data):
        missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
        if missing:
            raise ValidationError("Missing student required fields", {"missing": missing})

        doc = {key: data.get(key) for key in EDITABLE_FIELDS}
        doc["full_name"] = data["full_name"].strip()
        doc["roll_number"] = data["roll_number"].strip()
        doc["class_name"] = data["class_name"].strip()
        doc["face_descriptors"] = [
            validate_descriptor(d, self.descriptor_dimension) for d in data.get("face_descriptors") or []
        ]

        # Soft-deleted students keep their roll number reserved
        if self.store.find_student_by_roll(doc["roll_number"]) is not None:
            logger.warning(f"Roll number {doc['roll_number']} already exists")
            raise ConflictError("Roll number exists", {"roll_number": doc["roll_number"]})

        doc["qr_code"] = make_qr_data_url(qr_payload(doc))
        row = self.store.insert_student(doc)
        logger.info(f"Student registered: {doc['roll_number']}")
        return Student.from_row(row)

    def get_student(self, student_id, include_deleted=False):
        row = self.store.get_student(student_id)
        if row is None or (row.get("deleted_at") and not include_deleted):
            raise NotFoundError("Student not found", {"student_id": student_id})
        return Student.from_row(row)

    def find_by_roll(self, roll_number):
        row = self.store.find_student_by_roll(roll_number)
        if row is None or row.get("deleted_at"):
            return None
        return Student.from_row(row)

    def list_students(self, class_name=None):
        return [Student.from_row(r) for r in self.store.list_students(class_name=class_name)]

    def update_student(self, student_id, fields):
        if "roll_number" in fields:
            raise ValidationError("Roll number cannot be changed")
        if "face_descriptors" in fields:
            raise ValidationError(
                "Face descriptors cannot be updated here",
                {"use": f"POST /api/students/{student_id}/descriptors"},
            )
        updates = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
        if not updates:
            raise ValidationError("No updatable fields provided")
        current = self.get_student(student_id)
        merged = {
            "full_name": current.full_name,
            "roll_number": current.roll_number,
            "class_name": current.class_name,
            "section": current.section,
            "parent_name": current.parent_name,
            "parent_phone": current.parent_phone,
        }
        merged.update(updates)
        updates["qr_code"] = make_qr_data_url(qr_payload(merged))
        row = self.store.update_student(student_id, updates)
        return Student.from_row(row)

    def add_descriptor(self, student_id, descriptor):
        vector = validate_descriptor(descriptor, self.descriptor_dimension)
        student = self.get_student(student_id)
        descriptors = student.face_descriptors + [vector]
        row = self.store.update_student(student_id, {"face_descriptors": descriptors})
        logger.info(f"Descriptor added for {student.roll_number} ({len(descriptors)} total)")
        return Student.from_row(row)

    def list_enrolled(self, class_name=None):
        return [s for s in self.list_students(class_name) if s.face_descriptors]

    def remove_student(self, student_id):
        """Soft delete: attendance history is retained and the roll number stays reserved."""
        student = self.get_student(student_id)
        row = self.store.update_student(student_id, {"deleted_at": timestamp_now()})
        logger.info(f"Student removed: {student.roll_number}")
        return Student.from_row(row)
