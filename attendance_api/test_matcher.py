import unittest

from .errors import InvalidDescriptor
from .matcher import RecognitionMatcher
from .models import Student
from .testing import DIMENSION, descriptor


def student(student_id, roll, *descriptors):
    return Student(
        id=student_id,
        full_name=f"Student {roll}",
        roll_number=roll,
        class_name="CS101",
        face_descriptors=list(descriptors),
    )


class TestRecognitionMatcher(unittest.TestCase):
    def test_empty_enrollment_never_matches(self):
        matcher = RecognitionMatcher([], dimension=DIMENSION)
        self.assertTrue(matcher.is_empty)
        self.assertIsNone(matcher.match(descriptor(0.1)))

    def test_students_without_descriptors_are_ignored(self):
        matcher = RecognitionMatcher([student("1", "A1")], dimension=DIMENSION)
        self.assertTrue(matcher.is_empty)

    def test_exact_match(self):
        matcher = RecognitionMatcher(
            [student("1", "A1", descriptor(0.1)), student("2", "A2", descriptor(0.9))],
            dimension=DIMENSION,
        )
        result = matcher.match(descriptor(0.1))
        self.assertEqual(result.student.roll_number, "A1")
        self.assertAlmostEqual(result.distance, 0.0)
        self.assertAlmostEqual(result.confidence, 1.0)

    def test_threshold_is_inclusive(self):
        matcher = RecognitionMatcher([student("1", "A1", descriptor(0.0))], threshold=0.5, dimension=DIMENSION)
        self.assertIsNotNone(matcher.match(descriptor(0.5)))
        self.assertIsNone(matcher.match(descriptor(0.6)))

    def test_threshold_override_per_call(self):
        matcher = RecognitionMatcher([student("1", "A1", descriptor(0.0))], threshold=0.5, dimension=DIMENSION)
        self.assertIsNone(matcher.match(descriptor(0.4), threshold=0.3))
        self.assertIsNotNone(matcher.match(descriptor(0.6), threshold=0.7))

    def test_closest_of_several_descriptors_wins(self):
        far_and_near = student("1", "A1", descriptor(0.9), descriptor(0.05))
        middle = student("2", "A2", descriptor(0.2))
        matcher = RecognitionMatcher([middle, far_and_near], dimension=DIMENSION)
        result = matcher.match(descriptor(0.0))
        self.assertEqual(result.student.roll_number, "A1")
        self.assertAlmostEqual(result.distance, 0.05)

    def test_ties_go_to_lowest_roll_number(self):
        same = descriptor(0.2)
        matcher = RecognitionMatcher(
            [student("9", "B2", same), student("3", "A1", same)], dimension=DIMENSION
        )
        for _ in range(3):
            self.assertEqual(matcher.match(same).student.roll_number, "A1")

    def test_tie_order_does_not_depend_on_input_order(self):
        same = descriptor(0.3)
        students = [student("1", "C3", same), student("2", "A1", same), student("3", "B2", same)]
        forward = RecognitionMatcher(students, dimension=DIMENSION).match(same)
        backward = RecognitionMatcher(list(reversed(students)), dimension=DIMENSION).match(same)
        self.assertEqual(forward.student.id, backward.student.id)

    def test_wrong_length_probe_is_rejected(self):
        matcher = RecognitionMatcher([student("1", "A1", descriptor(0.1))], dimension=DIMENSION)
        with self.assertRaises(InvalidDescriptor):
            matcher.match([0.1, 0.2, 0.3])

    def test_non_finite_probe_is_rejected(self):
        matcher = RecognitionMatcher([student("1", "A1", descriptor(0.1))], dimension=DIMENSION)
        with self.assertRaises(InvalidDescriptor):
            matcher.match(descriptor(float("nan")))

    def test_invalid_probe_rejected_even_when_empty(self):
        matcher = RecognitionMatcher([], dimension=DIMENSION)
        with self.assertRaises(InvalidDescriptor):
            matcher.match("not a vector")


if __name__ == "__main__":
    unittest.main()
