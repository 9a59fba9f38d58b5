import logging
import numpy as np

from .enrollment import validate_descriptor
from .models import MatchResult

logger = logging.getLogger(__name__)

# Distances closer than this are treated as a tie
TIE_TOLERANCE = 1e-9


class RecognitionMatcher:
    """Nearest-neighbour identification over every enrolled reference descriptor.

    Students may carry several descriptors (different capture angles); the
    global minimum Euclidean distance across all of them decides the match.
    Ties go to the lowest roll number, then the lowest student id, so the
    same probe against the same enrollment always yields the same answer.
    """

    def __init__(self, students, threshold=0.5, dimension=128):
        self.threshold = threshold
        self.dimension = dimension
        self.students = []
        owners, vectors = [], []
        for student in sorted(students, key=lambda s: (s.roll_number, s.id)):
            if not student.face_descriptors:
                continue
            self.students.append(student)
            for descriptor in student.face_descriptors:
                owners.append(len(self.students) - 1)
                vectors.append(descriptor)
        self._owners = np.asarray(owners, dtype=np.int64)
        self._matrix = (
            np.asarray(vectors, dtype=np.float64) if vectors else np.empty((0, dimension))
        )

    @property
    def is_empty(self):
        return self._matrix.shape[0] == 0

    def distances(self, probe):
        vector = np.asarray(validate_descriptor(probe, self.dimension), dtype=np.float64)
        return np.linalg.norm(self._matrix - vector, axis=1)

    def match(self, probe, threshold=None):
        """Return a MatchResult for the closest student within threshold, else None."""
        threshold = self.threshold if threshold is None else threshold
        if self.is_empty:
            validate_descriptor(probe, self.dimension)
            logger.debug("Match skipped: no enrolled descriptors")
            return None

        distances = self.distances(probe)
        best = float(distances.min())
        if best > threshold:
            logger.debug(f"No match: nearest distance {best:.4f} exceeds {threshold}")
            return None

        # Owners are indexed in (roll_number, id) order, so the smallest owner index wins ties
        tied = self._owners[distances <= best + TIE_TOLERANCE]
        student = self.students[int(tied.min())]
        logger.debug(f"Matched {student.roll_number} at distance {best:.4f}")
        return MatchResult(student=student, distance=best)
