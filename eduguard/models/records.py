"""
Attendance and performance record enums and the grade scale
"""
from enum import Enum


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class AbsenceReason(str, Enum):
    ILLNESS = "ILLNESS"
    FEES = "FEES"
    FAMILY_EMERGENCY = "FAMILY_EMERGENCY"
    CHORES = "CHORES"
    DISTANCE = "DISTANCE"
    OTHER = "OTHER"
    NONE = "NONE"


class Term(str, Enum):
    TERM_1 = "TERM_1"
    TERM_2 = "TERM_2"
    TERM_3 = "TERM_3"

    @property
    def label(self) -> str:
        """'TERM_1' -> 'TERM 1'"""
        return self.value.replace("_", " ")


class AssessmentType(str, Enum):
    EXAM = "EXAM"
    TEST = "TEST"
    QUIZ = "QUIZ"
    ASSIGNMENT = "ASSIGNMENT"
    PROJECT = "PROJECT"
    FINAL = "FINAL"


OVERALL_SUBJECT = "Overall"

# (minimum percentage, grade), checked in order
GRADE_SCALE = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
    (50.0, "E"),
)


def grade_for_score(score: float, max_score: float) -> str:
    """
    Letter grade derived from score / max_score.

    Args:
        score: Raw score
        max_score: Maximum attainable score (must be positive)

    Returns:
        One of A, B, C, D, E, F
    """
    if max_score <= 0:
        raise ValueError("max_score must be positive")
    percentage = (score / max_score) * 100
    for minimum, grade in GRADE_SCALE:
        if percentage >= minimum:
            return grade
    return "F"
