"""
Domain models (pydantic) shared by the engine, the repositories and the API
"""
from .risk import (
    Severity,
    RiskType,
    CandidateRisk,
    RiskEvidence,
    AttendanceEvidence,
    TermPerformanceEvidence,
    PerformanceAverageEvidence,
    PerformanceDeclineEvidence,
    SocioeconomicEvidence,
    DistanceEvidence,
    CombinedEvidence,
    ManualEvidence,
    parse_evidence,
    dump_evidence,
)
from .records import (
    AttendanceStatus,
    AbsenceReason,
    Term,
    AssessmentType,
    OVERALL_SUBJECT,
    grade_for_score,
)
from .settings import RiskRuleSettings

__all__ = [
    "Severity",
    "RiskType",
    "CandidateRisk",
    "RiskEvidence",
    "AttendanceEvidence",
    "TermPerformanceEvidence",
    "PerformanceAverageEvidence",
    "PerformanceDeclineEvidence",
    "SocioeconomicEvidence",
    "DistanceEvidence",
    "CombinedEvidence",
    "ManualEvidence",
    "parse_evidence",
    "dump_evidence",
    "AttendanceStatus",
    "AbsenceReason",
    "Term",
    "AssessmentType",
    "OVERALL_SUBJECT",
    "grade_for_score",
    "RiskRuleSettings",
]
