"""
Risk domain models

- Severity: ordinal risk intensity (LOW < MEDIUM < HIGH < CRITICAL)
- RiskType: category of a risk flag
- RiskEvidence: evidence snapshot stored with a flag, one variant per kind
- CandidateRisk: evaluator output before reconciliation
"""
from datetime import date
from enum import Enum
from typing import Annotated, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class Severity(str, Enum):
    """Risk severity, also used as the student's overall risk level"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_alerting(self) -> bool:
        """HIGH and CRITICAL trigger admin and guardian alerts"""
        return self in (Severity.HIGH, Severity.CRITICAL)

    @classmethod
    def highest(cls, severities: Iterable["Severity"]) -> "Severity":
        """Worst severity of the iterable; LOW when empty."""
        result = cls.LOW
        for severity in severities:
            severity = cls(severity)
            if severity.rank > result.rank:
                result = severity
        return result


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class RiskType(str, Enum):
    ATTENDANCE = "ATTENDANCE"
    PERFORMANCE = "PERFORMANCE"
    SOCIOECONOMIC = "SOCIOECONOMIC"
    DISTANCE = "DISTANCE"
    COMBINED = "COMBINED"


# =============================================================================
# EVIDENCE
# =============================================================================

class AttendanceEvidence(BaseModel):
    """Absences observed in a window (current week or last 30 days)"""
    kind: Literal["attendance"] = "attendance"
    absences: int
    total_school_days: int
    absence_rate: float
    period: str
    week_start: Optional[date] = None
    week_end: Optional[date] = None
    dates: List[date] = Field(default_factory=list)


class TermPerformanceEvidence(BaseModel):
    """Latest overall score for the current term"""
    kind: Literal["term_performance"] = "term_performance"
    term: str
    academic_year: str
    overall_score: float
    score: float
    max_score: float
    grade: str
    threshold: float


class PerformanceAverageEvidence(BaseModel):
    """Average over all records of the last year"""
    kind: Literal["performance_average"] = "performance_average"
    overall_average: float
    total_records: int
    total_score: float
    total_max_score: float
    threshold: float


class PerformanceDeclineEvidence(BaseModel):
    """Drop between the two latest scores of a subject"""
    kind: Literal["performance_decline"] = "performance_decline"
    subject: str
    current_score: float
    current_max_score: float
    current_percentage: float
    previous_score: float
    previous_max_score: float
    previous_percentage: float
    percentage_drop: float


class SocioeconomicEvidence(BaseModel):
    kind: Literal["socioeconomic"] = "socioeconomic"
    ubudehe_level: Optional[int] = None
    has_parents: Optional[bool] = None
    family_stability: Optional[bool] = None
    risk_factors: List[str] = Field(default_factory=list)


class DistanceEvidence(BaseModel):
    kind: Literal["distance"] = "distance"
    distance_km: float
    threshold: float
    risk_level: Severity


class CombinedEvidence(BaseModel):
    kind: Literal["combined"] = "combined"
    risk_types: List[RiskType]
    escalation_reason: str


class ManualEvidence(BaseModel):
    """Notes attached to a flag raised by a staff member"""
    kind: Literal["manual"] = "manual"
    notes: Optional[str] = None


RiskEvidence = Annotated[
    Union[
        AttendanceEvidence,
        TermPerformanceEvidence,
        PerformanceAverageEvidence,
        PerformanceDeclineEvidence,
        SocioeconomicEvidence,
        DistanceEvidence,
        CombinedEvidence,
        ManualEvidence,
    ],
    Field(discriminator="kind"),
]

_evidence_adapter = TypeAdapter(RiskEvidence)

EVIDENCE_KINDS_BY_TYPE = {
    RiskType.ATTENDANCE: {"attendance", "manual"},
    RiskType.PERFORMANCE: {"term_performance", "performance_average", "performance_decline", "manual"},
    RiskType.SOCIOECONOMIC: {"socioeconomic", "manual"},
    RiskType.DISTANCE: {"distance", "manual"},
    RiskType.COMBINED: {"combined", "manual"},
}


def parse_evidence(raw: Optional[dict]) -> Optional[RiskEvidence]:
    """Load a stored evidence document; None for empty documents."""
    if not raw:
        return None
    return _evidence_adapter.validate_python(raw)


def dump_evidence(evidence: Optional[RiskEvidence]) -> Optional[dict]:
    if evidence is None:
        return None
    return evidence.model_dump(mode="json")


# =============================================================================
# CANDIDATE RISK
# =============================================================================

class CandidateRisk(BaseModel):
    """
    Transient evaluator output.

    The reconciler decides whether a candidate creates a new flag or
    updates the active flag of the same type.
    """
    type: RiskType
    severity: Severity
    title: str
    description: str
    data: Optional[RiskEvidence] = None

    @model_validator(mode="after")
    def _evidence_matches_type(self) -> "CandidateRisk":
        if self.data is not None and self.data.kind not in EVIDENCE_KINDS_BY_TYPE[self.type]:
            raise ValueError(
                f"Evidence kind '{self.data.kind}' is not valid for risk type {self.type.value}"
            )
        return self
