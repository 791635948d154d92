"""
Per-school risk rule settings

Stored as one JSON document per school. Every category can be toggled
independently and every threshold has a documented default.
"""
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AbsenceThreshold(BaseModel):
    absences: int = Field(..., ge=0)
    within_days: int = Field(..., ge=1)


class AttendanceRules(BaseModel):
    enabled: bool = True
    medium_threshold: AbsenceThreshold = Field(default_factory=lambda: AbsenceThreshold(absences=3, within_days=7))
    high_threshold: AbsenceThreshold = Field(default_factory=lambda: AbsenceThreshold(absences=5, within_days=7))
    critical_threshold: AbsenceThreshold = Field(default_factory=lambda: AbsenceThreshold(absences=7, within_days=14))


class MediumPerformanceThreshold(BaseModel):
    score_drop: float = 15
    below_average: bool = True


class HighPerformanceThreshold(BaseModel):
    score_drop: float = 25
    failing_grade: str = "F"


class CriticalPerformanceThreshold(BaseModel):
    score_drop: float = 35
    multiple_failures: int = 3


class PerformanceRules(BaseModel):
    enabled: bool = True
    medium_threshold: MediumPerformanceThreshold = Field(default_factory=MediumPerformanceThreshold)
    high_threshold: HighPerformanceThreshold = Field(default_factory=HighPerformanceThreshold)
    critical_threshold: CriticalPerformanceThreshold = Field(default_factory=CriticalPerformanceThreshold)


class SocioeconomicFactors(BaseModel):
    # Ubudehe level at or below this value counts as a poverty factor
    ubudehe_level: int = Field(1, ge=1, le=4)
    no_parents: bool = True
    family_stability: bool = True


class SocioeconomicRules(BaseModel):
    enabled: bool = True
    high_risk_factors: SocioeconomicFactors = Field(default_factory=SocioeconomicFactors)


class EscalationTriggers(BaseModel):
    multiple_medium_flags: int = Field(2, ge=1)
    attendance_and_performance: bool = True


class CombinedRules(BaseModel):
    enabled: bool = True
    escalate_when: EscalationTriggers = Field(default_factory=EscalationTriggers)


_CATEGORIES = {
    "attendance": AttendanceRules,
    "performance": PerformanceRules,
    "socioeconomic": SocioeconomicRules,
    "combined": CombinedRules,
}


class RiskRuleSettings(BaseModel):
    attendance: AttendanceRules = Field(default_factory=AttendanceRules)
    performance: PerformanceRules = Field(default_factory=PerformanceRules)
    socioeconomic: SocioeconomicRules = Field(default_factory=SocioeconomicRules)
    combined: CombinedRules = Field(default_factory=CombinedRules)

    @classmethod
    def from_document(
        cls,
        document: Optional[Dict[str, Any]],
        school_id: Optional[str] = None
    ) -> "RiskRuleSettings":
        """
        Build settings from a stored document.

        Missing categories get their defaults. A malformed category is
        replaced by its defaults and logged, so a bad document never stops
        detection for the school.
        """
        document = document if isinstance(document, dict) else {}
        values = {}
        for name, model in _CATEGORIES.items():
            raw = document.get(name)
            if raw is None:
                continue
            try:
                values[name] = model.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    f"Malformed '{name}' risk rules, using defaults",
                    extra={"school_id": school_id, "errors": e.errors()}
                )
        return cls(**values)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
