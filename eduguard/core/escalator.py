"""
Combined risk escalator

Turns co-occurring candidate risks of one detection pass into a single
COMBINED/HIGH candidate.
"""
from typing import List, Optional, Sequence

from ..models.risk import CandidateRisk, CombinedEvidence, RiskType, Severity
from ..models.settings import CombinedRules


def escalate(candidates: Sequence[CandidateRisk], rules: CombinedRules) -> Optional[CandidateRisk]:
    """
    Args:
        candidates: Every candidate risk of one full detection pass
        rules: The school's combined-risk rules

    Returns:
        At most one COMBINED/HIGH candidate; the first matching rule wins
    """
    if not rules.enabled or len(candidates) < 2:
        return None

    triggers = rules.escalate_when
    risk_types: List[RiskType] = [candidate.type for candidate in candidates]
    medium_count = sum(1 for candidate in candidates if candidate.severity is Severity.MEDIUM)

    if medium_count >= triggers.multiple_medium_flags:
        return CandidateRisk(
            type=RiskType.COMBINED,
            severity=Severity.HIGH,
            title="Multiple Risk Factors Detected",
            description=(
                f"Student has {medium_count} medium-risk factors that together indicate high dropout risk."
            ),
            data=CombinedEvidence(
                risk_types=risk_types,
                escalation_reason="Multiple medium-risk factors",
            ),
        )

    if (
        triggers.attendance_and_performance
        and RiskType.ATTENDANCE in risk_types
        and RiskType.PERFORMANCE in risk_types
    ):
        return CandidateRisk(
            type=RiskType.COMBINED,
            severity=Severity.HIGH,
            title="Attendance and Performance Issues",
            description="Student has both attendance and performance issues, indicating high dropout risk.",
            data=CombinedEvidence(
                risk_types=risk_types,
                escalation_reason="Combined attendance and performance issues",
            ),
        )

    return None
