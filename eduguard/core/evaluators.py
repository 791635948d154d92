"""
Risk rule evaluators

Each evaluator is a pure function over records already loaded by the
caller (plus the calendar position where relevant) and returns at most one
CandidateRisk. Missing input is insufficient evidence, never a risk.

Evaluators:
- evaluate_weekly_attendance: ABSENT count in the current Monday-Friday week
- evaluate_term_performance: latest "Overall" score of the current term
- evaluate_socioeconomic: poverty, orphanhood and family stability factors
- evaluate_distance: distance-to-school bands
- evaluate_monthly_attendance: ABSENT count over the last 30 days
- evaluate_performance_history: yearly average, then per-subject score drops
"""
from collections import OrderedDict
from typing import Any, Iterable, List, Optional, Sequence

from ..models.records import AttendanceStatus, Term
from ..models.risk import (
    AttendanceEvidence,
    CandidateRisk,
    DistanceEvidence,
    PerformanceAverageEvidence,
    PerformanceDeclineEvidence,
    RiskType,
    Severity,
    SocioeconomicEvidence,
    TermPerformanceEvidence,
)
from ..models.settings import SocioeconomicRules
from . import constants as c
from .calendar import WeekWindow


def _num(value: float) -> str:
    """Render 6.0 as '6' and 6.5 as '6.5'"""
    return f"{value:g}"


def _absent(records: Iterable[Any]) -> List[Any]:
    return [r for r in records if r.status == AttendanceStatus.ABSENT.value]


# =============================================================================
# ATTENDANCE
# =============================================================================

_WEEKLY_WORDING = {
    Severity.CRITICAL: ("Critical", "This is a critical attendance issue requiring immediate attention."),
    Severity.HIGH: ("High", "This indicates high dropout risk."),
    Severity.MEDIUM: ("Moderate", "Monitor attendance patterns closely."),
}


def evaluate_weekly_attendance(records: Sequence[Any], window: WeekWindow) -> Optional[CandidateRisk]:
    """
    Classify absences in the current school week.

    Args:
        records: Attendance records of the student inside `window`
        window: Monday-Friday window of the current week

    Returns:
        ATTENDANCE candidate (>=4 CRITICAL, 3 HIGH, 2 MEDIUM) or None
    """
    absent = _absent(records)
    absences = len(absent)

    if absences >= c.WEEKLY_CRITICAL_ABSENCES:
        severity = Severity.CRITICAL
    elif absences >= c.WEEKLY_HIGH_ABSENCES:
        severity = Severity.HIGH
    elif absences >= c.WEEKLY_MEDIUM_ABSENCES:
        severity = Severity.MEDIUM
    else:
        return None

    total_days = len(records) or c.SCHOOL_DAYS_PER_WEEK
    absence_rate = round(absences / total_days * 100, 1)
    adjective, advice = _WEEKLY_WORDING[severity]

    return CandidateRisk(
        type=RiskType.ATTENDANCE,
        severity=severity,
        title=f"{adjective} Weekly Absenteeism: {absences} absences out of {total_days} days this week",
        description=(
            f"Student has been absent {absences} out of {total_days} school days this week "
            f"({absence_rate:.1f}% absence rate). {advice}"
        ),
        data=AttendanceEvidence(
            absences=absences,
            total_school_days=total_days,
            absence_rate=absence_rate,
            period="Current week (5 days)",
            week_start=window.start,
            week_end=window.end,
            dates=[r.date for r in absent],
        ),
    )


def evaluate_monthly_attendance(records: Sequence[Any]) -> Optional[CandidateRisk]:
    """
    Classify absences over the last 30 calendar days.

    >=12 CRITICAL, 10-11 HIGH, 6-9 MEDIUM.
    """
    absent = _absent(records)
    absences = len(absent)
    total_days = len(records)

    if absences >= c.MONTHLY_CRITICAL_ABSENCES:
        severity, adjective = Severity.CRITICAL, "Critical"
    elif absences >= c.MONTHLY_HIGH_ABSENCES:
        severity, adjective = Severity.HIGH, "High"
    elif absences >= c.MONTHLY_MEDIUM_ABSENCES:
        severity, adjective = Severity.MEDIUM, "Moderate"
    else:
        return None

    absence_rate = round(absences / total_days * 100, 1)
    if severity is Severity.MEDIUM:
        advice = "Monitor attendance patterns closely."
    else:
        advice = f"This indicates {adjective.lower()} dropout risk requiring immediate attention."

    return CandidateRisk(
        type=RiskType.ATTENDANCE,
        severity=severity,
        title=f"{adjective} Absenteeism: {absences} absences in {total_days} school days",
        description=(
            f"Student has been absent {absences} times out of {total_days} school days "
            f"({absence_rate:.1f}% absence rate) in the last month. {advice}"
        ),
        data=AttendanceEvidence(
            absences=absences,
            total_school_days=total_days,
            absence_rate=absence_rate,
            period="Last 30 days (monthly)",
            dates=[r.date for r in absent],
        ),
    )


# =============================================================================
# PERFORMANCE
# =============================================================================

def evaluate_term_performance(
    records: Sequence[Any],
    term: Term,
    academic_year: str
) -> Optional[CandidateRisk]:
    """
    Classify the latest "Overall" score of the current term.

    Args:
        records: "Overall" records of the term, newest first
        term: Current term
        academic_year: Current academic year label

    Returns:
        PERFORMANCE candidate (<=29.9% CRITICAL, <=39.9% HIGH, <=49.9% MEDIUM) or None
    """
    if not records:
        return None

    latest = records[0]
    score = latest.score or 0
    max_score = latest.max_score or 100
    percentage = round(score / max_score * 100, 1)
    label = term.label

    if percentage <= c.TERM_CRITICAL_MAX_PERCENT:
        severity, grade, threshold = Severity.CRITICAL, "F", c.TERM_FAILING_THRESHOLD
        title = f"Critical Term Performance: {_num(percentage)}% (F grade) in {label}"
        tail = ("which is critically below the passing threshold. "
                "This indicates critical academic risk requiring immediate intervention.")
    elif percentage <= c.TERM_HIGH_MAX_PERCENT:
        severity, grade, threshold = Severity.HIGH, "F", c.TERM_FAILING_THRESHOLD
        title = f"High Term Performance Risk: {_num(percentage)}% (F grade) in {label}"
        tail = ("which is significantly below the passing threshold. "
                "This indicates high academic risk requiring immediate attention.")
    elif percentage <= c.TERM_MEDIUM_MAX_PERCENT:
        severity, grade, threshold = Severity.MEDIUM, "E", c.TERM_BELOW_AVERAGE_THRESHOLD
        title = f"Moderate Term Performance Risk: {_num(percentage)}% (E grade) in {label}"
        tail = "which is below average. Monitor progress closely."
    else:
        return None

    return CandidateRisk(
        type=RiskType.PERFORMANCE,
        severity=severity,
        title=title,
        description=(
            f"Student's overall performance in {label} is {_num(percentage)}% ({grade} grade), {tail}"
        ),
        data=TermPerformanceEvidence(
            term=term.value,
            academic_year=academic_year,
            overall_score=percentage,
            score=score,
            max_score=max_score,
            grade=grade,
            threshold=threshold,
        ),
    )


def evaluate_performance_history(records: Sequence[Any]) -> Optional[CandidateRisk]:
    """
    Classify the last year of scores.

    The overall average decides first (<=39% HIGH, <=30% CRITICAL). Above
    that, the first subject whose latest score is <=50% and dropped at
    least 20 points from the previous one yields a MEDIUM decline.

    Args:
        records: Performance records of the last year, newest first
    """
    valid = [r for r in records if r.score is not None and r.max_score and r.max_score > 0]
    if not valid:
        return None

    total_score = sum(r.score for r in valid)
    total_max_score = sum(r.max_score for r in valid)
    average = round(total_score / total_max_score * 100, 1)

    if average <= c.AVERAGE_HIGH_MAX_PERCENT:
        critical = average <= c.AVERAGE_CRITICAL_MAX_PERCENT
        severity = Severity.CRITICAL if critical else Severity.HIGH
        adjective = "Critical" if critical else "High"
        return CandidateRisk(
            type=RiskType.PERFORMANCE,
            severity=severity,
            title=f"{adjective} Performance: {_num(average)}% average",
            description=(
                f"Student's overall average performance is {_num(average)}% (F grade), which is "
                f"{'critically' if critical else 'significantly'} below the passing threshold. "
                f"This indicates {adjective.lower()} academic risk requiring immediate intervention."
            ),
            data=PerformanceAverageEvidence(
                overall_average=average,
                total_records=len(valid),
                total_score=total_score,
                total_max_score=total_max_score,
                threshold=c.AVERAGE_HIGH_MAX_PERCENT,
            ),
        )

    by_subject = OrderedDict()
    for record in records:
        by_subject.setdefault(record.subject, []).append(record)

    for subject, history in by_subject.items():
        if len(history) < 2:
            continue
        current, previous = history[0], history[1]
        current_pct = current.score / current.max_score * 100 if current.max_score else 0.0
        previous_pct = previous.score / previous.max_score * 100 if previous.max_score else 0.0
        drop = previous_pct - current_pct

        if current_pct <= c.DECLINE_MAX_CURRENT_PERCENT and drop >= c.DECLINE_MIN_DROP_POINTS:
            return CandidateRisk(
                type=RiskType.PERFORMANCE,
                severity=Severity.MEDIUM,
                title=f"Performance Decline in {subject}",
                description=(
                    f"Score in {subject} dropped from {previous_pct:.1f}% to {current_pct:.1f}% "
                    f"({drop:.1f}% drop). Current performance is below 50%. Monitor progress."
                ),
                data=PerformanceDeclineEvidence(
                    subject=subject,
                    current_score=current.score,
                    current_max_score=current.max_score,
                    current_percentage=round(current_pct, 1),
                    previous_score=previous.score,
                    previous_max_score=previous.max_score,
                    previous_percentage=round(previous_pct, 1),
                    percentage_drop=round(drop, 1),
                ),
            )

    return None


# =============================================================================
# STUDENT PROFILE
# =============================================================================

def evaluate_socioeconomic(student: Any, rules: SocioeconomicRules) -> Optional[CandidateRisk]:
    """
    Count socio-economic risk factors of a student profile.

    Unknown profile values (None) are not counted as factors.

    Returns:
        HIGH for two or more factors, MEDIUM for one, None otherwise
    """
    factors = rules.high_risk_factors
    risk_factors: List[str] = []

    if student.ubudehe_level is not None and student.ubudehe_level <= factors.ubudehe_level:
        risk_factors.append(f"Ubudehe Level {student.ubudehe_level} (extreme poverty)")
    if student.has_parents is False and factors.no_parents:
        risk_factors.append("No parents (orphan)")
    if student.family_stability is False and factors.family_stability:
        risk_factors.append("Family stability concerns reported")

    if not risk_factors:
        return None

    evidence = SocioeconomicEvidence(
        ubudehe_level=student.ubudehe_level,
        has_parents=student.has_parents,
        family_stability=student.family_stability,
        risk_factors=risk_factors,
    )
    if len(risk_factors) >= 2:
        return CandidateRisk(
            type=RiskType.SOCIOECONOMIC,
            severity=Severity.HIGH,
            title="Multiple Socioeconomic Risk Factors",
            description=f"Student has multiple socioeconomic risk factors: {', '.join(risk_factors)}",
            data=evidence,
        )
    return CandidateRisk(
        type=RiskType.SOCIOECONOMIC,
        severity=Severity.MEDIUM,
        title="Socioeconomic Risk Factor",
        description=f"Student has a socioeconomic risk factor: {risk_factors[0]}",
        data=evidence,
    )


def evaluate_distance(distance_km: Optional[float]) -> Optional[CandidateRisk]:
    """>=7 km CRITICAL, >=5 HIGH, >=3 MEDIUM; missing or zero distance is None"""
    if not distance_km:
        return None

    shown = _num(distance_km)
    if distance_km >= c.DISTANCE_CRITICAL_KM:
        severity, threshold = Severity.CRITICAL, c.DISTANCE_CRITICAL_KM
        title = f"Critical Distance: {shown} km from school"
        description = (
            f"Student lives {shown} kilometers from school, exceeding the critical threshold of "
            f"{_num(threshold)} km. This distance creates significant barriers to regular attendance."
        )
    elif distance_km >= c.DISTANCE_HIGH_KM:
        severity, threshold = Severity.HIGH, c.DISTANCE_HIGH_KM
        title = f"High Distance: {shown} km from school"
        description = (
            f"Student lives {shown} kilometers from school, indicating high dropout risk "
            f"due to distance barriers."
        )
    elif distance_km >= c.DISTANCE_MEDIUM_KM:
        severity, threshold = Severity.MEDIUM, c.DISTANCE_MEDIUM_KM
        title = f"Moderate Distance: {shown} km from school"
        description = f"Student lives {shown} kilometers from school. Monitor attendance patterns closely."
    else:
        return None

    return CandidateRisk(
        type=RiskType.DISTANCE,
        severity=severity,
        title=title,
        description=description,
        data=DistanceEvidence(distance_km=distance_km, threshold=threshold, risk_level=severity),
    )

