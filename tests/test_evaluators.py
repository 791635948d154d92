"""
Tests for the risk rule evaluators and the school calendar
"""
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from eduguard.core.calendar import academic_year, current_term, current_week_window, trailing_window
from eduguard.core.evaluators import (
    evaluate_distance,
    evaluate_monthly_attendance,
    evaluate_performance_history,
    evaluate_socioeconomic,
    evaluate_term_performance,
    evaluate_weekly_attendance,
)
from eduguard.models.records import Term
from eduguard.models.risk import RiskType, Severity
from eduguard.models.settings import SocioeconomicRules

WEEK = current_week_window(date(2025, 3, 12))


def attendance(statuses, start=WEEK.start):
    return [
        SimpleNamespace(date=start + timedelta(days=i), status=status)
        for i, status in enumerate(statuses)
    ]


def score(value, max_score=100, subject="Overall", created_at=None):
    return SimpleNamespace(score=value, max_score=max_score, subject=subject, created_at=created_at)


def profile(ubudehe_level=None, has_parents=None, family_stability=None):
    return SimpleNamespace(
        ubudehe_level=ubudehe_level,
        has_parents=has_parents,
        family_stability=family_stability,
    )


class TestCalendar:
    def test_week_window_is_monday_to_friday(self):
        window = current_week_window(date(2025, 3, 12))
        assert window.start == date(2025, 3, 10)
        assert window.end == date(2025, 3, 14)

    @pytest.mark.parametrize("weekend_day", [date(2025, 3, 15), date(2025, 3, 16)])
    def test_weekend_maps_to_preceding_monday(self, weekend_day):
        assert current_week_window(weekend_day).start == date(2025, 3, 10)

    @pytest.mark.parametrize("month,term", [
        (1, Term.TERM_1), (4, Term.TERM_1),
        (5, Term.TERM_2), (8, Term.TERM_2),
        (9, Term.TERM_3), (12, Term.TERM_3),
    ])
    def test_term_from_month(self, month, term):
        assert current_term(date(2025, month, 15)) is term

    def test_academic_year_label(self):
        assert academic_year(date(2025, 6, 1)) == "2025-2026"

    def test_trailing_window(self):
        assert trailing_window(date(2025, 3, 31), 30) == (date(2025, 3, 1), date(2025, 3, 31))


class TestWeeklyAttendance:
    @pytest.mark.parametrize("absences,severity", [
        (4, Severity.CRITICAL),
        (5, Severity.CRITICAL),
        (3, Severity.HIGH),
        (2, Severity.MEDIUM),
    ])
    def test_severity_bands(self, absences, severity):
        records = attendance(["ABSENT"] * absences + ["PRESENT"] * (5 - absences))
        candidate = evaluate_weekly_attendance(records, WEEK)
        assert candidate.type is RiskType.ATTENDANCE
        assert candidate.severity is severity

    def test_single_absence_is_not_a_risk(self):
        assert evaluate_weekly_attendance(attendance(["ABSENT", "PRESENT", "LATE"]), WEEK) is None

    def test_no_records_is_not_a_risk(self):
        assert evaluate_weekly_attendance([], WEEK) is None

    def test_late_and_excused_do_not_count(self):
        records = attendance(["LATE", "EXCUSED", "LATE", "EXCUSED", "ABSENT"])
        assert evaluate_weekly_attendance(records, WEEK) is None

    def test_critical_wording_and_evidence(self):
        records = attendance(["ABSENT", "ABSENT", "ABSENT", "ABSENT"])
        candidate = evaluate_weekly_attendance(records, WEEK)

        assert candidate.title == "Critical Weekly Absenteeism: 4 absences out of 4 days this week"
        assert candidate.description == (
            "Student has been absent 4 out of 4 school days this week (100.0% absence rate). "
            "This is a critical attendance issue requiring immediate attention."
        )
        evidence = candidate.data
        assert evidence.kind == "attendance"
        assert evidence.absences == 4
        assert evidence.absence_rate == 100.0
        assert evidence.week_start == WEEK.start
        assert evidence.week_end == WEEK.end
        assert evidence.dates == [WEEK.start + timedelta(days=i) for i in range(4)]

    def test_absence_rate_rounded_to_one_decimal(self):
        records = attendance(["ABSENT", "ABSENT", "PRESENT"])
        assert evaluate_weekly_attendance(records, WEEK).data.absence_rate == 66.7


class TestMonthlyAttendance:
    @pytest.mark.parametrize("absences,severity", [
        (12, Severity.CRITICAL),
        (11, Severity.HIGH),
        (10, Severity.HIGH),
        (9, Severity.MEDIUM),
        (6, Severity.MEDIUM),
    ])
    def test_severity_bands(self, absences, severity):
        records = attendance(["ABSENT"] * absences + ["PRESENT"] * (20 - absences), start=date(2025, 2, 10))
        candidate = evaluate_monthly_attendance(records)
        assert candidate.severity is severity
        assert candidate.data.period == "Last 30 days (monthly)"

    def test_five_absences_is_not_a_risk(self):
        records = attendance(["ABSENT"] * 5 + ["PRESENT"] * 15, start=date(2025, 2, 10))
        assert evaluate_monthly_attendance(records) is None


class TestTermPerformance:
    @pytest.mark.parametrize("value,severity,grade", [
        (25, Severity.CRITICAL, "F"),
        (29.9, Severity.CRITICAL, "F"),
        (35, Severity.HIGH, "F"),
        (39.9, Severity.HIGH, "F"),
        (45, Severity.MEDIUM, "E"),
        (49.9, Severity.MEDIUM, "E"),
    ])
    def test_severity_bands(self, value, severity, grade):
        candidate = evaluate_term_performance([score(value)], Term.TERM_1, "2025-2026")
        assert candidate.type is RiskType.PERFORMANCE
        assert candidate.severity is severity
        assert candidate.data.grade == grade

    def test_fifty_percent_is_not_a_risk(self):
        assert evaluate_term_performance([score(50)], Term.TERM_1, "2025-2026") is None

    def test_no_record_for_term_is_not_a_risk(self):
        assert evaluate_term_performance([], Term.TERM_2, "2025-2026") is None

    def test_percentage_uses_max_score(self):
        candidate = evaluate_term_performance([score(14, max_score=40)], Term.TERM_1, "2025-2026")
        assert candidate.data.overall_score == 35.0
        assert candidate.title == "High Term Performance Risk: 35% (F grade) in TERM 1"

    def test_latest_record_wins(self):
        records = [score(80), score(20)]  # newest first
        assert evaluate_term_performance(records, Term.TERM_1, "2025-2026") is None


class TestPerformanceHistory:
    def test_low_average_is_high(self):
        candidate = evaluate_performance_history([score(35), score(38)])
        assert candidate.severity is Severity.HIGH
        assert candidate.title == "High Performance: 36.5% average"

    def test_very_low_average_is_critical(self):
        assert evaluate_performance_history([score(20), score(30)]).severity is Severity.CRITICAL

    def test_subject_decline(self):
        now = datetime(2025, 3, 1)
        records = [
            score(45, subject="Math", created_at=now),
            score(80, subject="Math", created_at=now - timedelta(days=30)),
            score(90, subject="English", created_at=now - timedelta(days=40)),
        ]
        candidate = evaluate_performance_history(records)
        assert candidate.severity is Severity.MEDIUM
        assert candidate.title == "Performance Decline in Math"
        assert candidate.data.percentage_drop == 35.0

    def test_small_drop_is_not_a_risk(self):
        records = [score(45, subject="Math"), score(60, subject="Math"), score(90, subject="English")]
        assert evaluate_performance_history(records) is None

    def test_no_records(self):
        assert evaluate_performance_history([]) is None


class TestSocioeconomic:
    rules = SocioeconomicRules()

    def test_ubudehe_one_without_parents_is_high(self):
        candidate = evaluate_socioeconomic(profile(ubudehe_level=1, has_parents=False), self.rules)
        assert candidate.type is RiskType.SOCIOECONOMIC
        assert candidate.severity is Severity.HIGH
        assert candidate.title == "Multiple Socioeconomic Risk Factors"
        assert candidate.data.risk_factors == [
            "Ubudehe Level 1 (extreme poverty)",
            "No parents (orphan)",
        ]

    def test_single_factor_is_medium(self):
        candidate = evaluate_socioeconomic(profile(ubudehe_level=3, family_stability=False), self.rules)
        assert candidate.severity is Severity.MEDIUM
        assert candidate.description == (
            "Student has a socioeconomic risk factor: Family stability concerns reported"
        )

    def test_no_factors(self):
        assert evaluate_socioeconomic(profile(ubudehe_level=2, has_parents=True), self.rules) is None

    def test_unknown_profile_values_are_not_factors(self):
        assert evaluate_socioeconomic(profile(), self.rules) is None

    def test_disabled_factor_is_ignored(self):
        rules = SocioeconomicRules.model_validate(
            {"high_risk_factors": {"ubudehe_level": 1, "no_parents": False, "family_stability": True}}
        )
        candidate = evaluate_socioeconomic(profile(ubudehe_level=1, has_parents=False), rules)
        assert candidate.severity is Severity.MEDIUM


class TestDistance:
    @pytest.mark.parametrize("km,severity", [
        (7, Severity.CRITICAL),
        (12.5, Severity.CRITICAL),
        (6.5, Severity.HIGH),
        (5, Severity.HIGH),
        (3, Severity.MEDIUM),
    ])
    def test_bands(self, km, severity):
        assert evaluate_distance(km).severity is severity

    def test_six_and_a_half_km_wording(self):
        candidate = evaluate_distance(6.5)
        assert candidate.title == "High Distance: 6.5 km from school"
        assert candidate.data.threshold == 5.0

    @pytest.mark.parametrize("km", [None, 0, 2.9])
    def test_no_risk(self, km):
        assert evaluate_distance(km) is None
