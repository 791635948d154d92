"""
Tests for RiskDetectionService: trigger paths, school batches and the
manual flag operations.
"""
from datetime import date

import pytest

from eduguard.core.exceptions import (
    RecordValidationError,
    RiskFlagAlreadyResolvedError,
    RiskFlagNotFoundError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from eduguard.database.repositories import RiskFlagRepository, SchoolRepository, StudentRepository
from eduguard.models.risk import RiskType, Severity


def risk_level(db, student):
    return StudentRepository(db).get_by_id(student.id).risk_level


def active_types(db, student):
    return sorted(f.type for f in RiskFlagRepository(db).get_active_by_student(student.id))


class TestWeeklyAttendance:
    def test_four_absences_is_critical(self, db, service, student, mark_absent):
        mark_absent(student, 4)

        result = service.detect_weekly_attendance_risks(student.id)

        assert result.flags_created == 1
        flag = result.created[0]
        assert flag.type == "ATTENDANCE"
        assert flag.severity == "CRITICAL"
        assert flag.title == "Critical Weekly Absenteeism: 4 absences out of 4 days this week"
        assert risk_level(db, student) == "CRITICAL"

    def test_one_absence_leaves_student_low(self, db, service, student, mark_absent):
        mark_absent(student, 1)
        result = service.detect_weekly_attendance_risks(student.id)
        assert result.flags == []
        assert risk_level(db, student) == "LOW"

    def test_disabled_category_produces_nothing(self, service, student, mark_absent):
        service.settings.update_rules(student.school_id, {"attendance": {"enabled": False}})
        mark_absent(student, 4)
        assert service.detect_weekly_attendance_risks(student.id).flags == []

    def test_school_mismatch(self, service, student, db):
        other = SchoolRepository(db).create("GS Remera")
        with pytest.raises(StudentNotFoundError):
            service.detect_weekly_attendance_risks(student.id, school_id=other.id)

    def test_unknown_student(self, service):
        with pytest.raises(StudentNotFoundError):
            service.detect_weekly_attendance_risks("missing")


class TestProfileRisks:
    def test_narrow_path_does_not_escalate(self, db, service, make_student):
        student = make_student(ubudehe_level=1, distance_to_school_km=3.5)

        result = service.detect_socioeconomic_risks(student.id)

        assert sorted(f.type for f in result.flags) == ["DISTANCE", "SOCIOECONOMIC"]
        assert all(f.severity == "MEDIUM" for f in result.flags)
        assert "COMBINED" not in active_types(db, student)

    def test_full_pass_escalates_two_medium_factors(self, db, service, make_student):
        student = make_student(ubudehe_level=1, distance_to_school_km=3.5)

        result = service.detect_risks_for_student(student.id)

        combined = [f for f in result.flags if f.type == "COMBINED"]
        assert len(combined) == 1
        assert combined[0].severity == "HIGH"
        assert combined[0].title == "Multiple Risk Factors Detected"
        assert risk_level(db, student) == "HIGH"

    def test_socioeconomic_disabled_still_checks_distance(self, service, make_student):
        student = make_student(ubudehe_level=1, has_parents=False, distance_to_school_km=6.5)
        service.settings.update_rules(student.school_id, {"socioeconomic": {"enabled": False}})

        result = service.detect_socioeconomic_risks(student.id)

        assert [f.type for f in result.flags] == ["DISTANCE"]


class TestFullPass:
    def test_attendance_and_performance_escalate(self, db, service, records, student, mark_absent):
        mark_absent(student, 3)
        records.record_performance(student.id, "Overall", "TERM_1", "2025-2026", 35)

        result = service.detect_risks_for_student(student.id)

        types = {f.type: f for f in result.flags}
        assert types["ATTENDANCE"].severity == "HIGH"
        assert types["PERFORMANCE"].severity == "HIGH"
        assert types["COMBINED"].title == "Attendance and Performance Issues"

    def test_rerun_does_not_duplicate(self, db, service, student, mark_absent):
        mark_absent(student, 3)
        service.detect_risks_for_student(student.id)

        second = service.detect_risks_for_student(student.id)

        assert second.flags_created == 0
        assert second.flags_updated == 1
        assert active_types(db, student) == ["ATTENDANCE"]

    def test_legacy_rules_use_thirty_day_window(self, db, service, student, mark_absent):
        # six absences two weeks ago: outside this week, inside the last 30 days
        mark_absent(student, 6, start=date(2025, 2, 24))

        assert service.detect_risks_for_student(student.id).flags == []

        result = service.detect_risks_for_student(student.id, legacy_rules=True)
        assert [f.type for f in result.flags] == ["ATTENDANCE"]
        assert result.flags[0].severity == "MEDIUM"
        assert result.flags[0].data["period"] == "Last 30 days (monthly)"

    def test_legacy_rules_use_performance_history(self, service, records, student):
        records.record_performance(student.id, "Math", "TERM_1", "2025-2026", 35)
        records.record_performance(student.id, "English", "TERM_1", "2025-2026", 38)

        assert service.detect_risks_for_student(student.id).flags == []

        result = service.detect_risks_for_student(student.id, legacy_rules=True)
        assert result.flags[0].type == "PERFORMANCE"
        assert result.flags[0].severity == "HIGH"


class TestSchoolBatch:
    def test_summary_counts(self, service, make_student, school, mark_absent):
        absent = make_student()
        make_student(distance_to_school_km=8)
        make_student()
        mark_absent(absent, 2)

        summary = service.detect_risks_for_school(school.id)

        assert summary.students_processed == 3
        assert summary.students_failed == 0
        assert summary.total_flags_created == 2
        assert summary.failures == []

        rerun = service.detect_risks_for_school(school.id)
        assert rerun.total_flags_created == 0
        assert rerun.total_flags_updated == 2

    def test_failing_student_does_not_stop_batch(self, db, service, make_student, school, monkeypatch):
        healthy = make_student(distance_to_school_km=6.5)
        broken = make_student(distance_to_school_km=6.5)
        collect = service.collect_candidates

        def flaky(student, rules, legacy_rules=False):
            if student.id == broken.id:
                raise RuntimeError("evaluator crashed")
            return collect(student, rules, legacy_rules)

        monkeypatch.setattr(service, "collect_candidates", flaky)

        summary = service.detect_risks_for_school(school.id)

        assert summary.students_processed == 1
        assert summary.students_failed == 1
        assert summary.failures == [{"student_id": broken.id, "error": "evaluator crashed"}]
        assert risk_level(db, healthy) == "HIGH"

    def test_inactive_students_are_skipped(self, service, make_student, school):
        student = make_student(distance_to_school_km=6.5)
        service.students.deactivate(student.id)
        assert service.detect_risks_for_school(school.id).students_processed == 0

    def test_unknown_school(self, service):
        with pytest.raises(SchoolNotFoundError):
            service.detect_risks_for_school("missing")


class TestManualFlags:
    def test_create_goes_through_reconciler(self, db, service, student):
        flag = service.create_flag(
            student.id, "teacher-1", RiskType.PERFORMANCE, Severity.HIGH,
            "Struggling in maths", "Reported by class teacher", notes="parent meeting booked",
        )

        assert flag.auto_generated is False
        assert flag.created_by == "teacher-1"
        assert flag.data == {"kind": "manual", "notes": "parent meeting booked"}
        assert risk_level(db, student) == "HIGH"

        again = service.create_flag(
            student.id, "teacher-2", RiskType.PERFORMANCE, Severity.CRITICAL, "Worse", "Still failing",
        )
        assert again.id == flag.id
        assert again.severity == "CRITICAL"

    def test_resolving_last_flag_returns_student_to_low(self, db, service, student, mark_absent, clock):
        mark_absent(student, 4)
        flag = service.detect_weekly_attendance_risks(student.id).created[0]
        clock.advance(hours=1)

        resolved = service.resolve_flag(flag.id, "teacher-1", "Home visit done")

        assert resolved.is_resolved and not resolved.is_active
        assert resolved.resolved_by == "teacher-1"
        assert resolved.resolution_notes == "Home visit done"
        student = StudentRepository(db).get_by_id(student.id)
        assert student.risk_level == "LOW"
        assert student.last_all_flags_resolved_at is not None

    def test_resolve_twice(self, service, student):
        flag = service.create_flag(student.id, None, RiskType.DISTANCE, Severity.MEDIUM, "t", "d")
        service.resolve_flag(flag.id, None)
        with pytest.raises(RiskFlagAlreadyResolvedError):
            service.resolve_flag(flag.id, None)

    def test_update_recomputes_level(self, db, service, student):
        flag = service.create_flag(student.id, None, RiskType.DISTANCE, Severity.MEDIUM, "t", "d")

        updated = service.update_flag(flag.id, "teacher-1", {"severity": "CRITICAL", "title": "Road flooded"})

        assert updated.severity == "CRITICAL"
        assert updated.title == "Road flooded"
        assert updated.updated_by == "teacher-1"
        assert risk_level(db, student) == "CRITICAL"

    def test_update_rejects_resolved_and_unknown_fields(self, service, student):
        flag = service.create_flag(student.id, None, RiskType.DISTANCE, Severity.MEDIUM, "t", "d")
        with pytest.raises(RecordValidationError):
            service.update_flag(flag.id, None, {"is_active": False})

        service.resolve_flag(flag.id, None)
        with pytest.raises(RecordValidationError):
            service.update_flag(flag.id, None, {"title": "x"})

    def test_delete(self, db, service, student):
        flag = service.create_flag(student.id, None, RiskType.DISTANCE, Severity.HIGH, "t", "d")

        service.delete_flag(flag.id, "admin-1")

        assert RiskFlagRepository(db).get_by_id(flag.id) is None
        assert risk_level(db, student) == "LOW"
        with pytest.raises(RiskFlagNotFoundError):
            service.delete_flag(flag.id, "admin-1")


class TestQueries:
    def test_school_summary(self, service, make_student, school):
        make_student(distance_to_school_km=6.5)
        make_student(distance_to_school_km=3.5)
        make_student()
        service.detect_risks_for_school(school.id)

        summary = service.get_school_summary(school.id)

        assert summary["total_active_flags"] == 2
        assert summary["flags_by_severity"]["HIGH"] == 1
        assert summary["flags_by_type"]["DISTANCE"] == 2
        assert summary["students_by_risk_level"] == {"LOW": 1, "MEDIUM": 1, "HIGH": 1, "CRITICAL": 0}

    def test_list_flags_filters(self, service, student):
        service.create_flag(student.id, None, RiskType.DISTANCE, Severity.HIGH, "t", "d")
        resolved = service.create_flag(student.id, None, RiskType.ATTENDANCE, Severity.MEDIUM, "t", "d")
        service.resolve_flag(resolved.id, None)

        assert [f.type for f in service.list_flags(student_id=student.id)] == ["DISTANCE"]
        assert len(service.list_flags(student_id=student.id, include_resolved=True)) == 2
        assert service.list_flags(school_id=student.school_id, severity=Severity.CRITICAL) == []
