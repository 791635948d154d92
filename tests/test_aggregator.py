"""
Tests for the student risk level aggregator
"""
import pytest

from eduguard.core.aggregator import RISK_REDUCED_MESSAGE
from eduguard.core.exceptions import StudentNotFoundError
from eduguard.database.repositories import AdminNotificationRepository, RiskFlagRepository, StudentRepository
from eduguard.models.risk import RiskType, Severity


@pytest.fixture
def flags(db):
    return RiskFlagRepository(db)


def add_flag(flags, student, risk_type, severity, clock):
    return flags.create(student.id, student.school_id, risk_type, severity, "t", "d", now=clock.now())


def test_worst_active_severity_wins(db, service, student, flags, clock):
    add_flag(flags, student, RiskType.DISTANCE, Severity.MEDIUM, clock)
    add_flag(flags, student, RiskType.ATTENDANCE, Severity.CRITICAL, clock)
    add_flag(flags, student, RiskType.SOCIOECONOMIC, Severity.HIGH, clock)

    assert service.aggregator.recompute(student.id) is Severity.CRITICAL
    assert StudentRepository(db).get_by_id(student.id).risk_level == "CRITICAL"


def test_resolved_flags_do_not_count(db, service, student, flags, clock):
    high = add_flag(flags, student, RiskType.DISTANCE, Severity.HIGH, clock)
    add_flag(flags, student, RiskType.ATTENDANCE, Severity.MEDIUM, clock)
    flags.resolve(high.id, "teacher-1", now=clock.now())

    assert service.aggregator.recompute(student.id) is Severity.MEDIUM


def test_no_active_flags_resets_to_low(db, service, student, flags, clock):
    flag = add_flag(flags, student, RiskType.DISTANCE, Severity.HIGH, clock)
    service.aggregator.recompute(student.id)
    flags.resolve(flag.id, "teacher-1", now=clock.now())
    clock.advance(hours=2)

    assert service.aggregator.recompute(student.id) is Severity.LOW

    refreshed = StudentRepository(db).get_by_id(student.id)
    assert refreshed.risk_level == "LOW"
    assert refreshed.last_all_flags_resolved_at is not None
    reduced = [n for n in AdminNotificationRepository(db).list_by_school(student.school_id) if n.type == "GENERAL"]
    assert len(reduced) == 1
    assert reduced[0].message.endswith(RISK_REDUCED_MESSAGE)
    assert reduced[0].priority == "LOW"


def test_low_student_without_flags_gets_no_reduction_notice(db, service, student):
    assert service.aggregator.recompute(student.id) is Severity.LOW
    assert AdminNotificationRepository(db).list_by_school(student.school_id) == []


def test_level_change_message_and_risk_type(db, service, student, flags, clock):
    add_flag(flags, student, RiskType.SOCIOECONOMIC, Severity.MEDIUM, clock)
    clock.advance(minutes=1)
    add_flag(flags, student, RiskType.DISTANCE, Severity.HIGH, clock)

    service.aggregator.recompute(student.id)

    notification = AdminNotificationRepository(db).list_by_school(student.school_id)[0]
    assert notification.title == f"Student At Risk: {student.full_name}"
    assert notification.message.endswith("Risk level changed from LOW to HIGH.")
    assert notification.risk_type == "SOCIOECONOMIC"
    assert notification.priority == "HIGH"


def test_continuing_risk_refreshes_recent_notification(db, service, student, flags, clock):
    add_flag(flags, student, RiskType.DISTANCE, Severity.MEDIUM, clock)
    service.aggregator.recompute(student.id)
    clock.advance(hours=3)

    service.aggregator.recompute(student.id)

    notifications = AdminNotificationRepository(db).list_by_school(student.school_id)
    assert len(notifications) == 1
    assert notifications[0].message.endswith("Student has active risk flags with MEDIUM risk level.")


def test_guardians_alerted_only_on_change_to_high(db, service, student, flags, clock, transport):
    add_flag(flags, student, RiskType.DISTANCE, Severity.HIGH, clock)
    service.aggregator.recompute(student.id)
    assert len(transport.sent) == 2

    service.aggregator.recompute(student.id)
    assert len(transport.sent) == 2


def test_missing_student(service):
    with pytest.raises(StudentNotFoundError):
        service.aggregator.recompute("missing")


def test_summary(service, student, flags, clock):
    add_flag(flags, student, RiskType.DISTANCE, Severity.HIGH, clock)
    add_flag(flags, student, RiskType.ATTENDANCE, Severity.MEDIUM, clock)
    service.aggregator.recompute(student.id)

    summary = service.aggregator.summary(student.id)

    assert summary["overall_risk"] == "HIGH"
    assert summary["risk_level"] == "HIGH"
    assert summary["total_active"] == 2
    assert summary["by_severity"] == {"LOW": 0, "MEDIUM": 1, "HIGH": 1, "CRITICAL": 0}
    assert summary["by_type"]["DISTANCE"] == 1
    assert summary["by_type"]["COMBINED"] == 0
