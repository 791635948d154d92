"""
Tests for the risk flag reconciler: one active flag per (student, type),
in-place updates and escalation-only notifications.
"""
import threading
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from eduguard.core.reconciler import (
    REPLACED_BY_UPDATED_NOTE,
    KeyedLocks,
    select_per_type,
)
from eduguard.core.risk_detection import RiskDetectionService
from eduguard.core.settings_provider import RiskSettingsProvider
from eduguard.database.base import Base
from eduguard.database.models import RiskFlagDB
from eduguard.database.repositories import (
    AdminNotificationRepository,
    AttendanceRepository,
    RiskFlagRepository,
    SchoolRepository,
    StudentRepository,
)
from eduguard.models.risk import CandidateRisk, DistanceEvidence, RiskType, Severity
from eduguard.notifications.dispatcher import InlineDispatcher
from eduguard.notifications.guardian import LoggingTransport

MONDAY = date(2025, 3, 10)


def distance_candidate(severity=Severity.HIGH, km=6.5, title=None):
    return CandidateRisk(
        type=RiskType.DISTANCE,
        severity=severity,
        title=title or f"Distance {km} km",
        description="Student lives far from school.",
        data=DistanceEvidence(distance_km=km, threshold=5.0, risk_level=severity),
    )


def active_flags(db, student, risk_type=RiskType.DISTANCE):
    return RiskFlagRepository(db).find_all_active(student.id, risk_type)


class TestSelectPerType:
    def test_highest_severity_per_type(self):
        chosen = select_per_type([
            distance_candidate(Severity.MEDIUM, title="medium"),
            distance_candidate(Severity.CRITICAL, title="critical"),
            distance_candidate(Severity.HIGH, title="high"),
        ])
        assert chosen[RiskType.DISTANCE].title == "critical"

    def test_tie_keeps_first_seen(self):
        chosen = select_per_type([
            distance_candidate(Severity.HIGH, title="first"),
            distance_candidate(Severity.HIGH, title="second"),
        ])
        assert chosen[RiskType.DISTANCE].title == "first"


class TestKeyedLocks:
    def test_same_key_waits_other_keys_do_not(self):
        locks = KeyedLocks()
        entered = threading.Event()

        def contender():
            with locks.hold(("s1", "ATTENDANCE")):
                entered.set()

        with locks.hold(("s1", "ATTENDANCE")):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(timeout=0.2)
            with locks.hold(("s1", "DISTANCE")):
                assert len(locks) == 2
        worker.join(timeout=2)

        assert entered.is_set()

    def test_idle_keys_are_dropped(self):
        locks = KeyedLocks()
        for n in range(50):
            with locks.hold((f"s{n}", "ATTENDANCE")):
                pass
        assert len(locks) == 0

    def test_key_released_after_error(self):
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            with locks.hold(("s1", "ATTENDANCE")):
                raise RuntimeError("boom")
        assert len(locks) == 0


def test_overlapping_runs_keep_one_flag(tmp_path, clock, settings_cache):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'flags.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    make_session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    with make_session() as setup:
        school = SchoolRepository(setup).create("GS Remera")
        student = StudentRepository(setup).create(school.id, "Aline", "Mukamana")
        for offset in range(4):
            AttendanceRepository(setup).upsert(
                student.id, school.id, MONDAY + timedelta(days=offset), "ABSENT", now=clock.now()
            )
        RiskSettingsProvider(setup, cache=settings_cache).get_rules(school.id)

    runs = 8
    barrier = threading.Barrier(runs)
    errors = []

    def run_detection():
        session = make_session()
        try:
            service = RiskDetectionService(
                session, clock, InlineDispatcher(), LoggingTransport(), settings_cache=settings_cache
            )
            barrier.wait(timeout=5)
            service.detect_weekly_attendance_risks(student.id)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=run_detection) for _ in range(runs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    with make_session() as check:
        flags = check.query(RiskFlagDB).filter(RiskFlagDB.student_id == student.id).all()
    engine.dispose()

    assert errors == []
    assert len(flags) == 1
    assert flags[0].is_active and not flags[0].is_resolved
    assert flags[0].severity == "CRITICAL"


class TestCreate:
    def test_creates_flag_and_notifies(self, db, service, student, transport):
        result = service.reconciler.reconcile(student.id, student.school_id, "teacher-1", [distance_candidate()])

        assert result.flags_created == 1
        assert result.flags_updated == 0
        assert result.risk_level is Severity.HIGH
        flag = result.created[0]
        assert flag.is_active and not flag.is_resolved
        assert flag.auto_generated is True
        assert flag.created_by == "teacher-1"
        assert flag.data["kind"] == "distance"

        notifications = AdminNotificationRepository(db).list_by_school(student.school_id)
        assert len(notifications) == 1
        assert notifications[0].priority == "HIGH"
        # new-flag alert plus the LOW -> HIGH level change alert, email and SMS each
        assert [m.channel for m in transport.sent] == ["email", "sms", "email", "sms"]

    def test_medium_flag_does_not_alert_guardians(self, db, service, student, transport):
        service.reconciler.reconcile(
            student.id, student.school_id, None, [distance_candidate(Severity.MEDIUM, km=3.5)]
        )
        assert transport.sent == []
        notifications = AdminNotificationRepository(db).list_by_school(student.school_id)
        assert [n.priority for n in notifications] == ["MEDIUM"]

    def test_no_candidates_changes_nothing(self, db, service, student):
        result = service.reconciler.reconcile(student.id, student.school_id, None, [])
        assert result.flags == []
        assert result.risk_level is None

    def test_one_flag_per_type_from_many_candidates(self, db, service, student):
        result = service.reconciler.reconcile(student.id, student.school_id, None, [
            distance_candidate(Severity.MEDIUM),
            distance_candidate(Severity.CRITICAL, km=8),
        ])
        assert result.risks_detected == 2
        assert result.flags_created == 1
        assert result.created[0].severity == "CRITICAL"

    def test_stray_resolved_flags_are_left_alone(self, db, service, student, clock):
        flags = RiskFlagRepository(db)
        old = flags.create(student.id, student.school_id, RiskType.DISTANCE, Severity.HIGH, "old", "old", now=clock.now())
        flags.resolve(old.id, "teacher-1", "moved closer", now=clock.now())

        result = service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate()])

        assert result.flags_created == 1
        assert flags.get_by_id(old.id).resolution_notes == "moved closer"


class TestUpdate:
    def test_rerun_is_idempotent(self, db, service, student, transport):
        service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate()])
        sent = len(transport.sent)

        result = service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate()])

        assert result.flags_created == 0
        assert result.flags_updated == 1
        assert len(active_flags(db, student)) == 1
        assert len(transport.sent) == sent
        assert len(AdminNotificationRepository(db).list_by_school(student.school_id)) == 1

    def test_overwrites_fields_in_place(self, db, service, student, clock):
        first = service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate(km=5.5)])
        clock.advance(days=1)

        second = service.reconciler.reconcile(
            student.id, student.school_id, "teacher-2", [distance_candidate(km=6.5, title="updated")]
        )

        flag = second.updated[0]
        assert flag.id == first.created[0].id
        assert flag.title == "updated"
        assert flag.data["distance_km"] == 6.5
        assert flag.updated_by == "teacher-2"

    def test_strict_escalation_notifies(self, db, service, student, transport):
        service.reconciler.reconcile(
            student.id, student.school_id, None, [distance_candidate(Severity.MEDIUM, km=3.5)]
        )
        assert transport.sent == []

        service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate(Severity.HIGH)])

        # severity increase alert plus the MEDIUM -> HIGH level change alert
        assert len(transport.sent) == 4
        assert all(m.severity is Severity.HIGH for m in transport.sent)

    def test_de_escalation_does_not_alert(self, db, service, student, transport):
        service.reconciler.reconcile(student.id, student.school_id, None, [distance_candidate(Severity.HIGH)])
        sent = len(transport.sent)

        result = service.reconciler.reconcile(
            student.id, student.school_id, None, [distance_candidate(Severity.MEDIUM, km=3.5)]
        )

        assert result.updated[0].severity == "MEDIUM"
        assert result.risk_level is Severity.MEDIUM
        assert len(transport.sent) == sent

    def test_duplicates_are_force_resolved(self, db, service, student, clock):
        flags = RiskFlagRepository(db)
        oldest = flags.create(student.id, student.school_id, RiskType.DISTANCE, Severity.MEDIUM, "a", "a", now=clock.now())
        clock.advance(minutes=1)
        duplicate = flags.create(student.id, student.school_id, RiskType.DISTANCE, Severity.MEDIUM, "b", "b", now=clock.now())

        result = service.reconciler.reconcile(student.id, student.school_id, "system", [distance_candidate()])

        assert result.updated[0].id == oldest.id
        remaining = active_flags(db, student)
        assert [f.id for f in remaining] == [oldest.id]
        swept = flags.get_by_id(duplicate.id)
        assert swept.is_resolved and not swept.is_active
        assert swept.resolution_notes == REPLACED_BY_UPDATED_NOTE

