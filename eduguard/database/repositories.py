"""
Repository pattern for database operations

Provides:
- SchoolRepository: Schools
- StudentRepository: Student profiles and the aggregated risk level
- AttendanceRepository: Daily attendance (one row per student per date)
- PerformanceRepository: Assessment scores
- SettingsRepository: Per-school risk rule documents
- RiskFlagRepository: Risk flags and the active-flag lookups the reconciler locks
- AdminNotificationRepository: In-app admin notifications

TRANSACTION MANAGEMENT:
-----------------------
Individual repository methods commit immediately after each write and
roll back on failure before re-raising. Timestamps that matter to the
risk engine (resolution times, record creation order) are passed in by
the caller so they follow the injected clock.
"""
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

from sqlalchemy import desc, exists, func, select, update
from sqlalchemy.orm import Session

from ..core.constants import utc_now
from ..models.risk import RiskType, Severity
from .models import (
    AdminNotificationDB,
    AttendanceDB,
    PerformanceDB,
    RiskFlagDB,
    RiskRuleSettingsDB,
    SchoolDB,
    StudentDB,
)

logger = logging.getLogger(__name__)


def _enum_value(value: Any, enum_class: Type[Enum]) -> Optional[str]:
    """
    Normalize an enum member or string to the stored enum value.

    Raises:
        ValueError: If the string is not a value of enum_class
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value.value
    if isinstance(value, str):
        upper = value.upper()
        for member in enum_class:
            if member.value == upper:
                return member.value
        raise ValueError(
            f"Invalid {enum_class.__name__}: '{value}'. "
            f"Valid values: {[m.value for m in enum_class]}"
        )
    raise TypeError(f"Expected {enum_class.__name__} or str, got {type(value).__name__}")


class SchoolRepository:
    """Repository for school operations"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, name: str, district: Optional[str] = None,
               sector: Optional[str] = None) -> SchoolDB:
        try:
            school = SchoolDB(name=name, district=district, sector=sector)
            self.db.add(school)
            self.db.commit()
            self.db.refresh(school)
            logger.info("School created", extra={"school_id": school.id})
            return school
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create school: {e}", extra={"school_name": name})
            raise

    def get_by_id(self, school_id: str) -> Optional[SchoolDB]:
        return self.db.query(SchoolDB).filter(SchoolDB.id == school_id).first()

    def exists(self, school_id: str) -> bool:
        return self.db.query(exists().where(SchoolDB.id == school_id)).scalar()

    def get_all(self, active_only: bool = True) -> List[SchoolDB]:
        query = self.db.query(SchoolDB)
        if active_only:
            query = query.filter(SchoolDB.is_active == True)  # noqa: E712
        return query.order_by(SchoolDB.name).all()


class StudentRepository:
    """Repository for student profiles"""

    PROFILE_FIELDS = (
        "first_name", "last_name", "class_name", "ubudehe_level", "has_parents",
        "family_stability", "distance_to_school_km", "guardian_contacts",
    )

    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, school_id: str, first_name: str, last_name: str, **profile) -> StudentDB:
        """
        Register a student. risk_level always starts at LOW.

        Args:
            school_id: Owning school
            first_name: Given name
            last_name: Family name
            **profile: Any of PROFILE_FIELDS
        """
        unknown = set(profile) - set(self.PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown student fields: {sorted(unknown)}")
        try:
            student = StudentDB(
                school_id=school_id,
                first_name=first_name,
                last_name=last_name,
                risk_level=Severity.LOW.value,
                **profile,
            )
            if student.guardian_contacts is None:
                student.guardian_contacts = []
            self.db.add(student)
            self.db.commit()
            self.db.refresh(student)
            logger.info("Student registered", extra={"student_id": student.id, "school_id": school_id})
            return student
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to register student: {e}", extra={"school_id": school_id})
            raise

    def get_by_id(self, student_id: str) -> Optional[StudentDB]:
        return self.db.query(StudentDB).filter(StudentDB.id == student_id).first()

    def get_active_by_school(self, school_id: str) -> List[StudentDB]:
        """Active students of a school, in a stable order for batch runs"""
        return (
            self.db.query(StudentDB)
            .filter(StudentDB.school_id == school_id, StudentDB.is_active == True)  # noqa: E712
            .order_by(StudentDB.last_name, StudentDB.first_name, StudentDB.id)
            .all()
        )

    def update_profile(self, student_id: str, **fields) -> Optional[StudentDB]:
        """Update profile fields; risk_level is not accepted here."""
        unknown = set(fields) - set(self.PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown student fields: {sorted(unknown)}")
        try:
            stmt = select(StudentDB).where(StudentDB.id == student_id).with_for_update()
            student = self.db.execute(stmt).scalar_one_or_none()
            if not student:
                return None
            for name, value in fields.items():
                setattr(student, name, value)
            self.db.commit()
            self.db.refresh(student)
            return student
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update student: {e}", extra={"student_id": student_id})
            raise

    def deactivate(self, student_id: str) -> Optional[StudentDB]:
        try:
            student = self.get_by_id(student_id)
            if not student:
                return None
            student.is_active = False
            self.db.commit()
            self.db.refresh(student)
            logger.info("Student deactivated", extra={"student_id": student_id})
            return student
        except Exception:
            self.db.rollback()
            raise

    def set_risk_level(
        self,
        student_id: str,
        risk_level: Severity,
        all_flags_resolved_at: Optional[datetime] = None
    ) -> Optional[StudentDB]:
        """
        Persist the aggregated risk level. Only the risk level aggregator
        calls this.
        """
        try:
            stmt = select(StudentDB).where(StudentDB.id == student_id).with_for_update()
            student = self.db.execute(stmt).scalar_one_or_none()
            if not student:
                return None
            student.risk_level = _enum_value(risk_level, Severity)
            if all_flags_resolved_at is not None:
                student.last_all_flags_resolved_at = all_flags_resolved_at
            self.db.commit()
            self.db.refresh(student)
            return student
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to set risk level: {e}", extra={"student_id": student_id})
            raise

    def count_by_risk_level(self, school_id: str) -> Dict[str, int]:
        rows = (
            self.db.query(StudentDB.risk_level, func.count(StudentDB.id))
            .filter(StudentDB.school_id == school_id, StudentDB.is_active == True)  # noqa: E712
            .group_by(StudentDB.risk_level)
            .all()
        )
        counts = {s.value: 0 for s in Severity}
        counts.update({level: count for level, count in rows})
        return counts


class AttendanceRepository:
    """Repository for daily attendance"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_student_and_date(self, student_id: str, on: date) -> Optional[AttendanceDB]:
        return (
            self.db.query(AttendanceDB)
            .filter(AttendanceDB.student_id == student_id, AttendanceDB.date == on)
            .first()
        )

    def get_by_student_in_range(self, student_id: str, start: date, end: date) -> List[AttendanceDB]:
        """Records with start <= date <= end, oldest first"""
        return (
            self.db.query(AttendanceDB)
            .filter(
                AttendanceDB.student_id == student_id,
                AttendanceDB.date >= start,
                AttendanceDB.date <= end,
            )
            .order_by(AttendanceDB.date)
            .all()
        )

    def upsert(
        self,
        student_id: str,
        school_id: str,
        on: date,
        status: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[AttendanceDB, bool]:
        """
        Save the record for (student, date). An existing record is corrected
        in place with modified_by/modified_at stamped.

        Returns:
            (record, created)
        """
        now = now or utc_now()
        try:
            stmt = (
                select(AttendanceDB)
                .where(AttendanceDB.student_id == student_id, AttendanceDB.date == on)
                .with_for_update()
            )
            record = self.db.execute(stmt).scalar_one_or_none()
            created = record is None
            if created:
                record = AttendanceDB(
                    student_id=student_id,
                    school_id=school_id,
                    date=on,
                    status=status,
                    reason=reason,
                    notes=notes,
                    marked_by=actor_id,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(record)
            else:
                record.status = status
                record.reason = reason
                record.notes = notes
                record.modified_by = actor_id
                record.modified_at = now
            self.db.commit()
            self.db.refresh(record)
            return record, created
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to save attendance: {e}",
                extra={"student_id": student_id, "date": on.isoformat()}
            )
            raise


class PerformanceRepository:
    """Repository for assessment scores"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def create(
        self,
        student_id: str,
        school_id: str,
        subject: str,
        term: str,
        academic_year: str,
        score: float,
        max_score: float,
        grade: str,
        assessment_type: str = "EXAM",
        remarks: Optional[str] = None,
        entered_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PerformanceDB:
        now = now or utc_now()
        try:
            record = PerformanceDB(
                student_id=student_id,
                school_id=school_id,
                subject=subject,
                term=term,
                academic_year=academic_year,
                score=score,
                max_score=max_score,
                grade=grade,
                assessment_type=assessment_type,
                remarks=remarks,
                entered_by=entered_by,
                created_at=now,
                updated_at=now,
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            return record
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to save performance record: {e}",
                extra={"student_id": student_id, "subject": subject, "term": term}
            )
            raise

    def get_for_term(
        self,
        student_id: str,
        academic_year: str,
        term: str,
        subject: Optional[str] = None
    ) -> List[PerformanceDB]:
        """Records of one academic year/term, newest first"""
        query = self.db.query(PerformanceDB).filter(
            PerformanceDB.student_id == student_id,
            PerformanceDB.academic_year == academic_year,
            PerformanceDB.term == term,
        )
        if subject is not None:
            query = query.filter(PerformanceDB.subject == subject)
        return query.order_by(desc(PerformanceDB.created_at)).all()

    def get_since(self, student_id: str, since: datetime) -> List[PerformanceDB]:
        """Records created at or after `since`, newest first"""
        return (
            self.db.query(PerformanceDB)
            .filter(PerformanceDB.student_id == student_id, PerformanceDB.created_at >= since)
            .order_by(desc(PerformanceDB.created_at))
            .all()
        )


class SettingsRepository:
    """Repository for per-school risk rule documents"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_school(self, school_id: str) -> Optional[RiskRuleSettingsDB]:
        return (
            self.db.query(RiskRuleSettingsDB)
            .filter(RiskRuleSettingsDB.school_id == school_id)
            .first()
        )

    def get_or_create(self, school_id: str, default_rules: Optional[Dict[str, Any]] = None) -> RiskRuleSettingsDB:
        """
        Settings row for a school, created with `default_rules` on first access.
        """
        row = self.get_by_school(school_id)
        if row:
            return row
        try:
            row = RiskRuleSettingsDB(school_id=school_id, rules=default_rules or {})
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info("Default risk rules created", extra={"school_id": school_id})
            return row
        except Exception as e:
            self.db.rollback()
            # Another session may have created it concurrently
            row = self.get_by_school(school_id)
            if row:
                return row
            logger.error(f"Failed to create risk rules: {e}", extra={"school_id": school_id})
            raise

    def update(self, school_id: str, rules: Dict[str, Any], updated_by: Optional[str] = None) -> RiskRuleSettingsDB:
        row = self.get_or_create(school_id)
        try:
            row.rules = rules
            row.updated_by = updated_by
            self.db.commit()
            self.db.refresh(row)
            logger.info("Risk rules updated", extra={"school_id": school_id, "updated_by": updated_by})
            return row
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update risk rules: {e}", extra={"school_id": school_id})
            raise


class RiskFlagRepository:
    """Repository for risk flags"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _active_of_type(self, student_id: str, risk_type: RiskType):
        return (
            select(RiskFlagDB)
            .where(
                RiskFlagDB.student_id == student_id,
                RiskFlagDB.type == _enum_value(risk_type, RiskType),
                RiskFlagDB.is_active == True,  # noqa: E712
                RiskFlagDB.is_resolved == False,  # noqa: E712
            )
            .order_by(RiskFlagDB.created_at, RiskFlagDB.id)
        )

    def find_active(self, student_id: str, risk_type: RiskType, lock: bool = True) -> Optional[RiskFlagDB]:
        """
        Canonical (oldest) active and unresolved flag of a type.

        Uses SELECT FOR UPDATE when `lock` is set so concurrent sessions
        serialize on the same episode.
        """
        stmt = self._active_of_type(student_id, risk_type)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def find_all_active(self, student_id: str, risk_type: RiskType) -> List[RiskFlagDB]:
        return list(self.db.execute(self._active_of_type(student_id, risk_type)).scalars().all())

    def get_by_id(self, flag_id: str) -> Optional[RiskFlagDB]:
        return self.db.query(RiskFlagDB).filter(RiskFlagDB.id == flag_id).first()

    def create(
        self,
        student_id: str,
        school_id: str,
        risk_type: RiskType,
        severity: Severity,
        title: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
        auto_generated: bool = True,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> RiskFlagDB:
        now = now or utc_now()
        try:
            flag = RiskFlagDB(
                student_id=student_id,
                school_id=school_id,
                type=_enum_value(risk_type, RiskType),
                severity=_enum_value(severity, Severity),
                title=title,
                description=description,
                data=data,
                is_active=True,
                is_resolved=False,
                auto_generated=auto_generated,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            self.db.add(flag)
            self.db.commit()
            self.db.refresh(flag)
            return flag
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create risk flag: {e}", extra={
                "student_id": student_id,
                "risk_type": str(risk_type),
                "severity": str(severity),
            })
            raise

    UPDATABLE_FIELDS = ("severity", "title", "description", "data", "is_active")

    def update(
        self,
        flag_id: str,
        patch: Dict[str, Any],
        updated_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[RiskFlagDB]:
        """
        Overwrite fields of a flag in place with pessimistic locking.

        Args:
            flag_id: Flag to update
            patch: Subset of UPDATABLE_FIELDS
            updated_by: Actor id
            now: Update timestamp

        Returns:
            The updated flag, or None if it does not exist
        """
        unknown = set(patch) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Risk flag fields not updatable: {sorted(unknown)}")
        try:
            stmt = select(RiskFlagDB).where(RiskFlagDB.id == flag_id).with_for_update()
            flag = self.db.execute(stmt).scalar_one_or_none()
            if not flag:
                return None
            for name, value in patch.items():
                if name == "severity":
                    value = _enum_value(value, Severity)
                setattr(flag, name, value)
            flag.updated_by = updated_by
            flag.updated_at = now or utc_now()
            self.db.commit()
            self.db.refresh(flag)
            return flag
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update risk flag {flag_id}: {e}")
            raise

    def resolve(
        self,
        flag_id: str,
        resolved_by: Optional[str],
        resolution_notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[RiskFlagDB]:
        """Mark a flag resolved (pessimistic lock)"""
        now = now or utc_now()
        try:
            stmt = select(RiskFlagDB).where(RiskFlagDB.id == flag_id).with_for_update()
            flag = self.db.execute(stmt).scalar_one_or_none()
            if not flag:
                return None
            flag.is_active = False
            flag.is_resolved = True
            flag.resolved_at = now
            flag.resolved_by = resolved_by
            flag.resolution_notes = resolution_notes
            flag.updated_by = resolved_by
            flag.updated_at = now
            self.db.commit()
            self.db.refresh(flag)
            return flag
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to resolve risk flag {flag_id}: {e}")
            raise

    def bulk_resolve_active(
        self,
        student_id: str,
        risk_type: RiskType,
        resolved_by: Optional[str],
        resolution_notes: str,
        exclude_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> int:
        """
        Resolve every active and unresolved flag of a type for a student,
        except `exclude_id`.

        Returns:
            Number of flags resolved
        """
        now = now or utc_now()
        try:
            stmt = (
                update(RiskFlagDB)
                .where(
                    RiskFlagDB.student_id == student_id,
                    RiskFlagDB.type == _enum_value(risk_type, RiskType),
                    RiskFlagDB.is_active == True,  # noqa: E712
                    RiskFlagDB.is_resolved == False,  # noqa: E712
                )
                .values(
                    is_active=False,
                    is_resolved=True,
                    resolved_at=now,
                    resolved_by=resolved_by,
                    resolution_notes=resolution_notes,
                    updated_at=now,
                )
                .execution_options(synchronize_session="fetch")
            )
            if exclude_id is not None:
                stmt = stmt.where(RiskFlagDB.id != exclude_id)
            result = self.db.execute(stmt)
            self.db.commit()
            return result.rowcount or 0
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to bulk resolve risk flags: {e}",
                extra={"student_id": student_id, "risk_type": str(risk_type)}
            )
            raise

    def delete(self, flag_id: str) -> bool:
        try:
            flag = self.get_by_id(flag_id)
            if not flag:
                return False
            self.db.delete(flag)
            self.db.commit()
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete risk flag {flag_id}: {e}")
            raise

    def get_active_by_student(self, student_id: str) -> List[RiskFlagDB]:
        """Active and unresolved flags, oldest first"""
        return (
            self.db.query(RiskFlagDB)
            .filter(
                RiskFlagDB.student_id == student_id,
                RiskFlagDB.is_active == True,  # noqa: E712
                RiskFlagDB.is_resolved == False,  # noqa: E712
            )
            .order_by(RiskFlagDB.created_at, RiskFlagDB.id)
            .all()
        )

    def list(
        self,
        school_id: Optional[str] = None,
        student_id: Optional[str] = None,
        risk_type: Optional[RiskType] = None,
        severity: Optional[Severity] = None,
        include_resolved: bool = False
    ) -> List[RiskFlagDB]:
        query = self.db.query(RiskFlagDB)
        if school_id is not None:
            query = query.filter(RiskFlagDB.school_id == school_id)
        if student_id is not None:
            query = query.filter(RiskFlagDB.student_id == student_id)
        if risk_type is not None:
            query = query.filter(RiskFlagDB.type == _enum_value(risk_type, RiskType))
        if severity is not None:
            query = query.filter(RiskFlagDB.severity == _enum_value(severity, Severity))
        if not include_resolved:
            query = query.filter(
                RiskFlagDB.is_active == True,  # noqa: E712
                RiskFlagDB.is_resolved == False,  # noqa: E712
            )
        return query.order_by(desc(RiskFlagDB.created_at)).all()

    def count_active_by_school(self, school_id: str) -> Dict[str, Dict[str, int]]:
        """Active flag counts grouped by severity and by type"""
        rows = (
            self.db.query(RiskFlagDB.severity, RiskFlagDB.type, func.count(RiskFlagDB.id))
            .filter(
                RiskFlagDB.school_id == school_id,
                RiskFlagDB.is_active == True,  # noqa: E712
                RiskFlagDB.is_resolved == False,  # noqa: E712
            )
            .group_by(RiskFlagDB.severity, RiskFlagDB.type)
            .all()
        )
        by_severity = {s.value: 0 for s in Severity}
        by_type = {t.value: 0 for t in RiskType}
        total = 0
        for severity, risk_type, count in rows:
            by_severity[severity] += count
            by_type[risk_type] += count
            total += count
        return {"total": total, "by_severity": by_severity, "by_type": by_type}


class AdminNotificationRepository:
    """Repository for in-app admin notifications"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def find_recent_unread(
        self,
        student_id: str,
        notification_type: str,
        since: datetime
    ) -> Optional[AdminNotificationDB]:
        """Newest unread notification of a type for a student created at or after `since`"""
        return (
            self.db.query(AdminNotificationDB)
            .filter(
                AdminNotificationDB.student_id == student_id,
                AdminNotificationDB.type == notification_type,
                AdminNotificationDB.is_read == False,  # noqa: E712
                AdminNotificationDB.created_at >= since,
            )
            .order_by(desc(AdminNotificationDB.created_at))
            .first()
        )

    def create(
        self,
        school_id: str,
        student_id: Optional[str],
        notification_type: str,
        title: str,
        message: str,
        priority: str,
        risk_level: Optional[str] = None,
        risk_type: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> AdminNotificationDB:
        now = now or utc_now()
        try:
            notification = AdminNotificationDB(
                school_id=school_id,
                student_id=student_id,
                type=notification_type,
                title=title,
                message=message,
                priority=priority,
                risk_level=risk_level,
                risk_type=risk_type,
                created_at=now,
                updated_at=now,
            )
            self.db.add(notification)
            self.db.commit()
            self.db.refresh(notification)
            return notification
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create admin notification: {e}", extra={
                "school_id": school_id,
                "student_id": student_id,
            })
            raise

    def refresh_content(
        self,
        notification: AdminNotificationDB,
        title: str,
        message: str,
        priority: str,
        risk_level: Optional[str],
        risk_type: Optional[str],
        now: Optional[datetime] = None
    ) -> AdminNotificationDB:
        """Overwrite an unread notification with newer content"""
        try:
            notification.title = title
            notification.message = message
            notification.priority = priority
            notification.risk_level = risk_level
            notification.risk_type = risk_type
            notification.updated_at = now or utc_now()
            self.db.commit()
            self.db.refresh(notification)
            return notification
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update admin notification {notification.id}: {e}")
            raise

    def get_by_id(self, notification_id: str) -> Optional[AdminNotificationDB]:
        return self.db.query(AdminNotificationDB).filter(AdminNotificationDB.id == notification_id).first()

    def list_by_school(
        self,
        school_id: str,
        unread_only: bool = False,
        student_id: Optional[str] = None
    ) -> List[AdminNotificationDB]:
        query = self.db.query(AdminNotificationDB).filter(AdminNotificationDB.school_id == school_id)
        if unread_only:
            query = query.filter(AdminNotificationDB.is_read == False)  # noqa: E712
        if student_id is not None:
            query = query.filter(AdminNotificationDB.student_id == student_id)
        return query.order_by(desc(AdminNotificationDB.created_at)).all()

    def mark_read(self, notification_id: str, now: Optional[datetime] = None) -> Optional[AdminNotificationDB]:
        try:
            notification = self.get_by_id(notification_id)
            if not notification:
                return None
            notification.is_read = True
            notification.read_at = now or utc_now()
            self.db.commit()
            self.db.refresh(notification)
            return notification
        except Exception:
            self.db.rollback()
            raise
