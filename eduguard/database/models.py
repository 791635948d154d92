"""
SQLAlchemy ORM models for persistence

Models:
- SchoolDB: Schools (tenants of the risk rules)
- StudentDB: Learner profiles with socio-economic data and overall risk level
- AttendanceDB: One record per student per calendar date
- PerformanceDB: Assessment scores with derived letter grade
- RiskRuleSettingsDB: Per-school risk rule document
- RiskFlagDB: Detected or manually raised risk flags
- AdminNotificationDB: In-app notifications for school admins
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Float, ForeignKey, Index,
    Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .base import Base, BaseModel


class JSONBCompatible(TypeDecorator):
    """
    A JSON type that uses JSONB on PostgreSQL and JSON on other databases (e.g., SQLite).
    Tests run on SQLite while production uses PostgreSQL.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


_SEVERITY_VALUES = "('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')"


class SchoolDB(Base, BaseModel):
    """Database model for schools"""

    __tablename__ = "schools"

    name = Column(String(255), nullable=False)
    district = Column(String(100), nullable=True)
    sector = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, server_default='true', nullable=False)

    students = relationship("StudentDB", back_populates="school")


class StudentDB(Base, BaseModel):
    """
    Database model for student profiles

    risk_level is written only by the risk level aggregator. Students are
    never deleted, only deactivated.
    """

    __tablename__ = "students"

    school_id = Column(String(36), ForeignKey("schools.id", ondelete="RESTRICT"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    class_name = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, server_default='true', nullable=False)

    # Socio-economic profile
    ubudehe_level = Column(Integer, nullable=True)
    has_parents = Column(Boolean, nullable=True)
    family_stability = Column(Boolean, nullable=True)
    distance_to_school_km = Column(Float, nullable=True)

    # [{"name", "relation", "phone", "email", "is_primary"}]
    guardian_contacts = Column(JSONBCompatible, default=list, nullable=False)

    # Risk state
    risk_level = Column(String(20), default="LOW", server_default='LOW', nullable=False)
    last_all_flags_resolved_at = Column(DateTime(timezone=True), nullable=True)

    school = relationship("SchoolDB", back_populates="students")
    risk_flags = relationship("RiskFlagDB", back_populates="student")

    __table_args__ = (
        Index('idx_student_school_active', 'school_id', 'is_active'),
        Index('idx_student_school_risk', 'school_id', 'risk_level'),
        CheckConstraint(f"risk_level IN {_SEVERITY_VALUES}", name='ck_student_risk_level_valid'),
        CheckConstraint(
            "ubudehe_level IS NULL OR (ubudehe_level >= 1 AND ubudehe_level <= 4)",
            name='ck_student_ubudehe_range'
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AttendanceDB(Base, BaseModel):
    """Database model for daily attendance; one row per student per date"""

    __tablename__ = "attendance_records"

    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(String(36), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False)
    reason = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    marked_by = Column(String(100), nullable=True)

    # Administrative correction audit
    modified_by = Column(String(100), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('student_id', 'date', name='uq_attendance_student_date'),
        Index('idx_attendance_school_date', 'school_id', 'date'),
        CheckConstraint(
            "status IN ('PRESENT', 'ABSENT', 'LATE', 'EXCUSED')",
            name='ck_attendance_status_valid'
        ),
    )


class PerformanceDB(Base, BaseModel):
    """Database model for assessment scores; grade is derived at write time"""

    __tablename__ = "performance_records"

    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(String(36), nullable=False, index=True)
    subject = Column(String(100), nullable=False)
    term = Column(String(10), nullable=False)
    academic_year = Column(String(9), nullable=False)
    score = Column(Float, nullable=False)
    max_score = Column(Float, default=100, nullable=False)
    grade = Column(String(1), nullable=False)
    assessment_type = Column(String(20), default="EXAM", nullable=False)
    remarks = Column(Text, nullable=True)
    entered_by = Column(String(100), nullable=True)

    __table_args__ = (
        Index('idx_performance_student_term', 'student_id', 'academic_year', 'term', 'subject'),
        CheckConstraint("max_score >= 1", name='ck_performance_max_score_min'),
        CheckConstraint("score >= 0", name='ck_performance_score_min'),
        CheckConstraint("term IN ('TERM_1', 'TERM_2', 'TERM_3')", name='ck_performance_term_valid'),
    )


class RiskRuleSettingsDB(Base, BaseModel):
    """
    Per-school risk rule document

    school_id has no foreign key: settings are created on first access
    for any school id the engine is asked about.
    """

    __tablename__ = "risk_rule_settings"

    school_id = Column(String(36), nullable=False, unique=True, index=True)
    rules = Column(JSONBCompatible, default=dict, nullable=False)
    updated_by = Column(String(100), nullable=True)


class RiskFlagDB(Base, BaseModel):
    """
    Database model for student risk flags

    At most one flag per (student_id, type) is active and unresolved at a
    time; the reconciler enforces it.
    """

    __tablename__ = "risk_flags"

    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(String(36), nullable=False, index=True)

    type = Column(String(20), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    data = Column(JSONBCompatible, nullable=True)  # evidence document, see models.risk

    is_active = Column(Boolean, default=True, server_default='true', nullable=False)
    is_resolved = Column(Boolean, default=False, server_default='false', nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(100), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    auto_generated = Column(Boolean, default=True, server_default='true', nullable=False)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)

    student = relationship("StudentDB", back_populates="risk_flags")

    __table_args__ = (
        # Query: active flag of a type for a student
        Index('idx_flag_student_type_state', 'student_id', 'type', 'is_active', 'is_resolved'),
        # Query: school dashboard
        Index('idx_flag_school_state', 'school_id', 'is_active', 'is_resolved'),
        CheckConstraint(
            "type IN ('ATTENDANCE', 'PERFORMANCE', 'SOCIOECONOMIC', 'DISTANCE', 'COMBINED')",
            name='ck_flag_type_valid'
        ),
        CheckConstraint(f"severity IN {_SEVERITY_VALUES}", name='ck_flag_severity_valid'),
    )


class AdminNotificationDB(Base, BaseModel):
    """In-app notification shown to the school's admins"""

    __tablename__ = "admin_notifications"

    school_id = Column(String(36), nullable=False, index=True)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(String(30), default="STUDENT_AT_RISK", nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(10), default="MEDIUM", nullable=False)
    risk_level = Column(String(20), nullable=True)
    risk_type = Column(String(20), nullable=True)
    is_read = Column(Boolean, default=False, server_default='false', nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_notification_school_read', 'school_id', 'is_read'),
        Index('idx_notification_student_type', 'student_id', 'type', 'is_read'),
        CheckConstraint(
            "priority IN ('LOW', 'MEDIUM', 'HIGH', 'URGENT')",
            name='ck_notification_priority_valid'
        ),
        CheckConstraint(
            "type IN ('STUDENT_AT_RISK', 'GENERAL')",
            name='ck_notification_type_valid'
        ),
    )
