"""
Database package for EduGuard

Provides:
- SQLAlchemy database configuration and session management
- Base model for ORM
- ORM models (StudentDB, RiskFlagDB, etc.)
- Repository pattern implementations
"""
from .config import (
    DatabaseConfig,
    get_db,
    get_db_config,
    get_db_session,
    get_session_factory,
    init_database,
)
from .base import Base

# ORM Models
from .models import (
    SchoolDB,
    StudentDB,
    AttendanceDB,
    PerformanceDB,
    RiskRuleSettingsDB,
    RiskFlagDB,
    AdminNotificationDB,
)

# Repositories
from .repositories import (
    SchoolRepository,
    StudentRepository,
    AttendanceRepository,
    PerformanceRepository,
    SettingsRepository,
    RiskFlagRepository,
    AdminNotificationRepository,
)

__all__ = [
    # Configuration
    "DatabaseConfig",
    "get_db",
    "get_db_config",
    "get_db_session",
    "get_session_factory",
    "init_database",
    "Base",
    # ORM Models
    "SchoolDB",
    "StudentDB",
    "AttendanceDB",
    "PerformanceDB",
    "RiskRuleSettingsDB",
    "RiskFlagDB",
    "AdminNotificationDB",
    # Repositories
    "SchoolRepository",
    "StudentRepository",
    "AttendanceRepository",
    "PerformanceRepository",
    "SettingsRepository",
    "RiskFlagRepository",
    "AdminNotificationRepository",
]
