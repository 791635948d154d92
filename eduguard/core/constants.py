"""
Shared constants and environment-driven defaults
"""
import os
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current UTC timestamp"""
    return datetime.now(timezone.utc)


# Settings cache
DEFAULT_SETTINGS_CACHE_TTL_SECONDS = int(os.getenv("SETTINGS_CACHE_TTL_SECONDS", "300"))
DEFAULT_SETTINGS_CACHE_MAX_SIZE = int(os.getenv("SETTINGS_CACHE_MAX_SIZE", "500"))

# Guardian notification dispatch
DEFAULT_NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "4"))
GUARDIAN_GATEWAY_URL = os.getenv("GUARDIAN_GATEWAY_URL", "")
GUARDIAN_GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GUARDIAN_GATEWAY_TIMEOUT_SECONDS", "10"))

# Admin notifications: an unread alert for the same student inside this
# window is refreshed instead of duplicated
ADMIN_NOTIFICATION_DEDUP_HOURS = 24

# Weekly attendance: Monday to Friday
SCHOOL_DAYS_PER_WEEK = 5
WEEKLY_CRITICAL_ABSENCES = 4
WEEKLY_HIGH_ABSENCES = 3
WEEKLY_MEDIUM_ABSENCES = 2

# Monthly attendance (30 calendar days, about 20 school days)
MONTHLY_WINDOW_DAYS = 30
MONTHLY_EXPECTED_SCHOOL_DAYS = 20
MONTHLY_CRITICAL_ABSENCES = 12
MONTHLY_HIGH_ABSENCES = 10
MONTHLY_MEDIUM_ABSENCES = 6

# Term performance, inclusive upper bounds on the rounded percentage
TERM_CRITICAL_MAX_PERCENT = 29.9
TERM_HIGH_MAX_PERCENT = 39.9
TERM_MEDIUM_MAX_PERCENT = 49.9
TERM_FAILING_THRESHOLD = 40.0
TERM_BELOW_AVERAGE_THRESHOLD = 50.0

# Yearly performance average
AVERAGE_HIGH_MAX_PERCENT = 39.0
AVERAGE_CRITICAL_MAX_PERCENT = 30.0
DECLINE_MAX_CURRENT_PERCENT = 50.0
DECLINE_MIN_DROP_POINTS = 20.0

# Distance to school (km)
DISTANCE_CRITICAL_KM = 7.0
DISTANCE_HIGH_KM = 5.0
DISTANCE_MEDIUM_KM = 3.0

SYSTEM_ACTOR_ID = "system"
