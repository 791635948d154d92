"""
FastAPI dependencies: database session, clock, notification plumbing,
acting user and service builders.

Tests override these with app.dependency_overrides.
"""
import threading
from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.constants import SYSTEM_ACTOR_ID
from ..core.records import RecordService
from ..core.risk_detection import RiskDetectionService
from ..core.settings_provider import RiskSettingsProvider
from ..database.config import get_db, get_session_factory
from ..database.repositories import AdminNotificationRepository, SchoolRepository
from ..notifications.dispatcher import Dispatcher, get_dispatcher
from ..notifications.guardian import MessageTransport, create_transport_from_env

__all__ = [
    "get_db",
    "get_session_maker",
    "get_clock",
    "get_notification_dispatcher",
    "get_message_transport",
    "get_actor_id",
    "get_detection_service",
    "get_record_service",
    "get_settings_provider",
    "get_school_repository",
    "get_notification_repository",
]

_clock = Clock()
_transport: Optional[MessageTransport] = None
_transport_lock = threading.Lock()


def get_session_maker() -> Callable[[], Session]:
    """Session factory for work that outlives the request (background tasks)"""
    return get_session_factory()


def get_clock() -> Clock:
    return _clock


def get_notification_dispatcher() -> Dispatcher:
    return get_dispatcher()


def get_message_transport() -> MessageTransport:
    global _transport
    if _transport is None:
        with _transport_lock:
            if _transport is None:
                _transport = create_transport_from_env()
    return _transport


def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> str:
    """Acting user id from the X-Actor-Id header; no authentication is performed."""
    return x_actor_id or SYSTEM_ACTOR_ID


def get_detection_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: Dispatcher = Depends(get_notification_dispatcher),
    transport: MessageTransport = Depends(get_message_transport),
) -> RiskDetectionService:
    return RiskDetectionService(db, clock, dispatcher, transport)


def get_record_service(
    detection: RiskDetectionService = Depends(get_detection_service),
) -> RecordService:
    return RecordService(detection)


def get_settings_provider(db: Session = Depends(get_db)) -> RiskSettingsProvider:
    return RiskSettingsProvider(db)


def get_school_repository(db: Session = Depends(get_db)) -> SchoolRepository:
    return SchoolRepository(db)


def get_notification_repository(db: Session = Depends(get_db)) -> AdminNotificationRepository:
    return AdminNotificationRepository(db)
