"""
Notification dispatch: admin in-app notifications and guardian alerts
"""
from .admin import AdminNotifier
from .dispatcher import BackgroundDispatcher, Dispatcher, InlineDispatcher, get_dispatcher
from .guardian import (
    GuardianMessage,
    GuardianNotifier,
    HttpGatewayTransport,
    LoggingTransport,
    MessageTransport,
    create_transport_from_env,
)

__all__ = [
    "AdminNotifier",
    "BackgroundDispatcher",
    "Dispatcher",
    "InlineDispatcher",
    "get_dispatcher",
    "GuardianMessage",
    "GuardianNotifier",
    "HttpGatewayTransport",
    "LoggingTransport",
    "MessageTransport",
    "create_transport_from_env",
]
