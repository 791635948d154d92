"""
Fire-and-forget task dispatch for guardian notifications

Submitted tasks never propagate errors to the submitter: failures are
logged with the task description and counted.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from ..core.constants import DEFAULT_NOTIFICATION_WORKERS
from ..core.metrics import notifications_total

logger = logging.getLogger(__name__)


def _run_logged(fn: Callable[..., Any], description: str, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as e:
        notifications_total.labels(channel="guardian", status="error").inc()
        logger.error(
            f"Background task failed: {description}: {e}",
            extra={"task": description},
            exc_info=True,
        )


class Dispatcher:
    """Interface: hand off a callable without waiting for it"""

    def submit(self, fn: Callable[..., Any], *args, description: str = "task", **kwargs) -> Optional[Future]:
        raise NotImplementedError

    def shutdown(self, wait: bool = True) -> None:
        pass


class BackgroundDispatcher(Dispatcher):
    """Runs tasks on a small thread pool"""

    def __init__(self, max_workers: int = DEFAULT_NOTIFICATION_WORKERS):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="eduguard-notify",
        )
        logger.info("BackgroundDispatcher initialized", extra={"max_workers": max_workers})

    def submit(self, fn: Callable[..., Any], *args, description: str = "task", **kwargs) -> Optional[Future]:
        try:
            return self._executor.submit(_run_logged, fn, description, *args, **kwargs)
        except RuntimeError as e:
            # Executor already shut down (process exiting)
            logger.warning(f"Dropped background task {description}: {e}")
            return None

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineDispatcher(Dispatcher):
    """
    Runs tasks immediately on the calling thread with the same error
    contract as BackgroundDispatcher. Used by tests.
    """

    def __init__(self):
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], *args, description: str = "task", **kwargs) -> Optional[Future]:
        self.submitted += 1
        _run_logged(fn, description, *args, **kwargs)
        return None


_dispatcher: Optional[Dispatcher] = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> Dispatcher:
    """Process-wide BackgroundDispatcher (double-checked locking)"""
    global _dispatcher
    if _dispatcher is None:
        with _dispatcher_lock:
            if _dispatcher is None:
                _dispatcher = BackgroundDispatcher()
    return _dispatcher


def shutdown_dispatcher(wait: bool = True) -> None:
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is not None:
            _dispatcher.shutdown(wait=wait)
            _dispatcher = None
