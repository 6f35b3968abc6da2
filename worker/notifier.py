"""
User-facing sync notices.

The sync engine, monitor and session report outcomes as SyncNotice values to
a notifier callable. An application passes its own notifier (toast, status
bar); the default one writes notices to the log.
"""

from dataclasses import dataclass
from typing import Callable

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Notice")

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class SyncNotice:
    title: str
    message: str
    level: str = INFO


Notifier = Callable[[SyncNotice], None]


def log_notifier(notice: SyncNotice) -> None:
    """Default notifier: write the notice to the FieldSync log."""
    text = f"{notice.title}: {notice.message}"
    if notice.level == ERROR:
        log_error(text)
    elif notice.level == WARNING:
        log_warn(text)
    else:
        log_info(text)


def emit(notifier: Notifier, title: str, message: str, level: str = INFO) -> None:
    """Send a notice; a failing notifier is logged and never breaks a sync."""
    try:
        notifier(SyncNotice(title=title, message=message, level=level))
    except Exception as e:
        log_warn(f"Notifier failed for '{title}': {e}")


__all__ = [
    'INFO',
    'SUCCESS',
    'WARNING',
    'ERROR',
    'SyncNotice',
    'Notifier',
    'log_notifier',
    'emit',
]
