"""
Install Events
Ordered status events for one install: downloading -> extracting -> complete | failed
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class InstallStatus(Enum):
    DOWNLOADING = 'downloading'
    EXTRACTING = 'extracting'
    COMPLETE = 'complete'
    FAILED = 'failed'

    @property
    def terminal(self):
        return self in (InstallStatus.COMPLETE, InstallStatus.FAILED)


@dataclass(frozen=True)
class InstallEvent:
    """One status change.

    progress is a fraction in [0, 1] while downloading, or None when the
    server did not report a size. attempt_failed marks a download source
    that failed before the next one is tried.
    """
    slug: str
    status: InstallStatus
    progress: Optional[float] = None
    downloaded: int = 0
    total: Optional[int] = None
    source_kind: Optional[str] = None
    attempt_failed: bool = False
    reason: Optional[str] = None

    def to_dict(self):
        return {
            'slug': self.slug,
            'status': self.status.value,
            'progress': self.progress,
            'downloaded': self.downloaded,
            'total': self.total,
            'source_kind': self.source_kind,
            'attempt_failed': self.attempt_failed,
            'reason': self.reason,
        }


class InstallEventStream:
    def __init__(self, slug):
        """Event stream for a single install.

        Listeners are called synchronously on the emitting thread; a
        consumer on another thread can iterate the stream instead.
        """
        self.slug = slug
        self.events = []
        self._listeners = []
        self._queue = queue.Queue()
        self._lock = threading.Lock()

    def subscribe(self, listener):
        with self._lock:
            self._listeners.append(listener)
        return listener

    def emit(self, status, **details):
        event = InstallEvent(self.slug, status, **details)
        with self._lock:
            self.events.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)
        self._queue.put(event)
        return event

    @property
    def finished(self):
        return bool(self.events) and self.events[-1].status.terminal

    def __iter__(self):
        """Yield events as they arrive until the terminal one."""
        while True:
            event = self._queue.get()
            yield event
            if event.status.terminal:
                return
