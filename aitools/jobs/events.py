"""In-process job change feed used by the in-memory store.

Plays the role Supabase realtime plays in production: every row change is
pushed to the listeners registered for that job id.
"""

import asyncio
import logging
import threading
from collections import defaultdict
from typing import Dict, List, Tuple

from aitools.jobs.models import JobRecord

logger = logging.getLogger(__name__)

_Listener = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[JobRecord]"]


class JobEventBus:
    def __init__(self):
        self._listeners: Dict[str, List[_Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def listen(self, job_id: str) -> "asyncio.Queue[JobRecord]":
        """Register a queue on the running loop that receives every change of ``job_id``."""
        queue: "asyncio.Queue[JobRecord]" = asyncio.Queue()
        loop = asyncio.get_running_loop()
        with self._lock:
            self._listeners[job_id].append((loop, queue))
        return queue

    def unlisten(self, job_id: str, queue: "asyncio.Queue[JobRecord]") -> None:
        with self._lock:
            remaining = [(lp, q) for lp, q in self._listeners.get(job_id, []) if q is not queue]
            if remaining:
                self._listeners[job_id] = remaining
            else:
                self._listeners.pop(job_id, None)

    def publish(self, job: JobRecord) -> None:
        # Publishers may run on another thread (e.g. a TestClient portal).
        with self._lock:
            listeners = list(self._listeners.get(job.id, []))
        for loop, queue in listeners:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, job)
            except RuntimeError:
                logger.debug("Dropping listener on closed loop job_id=%s", job.id)
                self.unlisten(job.id, queue)

    def listener_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(job_id, []))
