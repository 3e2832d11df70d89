import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError

logger = logging.getLogger(__name__)


class ScheduledTimer:
    """One scheduler job owned by one object.

    ``start()`` replaces whatever job this timer already owns, ``stop()`` is
    idempotent, and leaving a ``with`` block always releases the job.
    Callbacks must be coroutine functions so they run on the event loop.
    """

    def __init__(
        self,
        scheduler,
        func: Callable[[], Awaitable[None]],
        *,
        seconds: float,
        name: str,
        repeat: bool = True,
    ):
        self._scheduler = scheduler
        self._func = func
        self.seconds = seconds
        self.name = name
        self.repeat = repeat
        self._job_id: str | None = None

    @property
    def active(self) -> bool:
        if self._job_id is None:
            return False
        return self._scheduler.get_job(self._job_id) is not None

    def start(self) -> None:
        self.stop()
        job_id = f"{self.name}:{uuid.uuid4().hex[:8]}"
        if self.repeat:
            self._scheduler.add_job(
                self._func, "interval", seconds=self.seconds, id=job_id, name=self.name,
                max_instances=1, coalesce=True,
            )
        else:
            self._scheduler.add_job(
                self._func, "date", run_date=datetime.now() + timedelta(seconds=self.seconds),
                id=job_id, name=self.name,
            )
        self._job_id = job_id
        logger.debug(f"Timer started: {job_id} ({'every' if self.repeat else 'after'} {self.seconds}s)")

    def stop(self) -> None:
        if self._job_id is None:
            return
        job_id, self._job_id = self._job_id, None
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            # one-shot timers drop out of the job store once they fire
            pass

    def __enter__(self) -> "ScheduledTimer":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
