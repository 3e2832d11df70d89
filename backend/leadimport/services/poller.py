import logging
from collections.abc import Callable

from leadimport.config import settings
from leadimport.schemas.bulk_upload import JobStatusSnapshot
from leadimport.services.import_client import ImportAPIError, LeadImportClient
from leadimport.services.timers import ScheduledTimer

logger = logging.getLogger(__name__)


class JobStatusPoller:
    """Polls one import job until it reaches a terminal status.

    Only one job is watched at a time; ``start()`` drops whatever job was
    being watched before. Fetch errors stop polling and are reported through
    ``on_error`` rather than retried.
    """

    def __init__(
        self,
        client: LeadImportClient,
        scheduler,
        *,
        on_snapshot: Callable[[JobStatusSnapshot], None],
        on_error: Callable[[ImportAPIError], None],
        interval: float | None = None,
    ):
        self._client = client
        self._scheduler = scheduler
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self.interval = interval or settings.JOB_POLL_INTERVAL_SECONDS
        self._job_id: str | None = None
        self._timer: ScheduledTimer | None = None

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def active(self) -> bool:
        return self._timer is not None

    async def start(self, job_id: str) -> None:
        self.stop()
        self._job_id = job_id
        self._timer = ScheduledTimer(
            self._scheduler,
            self._tick,
            seconds=self.interval,
            name=f"import-job-poll:{job_id}",
        )
        self._timer.start()
        logger.info(f"Polling import job {job_id} every {self.interval}s")
        # first fetch goes out now, ahead of the first interval tick
        await self.fetch(job_id)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
            logger.info(f"Stopped polling import job {self._job_id}")
        self._job_id = None

    async def _tick(self) -> None:
        if self._job_id is not None:
            await self.fetch(self._job_id)

    async def fetch(self, job_id: str) -> None:
        try:
            snapshot = await self._client.get_import_job_status(job_id)
        except ImportAPIError as e:
            if job_id != self._job_id:
                logger.warning(f"Ignoring status error for superseded job {job_id}: {e.message}")
                return
            logger.error(f"Failed to fetch import job status for {job_id}: {e.message}")
            self.stop()
            self._on_error(e)
            return

        if job_id != self._job_id:
            logger.warning(f"Ignoring status for superseded job {job_id}")
            return

        logger.info(f"Import job {job_id} status: {snapshot.status}")
        if snapshot.is_terminal:
            self.stop()
        self._on_snapshot(snapshot)
