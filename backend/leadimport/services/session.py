"""
Bulk upload session: one operator working one spreadsheet through the import.

Flow:
1. select_file()  - inspect the file, build the worksheet selection
2. toggle_sheet() / select_all_sheets() / clear_all_sheets()
3. submit()       - queue the import job and start polling it
4. poll results   - arrive on the scheduler until the job is terminal

Choosing a new file at any point discards the running import. The session
owns every timer it starts; leaving ``async with`` releases them all.
"""

import logging
import random
from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from leadimport.config import settings
from leadimport.schemas.bulk_upload import (
    FormField,
    ImportJobCreated,
    ImportResult,
    JobStatusSnapshot,
    TemplateFormat,
    UploadAnalysis,
)
from leadimport.services.import_client import ImportAPIError, LeadImportClient
from leadimport.services.pipeline import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    PipelineState,
    PipelineStateMachine,
)
from leadimport.services.poller import JobStatusPoller
from leadimport.services.progress import ProgressEstimator
from leadimport.services.results import build_import_result, legacy_import_result
from leadimport.services.sheets import PreviewRow, SheetSelector
from leadimport.services.templates import build_csv_template, build_xlsx_template

logger = logging.getLogger(__name__)

ANALYSIS_FAILED = "Failed to analyze file. Please try again."
UPLOAD_FAILED = "Upload failed. Please try again."
STATUS_FAILED = "Failed to fetch import status. Please try again."
JOB_FAILED = "Bulk upload failed. Please review the errors and try again."


@dataclass(frozen=True)
class SelectedFile:
    filename: str
    content: bytes


class BulkUploadSession:
    def __init__(
        self,
        client: LeadImportClient | None = None,
        scheduler=None,
        *,
        source: str | None = None,
        poll_interval: float | None = None,
        rng: random.Random | None = None,
    ):
        self.client = client or LeadImportClient()
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self._machine = PipelineStateMachine(on_change=self._on_state_change)
        self.progress = ProgressEstimator(self._scheduler, rng=rng)
        self._poller = JobStatusPoller(
            self.client,
            self._scheduler,
            on_snapshot=self._handle_snapshot,
            on_error=self._handle_poll_error,
            interval=poll_interval,
        )
        self.source = source or settings.DEFAULT_SOURCE
        self.form_id: str | None = None
        self.form_fields: list[FormField] = []

        self.file: SelectedFile | None = None
        self.analysis: UploadAnalysis | None = None
        self._sheets: SheetSelector | None = None
        self.job: ImportJobCreated | None = None
        self.snapshot: JobStatusSnapshot | None = None
        self.result: ImportResult | None = None
        self.error: str | None = None
        # bumped on every new file so late responses for an old one are dropped
        self._generation = 0

    async def __aenter__(self) -> "BulkUploadSession":
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()
        return self

    async def __aexit__(self, *exc) -> None:
        self.dispose()

    def dispose(self) -> None:
        self._poller.stop()
        self.progress.dispose()
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # ========================
    # State
    # ========================

    @property
    def state(self) -> PipelineState:
        return self._machine.state

    @property
    def history(self) -> list[PipelineState]:
        return list(self._machine.history)

    @property
    def is_polling(self) -> bool:
        return self._poller.active

    @property
    def validation_message(self) -> str | None:
        if self.file is None:
            return "Please select a file first"
        if self.state == PipelineState.ANALYZING:
            return "File analysis in progress. Please wait."
        if self._machine.is_active:
            return "An import is already in progress."
        if self._sheets is None:
            return "Please select a file first"
        return self._sheets.validation_message

    @property
    def can_submit(self) -> bool:
        return self.validation_message is None

    def _on_state_change(self, previous: PipelineState, target: PipelineState) -> None:
        if target in ACTIVE_STATES:
            if previous not in ACTIVE_STATES:
                self.progress.start()
        elif target in TERMINAL_STATES:
            self.progress.finish()
        elif previous in ACTIVE_STATES:
            self.progress.cancel()

    def _teardown_job(self) -> None:
        self._poller.stop()
        self.progress.cancel()
        self.job = None
        self.snapshot = None
        self.result = None

    def _clear_analysis(self) -> None:
        self.analysis = None
        self._sheets = None

    def reset(self) -> None:
        self._generation += 1
        self._teardown_job()
        self._clear_analysis()
        self.file = None
        self.error = None
        if self.state != PipelineState.IDLE:
            self._machine.transition(PipelineState.IDLE)

    # ========================
    # File analysis
    # ========================

    async def select_file(self, filename: str, content: bytes) -> UploadAnalysis | None:
        self._generation += 1
        generation = self._generation
        self._teardown_job()
        self._clear_analysis()
        self.error = None
        self.file = SelectedFile(filename=filename, content=content)
        self._machine.transition(PipelineState.ANALYZING)

        if not content:
            self._analysis_failed(generation, "Selected file is empty.")
            return None
        try:
            analysis = await self.client.inspect_bulk_upload(filename, content)
        except ImportAPIError as e:
            self._analysis_failed(generation, e.message or ANALYSIS_FAILED)
            return None

        if generation != self._generation:
            logger.warning(f"Discarding analysis of superseded file {filename}")
            return None
        self.analysis = analysis
        self._sheets = SheetSelector(analysis)
        self._machine.transition(PipelineState.READY)
        logger.info(
            f"Analyzed {filename}: {analysis.file_kind}, {len(analysis.sheet_names)} sheet(s), "
            f"preview {'on' if analysis.preview_available else 'off'}"
        )
        return analysis

    def _analysis_failed(self, generation: int, message: str) -> None:
        if generation != self._generation:
            return
        logger.warning(f"File analysis failed: {message}")
        self.error = message
        self.file = None
        self._clear_analysis()
        self._machine.transition(PipelineState.IDLE)

    # ========================
    # Worksheet selection & preview
    # ========================

    def _require_sheets(self) -> SheetSelector:
        if self._sheets is None:
            raise ValueError("No analyzed file; select a file first")
        return self._sheets

    @property
    def sheet_names(self) -> list[str]:
        return self._sheets.sheet_names if self._sheets else []

    @property
    def selected_sheets(self) -> list[str]:
        return self._sheets.selected if self._sheets else []

    def toggle_sheet(self, sheet_name: str) -> bool:
        return self._require_sheets().toggle(sheet_name)

    def select_all_sheets(self) -> None:
        self._require_sheets().select_all()

    def clear_all_sheets(self) -> None:
        self._require_sheets().clear_all()

    @property
    def preview_rows(self) -> list[PreviewRow]:
        return self._sheets.preview_rows if self._sheets else []

    @property
    def preview_columns(self) -> list[str]:
        return self._sheets.preview_columns if self._sheets else []

    # ========================
    # Import metadata & templates
    # ========================

    def set_source(self, source: str) -> None:
        self.source = source.strip() or settings.DEFAULT_SOURCE

    async def set_form(self, form_id: str | None) -> list[FormField]:
        self.form_id = form_id or None
        self.form_fields = []
        if self.form_id:
            try:
                self.form_fields = await self.client.get_form_fields(self.form_id)
            except ImportAPIError as e:
                logger.warning(f"Could not load fields for form {self.form_id}: {e.message}")
                self.error = e.message
        return self.form_fields

    def template(self, format: TemplateFormat = "csv") -> tuple[str, bytes]:
        if format == "xlsx":
            return "lead_template.xlsx", build_xlsx_template(self.form_fields)
        return "lead_template.csv", build_csv_template(self.form_fields).encode("utf-8-sig")

    # ========================
    # Submission & polling
    # ========================

    async def submit(self) -> bool:
        message = self.validation_message
        if message:
            self.error = message
            return False

        sheets = self._require_sheets()
        self._teardown_job()
        self.error = None
        generation = self._generation
        upload_token = self.analysis.upload_token if self.analysis else None
        self._machine.transition(PipelineState.SUBMITTING)

        try:
            response = await self.client.bulk_upload(
                source=self.source,
                upload_token=upload_token,
                file=None if upload_token else (self.file.filename, self.file.content),
                form_id=self.form_id,
                selected_sheets=sheets.selected if sheets.is_excel else None,
            )
        except ImportAPIError as e:
            if generation != self._generation:
                return False
            logger.warning(f"Import submission failed: {e.message}")
            self.error = e.message or UPLOAD_FAILED
            self._teardown_job()
            self._machine.transition(PipelineState.READY)
            return False

        if generation != self._generation:
            logger.warning("Discarding submission response for superseded file")
            return False

        if isinstance(response, ImportJobCreated):
            self.job = response
            logger.info(f"Import job {response.job_id} queued (batch {response.batch_id})")
            target = PipelineState.PROCESSING if response.status == "processing" else PipelineState.QUEUED
            self._machine.transition(target)
            await self._poller.start(response.job_id)
            # the first fetch may already have failed the job or finished it
            return self._machine.is_active or self._machine.is_terminal

        # no job id: the service already ran the import inline
        self.result = legacy_import_result(response)
        logger.info(f"Import finished inline: {self.result.message}")
        self._machine.transition(PipelineState.COMPLETED)
        return True

    def _handle_snapshot(self, snapshot: JobStatusSnapshot) -> None:
        if self.job is None or not self._machine.is_active:
            logger.warning(f"Ignoring job status '{snapshot.status}' outside an active import")
            return
        self.snapshot = snapshot

        if snapshot.status == "processing":
            self._machine.transition(PipelineState.PROCESSING)
            return
        if snapshot.status == "queued":
            if self.state != PipelineState.PROCESSING:
                self._machine.transition(PipelineState.QUEUED)
            return

        self.result = build_import_result(snapshot, self.job)
        if snapshot.status == "failed":
            self.error = snapshot.message or JOB_FAILED
            logger.warning(f"Import job {self.job.job_id} failed: {self.error}")
            self._machine.transition(PipelineState.FAILED)
        else:
            logger.info(f"Import job {self.job.job_id} completed: {self.result.message}")
            self._machine.transition(PipelineState.COMPLETED)

    def _handle_poll_error(self, error: ImportAPIError) -> None:
        if not self._machine.is_active:
            return
        self.error = error.message or STATUS_FAILED
        self._machine.transition(PipelineState.READY)
