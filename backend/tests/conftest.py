import io
import itertools
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="leadimport-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/test.db")
os.environ.setdefault("UPLOAD_STAGING_DIR", os.path.join(_TMP_DIR, "uploads"))
os.environ.setdefault("DEBUG", "false")

import httpx  # noqa: E402
import pytest  # noqa: E402
from apscheduler.jobstores.base import JobLookupError  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from openpyxl import Workbook  # noqa: E402

from leadimport.main import app  # noqa: E402
from leadimport.services.import_client import LeadImportClient  # noqa: E402


class FakeJob:
    def __init__(self, func, trigger, job_id, name, kwargs):
        self.func = func
        self.trigger = trigger
        self.id = job_id
        self.name = name
        self.kwargs = kwargs


class FakeScheduler:
    """Records scheduler jobs; tests fire them by name instead of waiting."""

    running = True

    def __init__(self):
        self.jobs: dict[str, FakeJob] = {}
        self.added: list[FakeJob] = []

    def add_job(self, func, trigger, id=None, name=None, **kwargs):
        job = FakeJob(func, trigger, id, name, kwargs)
        self.jobs[id] = job
        self.added.append(job)
        return job

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def named(self, prefix: str) -> list[FakeJob]:
        return [job for job in self.jobs.values() if job.name and job.name.startswith(prefix)]

    async def fire(self, prefix: str) -> int:
        fired = 0
        for job in self.named(prefix):
            if job.trigger == "date":
                self.jobs.pop(job.id, None)
            await job.func()
            fired += 1
        return fired


def envelope(data, message=None, success=True) -> dict:
    return {"success": success, "data": data, "message": message}


class FakeImportService:
    """Stand-in for the import service behind an httpx.MockTransport.

    Each reply is a dict (sent as a 200 envelope), an httpx.Response, or an
    exception raised from the transport.
    """

    def __init__(self):
        self.inspect_reply = envelope({
            "uploadToken": "tok-1",
            "originalName": "leads.csv",
            "size": 120,
            "fileType": "csv",
            "sheetNames": [],
            "previews": {"CSV": [{"name": "Asha", "phone": "9000000001"}]},
            "previewAvailable": True,
        })
        self.submit_reply = envelope({"jobId": "job-1", "uploadId": "tok-1", "batchId": "batch-1", "status": "queued"})
        self.status_replies: list = [envelope({"jobId": "job-1", "status": "processing", "message": "Working"})]
        self.form_reply = envelope({"id": "form-1", "fields": []})
        self.requests: list[httpx.Request] = []

    def _reply(self, reply, request):
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/leads/bulk-upload/inspect"):
            return self._reply(self.inspect_reply, request)
        if path.endswith("/leads/bulk-upload"):
            return self._reply(self.submit_reply, request)
        if "/leads/import-jobs/" in path:
            reply = self.status_replies.pop(0) if len(self.status_replies) > 1 else self.status_replies[0]
            return self._reply(reply, request)
        if "/form-builder/forms/" in path:
            return self._reply(self.form_reply, request)
        return httpx.Response(404, json={"message": "Not found"})

    def calls_to(self, fragment: str) -> list[httpx.Request]:
        return [r for r in self.requests if fragment in r.url.path]

    @property
    def status_calls(self) -> int:
        return len(self.calls_to("/leads/import-jobs/"))


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture()
def service() -> FakeImportService:
    return FakeImportService()


@pytest.fixture()
def import_client(service: FakeImportService) -> LeadImportClient:
    return LeadImportClient(
        base_url="http://import.test/api",
        token="secret",
        transport=httpx.MockTransport(service.handle),
    )


def make_workbook(sheets: dict[str, list[list]]) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


_phone_counter = itertools.count(9100000000)


@pytest.fixture()
def phones():
    def _take(n: int) -> list[str]:
        return [str(next(_phone_counter)) for _ in range(n)]

    return _take


@pytest.fixture(scope="session")
def api() -> TestClient:
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def xlsx():
    return make_workbook
