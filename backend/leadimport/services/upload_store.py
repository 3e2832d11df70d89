import json
import logging
import re
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

from leadimport.config import settings

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[0-9a-f]{32}")


@dataclass
class StagedUpload:
    token: str
    original_name: str
    size: int
    file_kind: str
    created_at: float
    ttl_seconds: int

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    @property
    def expires_in_ms(self) -> int:
        return max(0, int((self.expires_at - time.time()) * 1000))

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at


class UploadStore:
    """Files staged on disk between inspection and the import itself."""

    def __init__(self, root: str | Path | None = None, ttl_seconds: int | None = None):
        self.root = Path(root or settings.UPLOAD_STAGING_DIR)
        self.ttl_seconds = ttl_seconds or settings.UPLOAD_TOKEN_TTL_SECONDS

    def _data_path(self, token: str) -> Path:
        return self.root / f"{token}.bin"

    def _meta_path(self, token: str) -> Path:
        return self.root / f"{token}.json"

    def save(self, original_name: str, content: bytes, file_kind: str) -> StagedUpload:
        self.root.mkdir(parents=True, exist_ok=True)
        staged = StagedUpload(
            token=uuid.uuid4().hex,
            original_name=original_name,
            size=len(content),
            file_kind=file_kind,
            created_at=time.time(),
            ttl_seconds=self.ttl_seconds,
        )
        self._data_path(staged.token).write_bytes(content)
        self._meta_path(staged.token).write_text(json.dumps(asdict(staged)), encoding="utf-8")
        logger.info(f"Staged upload {staged.token}: {original_name} ({staged.size} bytes, {file_kind})")
        return staged

    def get(self, token: str) -> StagedUpload | None:
        if not _TOKEN_RE.fullmatch(token or ""):
            return None
        meta_path = self._meta_path(token)
        if not meta_path.exists():
            return None
        staged = StagedUpload(**json.loads(meta_path.read_text(encoding="utf-8")))
        if staged.expired:
            self.delete(token)
            return None
        return staged

    def read(self, staged: StagedUpload) -> bytes:
        return self._data_path(staged.token).read_bytes()

    def delete(self, token: str) -> None:
        self._data_path(token).unlink(missing_ok=True)
        self._meta_path(token).unlink(missing_ok=True)

    def purge_expired(self) -> int:
        if not self.root.exists():
            return 0
        purged = 0
        for meta_path in self.root.glob("*.json"):
            token = meta_path.stem
            try:
                staged = StagedUpload(**json.loads(meta_path.read_text(encoding="utf-8")))
            except (ValueError, TypeError):
                self.delete(token)
                purged += 1
                continue
            if staged.expired:
                self.delete(token)
                purged += 1
        if purged:
            logger.info(f"Purged {purged} expired staged upload(s)")
        return purged


upload_store = UploadStore()
