"""
Deploy Record Store

One JSON file per job under the deploys directory. Records are written
exactly once; an existing file is never overwritten.
"""
from pathlib import Path
from typing import List

import structlog
from pydantic import ValidationError

from .control_plane.models import DeployRecord
from .errors import DeployError, LocalIOError, SerializationError

logger = structlog.get_logger(__name__)


class DeployRecordStore:
    """File-backed store of DeployRecords keyed by job identifier."""

    def __init__(self, deploys_dir: Path) -> None:
        self._dir = deploys_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, deploy_id: str) -> Path:
        return self._dir / f"{deploy_id}.json"

    def save(self, record: DeployRecord) -> Path:
        """
        Persist a record.

        Returns:
            Path of the written file

        Raises:
            LocalIOError: if the file already exists or cannot be written
        """
        path = self.path_for(record.id)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as fh:
                fh.write(record.model_dump_json(indent=2))
        except FileExistsError as e:
            raise LocalIOError(f"Deploy record {path} already exists") from e
        except OSError as e:
            raise LocalIOError(f"Failed to write {path}: {e}") from e
        logger.info("deploy_record_saved", deploy_id=record.id, path=str(path))
        return path

    def load(self, deploy_id: str) -> DeployRecord:
        path = self.path_for(deploy_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise LocalIOError(f"Failed to read {path}: {e}") from e
        try:
            return DeployRecord.model_validate_json(raw)
        except ValidationError as e:
            raise SerializationError(f"{path}: {e}") from e

    def list_records(self) -> List[DeployRecord]:
        """All readable records, newest first. Unreadable or unparseable files are skipped."""
        if not self._dir.exists():
            return []
        records = []
        for path in self._dir.glob("*.json"):
            try:
                records.append(self.load(path.stem))
            except DeployError as e:
                logger.warning("deploy_record_unreadable", path=str(path), error=e.message)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records
