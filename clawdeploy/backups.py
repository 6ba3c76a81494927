"""Local backup archives (*.tar.gz) in the backups directory."""
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .control_plane.models import BackupEntry
from .errors import LocalIOError, NoBackupsError


def list_backup_files(backups_dir: Path) -> List[BackupEntry]:
    """Archives newest first; an absent directory yields an empty list."""
    if not backups_dir.exists():
        return []
    entries = []
    try:
        for path in backups_dir.iterdir():
            if path.suffix != ".gz" or not path.is_file():
                continue
            stat = path.stat()
            entries.append(
                BackupEntry(
                    name=path.name,
                    path=str(path),
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
    except OSError as e:
        raise LocalIOError(f"Failed to list {backups_dir}: {e}") from e
    entries.sort(key=lambda e: (e.modified, e.name), reverse=True)
    return entries


def latest_backup(backups_dir: Path) -> Path:
    entries = list_backup_files(backups_dir)
    if not entries:
        raise NoBackupsError(str(backups_dir))
    return Path(entries[0].path)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
