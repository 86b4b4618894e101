"""Backup-then-merge handling for regenerated files.

Before a generated file overwrites an existing one, the existing file is
renamed to a timestamped backup.  After the new content is written an
external three-way merge tool (kdiff3) reconciles the developer's edits in
the backup with the fresh output.
"""

from __future__ import annotations

import asyncio
import filecmp
import os
import shutil
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from entitygen.utils import run_command

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class MergeStatus(str, Enum):
    """What happened to a written file."""
    CREATED = "created"
    UNCHANGED = "unchanged"
    MERGED = "merged"
    BACKUP_KEPT = "backup_kept"
    APPENDED = "appended"


class MergeError(Exception):
    """Raised when the merge tool fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def backup_file(path: str | Path, now: datetime | None = None) -> Optional[Path]:
    """Rename an existing file to ``<file>.<yyyyMMdd_HHmmss>.bak``.

    A second backup within the same second gets a ``_1``, ``_2``... suffix
    on the timestamp.

    Returns:
        The backup path, or ``None`` when *path* does not exist.
    """
    file_path = Path(path)
    if not file_path.is_file():
        return None

    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    backup = file_path.with_name(f"{file_path.name}.{stamp}.bak")
    counter = 1
    while backup.exists():
        backup = file_path.with_name(f"{file_path.name}.{stamp}_{counter}.bak")
        counter += 1

    file_path.rename(backup)
    return backup


def create_directory_or_backup(path: str | Path, now: datetime | None = None) -> Optional[Path]:
    """Back up *path* if it exists, otherwise make sure its folder exists."""
    file_path = Path(path)
    if file_path.is_file():
        return backup_file(file_path, now)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    return None


# ---------------------------------------------------------------------------
# Merge tool
# ---------------------------------------------------------------------------


def find_merge_tool(configured: str | None = None) -> Optional[Path]:
    """Locate kdiff3.

    Candidates, first existing wins: the configured path, ``kdiff3`` on
    ``PATH``, and the default install folders under ``ProgramFiles(x86)``
    and ``ProgramFiles``.
    """
    candidates: list[str] = []
    if configured:
        candidates.append(configured)
    on_path = shutil.which("kdiff3")
    if on_path:
        candidates.append(on_path)
    for env_name in ("ProgramFiles(x86)", "ProgramFiles"):
        root = os.environ.get(env_name)
        if root:
            candidates.append(str(Path(root) / "KDiff3" / "kdiff3.exe"))

    for candidate in candidates:
        if Path(candidate).is_file():
            return Path(candidate)
    return None


class MergeTool:
    """Runs the external merge tool against a backup and a fresh file.

    Attributes:
        path: Merge tool executable, or ``None`` when none is installed.
        timeout: Seconds to wait for the tool (it may be interactive).
    """

    def __init__(self, path: str | Path | None, timeout: int = 3600) -> None:
        self.path = Path(path) if path else None
        self.timeout = timeout

    @classmethod
    def discover(cls, configured: str | None = None) -> "MergeTool":
        return cls(find_merge_tool(configured))

    def build_command(self, backup: Path, file: Path) -> list[str]:
        """``kdiff3 --auto <backup> <file> -o <file>``."""
        if self.path is None:
            raise MergeError("No merge tool configured")
        return [str(self.path), "--auto", str(backup), str(file), "-o", str(file)]

    async def merge_changes(self, backup: Path | None, file: Path) -> MergeStatus:
        """Reconcile *backup* (developer's version) with *file* (generated).

        Returns:
            ``CREATED`` when there was nothing to merge, ``UNCHANGED`` when
            the contents were identical (the backup is removed),
            ``BACKUP_KEPT`` when no merge tool is available, ``MERGED``
            after a successful merge.

        Raises:
            MergeError: If the tool exits with an error or times out.
        """
        if backup is None or not backup.is_file() or not file.is_file():
            return MergeStatus.CREATED

        same = await asyncio.to_thread(filecmp.cmp, backup, file, False)
        if same:
            await asyncio.to_thread(backup.unlink)
            return MergeStatus.UNCHANGED

        if self.path is None or not self.path.is_file():
            return MergeStatus.BACKUP_KEPT

        cmd = self.build_command(backup, file)
        returncode, _stdout, stderr = await run_command(cmd, timeout=self.timeout)
        if returncode != 0:
            raise MergeError(
                f"Merge tool failed (exit {returncode}) for {file}\n{stderr}",
                command=" ".join(cmd),
                stderr=stderr,
            )
        return MergeStatus.MERGED
