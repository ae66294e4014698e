"""
Artifact Store
==============

One JSON document per execution:

    <root>/<owner>/<repo>/<timestamp>_<issue-N|none>_<operation>.json

Directories are created 0700 and documents 0600. Every path component is
validated and the resolved path must stay under the root.

Writes requested from the request path go through ``save_in_background``:
failures are logged as ArtifactWriteFailure and never reach the caller.
A background pruner removes documents older than the retention window.
"""

import asyncio
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set

import structlog

from claude_hub.core.exceptions import ArtifactWriteFailure, ValidationError
from claude_hub.core.sanitize import validate_repository
from claude_hub.core.schemas import Artifact

logger = structlog.get_logger()

_OPERATION_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")
DIR_MODE = 0o700
FILE_MODE = 0o600


class ArtifactStore:
    """
    Path-safe persistence of execution artifacts.

    Usage:
        store = ArtifactStore("/var/lib/claude-hub/outputs", retention_days=30)
        path = await store.save(artifact)
    """

    def __init__(
        self,
        root: str | Path,
        retention_days: int = 30,
        prune_interval_seconds: int = 3600,
    ):
        self.root = Path(root).resolve()
        self.retention_days = retention_days
        self.prune_interval_seconds = prune_interval_seconds

        self._pending: Set[asyncio.Task] = set()
        self._pruner_task: Optional[asyncio.Task] = None
        self._pruner_running = False

    # ======================================================================
    # Paths
    # ======================================================================

    def path_for(self, artifact: Artifact) -> Path:
        owner, repo = validate_repository(artifact.repository)
        if not _OPERATION_PATTERN.match(artifact.operation_type):
            raise ValidationError("Operation type contains invalid characters", field="operation_type")

        stamp = artifact.timestamp.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        issue = f"issue-{artifact.issue_number}" if artifact.issue_number is not None else "none"
        filename = f"{stamp}_{issue}_{artifact.operation_type}.json"

        return self._contained(self.root / owner / repo / filename)

    def _contained(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ValidationError("Artifact path escapes the artifact root", field="path")
        return resolved

    def _ensure_dir(self, directory: Path) -> None:
        # mkdir(mode=...) is subject to umask and skips existing parents
        missing = []
        current = directory
        while current != self.root and not current.exists():
            missing.append(current)
            current = current.parent
        if not self.root.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, DIR_MODE)
        for d in reversed(missing):
            d.mkdir(exist_ok=True)
            os.chmod(d, DIR_MODE)

    # ======================================================================
    # Read / write
    # ======================================================================

    def _write(self, artifact: Artifact) -> Path:
        path = self.path_for(artifact)
        self._ensure_dir(path.parent)

        payload = artifact.model_dump_json(by_alias=True, indent=2)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        return path

    async def save(self, artifact: Artifact) -> Path:
        """Persist one artifact; raises ArtifactWriteFailure on I/O errors."""
        try:
            path = await asyncio.to_thread(self._write, artifact)
        except OSError as e:
            raise ArtifactWriteFailure(f"Failed to write artifact: {e}") from e

        logger.info(
            "Artifact saved",
            repository=artifact.repository,
            issue_number=artifact.issue_number,
            operation_type=artifact.operation_type,
            path=str(path),
        )
        return path

    def save_in_background(self, artifact: Artifact) -> asyncio.Task:
        """Schedule ``save`` without awaiting it. Failures are logged only."""
        task = asyncio.create_task(self._save_logged(artifact))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _save_logged(self, artifact: Artifact) -> Optional[Path]:
        try:
            return await self.save(artifact)
        except (ArtifactWriteFailure, ValidationError) as e:
            logger.error(
                "Artifact write failed",
                repository=artifact.repository,
                operation_type=artifact.operation_type,
                error=str(e),
            )
            return None

    async def flush(self) -> None:
        """Wait for outstanding background writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def load(self, path: str | Path) -> Artifact:
        resolved = self._contained(Path(path))
        raw = await asyncio.to_thread(resolved.read_text, encoding="utf-8")
        return Artifact.model_validate_json(raw)

    async def list_artifacts(self, repository: str) -> List[Path]:
        """Artifact paths for a repository, oldest first."""
        owner, repo = validate_repository(repository)
        directory = self._contained(self.root / owner / repo)

        def _list() -> List[Path]:
            if not directory.is_dir():
                return []
            return sorted(directory.glob("*.json"))

        return await asyncio.to_thread(_list)

    # ======================================================================
    # Retention
    # ======================================================================

    def _prune_sync(self, cutoff: float) -> int:
        removed = 0
        if not self.root.is_dir():
            return 0
        for path in self.root.rglob("*.json"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    async def prune(self, now: Optional[datetime] = None) -> int:
        """Delete artifacts older than the retention window. Returns count removed."""
        now_ts = (now or datetime.now(timezone.utc)).timestamp()
        cutoff = now_ts - self.retention_days * 86400
        removed = await asyncio.to_thread(self._prune_sync, cutoff)
        if removed:
            logger.info("Pruned expired artifacts", removed=removed, retention_days=self.retention_days)
        return removed

    async def start_pruner(self) -> None:
        """Start the retention sweep loop."""
        if self._pruner_running:
            return
        self._pruner_running = True
        self._pruner_task = asyncio.create_task(self._pruner_loop())
        logger.info("Artifact pruner started", interval_seconds=self.prune_interval_seconds)

    async def stop_pruner(self) -> None:
        """Stop the retention sweep loop."""
        self._pruner_running = False
        if self._pruner_task:
            self._pruner_task.cancel()
            try:
                await self._pruner_task
            except asyncio.CancelledError:
                pass
            self._pruner_task = None
        logger.info("Artifact pruner stopped")

    async def _pruner_loop(self) -> None:
        while self._pruner_running:
            started = time.monotonic()
            try:
                await self.prune()
            except OSError as e:
                logger.error("Artifact prune failed", error=str(e))
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(self.prune_interval_seconds - elapsed, 1))
