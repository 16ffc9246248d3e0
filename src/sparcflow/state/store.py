from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import tempfile
import threading
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any

import structlog

from sparcflow.config import PersistenceErrorPolicy
from sparcflow.errors import PersistenceError
from sparcflow.state.models import WorkflowState, to_iso, utcnow

log = structlog.get_logger(__name__)

ISSUE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
ARTIFACT_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class WorkflowStore:
    """File-backed checkpoint store: one JSON record and one artifact dir per issue."""

    METRICS_FILE = "metrics.json"

    def __init__(
        self,
        root: Path,
        *,
        on_persistence_error: PersistenceErrorPolicy = "log",
        lock_timeout_seconds: float = 3.0,
    ) -> None:
        if on_persistence_error not in {"log", "raise"}:
            raise PersistenceError(f"Unsupported persistence error policy: {on_persistence_error}")
        self.root = root.resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.on_persistence_error = on_persistence_error
        self.lock_timeout_seconds = lock_timeout_seconds
        self._metrics_lock = threading.Lock()

    @staticmethod
    def _validate_issue_id(issue_id: str) -> None:
        if not ISSUE_ID_PATTERN.match(issue_id or ""):
            raise PersistenceError(f"Invalid issue id: {issue_id!r}", issue_id=issue_id)

    def state_path(self, issue_id: str) -> Path:
        self._validate_issue_id(issue_id)
        return self.root / f"{issue_id}-state.json"

    def artifact_dir(self, issue_id: str) -> Path:
        self._validate_issue_id(issue_id)
        return self.root / issue_id

    def _lock_path(self, issue_id: str) -> Path:
        self._validate_issue_id(issue_id)
        return self.root / f".{issue_id}.lock"

    @contextmanager
    def _issue_lock(self, issue_id: str):
        lock_path = self._lock_path(issue_id)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > self.lock_timeout_seconds:
                    raise PersistenceError(
                        f"Timed out waiting for lock on issue '{issue_id}'.",
                        issue_id=issue_id,
                    ) from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass

    def _run_lock_path(self, issue_id: str) -> Path:
        self._validate_issue_id(issue_id)
        # "~" never appears in an issue id, so this cannot collide with a save lock
        return self.root / f".{issue_id}~run.lock"

    @staticmethod
    def _holder_is_gone(lock_path: Path) -> bool:
        try:
            content = lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return False  # released meanwhile; the next attempt takes it
        if not content:
            return False  # holder is still writing its pid
        try:
            pid = int(content)
        except ValueError:
            return True
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False

    def acquire_run_lock(self, issue_id: str) -> None:
        """Claim the issue for one whole run, across processes.

        A lock left behind by a process that no longer exists is taken over.
        """
        lock_path = self._run_lock_path(issue_id)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError as exc:
                if self._holder_is_gone(lock_path):
                    log.warning("stale_run_lock_removed", issue_id=issue_id)
                    lock_path.unlink(missing_ok=True)
                    continue
                if time.monotonic() - start > self.lock_timeout_seconds:
                    raise PersistenceError(
                        f"Workflow for issue '{issue_id}' is running in another process.",
                        issue_id=issue_id,
                    ) from exc
                time.sleep(0.05)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(os.getpid()))
            return

    def release_run_lock(self, issue_id: str) -> None:
        self._run_lock_path(issue_id).unlink(missing_ok=True)

    @asynccontextmanager
    async def run_lock(self, issue_id: str) -> AsyncIterator[None]:
        await asyncio.to_thread(self.acquire_run_lock, issue_id)
        try:
            yield
        finally:
            self.release_run_lock(issue_id)

    @staticmethod
    def _atomic_write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise

    def _write_state(self, state: WorkflowState) -> None:
        path = self.state_path(state.issue_id)
        serialized = json.dumps(state.to_dict(), ensure_ascii=False, indent=2)
        try:
            self._atomic_write(path, serialized)
        except OSError as exc:
            raise PersistenceError(
                f"Failed to write state for issue '{state.issue_id}': {exc}",
                issue_id=state.issue_id,
            ) from exc

    def _write_artifacts(self, state: WorkflowState) -> list[str]:
        written: list[str] = []
        directory = self.artifact_dir(state.issue_id)
        for key, content in state.artifacts.items():
            if not content:
                continue
            try:
                if not ARTIFACT_KEY_PATTERN.match(key):
                    raise OSError(f"unsafe artifact key {key!r}")
                self._atomic_write(directory / f"{key}.md", content)
            except OSError as exc:
                if self.on_persistence_error == "raise":
                    raise PersistenceError(
                        f"Failed to write artifact '{key}' for issue '{state.issue_id}': {exc}",
                        issue_id=state.issue_id,
                    ) from exc
                log.warning(
                    "artifact_write_failed",
                    issue_id=state.issue_id,
                    artifact=key,
                    error=str(exc),
                )
                continue
            written.append(key)
        return written

    def save_sync(self, state: WorkflowState) -> None:
        with self._issue_lock(state.issue_id):
            self._write_state(state)
            written = self._write_artifacts(state)
        log.debug(
            "state_saved",
            issue_id=state.issue_id,
            phase=state.current_phase,
            artifacts=written,
        )

    def load_sync(self, issue_id: str) -> WorkflowState | None:
        path = self.state_path(issue_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceError(
                f"Failed to read state for issue '{issue_id}': {exc}", issue_id=issue_id
            ) from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"State record for issue '{issue_id}' is not valid JSON: {exc}",
                issue_id=issue_id,
            ) from exc
        if not isinstance(payload, dict):
            raise PersistenceError(
                f"State record for issue '{issue_id}' is not an object.", issue_id=issue_id
            )
        try:
            state = WorkflowState.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"State record for issue '{issue_id}' is malformed: {exc}", issue_id=issue_id
            ) from exc
        log.debug("state_loaded", issue_id=issue_id, phase=state.current_phase)
        return state

    def delete_sync(self, issue_id: str) -> bool:
        removed = False
        with self._issue_lock(issue_id):
            try:
                self.state_path(issue_id).unlink()
                removed = True
            except FileNotFoundError:
                pass
            directory = self.artifact_dir(issue_id)
            if directory.is_dir():
                shutil.rmtree(directory)
                removed = True
        return removed

    def read_artifact(self, issue_id: str, key: str) -> str | None:
        if not ARTIFACT_KEY_PATTERN.match(key):
            return None
        path = self.artifact_dir(issue_id) / f"{key}.md"
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def save(self, state: WorkflowState) -> None:
        await asyncio.to_thread(self.save_sync, state)

    async def load(self, issue_id: str) -> WorkflowState | None:
        return await asyncio.to_thread(self.load_sync, issue_id)

    async def delete(self, issue_id: str) -> bool:
        return await asyncio.to_thread(self.delete_sync, issue_id)

    def _metrics_path(self) -> Path:
        return self.root / self.METRICS_FILE

    def _read_metrics(self) -> dict[str, Any]:
        path = self._metrics_path()
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def get_metrics(self) -> dict[str, Any]:
        try:
            return self._read_metrics()
        except OSError as exc:
            raise PersistenceError(f"Failed to read metrics file: {exc}") from exc

    def set_metrics(self, metrics: dict[str, Any]) -> None:
        self._atomic_write(
            self._metrics_path(),
            json.dumps(metrics, ensure_ascii=False, separators=(",", ":")),
        )

    def _update_metrics(
        self,
        update: Callable[[dict[str, Any]], None],
        *,
        record: str,
        issue_id: str | None = None,
    ) -> None:
        # bookkeeping only: follows the artifact write policy
        with self._metrics_lock:
            try:
                metrics = self._read_metrics()
                update(metrics)
                self.set_metrics(metrics)
            except OSError as exc:
                if self.on_persistence_error == "raise":
                    raise PersistenceError(
                        f"Failed to record {record} in metrics file: {exc}", issue_id=issue_id
                    ) from exc
                log.warning("metrics_write_failed", record=record, issue_id=issue_id, error=str(exc))

    def record_event(self, event: dict[str, Any], *, keep: int = 200) -> None:
        payload = dict(event)
        payload["at"] = to_iso(utcnow().replace(microsecond=0))

        def _apply(metrics: dict[str, Any]) -> None:
            events = metrics.get("backend_events", [])
            if not isinstance(events, list):
                events = []
            events.append(payload)
            metrics["backend_events"] = events[-keep:]
            name = event.get("event")
            if name == "backend_retry":
                metrics["backend_retry_count"] = int(metrics.get("backend_retry_count", 0)) + 1
            if name == "backend_fallback_success":
                metrics["backend_fallback_count"] = int(metrics.get("backend_fallback_count", 0)) + 1

        self._update_metrics(_apply, record="backend event", issue_id=event.get("issue_id"))

    def record_decision(
        self,
        decision: dict[str, Any] | None,
        metrics: dict[str, float],
        *,
        issue_id: str | None = None,
        keep: int = 100,
    ) -> None:
        """Accumulate one orchestrator decision and its timing metrics.

        Totals (``decision_count`` and per-key sums and counts) cover every
        decision ever recorded; only the history list is capped at ``keep``.
        """
        if decision is None and not metrics:
            return

        def _apply(stored: dict[str, Any]) -> None:
            totals = stored.get("orchestrator")
            if not isinstance(totals, dict):
                totals = {}
            sums = dict(totals.get("sums") or {})
            counts = dict(totals.get("counts") or {})
            for key, value in metrics.items():
                sums[key] = float(sums.get(key, 0.0)) + float(value)
                counts[key] = int(counts.get(key, 0)) + 1
            count = int(totals.get("decision_count", 0))
            history = stored.get("decision_history", [])
            if not isinstance(history, list):
                history = []
            if decision is not None:
                count += 1
                history.append(dict(decision, issue_id=issue_id))
            stored["orchestrator"] = {"decision_count": count, "sums": sums, "counts": counts}
            stored["decision_history"] = history[-keep:]

        self._update_metrics(_apply, record="decision", issue_id=issue_id)

    def orchestrator_summary(self) -> tuple[dict[str, float], list[dict[str, Any]]]:
        """Return aggregated orchestrator metrics and the retained decision history."""
        stored = self.get_metrics()
        totals = stored.get("orchestrator")
        if not isinstance(totals, dict):
            totals = {}
        summary: dict[str, float] = {"decision_count": float(totals.get("decision_count", 0))}
        counts = totals.get("counts") or {}
        for key, total in (totals.get("sums") or {}).items():
            if counts.get(key):
                summary[f"avg_{key}"] = float(total) / int(counts[key])
        history = stored.get("decision_history", [])
        return summary, history if isinstance(history, list) else []
