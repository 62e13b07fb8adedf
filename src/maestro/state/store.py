from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from maestro.errors import MaestroStateError
from maestro.state.plan import utcnow_iso

logger = logging.getLogger(__name__)

CONCURRENT_UPDATE_MESSAGE = "Concurrent state update detected"
UPDATE_ATTEMPTS = 4
LOCK_POLL_SECONDS = 0.02


def _try_acquire(lock_file: Path) -> bool:
    try:
        fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(str(os.getpid()))
    return True


@contextmanager
def file_lock(lock_file: Path, timeout_seconds: float = 3.0) -> Iterator[None]:
    """Hold ``lock_file`` exclusively for the duration of the block."""
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout_seconds
    while not _try_acquire(lock_file):
        if time.monotonic() > deadline:
            raise MaestroStateError(f"Timed out waiting for lock: {lock_file}")
        time.sleep(LOCK_POLL_SECONDS)
    try:
        yield
    finally:
        lock_file.unlink(missing_ok=True)


def atomic_write(path: Path, text: str) -> None:
    """Write through a sibling temp file so readers never see a partial document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f".{path.name}.tmp")
    staging.write_text(text, encoding="utf-8")
    os.replace(staging, path)


@dataclass(slots=True)
class Envelope:
    data: Any
    revision: int = 0
    schema_version: int = 1
    updated_at: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_raw(cls, raw: Any, default: Any) -> Envelope:
        if isinstance(raw, dict) and {"schema_version", "revision", "data"} <= raw.keys():
            return cls(
                data=raw["data"],
                revision=int(raw["revision"] or 1),
                schema_version=int(raw["schema_version"] or 1),
                updated_at=raw.get("updated_at") or utcnow_iso(),
            )
        if raw is None:
            return cls(data=default)
        # bare payloads written before envelopes existed count as revision 1
        return cls(data=raw, revision=1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "revision": self.revision,
            "updated_at": self.updated_at,
            "data": self.data,
        }


class StateStore:
    """Workspace-scoped JSON namespaces with optimistic revision checks."""

    NAMESPACES = frozenset({"profile", "draft", "decisions"})
    SCHEMA_VERSION = 1

    def __init__(self, workspace_root: Path, *, state_dir: str = ".maestro") -> None:
        self.directory = workspace_root.resolve() / state_dir / "state"
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lock_file = self.directory / ".lock"

    def _path(self, namespace: str) -> Path:
        if namespace not in self.NAMESPACES:
            raise MaestroStateError(f"Unsupported namespace: {namespace}")
        return self.directory / f"{namespace}.json"

    def exists(self, namespace: str) -> bool:
        return self._path(namespace).exists()

    def envelope(self, namespace: str, default: Any | None = None) -> Envelope:
        path = self._path(namespace)
        fallback = {} if default is None else default
        if not path.exists():
            return Envelope(data=fallback, schema_version=self.SCHEMA_VERSION)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable state file %s", path)
            raw = None
        return Envelope.from_raw(raw, fallback)

    def get_json(self, namespace: str, default: Any | None = None) -> Any:
        return self.envelope(namespace, default).data

    def set_json(self, namespace: str, data: Any, expected_revision: int | None = None) -> int:
        path = self._path(namespace)
        with file_lock(self.lock_file):
            revision = self.envelope(namespace).revision
            if expected_revision is not None and expected_revision != revision:
                raise MaestroStateError(
                    f"{CONCURRENT_UPDATE_MESSAGE} for namespace '{namespace}'."
                )
            written = Envelope(data=data, revision=revision + 1, schema_version=self.SCHEMA_VERSION)
            atomic_write(path, json.dumps(written.to_dict(), ensure_ascii=False, indent=2))
        logger.debug("Wrote %s revision %d", namespace, written.revision)
        return written.revision

    def update_json(
        self, namespace: str, updater: Callable[[Any], Any], default: Any | None = None
    ) -> Any:
        """Read-modify-write that retries when another writer got there first."""
        attempt = 1
        while True:
            current = self.envelope(namespace, default)
            updated = updater(current.data)
            try:
                self.set_json(namespace, updated, expected_revision=current.revision)
                return updated
            except MaestroStateError as exc:
                if CONCURRENT_UPDATE_MESSAGE not in str(exc) or attempt >= UPDATE_ATTEMPTS:
                    raise
            attempt += 1
            time.sleep(0.01)

    def delete(self, namespace: str) -> bool:
        path = self._path(namespace)
        with file_lock(self.lock_file):
            existed = path.exists()
            path.unlink(missing_ok=True)
        return existed

    def get_decisions(self) -> list[dict[str, Any]]:
        payload = self.get_json("decisions", default={"decisions": []})
        decisions = payload.get("decisions") if isinstance(payload, dict) else None
        return decisions if isinstance(decisions, list) else []

    def add_decision(self, decision: dict[str, Any]) -> None:
        entry = {**decision, "created_at": decision.get("created_at") or utcnow_iso()}

        def _append(payload: Any) -> dict[str, Any]:
            decisions = payload.get("decisions") if isinstance(payload, dict) else None
            return {"decisions": [*(decisions or []), entry]}

        self.update_json("decisions", _append, default={"decisions": []})
