from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from maestro.errors import ConfigurationMissing, MaestroStateError, PlanConflict
from maestro.state.plan import Plan, render_markdown, utcnow_iso
from maestro.state.store import atomic_write, file_lock

logger = logging.getLogger(__name__)

PLAN_FILENAME = "temporal-reference.json"
PLAN_MARKDOWN_FILENAME = "TEMPORAL_REFERENCE.md"


class PlanStore:
    """Holds at most one Plan per workspace at a well-known path.

    Every write happens under the plan lock and is checked against the stored
    revision, so a stale writer fails instead of overwriting.
    """

    SCHEMA_VERSION = 1

    def __init__(self, workspace_root: Path, *, state_dir: str = ".maestro") -> None:
        self.workspace_root = workspace_root.resolve()
        self.directory = self.workspace_root / state_dir
        self.path = self.directory / PLAN_FILENAME
        self.markdown_path = self.directory / PLAN_MARKDOWN_FILENAME
        self.lock_file = self.directory / ".plan.lock"

    def exists(self) -> bool:
        return self.path.exists()

    def _read_envelope(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise MaestroStateError(f"Plan document is corrupt: {self.path}") from exc
        if not isinstance(payload, dict) or "plan" not in payload:
            raise MaestroStateError(f"Plan document has no plan section: {self.path}")
        return payload

    def revision(self) -> int:
        envelope = self._read_envelope()
        return int(envelope.get("revision", 0)) if envelope else 0

    def _write(self, plan: Plan, revision: int) -> None:
        plan.updated_at = utcnow_iso()
        envelope = {
            "schema_version": self.SCHEMA_VERSION,
            "revision": revision,
            "updated_at": plan.updated_at,
            "plan": plan.to_dict(),
        }
        atomic_write(self.path, json.dumps(envelope, ensure_ascii=False, indent=2))
        atomic_write(self.markdown_path, render_markdown(plan))

    def create(self, plan: Plan) -> int:
        with file_lock(self.lock_file):
            if self.path.exists():
                existing = self._read_envelope() or {}
                existing_id = existing.get("plan", {}).get("context", {}).get("plan_id")
                raise PlanConflict(
                    f"A plan is already active in this workspace ({existing_id}).",
                    options=["finish the active plan", "abort the active plan"],
                    details={"active_plan_id": existing_id},
                )
            self._write(plan, 1)
        logger.info("Created plan %s", plan.plan_id)
        return 1

    def read(self) -> tuple[Plan, int] | None:
        envelope = self._read_envelope()
        if envelope is None:
            return None
        return Plan.from_dict(envelope["plan"]), int(envelope.get("revision", 1))

    def require(self) -> tuple[Plan, int]:
        loaded = self.read()
        if loaded is None:
            raise ConfigurationMissing(
                "No active plan in this workspace.",
                options=["draft a plan", "abort"],
            )
        return loaded

    def save(self, plan: Plan, expected_revision: int) -> int:
        with file_lock(self.lock_file):
            envelope = self._read_envelope()
            if envelope is None:
                raise MaestroStateError("Cannot save: no active plan in this workspace.")
            stored_id = envelope["plan"].get("context", {}).get("plan_id")
            if stored_id != plan.plan_id:
                raise PlanConflict(
                    f"Active plan is {stored_id}, not {plan.plan_id}.",
                    details={"active_plan_id": stored_id},
                )
            current = int(envelope.get("revision", 1))
            if current != expected_revision:
                raise MaestroStateError(
                    f"Plan was modified by another writer (revision {current}, "
                    f"expected {expected_revision})."
                )
            self._write(plan, current + 1)
        logger.debug("Saved plan %s revision %d", plan.plan_id, current + 1)
        return current + 1

    def delete(self) -> bool:
        with file_lock(self.lock_file):
            existed = self.path.exists()
            for path in (self.path, self.markdown_path):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
        if existed:
            logger.info("Deleted active plan")
        return existed
