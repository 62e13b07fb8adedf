import json
from pathlib import Path

import pytest

from maestro.classifier import TaskClassification, TaskEstimate
from maestro.errors import ConfigurationMissing, MaestroStateError, PlanConflict
from maestro.stack import StackProfile
from maestro.state import Pipeline, PipelineStep, Plan, PlanStore, ValidationResult
from maestro.state.plan import PLAN_SECTIONS


def _plan(plan_id: str = "plan-0001") -> Plan:
    return Plan(
        plan_id=plan_id,
        task_description="add order export",
        profile=StackProfile(backend_framework="Django", language="Python"),
        classification=TaskClassification(
            task_type="new_feature",
            complexity="simple",
            risk_level="low",
            estimate=TaskEstimate(lines_of_code=40, files_touched=2),
        ),
        pipeline=Pipeline(
            [
                PipelineStep(0, "project-analyzer", "design", "analyze", "notes"),
                PipelineStep(0, "python-specialist", "implementation", "implement", "code"),
                PipelineStep(0, "code-reviewer", "quality", "review", "findings"),
            ]
        ),
        validation=ValidationResult(),
        expected_outcomes=["CSV export endpoint"],
    )


def test_second_plan_is_a_conflict_not_an_overwrite(tmp_path: Path) -> None:
    store = PlanStore(tmp_path)
    store.create(_plan("plan-a"))

    with pytest.raises(PlanConflict) as excinfo:
        store.create(_plan("plan-b"))

    assert excinfo.value.details["active_plan_id"] == "plan-a"
    plan, _ = store.require()
    assert plan.plan_id == "plan-a"


def test_plan_survives_a_new_store_instance(tmp_path: Path) -> None:
    original = _plan()
    original.state.phase = "EXECUTION"
    original.state.current_step_index = 2
    PlanStore(tmp_path).create(original)

    loaded = PlanStore(tmp_path).read()

    assert loaded is not None
    plan, revision = loaded
    assert revision == 1
    assert plan.state.current_step_index == 2
    assert plan.current_step is not None
    assert plan.current_step.agent_id == "code-reviewer"
    assert plan.pipeline == original.pipeline
    assert plan.profile == original.profile


def test_save_rejects_stale_revision(tmp_path: Path) -> None:
    store = PlanStore(tmp_path)
    revision = store.create(_plan())
    plan, _ = store.require()

    assert store.save(plan, revision) == 2
    with pytest.raises(MaestroStateError, match="modified by another writer"):
        store.save(plan, revision)


def test_document_has_fixed_sections_and_markdown_view(tmp_path: Path) -> None:
    store = PlanStore(tmp_path)
    store.create(_plan())

    envelope = json.loads(store.path.read_text(encoding="utf-8"))
    markdown = store.markdown_path.read_text(encoding="utf-8")

    assert store.path == tmp_path / ".maestro" / "temporal-reference.json"
    assert list(envelope["plan"]) == [key for key, _ in PLAN_SECTIONS]
    for _, heading in PLAN_SECTIONS:
        assert f"## {heading}" in markdown
    assert "1. [ ] **project-analyzer** (design): analyze <- current" in markdown


def test_delete_removes_both_files(tmp_path: Path) -> None:
    store = PlanStore(tmp_path)
    store.create(_plan())

    assert store.delete() is True
    assert not store.path.exists()
    assert not store.markdown_path.exists()
    assert store.read() is None
    assert store.delete() is False
    with pytest.raises(ConfigurationMissing):
        store.require()


def test_corrupt_document_is_reported(tmp_path: Path) -> None:
    store = PlanStore(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{truncated", encoding="utf-8")

    with pytest.raises(MaestroStateError, match="corrupt"):
        store.read()
