import asyncio
from pathlib import Path
from typing import Any

import pytest

from maestro.capabilities import Capability, CapabilityRegistry, StepResult
from maestro.classifier import TaskClassification, TaskEstimate
from maestro.config import MaestroConfig
from maestro.errors import (
    BlockingIssue,
    ConfigurationMissing,
    GateError,
    PlanChangeConflict,
    PlanConflict,
    ValidationFailure,
)
from maestro.rulebook import generate_rulebook
from maestro.stack import StackProfile
from maestro.state import Pipeline, PipelineStep, Plan, ValidationResult
from maestro.workflow import StepAddition, WorkflowEngine


class RecordingCapability(Capability):
    def __init__(self, outcomes: dict[int, StepResult] | None = None) -> None:
        self.outcomes = dict(outcomes or {})
        self.calls: list[int] = []

    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        self.calls.append(step.number)
        outcome = self.outcomes.pop(step.number, None)
        if outcome is not None:
            return outcome
        return StepResult("success", f"done {step.number}", artifacts=[{"step": step.number}])


class ExplodingCapability(Capability):
    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        raise OSError("disk full")


class PreconditionCapability(Capability):
    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        raise BlockingIssue("DATABASE_URL is not set", options=["set DATABASE_URL"])


def _engine(
    workspace: Path, capability: Capability | None = None, config: MaestroConfig | None = None
) -> WorkflowEngine:
    return WorkflowEngine(
        workspace,
        config or MaestroConfig.default(),
        capabilities=CapabilityRegistry(default=capability or RecordingCapability()),
    )


def _seed_plan(engine: WorkflowEngine, steps: int = 10) -> Plan:
    agents = ["project-analyzer", "code-reviewer", "git-workflow-specialist"]
    phases = ["design", "quality", "git"]
    pipeline = Pipeline(
        [
            PipelineStep(0, agents[index % 3], phases[index % 3], f"task {index}", "output")
            for index in range(steps)
        ]
    )
    plan = Plan(
        plan_id="plan-seeded",
        task_description="ship the export feature",
        profile=StackProfile(backend_framework="NestJS"),
        classification=TaskClassification(
            task_type="new_feature",
            complexity="complex",
            risk_level="low",
            estimate=TaskEstimate(lines_of_code=300, files_touched=9),
        ),
        pipeline=pipeline,
        validation=ValidationResult(),
    )
    plan.state.phase = "EXECUTION"
    engine.plans.create(plan)
    return plan


def test_draft_for_backend_workspace(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    engine = _engine(tmp_path)

    draft = engine.draft("fix the login button crash")

    assert draft.profile.detected() == [("backend_framework", "NestJS")]
    assert draft.classification is not None
    assert draft.classification.task_type == "bug_fix"
    assert draft.open_questions == []
    assert "git-workflow-specialist" in draft.pipeline.agent_ids()
    assert draft.validation.passed
    assert engine.status()["pending_approval"] == "plan_approval"
    assert not engine.plans.exists()


def test_rejecting_draft_stays_in_planning_without_plan(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    engine = _engine(tmp_path)
    engine.draft("fix the login button crash")

    outcome = engine.respond("no")

    assert outcome.kind == "rejected"
    assert outcome.phase == "PLANNING"
    assert not engine.plans.exists()
    assert engine.load_draft() is None
    assert engine.status() == {"active": False, "phase": "PLANNING", "pending_approval": "none"}


def test_free_text_is_never_an_approval(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    engine = _engine(tmp_path)
    engine.draft("fix the login button crash")

    outcome = engine.respond("sounds good but also check the logout button")

    assert outcome.kind == "noted"
    assert not engine.plans.exists()
    assert engine.load_draft().notes == ["sounds good but also check the logout button"]


def test_approval_creates_plan_and_full_run_finalizes(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    capability = RecordingCapability()
    engine = _engine(tmp_path, capability)
    draft = engine.draft("fix the login button crash")

    outcome = engine.respond("Approve!")
    assert outcome.kind == "approved"
    assert engine.plans.exists()
    assert engine.load_draft() is None

    summary = asyncio.run(engine.run())
    assert summary.completed_steps == len(draft.pipeline)
    assert summary.pending_approval == "commit_approval"
    assert capability.calls == list(range(1, len(draft.pipeline) + 1))

    final = engine.respond("lgtm")
    assert final.kind == "finalized"
    assert not engine.plans.exists()
    kinds = [item["kind"] for item in engine.history()]
    assert kinds[0] == "plan_approved"
    assert kinds[-1] == "finalized"


def test_ten_successful_steps_leave_no_plan(tmp_path: Path) -> None:
    config = MaestroConfig.default()
    config.workflow.require_commit_approval = False
    engine = _engine(tmp_path, config=config)
    _seed_plan(engine, steps=10)

    summary = asyncio.run(engine.run())

    assert summary.finalized is True
    assert summary.completed_steps == 10
    assert engine.plans.read() is None


def test_blocker_at_step_four_holds_the_index(tmp_path: Path) -> None:
    capability = RecordingCapability(
        {4: StepResult("blocked", "API key missing", options=["provide API key"])}
    )
    engine = _engine(tmp_path, capability)
    _seed_plan(engine, steps=10)

    summary = asyncio.run(engine.run())

    plan, _ = engine.plans.require()
    assert summary.halted_reason == "API key missing"
    assert plan.state.current_step_index == 3
    assert plan.current_step.number == 4
    assert plan.current_step.status == "blocked"
    assert plan.state.pending_approval == "blocker_decision"
    assert plan.state.blocker.options == ["provide API key", "retry", "revise", "abort"]
    assert [step.status for step in plan.pipeline][:3] == ["completed"] * 3
    assert [step.artifacts for step in plan.pipeline][:3] == [[{"step": 1}], [{"step": 2}],
                                                             [{"step": 3}]]

    with pytest.raises(GateError):
        asyncio.run(engine.run())
    assert engine.plans.require()[0].state.current_step_index == 3

    engine.decide("revise", note="use the staging key")
    plan, _ = engine.plans.require()
    assert plan.current_step.approach == "use the staging key"
    assert plan.state.blocker is None

    asyncio.run(engine.run())
    plan, _ = engine.plans.require()
    assert plan.state.pending_approval == "commit_approval"
    assert capability.calls.count(4) == 2
    assert [step.artifacts for step in plan.pipeline][:3] == [[{"step": 1}], [{"step": 2}],
                                                             [{"step": 3}]]


def test_exceptions_and_preconditions_halt_the_step(tmp_path: Path) -> None:
    engine = _engine(tmp_path, ExplodingCapability())
    _seed_plan(engine, steps=3)

    summary = asyncio.run(engine.run())

    plan, _ = engine.plans.require()
    assert summary.halted_reason == "OSError: disk full"
    assert plan.state.blocker.kind == "failure"
    assert plan.current_step.status == "failed"
    assert plan.state.current_step_index == 0

    engine.capabilities = CapabilityRegistry(default=PreconditionCapability())
    engine.decide("retry")
    asyncio.run(engine.run())
    plan, _ = engine.plans.require()
    assert plan.state.blocker.kind == "blocking"
    assert "set DATABASE_URL" in plan.state.blocker.options
    assert plan.current_step.attempt == 2


def test_restart_resumes_at_persisted_index(tmp_path: Path) -> None:
    first = _engine(tmp_path)
    _seed_plan(first, steps=5)
    asyncio.run(first.run(limit=2))

    capability = RecordingCapability()
    restarted = _engine(tmp_path, capability)
    plan, _ = restarted.plans.require()
    assert plan.state.current_step_index == 2

    asyncio.run(restarted.run(limit=1))
    assert capability.calls == [3]


def test_missing_capability_blocks_instead_of_skipping(tmp_path: Path) -> None:
    engine = WorkflowEngine(tmp_path, MaestroConfig.default())
    _seed_plan(engine, steps=2)

    summary = asyncio.run(engine.run())

    assert summary.completed_steps == 0
    assert "No capability registered" in summary.halted_reason


def test_second_draft_while_plan_active_conflicts(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _seed_plan(engine, steps=2)

    with pytest.raises(PlanConflict):
        engine.draft("add a csv export")


def test_plan_change_keeps_started_steps(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _seed_plan(engine, steps=5)
    asyncio.run(engine.run(limit=2))
    before = engine.plans.require()[0].pipeline.to_list()[:2]

    with pytest.raises(PlanChangeConflict):
        engine.change_plan(remove=[2])
    with pytest.raises(PlanChangeConflict):
        engine.change_plan(add=[StepAddition("code-reviewer", "extra review", at=1)])

    plan = engine.change_plan(
        add=[StepAddition("test-strategist", "add regression tests", at=3)], remove=[5]
    )
    assert plan.pipeline.to_list()[:2] == before
    assert plan.pipeline[2].agent_id == "test-strategist"
    assert len(plan.pipeline) == 5
    assert plan.state.phase == "PLANNING"
    assert plan.state.pending_approval == "plan_approval"
    with pytest.raises(GateError):
        asyncio.run(engine.run())

    engine.respond("yes")
    plan, _ = engine.plans.require()
    assert plan.state.phase == "EXECUTION"
    assert plan.state.current_step_index == 2
    assert plan.pending_change is None


def test_rejected_plan_change_is_reverted(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    original = _seed_plan(engine, steps=4)
    asyncio.run(engine.run(limit=1))
    engine.change_plan(remove=[3, 4])

    outcome = engine.respond("reject")

    plan, _ = engine.plans.require()
    assert outcome.kind == "rejected"
    assert plan.pipeline.agent_ids() == original.pipeline.agent_ids()
    assert plan.state.phase == "EXECUTION"
    assert plan.state.current_step_index == 1


def test_ambiguous_stack_becomes_a_question(tmp_path: Path) -> None:
    (tmp_path / "next.config.js").write_text("", encoding="utf-8")
    (tmp_path / "nuxt.config.ts").write_text("", encoding="utf-8")
    (tmp_path / "tsconfig.json").write_text("{}", encoding="utf-8")
    engine = _engine(tmp_path)

    draft = engine.draft("add a pricing page")
    assert [item.id for item in draft.open_questions] == ["stack.frontend_framework"]
    with pytest.raises(GateError):
        engine.respond("yes")

    draft = engine.answer("stack.frontend_framework", "Nuxt")
    assert draft.profile.frontend_framework == "Nuxt"
    assert "nuxt-specialist" in draft.pipeline.agent_ids()
    assert draft.open_questions == []

    engine.abort()
    redraft = engine.draft("add a pricing page")
    assert redraft.open_questions == []
    assert redraft.profile.frontend_framework == "Nuxt"


def test_declining_a_stack_conflict_leaves_category_unset(tmp_path: Path) -> None:
    (tmp_path / "next.config.js").write_text("", encoding="utf-8")
    (tmp_path / "nuxt.config.ts").write_text("", encoding="utf-8")
    (tmp_path / "tsconfig.json").write_text("{}", encoding="utf-8")
    engine = _engine(tmp_path)
    engine.draft("add a pricing page")

    draft = engine.answer("stack.frontend_framework", "None")

    assert draft.profile.frontend_framework is None
    assert draft.open_questions == []
    assert "nuxt-specialist" not in draft.pipeline.agent_ids()
    assert "nextjs-specialist" not in draft.pipeline.agent_ids()
    assert engine.profile().frontend_framework is None


def test_high_risk_documentation_plan_is_approvable(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    engine = _engine(tmp_path)

    draft = engine.draft("document the authentication flow")

    assert draft.classification.task_type == "documentation"
    assert draft.classification.risk_level == "high"
    assert "security-auditor" in draft.pipeline.agent_ids()
    assert draft.validation.blocking == []
    assert engine.respond("yes").kind == "approved"


def test_rulebook_enabled_opt_in_specialist_is_routed(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    engine = _engine(tmp_path)
    profile = StackProfile(backend_framework="NestJS")
    rulebook = generate_rulebook(profile, engine.catalog, "orders-api")
    engine.rulebook_path.parent.mkdir(parents=True, exist_ok=True)
    engine.rulebook_path.write_text(
        rulebook.replace("## Rules", "- `graphql-specialist`: GraphQL Specialist\n\n## Rules"),
        encoding="utf-8",
    )
    estimate = TaskEstimate(lines_of_code=300, files_touched=9)

    draft = engine.draft("add an orders query", estimate=estimate, task_type="new_feature")

    assert "graphql-specialist" in draft.pipeline.agent_ids()
    assert "websocket-expert" not in draft.pipeline.agent_ids()
    assert draft.validation.blocking == []


def test_unclassified_task_asks_for_type(tmp_path: Path) -> None:
    (tmp_path / "go.mod").write_text("module example.com/app\n\ngo 1.22\n", encoding="utf-8")
    engine = _engine(tmp_path)

    draft = engine.draft("hello there")
    assert draft.classification is None
    assert [item.id for item in draft.open_questions] == ["task_type"]

    outcome = engine.respond("documentation")
    assert outcome.kind == "answered"
    draft = engine.load_draft()
    assert draft.classification.task_type == "documentation"
    assert len(draft.pipeline) > 0


def test_too_few_signals_asks_for_configuration(tmp_path: Path) -> None:
    engine = _engine(tmp_path)

    draft = engine.draft("add a pricing page")
    assert [item.id for item in draft.open_questions] == ["stack.profile"]

    draft = engine.answer("stack.profile", "language=Python, backend_framework=FastAPI")
    assert draft.profile.backend_framework == "FastAPI"
    assert "fastapi-specialist" in draft.pipeline.agent_ids()


def test_validation_failure_blocks_until_override(tmp_path: Path) -> None:
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    rulebook = tmp_path / ".claude" / "RULEBOOK.md"
    rulebook.parent.mkdir()
    rulebook.write_text(
        "## Project Overview\n\n## Tech Stack\n\n## Active Agents\n\n- `code-reviewer`\n",
        encoding="utf-8",
    )
    engine = _engine(tmp_path)
    draft = engine.draft("fix the login button crash")
    assert not draft.validation.passed

    with pytest.raises(ValidationFailure) as excinfo:
        engine.respond("yes")
    assert "override with a reason" in excinfo.value.options
    assert not engine.plans.exists()

    engine.override_validation("agents are being added to the RULEBOOK today")
    assert engine.respond("yes").kind == "approved"
    plan, _ = engine.plans.require()
    assert plan.validation.override_reason.startswith("agents are being added")


def test_required_rulebook_missing_is_configuration_missing(tmp_path: Path) -> None:
    config = MaestroConfig.default()
    config.rulebook.required = True
    engine = _engine(tmp_path, config=config)

    with pytest.raises(ConfigurationMissing) as excinfo:
        engine.draft("add a pricing page")

    assert excinfo.value.options == ["generate RULEBOOK", "abort"]


def test_abort_during_execution_deletes_plan(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _seed_plan(engine, steps=3)
    asyncio.run(engine.run(limit=1))

    outcome = engine.respond("abort")

    assert outcome.kind == "aborted"
    assert engine.plans.read() is None
    assert engine.history()[-1]["kind"] == "aborted"


def test_detection_is_cached_until_rescan(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    (tmp_path / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    assert engine.profile().backend_framework == "NestJS"

    (tmp_path / "Dockerfile").write_text("FROM node:20\n", encoding="utf-8")
    assert engine.profile().container is None

    engine.rescan()
    assert engine.profile().container == "Docker"
