from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from maestro.classifier import TaskClassification
from maestro.stack import StackProfile

WorkflowPhase = Literal["PLANNING", "EXECUTION"]
PendingApproval = Literal["none", "plan_approval", "commit_approval", "blocker_decision"]
StepStatus = Literal["pending", "in_progress", "completed", "failed", "blocked"]

PLAN_SECTIONS: tuple[tuple[str, str], ...] = (
    ("context", "Context"),
    ("documentation_references", "Documentation References"),
    ("selected_agents", "Selected Agents"),
    ("implementation_plan", "Implementation Plan"),
    ("validation_results", "Validation Results"),
    ("expected_outcomes", "Expected Outcomes"),
    ("approval_record", "Approval Record"),
)


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


@dataclass(slots=True)
class PipelineStep:
    number: int
    agent_id: str
    phase: str
    task: str
    expected_output: str
    status: StepStatus = "pending"
    attempt: int = 0
    approach: str | None = None
    notes: list[str] = field(default_factory=list)
    result_summary: str = ""
    artifacts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "agent_id": self.agent_id,
            "phase": self.phase,
            "task": self.task,
            "expected_output": self.expected_output,
            "status": self.status,
            "attempt": self.attempt,
            "approach": self.approach,
            "notes": list(self.notes),
            "result_summary": self.result_summary,
            "artifacts": list(self.artifacts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineStep:
        return cls(
            number=int(data["number"]),
            agent_id=str(data["agent_id"]),
            phase=str(data["phase"]),
            task=str(data.get("task", "")),
            expected_output=str(data.get("expected_output", "")),
            status=data.get("status", "pending"),
            attempt=int(data.get("attempt", 0)),
            approach=data.get("approach"),
            notes=[str(item) for item in data.get("notes", [])],
            result_summary=str(data.get("result_summary", "")),
            artifacts=[item for item in data.get("artifacts", []) if isinstance(item, dict)],
        )


class Pipeline:
    def __init__(self, steps: list[PipelineStep] | None = None) -> None:
        self.steps: list[PipelineStep] = list(steps or [])
        self.renumber()

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[PipelineStep]:
        return iter(self.steps)

    def __getitem__(self, index: int) -> PipelineStep:
        return self.steps[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pipeline):
            return NotImplemented
        return self.to_list() == other.to_list()

    def renumber(self) -> None:
        for index, step in enumerate(self.steps, start=1):
            step.number = index

    def agent_ids(self) -> list[str]:
        return [step.agent_id for step in self.steps]

    def phases(self) -> dict[str, list[PipelineStep]]:
        partition: dict[str, list[PipelineStep]] = {}
        for step in self.steps:
            partition.setdefault(step.phase, []).append(step)
        return partition

    def insert(self, index: int, step: PipelineStep) -> None:
        self.steps.insert(index, step)
        self.renumber()

    def remove(self, index: int) -> PipelineStep:
        removed = self.steps.pop(index)
        self.renumber()
        return removed

    def to_list(self) -> list[dict[str, Any]]:
        return [step.to_dict() for step in self.steps]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> Pipeline:
        return cls([PipelineStep.from_dict(item) for item in data if isinstance(item, dict)])


@dataclass(slots=True)
class Violation:
    rule: str
    message: str
    blocking: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"rule": self.rule, "message": self.message, "blocking": self.blocking}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Violation:
        return cls(
            rule=str(data["rule"]),
            message=str(data["message"]),
            blocking=bool(data.get("blocking", True)),
        )


@dataclass(slots=True)
class ValidationResult:
    violations: list[Violation] = field(default_factory=list)
    override_reason: str | None = None
    validated_at: str = field(default_factory=utcnow_iso)

    @property
    def blocking(self) -> list[Violation]:
        return [item for item in self.violations if item.blocking]

    @property
    def warnings(self) -> list[Violation]:
        return [item for item in self.violations if not item.blocking]

    @property
    def passed(self) -> bool:
        return not self.blocking or self.override_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "violations": [item.to_dict() for item in self.violations],
            "override_reason": self.override_reason,
            "validated_at": self.validated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ValidationResult:
        if not data:
            return cls()
        return cls(
            violations=[Violation.from_dict(item) for item in data.get("violations", [])],
            override_reason=data.get("override_reason"),
            validated_at=str(data.get("validated_at") or utcnow_iso()),
        )


@dataclass(slots=True)
class Blocker:
    step_number: int
    reason: str
    options: list[str]
    kind: Literal["blocking", "failure"] = "blocking"

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "reason": self.reason,
            "options": list(self.options),
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Blocker | None:
        if not data:
            return None
        return cls(
            step_number=int(data["step_number"]),
            reason=str(data.get("reason", "")),
            options=[str(item) for item in data.get("options", [])],
            kind=data.get("kind", "blocking"),
        )


@dataclass(slots=True)
class WorkflowState:
    phase: WorkflowPhase = "PLANNING"
    current_step_index: int = 0
    pending_approval: PendingApproval = "none"
    blocker: Blocker | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "current_step_index": self.current_step_index,
            "pending_approval": self.pending_approval,
            "blocker": self.blocker.to_dict() if self.blocker else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkflowState:
        data = data or {}
        return cls(
            phase=data.get("phase", "PLANNING"),
            current_step_index=int(data.get("current_step_index", 0)),
            pending_approval=data.get("pending_approval", "none"),
            blocker=Blocker.from_dict(data.get("blocker")),
        )


@dataclass(slots=True)
class Question:
    id: str
    kind: Literal["stack", "task_type", "configuration"]
    prompt: str
    options: list[str] = field(default_factory=list)
    answer: str | None = None

    @property
    def answered(self) -> bool:
        return self.answer is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "prompt": self.prompt,
            "options": list(self.options),
            "answer": self.answer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Question:
        return cls(
            id=str(data["id"]),
            kind=data["kind"],
            prompt=str(data.get("prompt", "")),
            options=[str(item) for item in data.get("options", [])],
            answer=data.get("answer"),
        )


@dataclass(slots=True)
class Draft:
    """A plan being drafted in PLANNING; never written to the PlanStore."""

    draft_id: str
    task_description: str
    profile: StackProfile
    classification: TaskClassification | None = None
    questions: list[Question] = field(default_factory=list)
    pipeline: Pipeline = field(default_factory=Pipeline)
    validation: ValidationResult = field(default_factory=ValidationResult)
    expected_outcomes: list[str] = field(default_factory=list)
    documentation_references: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    estimate: dict[str, Any] | None = None
    created_at: str = field(default_factory=utcnow_iso)

    @property
    def open_questions(self) -> list[Question]:
        return [item for item in self.questions if not item.answered]

    def to_dict(self) -> dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "task_description": self.task_description,
            "profile": self.profile.to_dict(),
            "classification": self.classification.to_dict() if self.classification else None,
            "questions": [item.to_dict() for item in self.questions],
            "pipeline": self.pipeline.to_list(),
            "validation": self.validation.to_dict(),
            "expected_outcomes": list(self.expected_outcomes),
            "documentation_references": list(self.documentation_references),
            "notes": list(self.notes),
            "estimate": self.estimate,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Draft:
        classification = data.get("classification")
        return cls(
            draft_id=str(data["draft_id"]),
            task_description=str(data["task_description"]),
            profile=StackProfile.from_dict(data.get("profile")),
            classification=TaskClassification.from_dict(classification) if classification else None,
            questions=[Question.from_dict(item) for item in data.get("questions", [])],
            pipeline=Pipeline.from_list(data.get("pipeline", [])),
            validation=ValidationResult.from_dict(data.get("validation")),
            expected_outcomes=[str(item) for item in data.get("expected_outcomes", [])],
            documentation_references=[
                str(item) for item in data.get("documentation_references", [])
            ],
            notes=[str(item) for item in data.get("notes", [])],
            estimate=data.get("estimate"),
            created_at=str(data.get("created_at") or utcnow_iso()),
        )


@dataclass(slots=True)
class Plan:
    """The temporal reference: sole source of truth once execution starts."""

    plan_id: str
    task_description: str
    profile: StackProfile
    classification: TaskClassification
    pipeline: Pipeline
    validation: ValidationResult
    selected_agents: list[dict[str, Any]] = field(default_factory=list)
    expected_outcomes: list[str] = field(default_factory=list)
    documentation_references: list[str] = field(default_factory=list)
    approvals: list[dict[str, Any]] = field(default_factory=list)
    state: WorkflowState = field(default_factory=WorkflowState)
    pending_change: dict[str, Any] | None = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    @property
    def current_step(self) -> PipelineStep | None:
        index = self.state.current_step_index
        if 0 <= index < len(self.pipeline):
            return self.pipeline[index]
        return None

    @property
    def complete(self) -> bool:
        return self.state.current_step_index >= len(self.pipeline) and all(
            step.status == "completed" for step in self.pipeline
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": {
                "plan_id": self.plan_id,
                "task_description": self.task_description,
                "stack_profile": self.profile.to_dict(),
                "classification": self.classification.to_dict(),
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            },
            "documentation_references": list(self.documentation_references),
            "selected_agents": [dict(item) for item in self.selected_agents],
            "implementation_plan": {
                "state": self.state.to_dict(),
                "steps": self.pipeline.to_list(),
                "pending_change": self.pending_change,
            },
            "validation_results": self.validation.to_dict(),
            "expected_outcomes": list(self.expected_outcomes),
            "approval_record": [dict(item) for item in self.approvals],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Plan:
        context = data.get("context", {})
        implementation = data.get("implementation_plan", {})
        return cls(
            plan_id=str(context["plan_id"]),
            task_description=str(context.get("task_description", "")),
            profile=StackProfile.from_dict(context.get("stack_profile")),
            classification=TaskClassification.from_dict(context["classification"]),
            pipeline=Pipeline.from_list(implementation.get("steps", [])),
            validation=ValidationResult.from_dict(data.get("validation_results")),
            selected_agents=[
                item for item in data.get("selected_agents", []) if isinstance(item, dict)
            ],
            expected_outcomes=[str(item) for item in data.get("expected_outcomes", [])],
            documentation_references=[
                str(item) for item in data.get("documentation_references", [])
            ],
            approvals=[item for item in data.get("approval_record", []) if isinstance(item, dict)],
            state=WorkflowState.from_dict(implementation.get("state")),
            pending_change=implementation.get("pending_change"),
            created_at=str(context.get("created_at") or utcnow_iso()),
            updated_at=str(context.get("updated_at") or utcnow_iso()),
        )


def _bullets(items: list[str], empty: str = "None") -> list[str]:
    if not items:
        return [f"- {empty}"]
    return [f"- {item}" for item in items]


def render_markdown(plan: Plan) -> str:
    """Human-readable view of the plan document; the JSON file stays authoritative."""
    state = plan.state
    classification = plan.classification
    lines = [f"# Temporal Reference: {plan.task_description}", ""]

    lines += ["## Context", ""]
    lines.append(f"- **Plan:** {plan.plan_id}")
    lines.append(f"- **Task:** {plan.task_description}")
    lines.append(
        f"- **Classification:** {classification.task_type} / {classification.complexity}"
        f" / risk {classification.risk_level}"
    )
    stack = [f"{category}: {value}" for category, value in plan.profile.detected()]
    lines.append(f"- **Stack:** {', '.join(stack) if stack else 'Not detected'}")
    lines.append(f"- **Phase:** {state.phase} (pending: {state.pending_approval})")
    lines.append("")

    lines += ["## Documentation References", ""]
    lines += _bullets(plan.documentation_references)
    lines.append("")

    lines += ["## Selected Agents", ""]
    lines += _bullets(
        [f"{item.get('id')} ({item.get('phase')}, {item.get('category')})"
         for item in plan.selected_agents]
    )
    lines.append("")

    lines += ["## Implementation Plan", ""]
    if not len(plan.pipeline):
        lines.append("- No steps")
    for index, step in enumerate(plan.pipeline):
        marker = "x" if step.status == "completed" else " "
        cursor = " <- current" if index == state.current_step_index else ""
        lines.append(
            f"{step.number}. [{marker}] **{step.agent_id}** ({step.phase}): {step.task}{cursor}"
        )
        lines.append(f"   - Expected: {step.expected_output}")
        if step.approach:
            lines.append(f"   - Approach: {step.approach}")
        if step.status not in {"pending", "completed"}:
            lines.append(f"   - Status: {step.status}")
    if state.blocker is not None:
        lines.append("")
        lines.append(f"**Blocked at step {state.blocker.step_number}:** {state.blocker.reason}")
        lines += _bullets(state.blocker.options)
    lines.append("")

    lines += ["## Validation Results", ""]
    lines.append(f"- Passed: {'yes' if plan.validation.passed else 'no'}")
    for violation in plan.validation.violations:
        level = "BLOCKING" if violation.blocking else "WARNING"
        lines.append(f"- {level} [{violation.rule}] {violation.message}")
    if plan.validation.override_reason:
        lines.append(f"- Overridden: {plan.validation.override_reason}")
    lines.append("")

    lines += ["## Expected Outcomes", ""]
    lines += _bullets(plan.expected_outcomes)
    lines.append("")

    lines += ["## Approval Record", ""]
    lines += _bullets(
        [f"{item.get('at')}: {item.get('gate')} {item.get('decision')} ({item.get('token')!r})"
         for item in plan.approvals]
    )
    return "\n".join(lines).rstrip() + "\n"
