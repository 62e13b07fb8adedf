from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from maestro.agents import AgentCatalog, AgentRouter
from maestro.capabilities import CapabilityRegistry, StepResult
from maestro.classifier import TASK_TYPES, TaskClassifier, TaskEstimate
from maestro.config import MaestroConfig
from maestro.errors import (
    BlockingIssue,
    ConfigurationMissing,
    GateError,
    PlanChangeConflict,
    PlanConflict,
    UnclassifiedTask,
    ValidationFailure,
)
from maestro.rulebook import Rulebook, load_rulebook, validate_plan
from maestro.stack import StackDetector, StackProfile, scan_workspace
from maestro.state import (
    Blocker,
    Draft,
    Pipeline,
    PipelineStep,
    Plan,
    PlanStore,
    Question,
    StateStore,
    ValidationResult,
)
from maestro.state.plan import utcnow_iso

logger = logging.getLogger(__name__)

BLOCKER_OPTIONS = ("retry", "revise", "abort")
PUNCTUATION_PATTERN = re.compile(r"[\s.!]+$")

OutcomeKind = Literal[
    "approved",
    "rejected",
    "aborted",
    "answered",
    "noted",
    "finalized",
    "decided",
]


@dataclass(slots=True)
class GateOutcome:
    kind: OutcomeKind
    message: str
    phase: str
    pending_approval: str
    plan_id: str | None = None


@dataclass(slots=True)
class StepAddition:
    agent_id: str
    task: str | None = None
    # 1-based position the new step will occupy; None appends
    at: int | None = None


@dataclass(slots=True)
class RunSummary:
    plan_id: str
    executed: int
    completed_steps: int
    total_steps: int
    current_step_index: int
    pending_approval: str
    halted_reason: str | None = None
    finalized: bool = False


def normalize_token(text: str) -> str:
    return PUNCTUATION_PATTERN.sub("", " ".join(text.lower().split()))


def parse_stack_answer(value: str) -> dict[str, str | None]:
    """Parse ``category=Technology, category2=none`` into profile answers."""
    answers: dict[str, str | None] = {}
    for chunk in value.split(","):
        if not chunk.strip():
            continue
        key, sep, technology = chunk.partition("=")
        if not sep:
            raise ValueError(f"Expected category=technology, got: {chunk.strip()}")
        technology = technology.strip()
        answers[key.strip()] = None if technology.lower() in {"", "none"} else technology
    return answers


class WorkflowEngine:
    """Two-phase planning/execution state machine over a single persisted Plan.

    PLANNING works on a Draft kept in the state store; approval creates the
    Plan, which then drives execution step by step. The engine is the only
    writer of the Plan document.
    """

    def __init__(
        self,
        workspace_root: Path,
        config: MaestroConfig,
        *,
        capabilities: CapabilityRegistry | None = None,
        catalog: AgentCatalog | None = None,
        state_store: StateStore | None = None,
        plan_store: PlanStore | None = None,
    ) -> None:
        self.workspace_root = workspace_root.resolve()
        self.config = config
        self.catalog = catalog or AgentCatalog.default()
        self.router = AgentRouter(self.catalog, config.routing.tiers)
        self.classifier = TaskClassifier(config.classification)
        self.detector = StackDetector(min_categories=config.detection.min_categories)
        self.capabilities = capabilities or CapabilityRegistry()
        self.state = state_store or StateStore(
            self.workspace_root, state_dir=config.state.directory
        )
        self.plans = plan_store or PlanStore(self.workspace_root, state_dir=config.state.directory)

    # -- bookkeeping -----------------------------------------------------

    def _record(self, kind: str, **fields: Any) -> None:
        decision = {"id": f"dec-{uuid4().hex[:8]}", "kind": kind, **fields}
        self.state.add_decision(decision)
        logger.info("Recorded %s decision", kind)

    def _token_kind(self, text: str) -> str | None:
        token = normalize_token(text)
        approval = self.config.approval
        if token in {normalize_token(item) for item in approval.approve}:
            return "approve"
        if token in {normalize_token(item) for item in approval.reject}:
            return "reject"
        if token in {normalize_token(item) for item in approval.abort}:
            return "abort"
        return None

    @property
    def rulebook_path(self) -> Path:
        return self.workspace_root / self.config.rulebook.path

    def _rulebook(self) -> Rulebook | None:
        return load_rulebook(self.rulebook_path)

    def load_draft(self) -> Draft | None:
        payload = self.state.get_json("draft", default={})
        if not payload:
            return None
        return Draft.from_dict(payload)

    def _save_draft(self, draft: Draft) -> None:
        self.state.set_json("draft", draft.to_dict())

    # -- stack profile ---------------------------------------------------

    def detection(self, *, refresh: bool = False) -> dict[str, Any]:
        """Cached detection report for this workspace, scanned once unless refreshed."""
        cached = self.state.get_json("profile", default={})
        if cached and not refresh:
            return cached
        report = self.detector.inspect(scan_workspace(self.workspace_root))
        payload = report.to_dict()
        payload["detected_count"] = report.detected_count
        payload["min_categories"] = report.min_categories
        payload["answers"] = {} if refresh else dict(cached.get("answers", {}))
        self.state.set_json("profile", payload)
        logger.info(
            "Detected %d stack categories (%d conflicts)",
            report.detected_count,
            len(report.conflicts),
        )
        return payload

    def rescan(self) -> dict[str, Any]:
        return self.detection(refresh=True)

    def profile(self) -> StackProfile:
        payload = self.detection()
        base = StackProfile.from_dict(payload.get("profile"))
        return base.with_answers(payload.get("answers", {}))

    def _remember_answers(self, answers: dict[str, str | None]) -> None:
        def _updater(payload: Any) -> dict[str, Any]:
            result = payload if isinstance(payload, dict) else {}
            result.setdefault("answers", {}).update(answers)
            return result

        self.state.update_json("profile", _updater)

    def _stack_questions(self, payload: dict[str, Any], profile: StackProfile) -> list[Question]:
        answers = payload.get("answers", {})
        questions = [
            Question(
                id=f"stack.{category}",
                kind="stack",
                prompt=f"Conflicting {category} signals. Which one does this project use?",
                options=list(candidates),
            )
            for category, candidates in payload.get("conflicts", {}).items()
            if category not in answers
        ]
        minimum = int(payload.get("min_categories", self.config.detection.min_categories))
        if len(profile.detected()) < minimum:
            questions.append(
                Question(
                    id="stack.profile",
                    kind="configuration",
                    prompt=(
                        "Too few stack signals were found. Describe the stack as "
                        "category=Technology pairs, or answer 'none' to continue."
                    ),
                    options=["answer stack questions", "generate RULEBOOK", "abort"],
                )
            )
        return questions

    # -- planning --------------------------------------------------------

    def _require_no_plan(self) -> None:
        if self.plans.exists():
            loaded = self.plans.read()
            plan_id = loaded[0].plan_id if loaded else None
            raise PlanConflict(
                f"A plan is already active ({plan_id}); finish or abort it first.",
                options=["run the active plan", "abort the active plan"],
                details={"active_plan_id": plan_id},
            )

    def draft(
        self,
        description: str,
        *,
        estimate: TaskEstimate | None = None,
        task_type: str | None = None,
    ) -> Draft:
        if not description.strip():
            raise ValueError("Task description is empty.")
        self._require_no_plan()
        if self.config.rulebook.required and not self.rulebook_path.exists():
            raise ConfigurationMissing(
                f"RULEBOOK not found at {self.config.rulebook.path}.",
                options=["generate RULEBOOK", "abort"],
            )

        payload = self.detection()
        profile = self.profile()
        draft = Draft(
            draft_id=f"plan-{uuid4().hex[:8]}",
            task_description=description.strip(),
            profile=profile,
            questions=self._stack_questions(payload, profile),
            estimate=estimate.to_dict() if estimate else None,
        )
        if task_type is not None:
            if task_type not in TASK_TYPES:
                raise ValueError(f"Unknown task type: {task_type}")
            draft.questions.append(
                Question(id="task_type", kind="task_type", prompt="Task type", answer=task_type)
            )
        self._rebuild(draft)
        self._save_draft(draft)
        logger.info(
            "Drafted %s with %d step(s) and %d open question(s)",
            draft.draft_id,
            len(draft.pipeline),
            len(draft.open_questions),
        )
        return draft

    def _rebuild(self, draft: Draft) -> None:
        answered_type = next(
            (item.answer for item in draft.questions if item.kind == "task_type" and item.answer),
            None,
        )
        estimate = TaskEstimate.from_dict(draft.estimate) if draft.estimate else None
        try:
            draft.classification = self.classifier.classify(
                draft.task_description, draft.profile, estimate=estimate, task_type=answered_type
            )
        except UnclassifiedTask as exc:
            draft.classification = None
            if not any(item.id == "task_type" for item in draft.questions):
                draft.questions.append(
                    Question(id="task_type", kind="task_type", prompt=str(exc), options=exc.options)
                )

        if draft.classification is None:
            draft.pipeline = Pipeline()
            draft.validation = ValidationResult()
            return
        rulebook = self._rulebook()
        draft.pipeline = self.router.build_pipeline(
            draft.profile,
            draft.classification,
            draft.task_description,
            enabled=rulebook.active_agents if rulebook else (),
        )
        draft.validation = validate_plan(
            draft.pipeline, draft.classification, rulebook, self.config
        )
        draft.expected_outcomes = [step.expected_output for step in draft.pipeline]
        draft.documentation_references = [
            path
            for path in (self.config.rulebook.path, "README.md")
            if (self.workspace_root / path).exists()
        ]

    def _require_draft(self) -> Draft:
        draft = self.load_draft()
        if draft is None:
            raise GateError("No plan is being drafted.", options=["draft a plan"])
        return draft

    def answer(self, question_id: str, value: str) -> Draft:
        draft = self._require_draft()
        question = next((item for item in draft.questions if item.id == question_id), None)
        if question is None:
            raise GateError(
                f"Unknown question: {question_id}",
                options=[item.id for item in draft.open_questions],
            )
        value = value.strip()
        if question.kind == "task_type":
            if value not in TASK_TYPES:
                raise GateError(f"Unknown task type: {value}", options=list(TASK_TYPES))
        elif question.kind == "stack":
            category = question.id.split(".", 1)[1]
            technology = None if normalize_token(value) in {"", "none"} else value
            answers: dict[str, str | None] = {category: technology}
            draft.profile = draft.profile.with_answers(answers)
            self._remember_answers(answers)
        elif normalize_token(value) != "none":
            try:
                answers = parse_stack_answer(value)
                draft.profile = draft.profile.with_answers(answers)
            except ValueError as exc:
                raise GateError(str(exc), options=list(StackProfile.categories())) from exc
            self._remember_answers(answers)

        question.answer = value
        self._rebuild(draft)
        self._save_draft(draft)
        self._record("answer", question_id=question_id, value=value, draft_id=draft.draft_id)
        return draft

    def override_validation(self, reason: str) -> ValidationResult:
        if not reason.strip():
            raise ValueError("An override needs a reason.")
        loaded = self.plans.read()
        if loaded is not None:
            plan, revision = loaded
            if plan.state.pending_approval != "plan_approval":
                raise GateError("Only a pending plan change can be overridden.")
            plan.validation.override_reason = reason.strip()
            self.plans.save(plan, revision)
            self._record("override", plan_id=plan.plan_id, reason=reason.strip())
            return plan.validation
        draft = self._require_draft()
        draft.validation.override_reason = reason.strip()
        self._save_draft(draft)
        self._record("override", draft_id=draft.draft_id, reason=reason.strip())
        return draft.validation

    def _approve_draft(self, draft: Draft, token: str) -> Plan:
        if draft.open_questions:
            raise GateError(
                "Answer the open questions before approving.",
                options=[item.id for item in draft.open_questions],
            )
        if draft.classification is None:
            raise GateError("The task type is unknown.", options=list(TASK_TYPES))
        if not draft.validation.passed:
            raise ValidationFailure(
                "The drafted plan has blocking violations.",
                options=["fix the plan", "override with a reason", "abort"],
                details={"violations": [item.to_dict() for item in draft.validation.blocking]},
            )
        plan = Plan(
            plan_id=draft.draft_id,
            task_description=draft.task_description,
            profile=draft.profile,
            classification=draft.classification,
            pipeline=draft.pipeline,
            validation=draft.validation,
            selected_agents=self._selected_agents(draft.pipeline),
            expected_outcomes=list(draft.expected_outcomes),
            documentation_references=list(draft.documentation_references),
            approvals=[{"gate": "plan_approval", "decision": "approved", "token": token,
                        "at": utcnow_iso()}],
        )
        plan.state.phase = "EXECUTION"
        self.plans.create(plan)
        self.state.delete("draft")
        self._record("plan_approved", plan_id=plan.plan_id, token=token)
        return plan

    def _selected_agents(self, pipeline: Pipeline) -> list[dict[str, Any]]:
        selected: list[dict[str, Any]] = []
        for agent_id in dict.fromkeys(pipeline.agent_ids()):
            if agent_id in self.catalog:
                selected.append(self.catalog.get(agent_id).to_dict())
        return selected

    # -- gates -----------------------------------------------------------

    def respond(self, text: str) -> GateOutcome:
        """Interpret user input at the current gate; only approval tokens approve."""
        kind = self._token_kind(text)
        loaded = self.plans.read()
        if loaded is not None:
            return self._respond_to_plan(loaded[0], loaded[1], text, kind)

        draft = self.load_draft()
        if draft is None:
            raise ConfigurationMissing(
                "No active plan or draft in this workspace.", options=["draft a plan"]
            )
        if kind == "approve":
            plan = self._approve_draft(draft, text.strip())
            return GateOutcome("approved", "Plan approved.", "EXECUTION", "none", plan.plan_id)
        if kind == "reject":
            self.state.delete("draft")
            self._record("plan_rejected", draft_id=draft.draft_id, token=text.strip())
            return GateOutcome("rejected", "Draft discarded.", "PLANNING", "none")
        if kind == "abort":
            self.abort()
            return GateOutcome("aborted", "Task aborted.", "PLANNING", "none")

        open_questions = draft.open_questions
        if open_questions:
            draft = self.answer(open_questions[0].id, text)
            return GateOutcome(
                "answered",
                f"Answered {open_questions[0].id}.",
                "PLANNING",
                "plan_approval",
                draft.draft_id,
            )
        draft.notes.append(text.strip())
        self._save_draft(draft)
        self._record("draft_note", draft_id=draft.draft_id, note=text.strip())
        return GateOutcome("noted", "Note added to the draft.", "PLANNING", "plan_approval")

    def _respond_to_plan(
        self, plan: Plan, revision: int, text: str, kind: str | None
    ) -> GateOutcome:
        pending = plan.state.pending_approval
        if kind == "abort":
            self.abort()
            return GateOutcome("aborted", "Task aborted.", "PLANNING", "none", plan.plan_id)

        if pending == "plan_approval":
            if kind == "approve":
                if not plan.validation.passed:
                    raise ValidationFailure(
                        "The changed plan has blocking violations.",
                        options=["override with a reason", "reject the change", "abort"],
                        details={
                            "violations": [item.to_dict() for item in plan.validation.blocking]
                        },
                    )
                self._close_change(plan, text, "approved")
            elif kind == "reject":
                snapshot = plan.pending_change or {}
                plan.pipeline = Pipeline.from_list(snapshot.get("steps", []))
                plan.validation = ValidationResult.from_dict(snapshot.get("validation"))
                plan.selected_agents = self._selected_agents(plan.pipeline)
                self._close_change(plan, text, "rejected")
            else:
                return self._note(plan, revision, text)
            self.plans.save(plan, revision)
            return GateOutcome(
                "approved" if kind == "approve" else "rejected",
                f"Plan change {'approved' if kind == 'approve' else 'reverted'}.",
                plan.state.phase,
                plan.state.pending_approval,
                plan.plan_id,
            )

        if pending == "commit_approval":
            if kind == "approve":
                self.finalize(token=text.strip())
                return GateOutcome(
                    "finalized", "Work finalized; plan removed.", "PLANNING", "none", plan.plan_id
                )
            if kind == "reject":
                plan.approvals.append(
                    {"gate": "commit_approval", "decision": "rejected", "token": text.strip(),
                     "at": utcnow_iso()}
                )
                self.plans.save(plan, revision)
                self._record("commit_rejected", plan_id=plan.plan_id, token=text.strip())
                return GateOutcome(
                    "rejected",
                    "Commit not approved; change the plan or abort.",
                    "EXECUTION",
                    pending,
                    plan.plan_id,
                )
            return self._note(plan, revision, text)

        if pending == "blocker_decision":
            choice = normalize_token(text)
            if choice in BLOCKER_OPTIONS or (
                plan.state.blocker and text.strip() in plan.state.blocker.options
            ):
                self.decide(text.strip())
                return GateOutcome(
                    "decided", f"Decision recorded: {text.strip()}", "EXECUTION", "none",
                    plan.plan_id,
                )
            if kind is not None:
                raise GateError(
                    "A blocker needs an explicit decision.",
                    options=plan.state.blocker.options if plan.state.blocker else [],
                )
            self.decide("revise", note=text.strip())
            return GateOutcome(
                "decided", "Step approach revised.", "EXECUTION", "none", plan.plan_id
            )

        if kind is not None:
            raise GateError("Nothing is awaiting approval.", options=["run", "change", "abort"])
        return self._note(plan, revision, text)

    def _note(self, plan: Plan, revision: int, text: str) -> GateOutcome:
        step = plan.current_step
        if step is not None:
            step.notes.append(text.strip())
            self.plans.save(plan, revision)
        self._record("change_request", plan_id=plan.plan_id, note=text.strip())
        return GateOutcome(
            "noted",
            "Request noted; use a plan change to alter the remaining steps.",
            plan.state.phase,
            plan.state.pending_approval,
            plan.plan_id,
        )

    def _close_change(self, plan: Plan, text: str, decision: str) -> None:
        plan.pending_change = None
        plan.state.phase = "EXECUTION"
        plan.state.pending_approval = "none"
        self._settle_completion(plan)
        plan.approvals.append(
            {"gate": "plan_change", "decision": decision, "token": text.strip(),
             "at": utcnow_iso()}
        )
        self._record(f"plan_change_{decision}", plan_id=plan.plan_id, token=text.strip())

    def _settle_completion(self, plan: Plan) -> None:
        if plan.complete and plan.state.pending_approval == "none":
            plan.state.pending_approval = "commit_approval"

    # -- execution -------------------------------------------------------

    def _step_context(self, plan: Plan) -> dict[str, Any]:
        return {
            "workspace_root": str(self.workspace_root),
            "plan_id": plan.plan_id,
            "task_description": plan.task_description,
            "profile": plan.profile.to_dict(),
            "classification": plan.classification.to_dict(),
            "step_index": plan.state.current_step_index,
        }

    async def _execute(self, plan: Plan, step: PipelineStep) -> StepResult:
        capability = self.capabilities.for_step(step)
        if capability is None:
            return StepResult(
                "blocked",
                f"No capability registered for {step.agent_id}.",
                options=list(BLOCKER_OPTIONS),
            )
        try:
            return await capability.run(step, self._step_context(plan))
        except BlockingIssue as exc:
            return StepResult("blocked", str(exc), options=exc.options)
        except Exception as exc:
            logger.exception("Step %d (%s) raised", step.number, step.agent_id)
            return StepResult("failure", f"{type(exc).__name__}: {exc}")

    async def run(self, *, limit: int | None = None) -> RunSummary:
        plan, revision = self.plans.require()
        if plan.state.phase != "EXECUTION":
            raise GateError("A plan change is awaiting approval.", options=["respond", "abort"])
        if plan.state.pending_approval != "none":
            raise GateError(
                f"Waiting for {plan.state.pending_approval}.",
                options=plan.state.blocker.options if plan.state.blocker else ["respond"],
            )

        executed = 0
        halted: str | None = None
        while limit is None or executed < limit:
            step = plan.current_step
            if step is None:
                break
            step.status = "in_progress"
            step.attempt += 1
            revision = self.plans.save(plan, revision)
            logger.info("Running step %d/%d: %s", step.number, len(plan.pipeline), step.agent_id)

            result = await self._execute(plan, step)
            executed += 1
            step.result_summary = result.summary
            step.artifacts.extend(result.artifacts)
            if result.succeeded:
                step.status = "completed"
                plan.state.current_step_index += 1
                revision = self.plans.save(plan, revision)
                continue

            step.status = "blocked" if result.status == "blocked" else "failed"
            options = list(dict.fromkeys([*result.options, *BLOCKER_OPTIONS]))
            plan.state.blocker = Blocker(
                step_number=step.number,
                reason=result.summary or f"Step {step.number} did not succeed.",
                options=options,
                kind="blocking" if result.status == "blocked" else "failure",
            )
            plan.state.pending_approval = "blocker_decision"
            revision = self.plans.save(plan, revision)
            halted = plan.state.blocker.reason
            logger.warning("Step %d halted: %s", step.number, halted)
            self._record(
                "step_halted", plan_id=plan.plan_id, step=step.number, reason=halted,
                status=step.status,
            )
            break

        finalized = False
        if halted is None and plan.complete:
            if self.config.workflow.require_commit_approval:
                plan.state.pending_approval = "commit_approval"
                revision = self.plans.save(plan, revision)
            else:
                self.finalize()
                finalized = True

        return RunSummary(
            plan_id=plan.plan_id,
            executed=executed,
            completed_steps=sum(1 for step in plan.pipeline if step.status == "completed"),
            total_steps=len(plan.pipeline),
            current_step_index=plan.state.current_step_index,
            pending_approval="none" if finalized else plan.state.pending_approval,
            halted_reason=halted,
            finalized=finalized,
        )

    def decide(self, option: str, *, note: str | None = None) -> Plan:
        plan, revision = self.plans.require()
        blocker = plan.state.blocker
        if plan.state.pending_approval != "blocker_decision" or blocker is None:
            raise GateError("No blocker is awaiting a decision.")
        choice = normalize_token(option)
        if choice not in BLOCKER_OPTIONS:
            if option.strip() not in blocker.options:
                raise GateError(f"Unknown option: {option}", options=blocker.options)
            # remediation chosen from the blocker's own list
            note = option.strip() if note is None else f"{option.strip()}: {note}"
            choice = "revise"
        if choice == "abort":
            self.abort()
            return plan
        step = plan.current_step
        if step is None:
            raise GateError("The plan has no current step.")
        if choice == "revise":
            if not note:
                raise GateError("A revised approach needs a note.", options=["retry", "abort"])
            step.approach = note
            step.notes.append(f"revised after step {step.number} halted: {note}")
        elif note:
            step.notes.append(note)
        step.status = "pending"
        plan.state.blocker = None
        plan.state.pending_approval = "none"
        self.plans.save(plan, revision)
        self._record(
            "blocker_decision", plan_id=plan.plan_id, step=step.number, option=choice, note=note,
            reason=blocker.reason,
        )
        return plan

    def change_plan(
        self,
        *,
        add: list[StepAddition] | None = None,
        remove: list[int] | None = None,
        reason: str = "",
    ) -> Plan:
        """Alter steps that have not started; needs fresh approval before resuming."""
        plan, revision = self.plans.require()
        if plan.state.pending_approval == "plan_approval":
            raise GateError("A plan change is already awaiting approval.", options=["respond"])
        if plan.state.pending_approval == "blocker_decision":
            raise GateError(
                "Decide on the blocker before changing the plan.",
                options=plan.state.blocker.options if plan.state.blocker else [],
            )
        additions = list(add or [])
        removals = sorted(set(remove or []), reverse=True)
        if not additions and not removals:
            raise ValueError("A plan change needs at least one addition or removal.")

        first_open = plan.state.current_step_index + 1
        for number in removals:
            if number < first_open or number > len(plan.pipeline):
                raise PlanChangeConflict(
                    f"Step {number} has already started or does not exist.",
                    options=[f"remove steps {first_open}-{len(plan.pipeline)}"],
                )
        for item in additions:
            if item.at is not None and not first_open <= item.at <= len(plan.pipeline) + 1:
                raise PlanChangeConflict(
                    f"Cannot insert at step {item.at}; steps before {first_open} have started.",
                    options=[f"insert at {first_open}-{len(plan.pipeline) + 1}"],
                )
            if item.agent_id not in self.catalog:
                raise ValidationFailure(f"Unknown agent: {item.agent_id}")

        plan.pending_change = {
            "steps": plan.pipeline.to_list(),
            "validation": plan.validation.to_dict(),
            "requested": {
                "add": [
                    {"agent_id": item.agent_id, "task": item.task, "at": item.at}
                    for item in additions
                ],
                "remove": sorted(removals),
                "reason": reason,
            },
        }
        for number in removals:
            plan.pipeline.remove(number - 1)
        for item in additions:
            step = self.router.step_for(self.catalog.get(item.agent_id), plan.task_description)
            if item.task:
                step.task = item.task
            index = len(plan.pipeline) if item.at is None else min(item.at - 1, len(plan.pipeline))
            plan.pipeline.insert(index, step)

        plan.validation = validate_plan(
            plan.pipeline, plan.classification, self._rulebook(), self.config
        )
        plan.selected_agents = self._selected_agents(plan.pipeline)
        plan.state.phase = "PLANNING"
        plan.state.pending_approval = "plan_approval"
        self.plans.save(plan, revision)
        self._record(
            "plan_change_requested",
            plan_id=plan.plan_id,
            at_step=plan.state.current_step_index,
            **plan.pending_change["requested"],
        )
        return plan

    # -- termination -----------------------------------------------------

    def finalize(self, *, token: str | None = None) -> str:
        plan, _revision = self.plans.require()
        if not plan.complete:
            raise GateError(
                "Steps remain; the plan cannot be finalized yet.", options=["run", "abort"]
            )
        self.plans.delete()
        self._record("finalized", plan_id=plan.plan_id, token=token)
        logger.info("Plan %s finalized", plan.plan_id)
        return plan.plan_id

    def abort(self) -> bool:
        loaded = self.plans.read()
        had_draft = self.state.delete("draft")
        had_plan = self.plans.delete()
        if had_draft or had_plan:
            self._record("aborted", plan_id=loaded[0].plan_id if loaded else None)
        return had_draft or had_plan

    # -- views -----------------------------------------------------------

    def status(self) -> dict[str, Any]:
        loaded = self.plans.read()
        if loaded is not None:
            plan, revision = loaded
            current = plan.current_step
            return {
                "active": True,
                "plan_id": plan.plan_id,
                "revision": revision,
                "task": plan.task_description,
                "phase": plan.state.phase,
                "pending_approval": plan.state.pending_approval,
                "classification": plan.classification.to_dict(),
                "current_step_index": plan.state.current_step_index,
                "current_step": current.number if current else None,
                "blocker": plan.state.blocker.to_dict() if plan.state.blocker else None,
                "validation": plan.validation.to_dict(),
                "steps": [
                    {"number": step.number, "agent_id": step.agent_id, "phase": step.phase,
                     "status": step.status}
                    for step in plan.pipeline
                ],
            }
        draft = self.load_draft()
        if draft is not None:
            return {
                "active": True,
                "plan_id": None,
                "draft_id": draft.draft_id,
                "task": draft.task_description,
                "phase": "PLANNING",
                "pending_approval": "plan_approval",
                "classification": draft.classification.to_dict() if draft.classification else None,
                "questions": [item.to_dict() for item in draft.open_questions],
                "validation": draft.validation.to_dict(),
                "steps": [
                    {"number": step.number, "agent_id": step.agent_id, "phase": step.phase,
                     "status": step.status}
                    for step in draft.pipeline
                ],
            }
        return {"active": False, "phase": "PLANNING", "pending_approval": "none"}

    def history(self) -> list[dict[str, Any]]:
        return self.state.get_decisions()
