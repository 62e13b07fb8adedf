from maestro.state.plan import (
    Blocker,
    Draft,
    Pipeline,
    PipelineStep,
    Plan,
    Question,
    ValidationResult,
    Violation,
    WorkflowState,
)
from maestro.state.plan_store import PlanStore
from maestro.state.store import StateStore

__all__ = [
    "Blocker",
    "Draft",
    "Pipeline",
    "PipelineStep",
    "Plan",
    "PlanStore",
    "Question",
    "StateStore",
    "ValidationResult",
    "Violation",
    "WorkflowState",
]
