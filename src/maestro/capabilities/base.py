from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from maestro.state.plan import PipelineStep

StepOutcome = Literal["success", "failure", "blocked"]


@dataclass(slots=True)
class StepResult:
    status: StepOutcome
    summary: str = ""
    artifacts: list[dict[str, Any]] = field(default_factory=list)
    options: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class Capability(ABC):
    """Opaque executor for one pipeline step."""

    @abstractmethod
    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        """Execute the step and report how it went."""


class CapabilityRegistry:
    def __init__(
        self,
        default: Capability | None = None,
        capabilities: Mapping[str, Capability] | None = None,
    ) -> None:
        self.default = default
        self._by_agent: dict[str, Capability] = dict(capabilities or {})

    def register(self, agent_id: str, capability: Capability) -> None:
        self._by_agent[agent_id] = capability

    def for_step(self, step: PipelineStep) -> Capability | None:
        return self._by_agent.get(step.agent_id, self.default)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._by_agent
