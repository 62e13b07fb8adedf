from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from maestro.agents.catalog import PHASE_TEMPLATES, AgentCatalog, AgentDescriptor
from maestro.classifier import COMPLEXITY_ORDER, TaskClassification
from maestro.stack import StackProfile
from maestro.state.plan import Pipeline, PipelineStep

logger = logging.getLogger(__name__)

TASK_PHASES: dict[str, tuple[str, ...]] = {
    "new_feature": ("design", "implementation", "quality", "git"),
    "bug_fix": ("design", "implementation", "quality", "git"),
    "refactor": ("design", "implementation", "quality", "git"),
    "performance": ("design", "implementation", "quality", "git"),
    "security": ("design", "implementation", "quality", "git"),
    "testing": ("implementation", "quality", "git"),
    "documentation": ("design", "implementation", "git"),
}


@dataclass(frozen=True, slots=True)
class TierLimit:
    minimum: int
    maximum: int | None

    @classmethod
    def parse(cls, raw: str) -> TierLimit:
        text = str(raw).strip().lower()
        if text in {"all", "*", "unlimited"}:
            return cls(minimum=0, maximum=None)
        low, _, high = text.partition("-")
        minimum = int(low)
        maximum = int(high) if high else minimum
        if minimum < 0 or maximum < minimum:
            raise ValueError(f"Invalid tier range: {raw}")
        return cls(minimum=minimum, maximum=maximum)


def parse_tiers(raw: dict[str, str]) -> dict[str, TierLimit]:
    missing = [tier for tier in COMPLEXITY_ORDER if tier not in raw]
    if missing:
        raise ValueError("Routing tiers missing: " + ", ".join(missing))
    return {tier: TierLimit.parse(raw[tier]) for tier in COMPLEXITY_ORDER}


class AgentRouter:
    """Selects the ordered agent pipeline for a classified task.

    Core agents relevant to the task are always present. The complexity tier
    only bounds how many stack specialists join them.
    """

    def __init__(self, catalog: AgentCatalog, tiers: dict[str, str] | None = None) -> None:
        self.catalog = catalog
        self.tiers = parse_tiers(
            tiers
            or {
                "trivial": "0",
                "simple": "1-2",
                "moderate": "2-4",
                "complex": "5-10",
                "critical": "all",
            }
        )

    def core_for(self, classification: TaskClassification) -> list[AgentDescriptor]:
        phases = TASK_PHASES[classification.task_type]
        selected: list[AgentDescriptor] = []
        for descriptor in self.catalog.core():
            # risk-mandated reviewers join even when the task type skips their phase
            forced = descriptor.forced_by_risk(classification.risk_level)
            if descriptor.phase not in phases and not forced:
                continue
            if forced or descriptor.serves(classification.task_type):
                selected.append(descriptor)
        return selected

    def specialists_for(
        self,
        profile: StackProfile,
        classification: TaskClassification,
        enabled: Iterable[str] = (),
    ) -> list[AgentDescriptor]:
        """Stack-matched specialists plus opt-in ones named in ``enabled``, capped by tier."""
        phases = TASK_PHASES[classification.task_type]
        eligible: dict[str, AgentDescriptor] = {}
        wanted = set(enabled)
        for descriptor in self.catalog.opt_in():
            if descriptor.id in wanted and descriptor.phase in phases:
                eligible[descriptor.id] = descriptor
        for category, _value in profile.detected():
            for descriptor in self.catalog.specialists():
                if descriptor.phase not in phases or descriptor.id in eligible:
                    continue
                if category in descriptor.matching_fields(profile):
                    eligible[descriptor.id] = descriptor
        ranked = sorted(eligible.values(), key=AgentDescriptor.sort_key)
        limit = self.tiers[classification.complexity]
        if limit.maximum is not None:
            ranked = ranked[: limit.maximum]
        if len(ranked) < limit.minimum:
            logger.info(
                "Only %d specialist(s) apply for %s tier (minimum %d)",
                len(ranked),
                classification.complexity,
                limit.minimum,
            )
        return ranked

    def select_agents(
        self,
        profile: StackProfile,
        classification: TaskClassification,
        enabled: Iterable[str] = (),
    ) -> list[AgentDescriptor]:
        chosen: dict[str, AgentDescriptor] = {}
        for descriptor in [
            *self.core_for(classification),
            *self.specialists_for(profile, classification, enabled),
        ]:
            chosen.setdefault(descriptor.id, descriptor)
        return sorted(chosen.values(), key=AgentDescriptor.sort_key)

    @staticmethod
    def step_for(descriptor: AgentDescriptor, task_description: str) -> PipelineStep:
        task_template, expected = PHASE_TEMPLATES[descriptor.phase]
        return PipelineStep(
            number=0,
            agent_id=descriptor.id,
            phase=descriptor.phase,
            task=task_template.format(
                task=task_description.strip(), focus=descriptor.focus or descriptor.title
            ),
            expected_output=expected,
        )

    def build_pipeline(
        self,
        profile: StackProfile,
        classification: TaskClassification,
        task_description: str,
        enabled: Iterable[str] = (),
    ) -> Pipeline:
        descriptors = self.select_agents(profile, classification, enabled)
        pipeline = Pipeline([self.step_for(item, task_description) for item in descriptors])
        logger.info(
            "Routed %s/%s task to %d step(s): %s",
            classification.task_type,
            classification.complexity,
            len(pipeline),
            ", ".join(pipeline.agent_ids()),
        )
        return pipeline
