"""RULEBOOK generation, parsing and validation.

The RULEBOOK is the project-level markdown document that names the active
agents and the house rules every drafted plan is checked against.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from maestro.agents.catalog import AgentCatalog, AgentDescriptor
from maestro.classifier import TaskClassification, risk_rank
from maestro.config import MaestroConfig
from maestro.stack import StackProfile
from maestro.state.plan import Pipeline, ValidationResult, Violation

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("Project Overview", "Tech Stack", "Active Agents")
SECTION_PATTERN = re.compile(r"^##\s+(.+?)\s*$")
BULLET_PATTERN = re.compile(r"^\s*[-*]\s+(.+?)\s*$")
AGENT_ID_PATTERN = re.compile(r"^`?([a-z0-9][a-z0-9-]*)`?")

DEFAULT_RULES = (
    "Every plan is approved before execution starts.",
    "Steps run in order; a failed or blocked step halts the workflow.",
    "High and critical risk work is reviewed by security-auditor.",
    "Commits are made only after explicit approval.",
)

CATEGORY_LABELS = {
    "frontend_framework": "Frontend",
    "backend_framework": "Backend",
    "language": "Language",
    "database": "Database",
    "orm": "ORM",
    "test_framework": "Testing",
    "e2e_framework": "E2E Testing",
    "styling": "Styling",
    "state_management": "State Management",
    "build_tool": "Build Tool",
    "container": "Container",
    "orchestration": "Orchestration",
    "iac": "Infrastructure as Code",
    "ci": "CI/CD",
    "hosting": "Hosting",
    "web_server": "Web Server",
}


@dataclass(slots=True)
class Rulebook:
    sections: dict[str, list[str]] = field(default_factory=dict)
    active_agents: list[str] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)
    duplicate_sections: list[str] = field(default_factory=list)

    def is_active(self, agent_id: str) -> bool:
        return agent_id in self.active_agents


@dataclass(slots=True)
class RulebookReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def active_agents_for(profile: StackProfile, catalog: AgentCatalog) -> list[AgentDescriptor]:
    return [*catalog.core(), *catalog.matching_specialists(profile)]


def generate_rulebook(
    profile: StackProfile,
    catalog: AgentCatalog,
    project_name: str,
    rules: tuple[str, ...] | list[str] = DEFAULT_RULES,
) -> str:
    lines = [f"# RULEBOOK: {project_name}", ""]
    lines += ["## Project Overview", "", f"- Name: {project_name}", ""]

    lines += ["## Tech Stack", ""]
    detected = profile.detected()
    if not detected:
        lines.append("- Not detected")
    for category, technology in detected:
        lines.append(f"- {CATEGORY_LABELS.get(category, category)}: {technology}")
    lines.append("")

    lines += ["## Active Agents", ""]
    for descriptor in active_agents_for(profile, catalog):
        lines.append(f"- `{descriptor.id}`: {descriptor.title} ({descriptor.phase})")
    lines.append("")

    lines += ["## Rules", ""]
    lines += [f"- {rule}" for rule in rules]
    return "\n".join(lines) + "\n"


def parse_rulebook(text: str) -> Rulebook:
    rulebook = Rulebook()
    current: str | None = None
    for raw_line in text.splitlines():
        heading = SECTION_PATTERN.match(raw_line)
        if heading:
            current = heading.group(1)
            if current in rulebook.sections:
                rulebook.duplicate_sections.append(current)
            rulebook.sections.setdefault(current, [])
            continue
        if current is None:
            continue
        bullet = BULLET_PATTERN.match(raw_line)
        if bullet:
            rulebook.sections[current].append(bullet.group(1))

    for item in rulebook.sections.get("Active Agents", []):
        match = AGENT_ID_PATTERN.match(item)
        if match and match.group(1) not in rulebook.active_agents:
            rulebook.active_agents.append(match.group(1))
    rulebook.rules = list(rulebook.sections.get("Rules", []))
    return rulebook


def validate_rulebook(text: str, catalog: AgentCatalog) -> RulebookReport:
    rulebook = parse_rulebook(text)
    report = RulebookReport()
    for section in REQUIRED_SECTIONS:
        if section not in rulebook.sections:
            report.errors.append(f"Missing required section: ## {section}")
    for section in dict.fromkeys(rulebook.duplicate_sections):
        report.errors.append(f"Duplicate section: ## {section}")
    if "Active Agents" in rulebook.sections and not rulebook.active_agents:
        report.warnings.append("No agents listed in Active Agents section")
    for agent_id in rulebook.active_agents:
        if agent_id not in catalog:
            report.warnings.append(f"Unknown agent: {agent_id}")
    return report


def load_rulebook(path: Path) -> Rulebook | None:
    if not path.exists():
        return None
    return parse_rulebook(path.read_text(encoding="utf-8"))


def validate_plan(
    pipeline: Pipeline,
    classification: TaskClassification | None,
    rulebook: Rulebook | None,
    config: MaestroConfig,
) -> ValidationResult:
    violations: list[Violation] = []
    agent_ids = pipeline.agent_ids()

    if rulebook is None:
        violations.append(
            Violation("no-rulebook", "No RULEBOOK found; agent activation not checked.", False)
        )
    else:
        for agent_id in dict.fromkeys(agent_ids):
            if not rulebook.is_active(agent_id):
                violations.append(
                    Violation("inactive-agent", f"Agent {agent_id} is not active in the RULEBOOK.")
                )

    if classification is not None:
        if (
            risk_rank(classification.risk_level) >= risk_rank("high")
            and "security-auditor" not in agent_ids
        ):
            violations.append(
                Violation(
                    "security-review",
                    f"{classification.risk_level} risk task has no security-auditor step.",
                )
            )
        if (
            config.workflow.require_quality_phase
            and classification.task_type != "documentation"
            and "quality" not in pipeline.phases()
        ):
            violations.append(Violation("quality-phase", "Plan has no quality phase."))

    if len(pipeline) > config.workflow.max_steps:
        violations.append(
            Violation(
                "max-steps",
                f"Plan has {len(pipeline)} steps (limit {config.workflow.max_steps}).",
                False,
            )
        )

    result = ValidationResult(violations=violations)
    if result.blocking:
        logger.warning(
            "Plan validation found %d blocking violation(s): %s",
            len(result.blocking),
            ", ".join(item.rule for item in result.blocking),
        )
    return result


@dataclass(slots=True)
class GroupStats:
    group: str
    active: int
    total: int

    @property
    def rate(self) -> float:
        return self.active / self.total if self.total else 0.0


def agent_stats(rulebook: Rulebook, catalog: AgentCatalog) -> list[GroupStats]:
    """Active/total agent counts per catalog group, core first."""
    stats = [
        GroupStats(
            group=group,
            active=sum(1 for item in descriptors if rulebook.is_active(item.id)),
            total=len(descriptors),
        )
        for group, descriptors in catalog.groups().items()
    ]
    return sorted(stats, key=lambda item: (item.group != "core", item.group))


def missing_core_agents(rulebook: Rulebook, catalog: AgentCatalog) -> list[str]:
    return [item.id for item in catalog.core() if not rulebook.is_active(item.id)]
