"""Rule-table task classification.

``TaskClassifier.classify`` is the boundary other components depend on; a
learned model can replace the keyword tables behind the same signature.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from maestro.config import ClassificationConfig
from maestro.errors import UnclassifiedTask
from maestro.stack import StackProfile

logger = logging.getLogger(__name__)

TaskType = Literal[
    "new_feature",
    "bug_fix",
    "refactor",
    "performance",
    "security",
    "testing",
    "documentation",
]
Complexity = Literal["trivial", "simple", "moderate", "complex", "critical"]
RiskLevel = Literal["low", "medium", "high", "critical"]

TASK_TYPES: tuple[str, ...] = (
    "new_feature",
    "bug_fix",
    "refactor",
    "performance",
    "security",
    "testing",
    "documentation",
)
COMPLEXITY_ORDER: tuple[str, ...] = ("trivial", "simple", "moderate", "complex", "critical")
RISK_ORDER: tuple[str, ...] = ("low", "medium", "high", "critical")

# First match wins.
TASK_TYPE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "security",
        (
            "security",
            "vulnerability",
            "vulnerabilities",
            "xss",
            "csrf",
            "sql injection",
            "injection",
            "cve",
            "harden",
            "sanitize",
        ),
    ),
    (
        "bug_fix",
        (
            "fix",
            "fixes",
            "bug",
            "bugs",
            "crash",
            "crashes",
            "broken",
            "error",
            "errors",
            "regression",
            "fails",
            "failing",
            "incorrect",
            "wrong",
        ),
    ),
    (
        "performance",
        (
            "performance",
            "slow",
            "slowness",
            "optimize",
            "optimise",
            "latency",
            "speed up",
            "faster",
            "memory usage",
            "bundle size",
        ),
    ),
    (
        "refactor",
        (
            "refactor",
            "refactoring",
            "clean up",
            "cleanup",
            "restructure",
            "reorganize",
            "rename",
            "extract",
            "simplify",
            "decouple",
        ),
    ),
    (
        "testing",
        (
            "test",
            "tests",
            "testing",
            "coverage",
            "unit test",
            "e2e",
            "integration test",
            "snapshot",
        ),
    ),
    (
        "documentation",
        (
            "document",
            "documentation",
            "docs",
            "readme",
            "changelog",
            "docstring",
            "docstrings",
            "guide",
        ),
    ),
    (
        "new_feature",
        (
            "add",
            "create",
            "implement",
            "build",
            "new",
            "introduce",
            "support",
            "enable",
            "generate",
            "integrate",
        ),
    ),
)

SMALL_SCOPE_KEYWORDS = ("button", "typo", "label", "copy", "color", "colour", "icon", "tooltip")
WIDE_SCOPE_KEYWORDS = (
    "across",
    "entire",
    "all",
    "every",
    "whole",
    "codebase",
    "system",
    "module",
    "modules",
    "service",
    "services",
)
NEW_PATTERN_KEYWORDS = (
    "architecture",
    "new pattern",
    "event sourcing",
    "microservice",
    "microservices",
    "state machine",
    "plugin system",
    "queue",
    "cache layer",
    "framework",
    "migrate to",
)

# Baseline (lines of code, files touched) per task type.
BASELINE_ESTIMATES: dict[str, tuple[int, int]] = {
    "new_feature": (120, 4),
    "bug_fix": (20, 1),
    "refactor": (150, 5),
    "performance": (60, 2),
    "security": (80, 3),
    "testing": (100, 3),
    "documentation": (60, 2),
}


def complexity_rank(value: str) -> int:
    return COMPLEXITY_ORDER.index(value)


def risk_rank(value: str) -> int:
    return RISK_ORDER.index(value)


@dataclass(frozen=True, slots=True)
class TaskEstimate:
    lines_of_code: int
    files_touched: int
    new_pattern: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "lines_of_code": self.lines_of_code,
            "files_touched": self.files_touched,
            "new_pattern": self.new_pattern,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskEstimate:
        return cls(
            lines_of_code=int(data.get("lines_of_code", 0)),
            files_touched=int(data.get("files_touched", 0)),
            new_pattern=bool(data.get("new_pattern", False)),
        )


@dataclass(frozen=True, slots=True)
class TaskClassification:
    task_type: TaskType
    complexity: Complexity
    risk_level: RiskLevel
    estimate: TaskEstimate
    matched_keywords: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_type": self.task_type,
            "complexity": self.complexity,
            "risk_level": self.risk_level,
            "estimate": self.estimate.to_dict(),
            "matched_keywords": list(self.matched_keywords),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskClassification:
        return cls(
            task_type=data["task_type"],
            complexity=data["complexity"],
            risk_level=data["risk_level"],
            estimate=TaskEstimate.from_dict(data.get("estimate", {})),
            matched_keywords=tuple(data.get("matched_keywords", [])),
        )


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"\b" + r"\s+".join(re.escape(part) for part in keyword.split()) + r"\b")


def _matches(text: str, keywords: Iterable[str]) -> list[str]:
    return [keyword for keyword in keywords if _keyword_pattern(keyword.lower()).search(text)]


def band_for(value: int, bounds: list[int]) -> str:
    """Map a numeric estimate to a complexity band using inclusive upper bounds."""
    for index, bound in enumerate(bounds[: len(COMPLEXITY_ORDER) - 1]):
        if value <= bound:
            return COMPLEXITY_ORDER[index]
    return COMPLEXITY_ORDER[min(len(bounds), len(COMPLEXITY_ORDER) - 1)]


class TaskClassifier:
    def __init__(self, config: ClassificationConfig | None = None) -> None:
        self.config = config or ClassificationConfig()
        if self.config.new_pattern_complexity not in COMPLEXITY_ORDER:
            raise ValueError(
                f"Unknown complexity tier: {self.config.new_pattern_complexity}"
            )

    def task_type(self, description: str) -> tuple[str, list[str]]:
        text = description.lower()
        for task_type, keywords in TASK_TYPE_RULES:
            matched = _matches(text, keywords)
            if matched:
                return task_type, matched
        raise UnclassifiedTask(
            "Could not determine the task type from the description.",
            options=list(TASK_TYPES),
        )

    def estimate(
        self,
        description: str,
        profile: StackProfile | None = None,
        *,
        task_type: str | None = None,
    ) -> TaskEstimate:
        text = description.lower()
        resolved_type = task_type or self.task_type(description)[0]
        lines, files = BASELINE_ESTIMATES.get(resolved_type, (80, 2))
        if _matches(text, SMALL_SCOPE_KEYWORDS):
            lines, files = max(5, lines // 2), 1
        if _matches(text, WIDE_SCOPE_KEYWORDS):
            lines, files = lines * 3, max(files * 3, 6)
        new_pattern = bool(_matches(text, NEW_PATTERN_KEYWORDS))
        if profile is not None and resolved_type == "new_feature":
            # full-stack work usually spans both tiers
            if profile.frontend_framework and profile.backend_framework:
                files += 2
        return TaskEstimate(lines_of_code=lines, files_touched=files, new_pattern=new_pattern)

    def complexity(self, estimate: TaskEstimate) -> str:
        bands = [
            band_for(estimate.lines_of_code, list(self.config.loc_bands)),
            band_for(estimate.files_touched, list(self.config.file_bands)),
            self.config.new_pattern_complexity if estimate.new_pattern else "trivial",
        ]
        return max(bands, key=complexity_rank)

    def risk(self, description: str) -> str:
        text = description.lower()
        if _matches(text, self.config.critical_risk_keywords):
            return "critical"
        if _matches(text, self.config.high_risk_keywords):
            return "high"
        if _matches(text, self.config.medium_risk_keywords):
            return "medium"
        return "low"

    def classify(
        self,
        description: str,
        profile: StackProfile | None = None,
        *,
        estimate: TaskEstimate | None = None,
        task_type: str | None = None,
    ) -> TaskClassification:
        if task_type is not None:
            if task_type not in TASK_TYPES:
                raise ValueError(f"Unknown task type: {task_type}")
            resolved_type, matched = task_type, []
        else:
            resolved_type, matched = self.task_type(description)
        resolved_estimate = estimate or self.estimate(
            description, profile, task_type=resolved_type
        )
        classification = TaskClassification(
            task_type=resolved_type,  # type: ignore[arg-type]
            complexity=self.complexity(resolved_estimate),  # type: ignore[arg-type]
            risk_level=self.risk(description),  # type: ignore[arg-type]
            estimate=resolved_estimate,
            matched_keywords=tuple(matched),
        )
        logger.info(
            "Classified task as %s/%s (risk %s)",
            classification.task_type,
            classification.complexity,
            classification.risk_level,
        )
        return classification
