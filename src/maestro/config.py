from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILENAME = "maestro.toml"


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"


@dataclass(slots=True)
class DetectionConfig:
    min_categories: int = 1


@dataclass(slots=True)
class ClassificationConfig:
    # Upper bounds (inclusive) for trivial, simple, moderate, complex; above is critical.
    loc_bands: list[int] = field(default_factory=lambda: [10, 50, 200, 500])
    file_bands: list[int] = field(default_factory=lambda: [1, 3, 8, 20])
    new_pattern_complexity: str = "complex"
    critical_risk_keywords: list[str] = field(
        default_factory=lambda: [
            "payment",
            "payments",
            "billing",
            "checkout",
            "credit card",
            "invoice",
            "refund",
            "stripe",
        ]
    )
    high_risk_keywords: list[str] = field(
        default_factory=lambda: [
            "security",
            "auth",
            "authentication",
            "authorization",
            "oauth",
            "jwt",
            "password",
            "passwords",
            "encryption",
            "encrypt",
            "permission",
            "permissions",
            "secret",
            "secrets",
            "vulnerability",
            "migration",
            "migrations",
            "data migration",
            "migrate",
            "pii",
        ]
    )
    medium_risk_keywords: list[str] = field(
        default_factory=lambda: [
            "database",
            "schema",
            "api",
            "cache",
            "config",
            "configuration",
            "dependency",
            "dependencies",
            "upgrade",
            "deploy",
            "deployment",
        ]
    )


@dataclass(slots=True)
class RoutingConfig:
    tiers: dict[str, str] = field(
        default_factory=lambda: {
            "trivial": "0",
            "simple": "1-2",
            "moderate": "2-4",
            "complex": "5-10",
            "critical": "all",
        }
    )


@dataclass(slots=True)
class ApprovalConfig:
    approve: list[str] = field(
        default_factory=lambda: [
            "yes",
            "y",
            "approve",
            "approved",
            "ok",
            "okay",
            "lgtm",
            "proceed",
            "go ahead",
            "confirm",
        ]
    )
    reject: list[str] = field(default_factory=lambda: ["no", "n", "reject", "rejected", "decline"])
    abort: list[str] = field(default_factory=lambda: ["abort", "cancel", "stop", "replan"])


@dataclass(slots=True)
class RulebookConfig:
    path: str = ".claude/RULEBOOK.md"
    required: bool = False


@dataclass(slots=True)
class WorkflowConfig:
    require_commit_approval: bool = True
    require_quality_phase: bool = True
    max_steps: int = 12


@dataclass(slots=True)
class CapabilitiesConfig:
    timeout_seconds: float = 600.0
    commands: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class StateConfig:
    directory: str = ".maestro"


@dataclass(slots=True)
class MaestroConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    rulebook: RulebookConfig = field(default_factory=RulebookConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    capabilities: CapabilitiesConfig = field(default_factory=CapabilitiesConfig)
    state: StateConfig = field(default_factory=StateConfig)

    @classmethod
    def default(cls) -> MaestroConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> MaestroConfig:
        routing = dict(data.get("routing", {}))
        default_tiers = RoutingConfig().tiers
        routing["tiers"] = {**default_tiers, **dict(routing.get("tiers", {}))}
        return cls(
            project=ProjectConfig(**data.get("project", {})),
            detection=DetectionConfig(**data.get("detection", {})),
            classification=ClassificationConfig(**data.get("classification", {})),
            routing=RoutingConfig(**routing),
            approval=ApprovalConfig(**data.get("approval", {})),
            rulebook=RulebookConfig(**data.get("rulebook", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
            capabilities=CapabilitiesConfig(**data.get("capabilities", {})),
            state=StateConfig(**data.get("state", {})),
        )

    def to_dict(self) -> dict:
        return {
            "project": {"name": self.project.name},
            "detection": {"min_categories": self.detection.min_categories},
            "classification": {
                "loc_bands": list(self.classification.loc_bands),
                "file_bands": list(self.classification.file_bands),
                "new_pattern_complexity": self.classification.new_pattern_complexity,
                "critical_risk_keywords": list(self.classification.critical_risk_keywords),
                "high_risk_keywords": list(self.classification.high_risk_keywords),
                "medium_risk_keywords": list(self.classification.medium_risk_keywords),
            },
            "routing": {"tiers": dict(self.routing.tiers)},
            "approval": {
                "approve": list(self.approval.approve),
                "reject": list(self.approval.reject),
                "abort": list(self.approval.abort),
            },
            "rulebook": {
                "path": self.rulebook.path,
                "required": self.rulebook.required,
            },
            "workflow": {
                "require_commit_approval": self.workflow.require_commit_approval,
                "require_quality_phase": self.workflow.require_quality_phase,
                "max_steps": self.workflow.max_steps,
            },
            "capabilities": {
                "timeout_seconds": self.capabilities.timeout_seconds,
                "commands": dict(self.capabilities.commands),
            },
            "state": {"directory": self.state.directory},
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def _toml_key(key: str) -> str:
    if key and all(char.isalnum() or char in "-_" for char in key):
        return key
    return json.dumps(key, ensure_ascii=False)


def dumps_toml(config: MaestroConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = [
        "project",
        "detection",
        "classification",
        "routing",
        "approval",
        "rulebook",
        "workflow",
        "capabilities",
        "state",
    ]
    for section in section_order:
        tables: list[tuple[str, dict]] = []
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            if isinstance(value, dict):
                tables.append((key, value))
                continue
            lines.append(f"{_toml_key(key)} = {_toml_value(value)}")
        lines.append("")
        for key, table in tables:
            lines.append(f"[{section}.{key}]")
            for sub_key, sub_value in table.items():
                lines.append(f"{_toml_key(sub_key)} = {_toml_value(sub_value)}")
            lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> MaestroConfig:
    if not path.exists():
        return MaestroConfig.default()
    return MaestroConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: MaestroConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
