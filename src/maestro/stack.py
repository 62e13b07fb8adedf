from __future__ import annotations

import json
import logging
import re
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from maestro.errors import AmbiguousDetection, ConfigurationMissing
from maestro.signatures import (
    DEPENDENCY_SIGNATURES,
    DIRECTORY_SIGNATURES,
    MANIFEST_KINDS,
    MARKER_SIGNATURES,
    NESTED_PATHS,
)

logger = logging.getLogger(__name__)

IGNORED_ENTRIES = {".git", ".maestro", "node_modules", "__pycache__", ".venv", "venv"}
REQUIREMENT_NAME_PATTERN = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
GO_REQUIRE_PATTERN = re.compile(r"^\s*(?:require\s+)?([A-Za-z0-9][\w.\-/]*)\s+v\S+")
GEM_PATTERN = re.compile(r"""^\s*gem\s+['"]([^'"]+)['"]""")

TIER_MARKER = 1
TIER_DEPENDENCY = 2
TIER_DIRECTORY = 3


@dataclass(frozen=True, slots=True)
class StackProfile:
    frontend_framework: str | None = None
    backend_framework: str | None = None
    language: str | None = None
    database: str | None = None
    orm: str | None = None
    test_framework: str | None = None
    e2e_framework: str | None = None
    styling: str | None = None
    state_management: str | None = None
    build_tool: str | None = None
    container: str | None = None
    orchestration: str | None = None
    iac: str | None = None
    ci: str | None = None
    hosting: str | None = None
    web_server: str | None = None

    @classmethod
    def categories(cls) -> tuple[str, ...]:
        return tuple(item.name for item in fields(cls))

    def detected(self) -> list[tuple[str, str]]:
        pairs: list[tuple[str, str]] = []
        for category in self.categories():
            value = getattr(self, category)
            if value:
                pairs.append((category, value))
        return pairs

    def with_answers(self, answers: Mapping[str, str | None]) -> StackProfile:
        known = set(self.categories())
        unknown = sorted(key for key in answers if key not in known)
        if unknown:
            raise ValueError("Unknown stack categories: " + ", ".join(unknown))
        return replace(self, **{key: (value or None) for key, value in answers.items()})

    def to_dict(self) -> dict[str, str]:
        return dict(self.detected())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> StackProfile:
        if not data:
            return cls()
        known = set(cls.categories())
        return cls(**{key: str(value) for key, value in data.items() if key in known and value})


@dataclass(frozen=True, slots=True)
class WorkspaceSnapshot:
    """Root entries of a workspace plus parsed dependency names per manifest."""

    files: tuple[str, ...] = ()
    manifests: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def from_paths(
        cls,
        paths: Iterable[str],
        manifests: Mapping[str, Iterable[str]] | None = None,
    ) -> WorkspaceSnapshot:
        normalized = sorted({str(path).replace("\\", "/") for path in paths if str(path).strip()})
        parsed = {
            name: frozenset(_normalize_dependency(name, dep) for dep in deps)
            for name, deps in (manifests or {}).items()
        }
        return cls(files=tuple(normalized), manifests=parsed)


@dataclass(frozen=True, slots=True)
class Evidence:
    technology: str
    source: str
    tier: int

    def to_dict(self) -> dict[str, Any]:
        return {"technology": self.technology, "source": self.source, "tier": self.tier}


@dataclass(slots=True)
class DetectionReport:
    profile: StackProfile
    evidence: dict[str, Evidence] = field(default_factory=dict)
    conflicts: dict[str, tuple[str, ...]] = field(default_factory=dict)
    min_categories: int = 1

    @property
    def detected_count(self) -> int:
        return len(self.profile.detected())

    @property
    def sufficient(self) -> bool:
        return self.detected_count >= self.min_categories

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "evidence": {key: value.to_dict() for key, value in self.evidence.items()},
            "conflicts": {key: list(value) for key, value in self.conflicts.items()},
            "sufficient": self.sufficient,
        }


def _normalize_dependency(manifest: str, name: str) -> str:
    value = name.strip().lower()
    if MANIFEST_KINDS.get(manifest) == "python":
        value = re.sub(r"[-_.]+", "-", value)
    return value


def _requirement_name(requirement: str) -> str | None:
    match = REQUIREMENT_NAME_PATTERN.match(requirement)
    return match.group(1) if match else None


def _parse_package_json(text: str) -> set[str]:
    data = json.loads(text)
    names: set[str] = set()
    if not isinstance(data, dict):
        return names
    for key in ("dependencies", "devDependencies", "peerDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            names.update(str(name) for name in section)
    return names


def _parse_requirements(text: str) -> set[str]:
    names: set[str] = set()
    for raw_line in text.splitlines():
        line = raw_line.split("#", maxsplit=1)[0].strip()
        if not line or line.startswith("-"):
            continue
        name = _requirement_name(line)
        if name:
            names.add(name)
    return names


def _requirement_list(values: Any) -> set[str]:
    names: set[str] = set()
    if not isinstance(values, list):
        return names
    for item in values:
        if isinstance(item, str):
            name = _requirement_name(item)
            if name:
                names.add(name)
    return names


def _parse_pyproject(text: str) -> set[str]:
    data = tomllib.loads(text)
    names: set[str] = set()
    project = data.get("project", {})
    if isinstance(project, dict):
        names.update(_requirement_list(project.get("dependencies")))
        optional = project.get("optional-dependencies", {})
        if isinstance(optional, dict):
            for values in optional.values():
                names.update(_requirement_list(values))
    groups = data.get("dependency-groups", {})
    if isinstance(groups, dict):
        for values in groups.values():
            names.update(_requirement_list(values))
    poetry = data.get("tool", {}).get("poetry", {})
    if isinstance(poetry, dict):
        dependencies = poetry.get("dependencies", {})
        if isinstance(dependencies, dict):
            names.update(str(name) for name in dependencies)
        poetry_groups = poetry.get("group", {})
        if isinstance(poetry_groups, dict):
            for group in poetry_groups.values():
                if isinstance(group, dict) and isinstance(group.get("dependencies"), dict):
                    names.update(str(name) for name in group["dependencies"])
    names.discard("python")
    return names


def _parse_pipfile(text: str) -> set[str]:
    data = tomllib.loads(text)
    names: set[str] = set()
    for key in ("packages", "dev-packages"):
        section = data.get(key)
        if isinstance(section, dict):
            names.update(str(name) for name in section)
    return names


def _parse_go_mod(text: str) -> set[str]:
    names: set[str] = set()
    for line in text.splitlines():
        if line.strip().startswith(("module ", "go ", "//")):
            continue
        match = GO_REQUIRE_PATTERN.match(line)
        if match:
            names.add(match.group(1))
    return names


def _parse_cargo(text: str) -> set[str]:
    data = tomllib.loads(text)
    names: set[str] = set()
    for key in ("dependencies", "dev-dependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            names.update(str(name) for name in section)
    workspace = data.get("workspace", {})
    if isinstance(workspace, dict) and isinstance(workspace.get("dependencies"), dict):
        names.update(str(name) for name in workspace["dependencies"])
    return names


def _parse_composer(text: str) -> set[str]:
    data = json.loads(text)
    names: set[str] = set()
    if not isinstance(data, dict):
        return names
    for key in ("require", "require-dev"):
        section = data.get(key)
        if isinstance(section, dict):
            names.update(str(name) for name in section)
    return names


def _parse_gemfile(text: str) -> set[str]:
    names: set[str] = set()
    for line in text.splitlines():
        match = GEM_PATTERN.match(line)
        if match:
            names.add(match.group(1))
    return names


MANIFEST_PARSERS = {
    "package.json": _parse_package_json,
    "requirements.txt": _parse_requirements,
    "requirements-dev.txt": _parse_requirements,
    "pyproject.toml": _parse_pyproject,
    "Pipfile": _parse_pipfile,
    "go.mod": _parse_go_mod,
    "Cargo.toml": _parse_cargo,
    "composer.json": _parse_composer,
    "Gemfile": _parse_gemfile,
}


def parse_manifest(name: str, text: str) -> frozenset[str]:
    parser = MANIFEST_PARSERS.get(name)
    if parser is None:
        return frozenset()
    try:
        names = parser(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError, AttributeError) as exc:
        logger.warning("Could not parse manifest %s: %s", name, exc)
        return frozenset()
    return frozenset(_normalize_dependency(name, dep) for dep in names)


def scan_workspace(root: Path, nested: Iterable[str] = NESTED_PATHS) -> WorkspaceSnapshot:
    """List the workspace root (never its parents) and parse dependency manifests."""
    root = root.resolve()
    entries: set[str] = set()
    for child in root.iterdir():
        if child.name in IGNORED_ENTRIES:
            continue
        entries.add(f"{child.name}/" if child.is_dir() else child.name)
    for relative in nested:
        target = root / relative.rstrip("/")
        if (relative.endswith("/") and target.is_dir()) or target.is_file():
            entries.add(relative)

    manifests: dict[str, frozenset[str]] = {}
    for name in MANIFEST_KINDS:
        path = root / name
        if not path.is_file():
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read manifest %s: %s", path, exc)
            manifests[name] = frozenset()
            continue
        manifests[name] = parse_manifest(name, text)

    logger.debug("Scanned %s: %d entries, %d manifests", root, len(entries), len(manifests))
    return WorkspaceSnapshot(files=tuple(sorted(entries)), manifests=manifests)


Hit = tuple[str, str, str]


class StackDetector:
    def __init__(
        self,
        *,
        min_categories: int = 1,
        markers: tuple[tuple[str, str, str], ...] = MARKER_SIGNATURES,
        dependencies: tuple[tuple[str, str, tuple[tuple[str, str], ...]], ...] = (
            DEPENDENCY_SIGNATURES
        ),
        directories: tuple[tuple[str, str, str], ...] = DIRECTORY_SIGNATURES,
    ) -> None:
        self.min_categories = max(0, int(min_categories))
        self.markers = markers
        self.dependencies = dependencies
        self.directories = directories

    @staticmethod
    def _pattern_hits(files: tuple[str, ...], table: tuple[tuple[str, str, str], ...]) -> list[Hit]:
        hits: list[Hit] = []
        for pattern, category, technology in table:
            for entry in files:
                if fnmatchcase(entry, pattern):
                    hits.append((category, technology, entry))
                    break
        return hits

    def _dependency_hits(self, manifests: Mapping[str, frozenset[str]]) -> list[Hit]:
        by_kind: dict[str, dict[str, str]] = {}
        for manifest in sorted(manifests):
            kind = MANIFEST_KINDS.get(manifest)
            if kind is None:
                continue
            for dep in sorted(manifests[manifest]):
                by_kind.setdefault(kind, {}).setdefault(dep, manifest)

        hits: list[Hit] = []
        for kind, category, choices in self.dependencies:
            declared = by_kind.get(kind, {})
            for dep, technology in choices:
                if dep in declared:
                    hits.append((category, technology, f"{declared[dep]}:{dep}"))
                    break
        return hits

    def inspect(self, snapshot: WorkspaceSnapshot) -> DetectionReport:
        # a marker file is evidence once; it never feeds the layout heuristics too
        marker_files = {
            entry
            for entry in snapshot.files
            if any(fnmatchcase(entry, pattern) for pattern, _category, _tech in self.markers)
        }
        layout_files = tuple(entry for entry in snapshot.files if entry not in marker_files)
        tiers = (
            (TIER_MARKER, self._pattern_hits(snapshot.files, self.markers)),
            (TIER_DEPENDENCY, self._dependency_hits(snapshot.manifests)),
            (TIER_DIRECTORY, self._pattern_hits(layout_files, self.directories)),
        )
        evidence: dict[str, Evidence] = {}
        conflicts: dict[str, tuple[str, ...]] = {}

        for tier, hits in tiers:
            by_category: dict[str, dict[str, str]] = {}
            for category, technology, source in hits:
                by_category.setdefault(category, {}).setdefault(technology, source)
            for category, candidates in by_category.items():
                # a higher tier already decided (or flagged) this category
                if category in evidence or category in conflicts:
                    continue
                if len(candidates) > 1:
                    conflicts[category] = tuple(sorted(candidates))
                    logger.warning(
                        "Conflicting %s signals: %s", category, ", ".join(sorted(candidates))
                    )
                    continue
                technology, source = next(iter(candidates.items()))
                evidence[category] = Evidence(technology=technology, source=source, tier=tier)

        ordered = {
            category: evidence[category].technology
            for category in StackProfile.categories()
            if category in evidence
        }
        return DetectionReport(
            profile=StackProfile(**ordered),
            evidence={category: evidence[category] for category in ordered},
            conflicts={category: conflicts[category] for category in sorted(conflicts)},
            min_categories=self.min_categories,
        )

    def detect(self, snapshot: WorkspaceSnapshot) -> StackProfile:
        report = self.inspect(snapshot)
        if report.conflicts:
            category, candidates = next(iter(report.conflicts.items()))
            raise AmbiguousDetection(
                f"Conflicting signals for {category}: {', '.join(candidates)}",
                options=list(candidates),
                details={
                    "conflicts": {key: list(value) for key, value in report.conflicts.items()}
                },
                report=report,
            )
        if not report.sufficient:
            raise ConfigurationMissing(
                f"Detected {report.detected_count} stack categories; "
                f"at least {report.min_categories} required.",
                options=["answer stack questions", "generate RULEBOOK", "abort"],
                report=report,
            )
        return report.profile
