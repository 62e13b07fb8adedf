import json
from pathlib import Path

import pytest

from maestro.errors import AmbiguousDetection, ConfigurationMissing
from maestro.stack import (
    StackDetector,
    StackProfile,
    WorkspaceSnapshot,
    parse_manifest,
    scan_workspace,
)


def test_detect_is_deterministic() -> None:
    snapshot = WorkspaceSnapshot.from_paths(
        ["tsconfig.json", "Dockerfile", "package.json", ".github/workflows/"],
        {"package.json": ["next", "react", "tailwindcss", "@prisma/client", "pg"]},
    )
    detector = StackDetector()

    first = detector.detect(snapshot)
    second = detector.detect(snapshot)

    assert first == second
    assert first.frontend_framework == "Next.js"
    assert first.language == "TypeScript"
    assert first.ci == "GitHub Actions"


def test_single_backend_marker_populates_only_that_field() -> None:
    profile = StackDetector().detect(WorkspaceSnapshot.from_paths(["nest-cli.json"]))

    assert profile.detected() == [("backend_framework", "NestJS")]


def test_every_backend_marker_alone_populates_only_backend(tmp_path: Path) -> None:
    markers = {"nest-cli.json": "NestJS", "manage.py": "Django", "artisan": "Laravel"}
    detector = StackDetector()

    for marker, framework in markers.items():
        from_snapshot = detector.detect(WorkspaceSnapshot.from_paths([marker]))
        assert from_snapshot.detected() == [("backend_framework", framework)], marker

        workspace = tmp_path / framework
        workspace.mkdir()
        (workspace / marker).write_text("", encoding="utf-8")
        scanned = detector.detect(scan_workspace(workspace))
        assert scanned.detected() == [("backend_framework", framework)], marker


def test_source_files_next_to_marker_still_count_for_language() -> None:
    profile = StackDetector().detect(WorkspaceSnapshot.from_paths(["manage.py", "settings.py"]))

    assert profile.backend_framework == "Django"
    assert profile.language == "Python"


def test_marker_tier_beats_dependency_tier() -> None:
    snapshot = WorkspaceSnapshot.from_paths(
        ["nuxt.config.ts", "package.json"], {"package.json": ["react"]}
    )

    report = StackDetector().inspect(snapshot)

    assert report.profile.frontend_framework == "Nuxt"
    assert report.evidence["frontend_framework"].tier == 1
    assert report.conflicts == {}


def test_dependency_tier_beats_directory_tier() -> None:
    snapshot = WorkspaceSnapshot.from_paths(
        ["package.json", "__tests__/"], {"package.json": ["vitest"]}
    )

    report = StackDetector().inspect(snapshot)

    assert report.profile.test_framework == "Vitest"
    assert report.evidence["test_framework"].source == "package.json:vitest"


def test_conflicting_markers_leave_category_absent_and_raise() -> None:
    snapshot = WorkspaceSnapshot.from_paths(["next.config.js", "nuxt.config.ts", "Dockerfile"])
    detector = StackDetector()

    report = detector.inspect(snapshot)
    assert report.profile.frontend_framework is None
    assert report.conflicts == {"frontend_framework": ("Next.js", "Nuxt")}

    with pytest.raises(AmbiguousDetection) as excinfo:
        detector.detect(snapshot)
    assert excinfo.value.options == ["Next.js", "Nuxt"]
    assert excinfo.value.report.profile.container == "Docker"


def test_conflicting_manifests_of_different_ecosystems() -> None:
    snapshot = WorkspaceSnapshot.from_paths(
        [],
        {"package.json": ["express"], "requirements.txt": ["Flask"]},
    )

    report = StackDetector().inspect(snapshot)

    assert report.conflicts["backend_framework"] == ("Express", "Flask")


def test_too_few_categories_raises_configuration_missing() -> None:
    detector = StackDetector(min_categories=2)

    with pytest.raises(ConfigurationMissing) as excinfo:
        detector.detect(WorkspaceSnapshot.from_paths(["nest-cli.json"]))

    assert "generate RULEBOOK" in excinfo.value.options
    assert excinfo.value.report.detected_count == 1


def test_empty_workspace_detects_nothing() -> None:
    report = StackDetector().inspect(WorkspaceSnapshot())

    assert report.profile == StackProfile()
    assert report.sufficient is False


def test_scan_workspace_reads_root_only(tmp_path: Path) -> None:
    (tmp_path / "next.config.js").write_text("module.exports = {}\n", encoding="utf-8")
    workspace = tmp_path / "api"
    workspace.mkdir()
    (workspace / "nest-cli.json").write_text("{}\n", encoding="utf-8")
    nested = workspace / "web"
    nested.mkdir()
    (nested / "angular.json").write_text("{}\n", encoding="utf-8")

    snapshot = scan_workspace(workspace)
    profile = StackDetector().detect(snapshot)

    assert "web/" in snapshot.files
    assert profile.backend_framework == "NestJS"
    assert profile.frontend_framework is None


def test_scan_workspace_reads_nested_markers_and_manifests(tmp_path: Path) -> None:
    (tmp_path / ".github" / "workflows").mkdir(parents=True)
    (tmp_path / "prisma").mkdir()
    (tmp_path / "prisma" / "schema.prisma").write_text("", encoding="utf-8")
    (tmp_path / "package.json").write_text(
        json.dumps({"dependencies": {"express": "^4"}, "devDependencies": {"jest": "^29"}}),
        encoding="utf-8",
    )
    (tmp_path / ".maestro").mkdir()

    snapshot = scan_workspace(tmp_path)
    profile = StackDetector().detect(snapshot)

    assert ".maestro/" not in snapshot.files
    assert profile.ci == "GitHub Actions"
    assert profile.orm == "Prisma"
    assert profile.backend_framework == "Express"
    assert profile.test_framework == "Jest"
    assert profile.language == "JavaScript"


def test_parse_manifest_handles_python_formats() -> None:
    pyproject = '[project]\ndependencies = ["FastAPI>=0.110", "SQLAlchemy[asyncio]"]\n'
    requirements = "Django==5.0  # web\n-r base.txt\npsycopg2_binary\n"

    assert parse_manifest("pyproject.toml", pyproject) == frozenset({"fastapi", "sqlalchemy"})
    assert parse_manifest("requirements.txt", requirements) == frozenset(
        {"django", "psycopg2-binary"}
    )


def test_unparseable_manifest_is_treated_as_empty() -> None:
    assert parse_manifest("package.json", "{not json") == frozenset()


def test_with_answers_rejects_unknown_category() -> None:
    profile = StackProfile(language="Go")

    assert profile.with_answers({"database": "PostgreSQL"}).database == "PostgreSQL"
    with pytest.raises(ValueError):
        profile.with_answers({"favourite_editor": "vim"})
