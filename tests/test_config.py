import tomllib
from pathlib import Path

from maestro import __version__
from maestro.config import MaestroConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "maestro.toml"
    config = MaestroConfig.default()
    config.project.name = "maestro-test"
    config.detection.min_categories = 3
    config.classification.loc_bands = [5, 25, 100, 400]
    config.classification.critical_risk_keywords = ["payment", "ledger"]
    config.routing.tiers["simple"] = "1-3"
    config.approval.approve = ["ship it", "yes"]
    config.rulebook.required = True
    config.workflow.require_commit_approval = False
    config.workflow.max_steps = 20
    config.capabilities.commands = {"test-strategist": "pytest -q", "code-reviewer": "ruff check ."}
    config.capabilities.timeout_seconds = 42.5
    config.state.directory = ".state"

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.project.name == "maestro-test"
    assert loaded.detection.min_categories == 3
    assert loaded.classification.loc_bands == [5, 25, 100, 400]
    assert loaded.classification.critical_risk_keywords == ["payment", "ledger"]
    assert loaded.routing.tiers["simple"] == "1-3"
    assert loaded.routing.tiers["critical"] == "all"
    assert loaded.approval.approve == ["ship it", "yes"]
    assert loaded.rulebook.required is True
    assert loaded.workflow.require_commit_approval is False
    assert loaded.workflow.max_steps == 20
    assert loaded.capabilities.commands == {
        "code-reviewer": "ruff check .",
        "test-strategist": "pytest -q",
    }
    assert loaded.capabilities.timeout_seconds == 42.5
    assert loaded.state.directory == ".state"


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "absent.toml")

    assert loaded == MaestroConfig.default()


def test_partial_tiers_are_merged_with_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "maestro.toml"
    config_path.write_text('[routing.tiers]\ntrivial = "0-1"\n', encoding="utf-8")

    loaded = load_config(config_path)

    assert loaded.routing.tiers["trivial"] == "0-1"
    assert loaded.routing.tiers["moderate"] == "2-4"


def test_toml_dump_contains_every_section() -> None:
    rendered = dumps_toml(MaestroConfig.default())

    for section in (
        "[project]",
        "[detection]",
        "[classification]",
        "[routing.tiers]",
        "[approval]",
        "[rulebook]",
        "[workflow]",
        "[capabilities]",
        "[state]",
    ):
        assert section in rendered
    assert "require_commit_approval = true" in rendered


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]


def test_project_metadata_files_exist() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))
    project = pyproject["project"]

    readme = project.get("readme")
    if readme is not None:
        assert (project_root / readme).exists()
        assert readme.lower().startswith("readme")
