from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from maestro.agents import AgentCatalog
from maestro.capabilities import CapabilityRegistry, CommandCapability, ConfirmCapability
from maestro.classifier import TASK_TYPES, TaskClassifier, TaskEstimate
from maestro.config import CONFIG_FILENAME, MaestroConfig, load_config, save_config
from maestro.errors import MaestroError
from maestro.rulebook import (
    agent_stats,
    generate_rulebook,
    load_rulebook,
    missing_core_agents,
    validate_rulebook,
)
from maestro.stack import StackDetector, scan_workspace
from maestro.workflow import StepAddition, WorkflowEngine


@dataclass(slots=True)
class Runtime:
    workspace_root: Path
    config_path: Path
    config: MaestroConfig
    engine: WorkflowEngine


def _resolve_config_path(workspace_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = workspace_root / config_path
    return config_path.resolve()


def _build_capabilities(config: MaestroConfig, workspace_root: Path) -> CapabilityRegistry:
    registry = CapabilityRegistry(default=ConfirmCapability())
    for agent_id, command in sorted(config.capabilities.commands.items()):
        registry.register(
            agent_id,
            CommandCapability(
                command, cwd=workspace_root, timeout_seconds=config.capabilities.timeout_seconds
            ),
        )
    return registry


def _load_runtime(workspace_root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    engine = WorkflowEngine(
        workspace_root,
        config,
        capabilities=_build_capabilities(config, workspace_root),
    )
    return Runtime(
        workspace_root=workspace_root,
        config_path=config_path,
        config=config,
        engine=engine,
    )


def _runtime(config_value: str) -> Runtime:
    workspace_root = Path.cwd().resolve()
    return _load_runtime(workspace_root, _resolve_config_path(workspace_root, config_value))


def _fail(exc: MaestroError) -> click.ClickException:
    lines = [str(exc)]
    if exc.options:
        lines.append("Options:")
        lines += [f"  - {option}" for option in exc.options]
    return click.ClickException("\n".join(lines))


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _echo_steps(steps: Any) -> None:
    for step in steps:
        click.echo(f"  {step.number:>2}. [{step.phase}] {step.agent_id}: {step.task}")


config_option = click.option(
    "--config", "config_value", default=CONFIG_FILENAME, show_default=True
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log to stderr.")
def cli(verbose: bool) -> None:
    """Maestro planning and execution workflow."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


@cli.command("init")
@click.option("--name", default=None, help="Project name recorded in the config.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing RULEBOOK.")
@config_option
def init_command(name: str | None, force: bool, config_value: str) -> None:
    workspace_root = Path.cwd().resolve()
    config_path = _resolve_config_path(workspace_root, config_value)
    config = load_config(config_path)
    if name:
        config.project.name = name
    elif not config_path.exists():
        config.project.name = workspace_root.name
    save_config(config_path, config)

    runtime = _load_runtime(workspace_root, config_path)
    payload = runtime.engine.rescan()
    profile = runtime.engine.profile()

    rulebook_path = runtime.engine.rulebook_path
    if force or not rulebook_path.exists():
        rulebook_path.parent.mkdir(parents=True, exist_ok=True)
        rulebook_path.write_text(
            generate_rulebook(profile, runtime.engine.catalog, config.project.name),
            encoding="utf-8",
        )
        click.echo(f"RULEBOOK: {rulebook_path}")
    else:
        click.echo(f"RULEBOOK kept: {rulebook_path}")

    click.echo(f"Initialized Maestro in {workspace_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Detected categories: {payload.get('detected_count', 0)}")
    for category, candidates in payload.get("conflicts", {}).items():
        click.echo(f"Conflict in {category}: {', '.join(candidates)}")


@cli.command("detect")
@click.option("--rescan", is_flag=True, default=False)
@config_option
def detect_command(rescan: bool, config_value: str) -> None:
    runtime = _runtime(config_value)
    payload = runtime.engine.detection(refresh=rescan)
    _echo_json(payload)


@cli.command("classify")
@click.argument("text")
@click.option("--loc", type=int, default=None, help="Estimated lines of code.")
@click.option("--files", type=int, default=None, help="Estimated files touched.")
@click.option("--new-pattern", is_flag=True, default=False)
@config_option
def classify_command(
    text: str, loc: int | None, files: int | None, new_pattern: bool, config_value: str
) -> None:
    runtime = _runtime(config_value)
    classifier = TaskClassifier(runtime.config.classification)
    estimate = _estimate(loc, files, new_pattern)
    try:
        classification = classifier.classify(text, runtime.engine.profile(), estimate=estimate)
    except MaestroError as exc:
        raise _fail(exc) from exc
    _echo_json(classification.to_dict())


def _estimate(loc: int | None, files: int | None, new_pattern: bool) -> TaskEstimate | None:
    if loc is None and files is None and not new_pattern:
        return None
    if loc is None or files is None:
        raise click.UsageError("--loc and --files must be given together.")
    return TaskEstimate(lines_of_code=loc, files_touched=files, new_pattern=new_pattern)


@cli.command("agents")
@click.option("--matching", is_flag=True, default=False, help="Only specialists for this stack.")
@config_option
def agents_command(matching: bool, config_value: str) -> None:
    if matching:
        runtime = _runtime(config_value)
        descriptors = runtime.engine.catalog.matching_specialists(runtime.engine.profile())
        for descriptor in descriptors:
            click.echo(f"{descriptor.id} [{descriptor.group}/{descriptor.phase}]")
        return
    for group, descriptors in AgentCatalog.default().groups().items():
        click.echo(f"{group}:")
        for descriptor in descriptors:
            click.echo(f"  {descriptor.id} ({descriptor.phase}, priority {descriptor.priority})")


@cli.command("plan")
@click.argument("task")
@click.option("--type", "task_type", type=click.Choice(TASK_TYPES), default=None)
@click.option("--loc", type=int, default=None, help="Estimated lines of code.")
@click.option("--files", type=int, default=None, help="Estimated files touched.")
@click.option("--new-pattern", is_flag=True, default=False)
@config_option
def plan_command(
    task: str,
    task_type: str | None,
    loc: int | None,
    files: int | None,
    new_pattern: bool,
    config_value: str,
) -> None:
    runtime = _runtime(config_value)
    try:
        draft = runtime.engine.draft(
            task, estimate=_estimate(loc, files, new_pattern), task_type=task_type
        )
    except MaestroError as exc:
        raise _fail(exc) from exc
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc

    click.echo(f"Draft: {draft.draft_id}")
    if draft.classification:
        classification = draft.classification
        click.echo(
            f"Task: {classification.task_type} / {classification.complexity} / "
            f"risk {classification.risk_level}"
        )
    _echo_steps(draft.pipeline)
    for violation in draft.validation.violations:
        level = "BLOCKING" if violation.blocking else "warning"
        click.echo(f"{level} [{violation.rule}] {violation.message}")
    for question in draft.open_questions:
        click.echo(f"Question {question.id}: {question.prompt}")
        if question.options:
            click.echo(f"  options: {', '.join(question.options)}")
    click.echo("Respond with an approval, a rejection or an answer.")


@cli.command("answer")
@click.argument("question_id")
@click.argument("value")
@config_option
def answer_command(question_id: str, value: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        draft = runtime.engine.answer(question_id, value)
    except MaestroError as exc:
        raise _fail(exc) from exc
    click.echo(f"Answered {question_id}; {len(draft.open_questions)} question(s) open.")
    _echo_steps(draft.pipeline)


@cli.command("override")
@click.argument("reason")
@config_option
def override_command(reason: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        runtime.engine.override_validation(reason)
    except MaestroError as exc:
        raise _fail(exc) from exc
    click.echo("Validation overridden.")


@cli.command("respond")
@click.argument("text")
@config_option
def respond_command(text: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        outcome = runtime.engine.respond(text)
    except MaestroError as exc:
        raise _fail(exc) from exc
    click.echo(outcome.message)
    click.echo(f"Phase: {outcome.phase} (pending: {outcome.pending_approval})")


@cli.command("run")
@click.option("--steps", "limit", type=click.IntRange(min=1), default=None)
@config_option
def run_command(limit: int | None, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        summary = asyncio.run(runtime.engine.run(limit=limit))
    except MaestroError as exc:
        raise _fail(exc) from exc

    click.echo(f"Plan: {summary.plan_id}")
    click.echo(f"Steps: {summary.completed_steps}/{summary.total_steps}")
    if summary.halted_reason:
        click.echo(f"Halted: {summary.halted_reason}")
    if summary.finalized:
        click.echo("All steps complete; plan finalized.")
    elif summary.pending_approval == "commit_approval":
        click.echo("All steps complete; approve to finalize.")
    elif summary.pending_approval != "none":
        click.echo(f"Waiting for: {summary.pending_approval}")


@cli.command("decide")
@click.argument("option")
@click.option("--note", default=None)
@config_option
def decide_command(option: str, note: str | None, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        runtime.engine.decide(option, note=note)
    except MaestroError as exc:
        raise _fail(exc) from exc
    click.echo(f"Decision recorded: {option}")


@cli.command("change")
@click.option("--add", "add_task", default=None, help="Task text for a new step.")
@click.option("--agent", "agent_id", default=None, help="Agent for the new step.")
@click.option("--at", "position", type=int, default=None, help="Step number for the new step.")
@click.option("--remove", "remove_numbers", type=int, multiple=True)
@click.option("--reason", default="")
@config_option
def change_command(
    add_task: str | None,
    agent_id: str | None,
    position: int | None,
    remove_numbers: tuple[int, ...],
    reason: str,
    config_value: str,
) -> None:
    additions: list[StepAddition] = []
    if agent_id:
        additions.append(StepAddition(agent_id=agent_id, task=add_task, at=position))
    elif add_task:
        raise click.UsageError("--add needs --agent.")
    runtime = _runtime(config_value)
    try:
        plan = runtime.engine.change_plan(
            add=additions, remove=list(remove_numbers), reason=reason
        )
    except MaestroError as exc:
        raise _fail(exc) from exc
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc
    click.echo("Plan change awaiting approval:")
    _echo_steps(plan.pipeline)


@cli.command("status")
@config_option
def status_command(config_value: str) -> None:
    runtime = _runtime(config_value)
    _echo_json(runtime.engine.status())


@cli.command("abort")
@config_option
def abort_command(config_value: str) -> None:
    runtime = _runtime(config_value)
    if runtime.engine.abort():
        click.echo("Task aborted; plan removed.")
    else:
        click.echo("Nothing to abort.")


@cli.command("validate-rulebook")
@click.option("--path", "path_value", default=None)
@config_option
def validate_rulebook_command(path_value: str | None, config_value: str) -> None:
    workspace_root = Path.cwd().resolve()
    config = load_config(_resolve_config_path(workspace_root, config_value))
    path = workspace_root / (path_value or config.rulebook.path)
    if not path.exists():
        raise click.ClickException(
            f"RULEBOOK not found at {path}\nOptions:\n  - maestro init\n  - abort"
        )
    report = validate_rulebook(path.read_text(encoding="utf-8"), AgentCatalog.default())
    for error in report.errors:
        click.echo(f"error: {error}")
    for warning in report.warnings:
        click.echo(f"warning: {warning}")
    if not report.ok:
        raise click.ClickException(f"RULEBOOK has {len(report.errors)} error(s).")
    click.echo("RULEBOOK is valid.")


@cli.command("stats")
@config_option
def stats_command(config_value: str) -> None:
    """Show how many catalog agents the RULEBOOK activates, per group."""
    runtime = _runtime(config_value)
    rulebook = load_rulebook(runtime.engine.rulebook_path)
    if rulebook is None:
        raise click.ClickException(
            f"RULEBOOK not found at {runtime.engine.rulebook_path}\nOptions:\n  - maestro init"
        )
    stats = agent_stats(rulebook, runtime.engine.catalog)
    active = sum(item.active for item in stats)
    total = sum(item.total for item in stats)
    click.echo(f"Active agents: {active}/{total}")
    for item in stats:
        click.echo(f"  {item.group:<16} {item.active:>3}/{item.total:<3} {item.rate:>4.0%}")
    missing = missing_core_agents(rulebook, runtime.engine.catalog)
    if missing:
        click.echo(f"Missing core agents: {', '.join(missing)}")
    else:
        click.echo("All core agents active.")


@cli.command("history")
@click.option("--limit", type=int, default=20, show_default=True)
@config_option
def history_command(limit: int, config_value: str) -> None:
    runtime = _runtime(config_value)
    decisions = runtime.engine.history()
    _echo_json(decisions[-limit:] if limit > 0 else decisions)


@cli.command("scan")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--min-categories", type=int, default=1, show_default=True)
def scan_command(directory: Path, min_categories: int) -> None:
    """Detect the stack of DIRECTORY without touching its state."""
    report = StackDetector(min_categories=min_categories).inspect(scan_workspace(directory))
    _echo_json(report.to_dict())
