from __future__ import annotations

from typing import Any

import click

from maestro.capabilities.base import Capability, StepResult
from maestro.state.plan import PipelineStep


class ConfirmCapability(Capability):
    """Asks the operator whether a step was carried out."""

    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        click.echo(f"Step {step.number} [{step.agent_id}] {step.task}")
        click.echo(f"  Expected: {step.expected_output}")
        if step.approach:
            click.echo(f"  Approach: {step.approach}")
        if click.confirm("Mark step as done?", default=True):
            return StepResult("success", "Confirmed by operator.")
        reason = click.prompt("What is blocking this step?", default="Not done", show_default=False)
        return StepResult("blocked", reason, options=["retry", "revise", "abort"])
