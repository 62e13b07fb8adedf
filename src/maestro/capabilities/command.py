from __future__ import annotations

import asyncio
import logging
import re
import shlex
from pathlib import Path
from typing import Any

from maestro.capabilities.base import Capability, StepResult
from maestro.state.plan import PipelineStep

logger = logging.getLogger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")


class CommandCapability(Capability):
    """Runs a shell command for a step; exit code 0 means success."""

    def __init__(self, command: str, *, cwd: Path, timeout_seconds: float = 600.0) -> None:
        self.command = command.strip()
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    async def _spawn(self) -> asyncio.subprocess.Process:
        if SHELL_REQUIRED_PATTERN.search(self.command):
            return await asyncio.create_subprocess_shell(
                self.command,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        return await asyncio.create_subprocess_exec(
            *shlex.split(self.command),
            cwd=self.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def run(self, step: PipelineStep, context: dict[str, Any]) -> StepResult:
        if not self.command:
            return StepResult(
                "blocked",
                f"No command configured for {step.agent_id}.",
                options=["retry", "revise", "abort"],
            )
        try:
            process = await self._spawn()
        except FileNotFoundError:
            executable = shlex.split(self.command)[0]
            return StepResult(
                "blocked",
                f"Executable not found: {executable}",
                options=[f"install {executable}", "retry", "revise", "abort"],
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            return StepResult(
                "failure", f"Command timed out after {self.timeout_seconds:g}s: {self.command}"
            )

        artifact = {
            "type": "command",
            "command": self.command,
            "exit_code": process.returncode,
            "stdout_tail": stdout.decode("utf-8", errors="replace").strip()[-1000:],
            "stderr_tail": stderr.decode("utf-8", errors="replace").strip()[-1000:],
        }
        logger.info("Step %d command exited with %s", step.number, process.returncode)
        if process.returncode != 0:
            return StepResult(
                "failure",
                f"Command failed with exit code {process.returncode}: {self.command}",
                artifacts=[artifact],
            )
        return StepResult("success", f"Command succeeded: {self.command}", artifacts=[artifact])
