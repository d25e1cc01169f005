"""Terraform actions scoped to a single (environment, layer) root."""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common import ActionResult, exit_status, run_command, working_directory
from config import EnvironmentConfig, root_dir

logger = logging.getLogger(__name__)

TERRAFORM_BIN = 'terraform'

# terraform plan -detailed-exitcode: 0 = no changes, 1 = error, 2 = changes present
DRIFT_EXIT_CODE = 2


@dataclass
class TerraformAction:
    """Run one terraform subcommand inside a live root.

    Subclasses set `subcommand` and extend `arguments()`. The command runs
    with the working directory switched to the root and restored afterwards.
    """
    name: str
    layer: str
    tree_root: Optional[Path] = None
    capture: bool = False
    subcommand: str = field(default='', init=False)

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        """Subcommand arguments (after the subcommand name)."""
        return []

    def command(self, config: EnvironmentConfig) -> list[str]:
        """Full argv for the terraform invocation."""
        return [TERRAFORM_BIN, self.subcommand] + self.arguments(config)

    def workdir(self, config: EnvironmentConfig) -> Path:
        """Root configuration directory this action runs in."""
        return root_dir(config.name, self.layer, self.tree_root)

    def environment(self, config: EnvironmentConfig) -> dict[str, str]:
        """Subprocess environment: parent environment plus credential context."""
        return {**os.environ, **config.subprocess_env(self.layer)}

    def describe(self, rc: int) -> str:
        """Message for a finished run."""
        if rc == 0:
            return f"terraform {self.subcommand} completed"
        return f"terraform {self.subcommand} failed (exit {rc})"

    def run(self, config: EnvironmentConfig, context: dict) -> ActionResult:
        """Execute the terraform subcommand and report its exit code."""
        start = time.time()

        workdir = self.workdir(config)
        if not workdir.is_dir():
            return ActionResult(
                success=False,
                message=f"Root directory not found: {workdir}",
                duration=time.time() - start,
                exit_code=1
            )

        cmd = self.command(config)
        logger.info(f"[{self.name}] Running {' '.join(cmd)} in {workdir}")
        with working_directory(workdir):
            rc, out, err = run_command(cmd, capture=self.capture, env=self.environment(config))
        rc = exit_status(rc)

        message = self.describe(rc)
        if rc != 0 and err.strip():
            message = f"{message}: {err.strip().splitlines()[-1]}"

        return ActionResult(
            success=rc == 0,
            message=message,
            duration=time.time() - start,
            exit_code=rc,
            output=out + err
        )


@dataclass
class TerraformInitAction(TerraformAction):
    """terraform init with the environment's backend settings."""
    reconfigure: bool = False

    def __post_init__(self):
        self.subcommand = 'init'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        args = ['-input=false']
        if self.reconfigure:
            args.append('-reconfigure')
        for pair in config.backend_config(self.layer):
            args.append(f'-backend-config={pair}')
        return args


@dataclass
class TerraformPlanAction(TerraformAction):
    """terraform plan, optionally saving the plan to a file."""
    out: Optional[str] = None

    def __post_init__(self):
        self.subcommand = 'plan'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        args = ['-input=false']
        if self.out:
            args.append(f'-out={self.out}')
        return args


@dataclass
class TerraformApplyAction(TerraformAction):
    """terraform apply, from a saved plan file when one is given.

    Approval is left to terraform's own prompt unless auto_approve is set.
    """
    auto_approve: bool = False
    plan_file: Optional[str] = None

    def __post_init__(self):
        self.subcommand = 'apply'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        args = []
        if self.auto_approve and not self.plan_file:
            args.append('-auto-approve')
        if self.plan_file:
            args.append(self.plan_file)
        return args


@dataclass
class TerraformDestroyAction(TerraformAction):
    """terraform destroy."""
    auto_approve: bool = False

    def __post_init__(self):
        self.subcommand = 'destroy'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        args = []
        if self.auto_approve:
            args.append('-auto-approve')
        return args


@dataclass
class TerraformDriftCheckAction(TerraformAction):
    """Detect drift with a lock-free detailed-exitcode plan."""

    def __post_init__(self):
        self.subcommand = 'plan'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        return ['-input=false', '-detailed-exitcode', '-lock=false']

    def describe(self, rc: int) -> str:
        if rc == 0:
            return "No drift detected"
        if rc == DRIFT_EXIT_CODE:
            return "Drift detected: live infrastructure differs from configuration"
        return f"Drift check failed (exit {rc})"


@dataclass
class TerraformFormatAction(TerraformAction):
    """terraform fmt over the root (rewrite, or -check in CI)."""
    check: bool = False

    def __post_init__(self):
        self.subcommand = 'fmt'

    def arguments(self, config: EnvironmentConfig) -> list[str]:
        args = ['-recursive']
        if self.check:
            args.extend(['-check', '-diff'])
        return args


@dataclass
class TerraformValidateAction(TerraformAction):
    """terraform validate (root must already be initialised)."""

    def __post_init__(self):
        self.subcommand = 'validate'


# CLI action name -> action class
ACTIONS = {
    'init': TerraformInitAction,
    'plan': TerraformPlanAction,
    'apply': TerraformApplyAction,
    'destroy': TerraformDestroyAction,
    'drift-check': TerraformDriftCheckAction,
    'format': TerraformFormatAction,
    'validate': TerraformValidateAction,
}
