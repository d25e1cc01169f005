"""Dispatch an (environment, layer, action) triple to terraform.

Each invocation is a single blocking terraform subprocess. The exit code
is returned unchanged; nothing is retried.
"""

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from actions.terraform import (
    ACTIONS,
    TerraformAction,
    TerraformApplyAction,
    TerraformDestroyAction,
    TerraformFormatAction,
    TerraformInitAction,
    TerraformPlanAction,
)
from config import ENVIRONMENTS, LAYERS, EnvironmentConfig, load_environment_config
from reporting import RunReport

logger = logging.getLogger(__name__)

# Conventional exit status for command line usage errors (argparse uses the same)
EXIT_USAGE = 2


class UsageError(Exception):
    """Invalid environment, layer or action."""


@dataclass(frozen=True)
class Invocation:
    """A validated (environment, layer, action) request."""
    environment: str
    layer: str
    action: str

    @property
    def label(self) -> str:
        return f'{self.environment}/{self.layer} {self.action}'


def parse_invocation(environment: str, layer: str, action: str) -> Invocation:
    """Validate the triple against the fixed sets.

    Raises:
        UsageError: If any member is unknown
    """
    if environment not in ENVIRONMENTS:
        raise UsageError(
            f"Unknown environment '{environment}'. Available: {', '.join(ENVIRONMENTS)}"
        )
    if layer not in LAYERS:
        raise UsageError(
            f"Unknown layer '{layer}'. Available: {', '.join(LAYERS)}"
        )
    if action not in ACTIONS:
        raise UsageError(
            f"Unknown action '{action}'. Available: {', '.join(ACTIONS)}"
        )
    return Invocation(environment, layer, action)


def build_action(
    invocation: Invocation,
    tree_root: Optional[Path] = None,
    capture: bool = False,
    auto_approve: bool = False,
    plan_file: Optional[str] = None,
    reconfigure: bool = False,
    check: bool = False,
) -> TerraformAction:
    """Instantiate the action class for an invocation with its options."""
    action_cls = ACTIONS[invocation.action]
    kwargs: dict = {
        'name': invocation.label,
        'layer': invocation.layer,
        'tree_root': tree_root,
        'capture': capture,
    }
    if action_cls is TerraformInitAction:
        kwargs['reconfigure'] = reconfigure
    elif action_cls is TerraformPlanAction:
        kwargs['out'] = plan_file
    elif action_cls is TerraformApplyAction:
        kwargs['auto_approve'] = auto_approve
        kwargs['plan_file'] = plan_file
    elif action_cls is TerraformDestroyAction:
        kwargs['auto_approve'] = auto_approve
    elif action_cls is TerraformFormatAction:
        kwargs['check'] = check
    return action_cls(**kwargs)


def dry_run_plan(invocation: Invocation, action: TerraformAction, config: EnvironmentConfig) -> dict:
    """What would be executed, as a dictionary for --json-output."""
    return {
        'environment': invocation.environment,
        'layer': invocation.layer,
        'action': invocation.action,
        'dry_run': True,
        'directory': str(action.workdir(config)),
        'command': action.command(config),
        'environment_overrides': dict(sorted(config.subprocess_env(invocation.layer).items())),
    }


def preview(invocation: Invocation, action: TerraformAction, config: EnvironmentConfig,
            json_output: bool = False) -> None:
    """Show what would be executed without running."""
    plan = dry_run_plan(invocation, action, config)
    if json_output:
        print(json.dumps(plan, indent=2))
        return

    print("")
    print(f"DRY-RUN: {invocation.label}")
    print(f"  Directory: {plan['directory']}")
    print(f"  Command:   {' '.join(plan['command'])}")
    print("  Environment:")
    for key, value in plan['environment_overrides'].items():
        print(f"    {key}={value}")
    print("")


def run_invocation(
    invocation: Invocation,
    action: TerraformAction,
    config: Optional[EnvironmentConfig] = None,
    report: Optional[RunReport] = None,
    dry_run: bool = False,
    json_output: bool = False,
) -> int:
    """Run the action for an invocation and return terraform's exit code.

    On a non-zero exit a diagnostic naming the triple goes to stderr.
    """
    if config is None:
        config = load_environment_config(invocation.environment)

    if dry_run:
        preview(invocation, action, config, json_output=json_output)
        return 0

    if report is not None:
        report.start(action.command(config))

    logger.info(f"Starting {invocation.label}")
    result = action.run(config, {})

    if report is not None:
        report.finish(result.exit_code, result.message, result.output)

    if result.success:
        logger.info(f"{invocation.label}: {result.message} ({result.duration:.1f}s)")
    else:
        print(
            f"Error: {invocation.label} failed with exit code {result.exit_code}: {result.message}",
            file=sys.stderr
        )
    return result.exit_code
