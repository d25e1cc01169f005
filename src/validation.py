"""Pre-flight validation checks for terraform invocations.

This module provides readiness checks that run before terraform is
launched, catching configuration issues early with actionable error
messages. Credentials are not checked here: authentication failures are
reported by terraform itself.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from common import run_command
from config import ConfigError, ENVIRONMENTS, list_roots, load_environments, root_dir
from actions.terraform import TERRAFORM_BIN
from actions.tree import TERRAFORM_DOCS_BIN

logger = logging.getLogger(__name__)

# Actions that change infrastructure
MUTATING_ACTIONS = ('apply', 'destroy')

# Environments that may be mutated from a push event
AUTO_APPLY_ENVIRONMENTS = ('dev',)


# -----------------------------------------------------------------------------
# Tooling
# -----------------------------------------------------------------------------

def get_terraform_version() -> Optional[str]:
    """Return the installed terraform version, or None if unavailable."""
    rc, out, _ = run_command([TERRAFORM_BIN, 'version', '-json'], timeout=30)
    if rc != 0:
        return None
    try:
        return json.loads(out).get('terraform_version', 'unknown')
    except json.JSONDecodeError:
        # Older releases lack -json; first line is "Terraform vX.Y.Z"
        first_line = out.strip().split('\n')[0]
        return first_line.replace('Terraform ', '').lstrip('v') or 'unknown'


def validate_terraform_binary(check_version: bool = False) -> list[str]:
    """Validate terraform is installed (and runnable, with check_version).

    Returns:
        List of validation error messages (empty if valid)
    """
    if shutil.which(TERRAFORM_BIN) is None:
        return [
            f"{TERRAFORM_BIN} not found on PATH\n"
            f"  Install: https://developer.hashicorp.com/terraform/install"
        ]
    if not check_version:
        return []

    version = get_terraform_version()
    if version is None:
        return [f"{TERRAFORM_BIN} is installed but 'terraform version' failed"]

    logger.info(f"Using terraform {version}")
    return []


# -----------------------------------------------------------------------------
# Tree
# -----------------------------------------------------------------------------

def validate_root_dir(env: str, layer: str, tree_root: Optional[Path] = None) -> list[str]:
    """Validate the root configuration for (env, layer) exists and has .tf files."""
    path = root_dir(env, layer, tree_root)
    if not path.is_dir():
        return [
            f"Root configuration not found for {env}/{layer}\n"
            f"  Expected: {path}"
        ]
    if not any(path.glob('*.tf')):
        return [
            f"Root configuration {env}/{layer} has no .tf files\n"
            f"  Directory: {path}"
        ]
    return []


def validate_environment_config() -> list[str]:
    """Validate environments.yaml parses and names only known environments."""
    try:
        load_environments()
    except ConfigError as e:
        return [str(e)]
    return []


# -----------------------------------------------------------------------------
# CI policy
# -----------------------------------------------------------------------------

def validate_ci_policy(env: str, action: str, environ: Optional[dict] = None) -> list[str]:
    """Validate the CI event is allowed to run this action.

    Under GitHub Actions, push events may only mutate dev. Stage and prod
    changes must come from a manual workflow_dispatch run.
    """
    environ = os.environ if environ is None else environ
    if environ.get('GITHUB_ACTIONS') != 'true':
        return []

    event = environ.get('GITHUB_EVENT_NAME', '')
    if action in MUTATING_ACTIONS and env not in AUTO_APPLY_ENVIRONMENTS and event != 'workflow_dispatch':
        return [
            f"'{action}' on {env} is not allowed from a '{event or 'unknown'}' event\n"
            f"  Run the workflow manually (workflow_dispatch) and select the layer"
        ]
    return []


# -----------------------------------------------------------------------------
# Aggregate
# -----------------------------------------------------------------------------

def validate_readiness(env: str, layer: str, action: str,
                       tree_root: Optional[Path] = None) -> list[str]:
    """Run all checks needed before invoking terraform for (env, layer, action).

    Returns:
        List of error strings (empty if ready)
    """
    errors: list[str] = []
    errors.extend(validate_environment_config())
    errors.extend(validate_root_dir(env, layer, tree_root))
    errors.extend(validate_ci_policy(env, action))
    errors.extend(validate_terraform_binary())
    return errors


def run_preflight_checks(tree_root: Optional[Path] = None) -> tuple[bool, dict]:
    """Run standalone preflight checks across the whole tree.

    Returns:
        (success, results) tuple where results contains check details
    """
    results: dict[str, dict[str, list[str]]] = {
        'tooling': {'passed': [], 'failed': []},
        'config': {'passed': [], 'failed': []},
        'roots': {'passed': [], 'failed': []},
    }

    tool_errors = validate_terraform_binary(check_version=True)
    if tool_errors:
        results['tooling']['failed'].extend(tool_errors)
    else:
        results['tooling']['passed'].append(f"terraform {get_terraform_version()}")
    if shutil.which(TERRAFORM_DOCS_BIN):
        results['tooling']['passed'].append(f"{TERRAFORM_DOCS_BIN} available")

    config_errors = validate_environment_config()
    if config_errors:
        results['config']['failed'].extend(config_errors)
    else:
        results['config']['passed'].append(f"Environments: {', '.join(ENVIRONMENTS)}")

    for env, layer, _path in list_roots(tree_root):
        root_errors = validate_root_dir(env, layer, tree_root)
        if root_errors:
            results['roots']['failed'].extend(root_errors)
        else:
            results['roots']['passed'].append(f"{env}/{layer}")

    all_failed = []
    for category in results.values():
        all_failed.extend(category['failed'])

    return len(all_failed) == 0, results


def format_preflight_results(results: dict) -> str:
    """Format preflight check results for display."""
    lines = ["\nPreflight checks:\n"]

    category_names = {
        'tooling': 'Tooling',
        'config': 'Configuration',
        'roots': 'Root configurations',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': []})
        if category['passed'] or category['failed']:
            lines.append(f"{name}:")
            for item in category['passed']:
                lines.append(f"✓ {item}")
            for item in category['failed']:
                first_line = item.split('\n')[0]
                lines.append(f"✗ {first_line}")
                for line in item.split('\n')[1:]:
                    lines.append(f"  {line}")
            lines.append("")

    all_passed = all(len(cat['failed']) == 0 for cat in results.values())
    if all_passed:
        lines.append("All checks passed.")
    else:
        lines.append("Some checks failed. Fix issues before running terraform.")

    return '\n'.join(lines)
