"""Tree-wide housekeeping actions (Makefile targets).

These operate on the whole live/ and modules/ tree rather than on one
(environment, layer) root, and never touch remote state.
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common import EXIT_NOT_FOUND, ActionResult, exit_status, run_command, working_directory
from config import get_live_dir, get_modules_dir, get_tree_root, list_roots
from actions.terraform import TERRAFORM_BIN

logger = logging.getLogger(__name__)

TERRAFORM_DOCS_BIN = 'terraform-docs'


@dataclass
class ValidateAllAction:
    """Initialise (without backend) and validate every live root.

    Keeps going after a failing root so one run reports all of them.
    """
    name: str
    tree_root: Optional[Path] = None

    def run(self, context: dict) -> ActionResult:
        """Validate all roots and summarise."""
        start = time.time()
        results = []

        for env, layer, path in list_roots(self.tree_root):
            label = f'{env}/{layer}'
            if not path.is_dir():
                logger.error(f"[{self.name}] {label}: root directory not found: {path}")
                results.append({'root': label, 'status': 'missing', 'exit_code': 1})
                continue

            with working_directory(path):
                rc, _, err = run_command([TERRAFORM_BIN, 'init', '-backend=false', '-input=false'])
                if rc == 0:
                    rc, _, err = run_command([TERRAFORM_BIN, 'validate', '-no-color'])
            rc = exit_status(rc)

            if rc == 0:
                logger.info(f"[{self.name}] {label}: valid")
                results.append({'root': label, 'status': 'valid', 'exit_code': 0})
            else:
                logger.error(f"[{self.name}] {label}: invalid\n{err.strip()}")
                results.append({'root': label, 'status': 'invalid', 'exit_code': rc})

        failed = [r['root'] for r in results if r['status'] != 'valid']
        if failed:
            message = f"{len(failed)} of {len(results)} roots failed validation: {', '.join(failed)}"
        else:
            message = f"All {len(results)} roots valid"

        return ActionResult(
            success=not failed,
            message=message,
            duration=time.time() - start,
            exit_code=1 if failed else 0,
            context_updates={'results': results}
        )


@dataclass
class FormatTreeAction:
    """terraform fmt -recursive over the whole tree."""
    name: str
    check: bool = False
    tree_root: Optional[Path] = None

    def run(self, context: dict) -> ActionResult:
        start = time.time()
        cmd = [TERRAFORM_BIN, 'fmt', '-recursive']
        if self.check:
            cmd.extend(['-check', '-diff'])

        root = self.tree_root or get_tree_root()
        with working_directory(root):
            rc, _, err = run_command(cmd, capture=False)
        rc = exit_status(rc)

        if rc == 0:
            message = "Formatting clean" if self.check else "Formatted tree"
        elif self.check:
            message = "Unformatted files found (run: make fmt)"
        else:
            message = f"terraform fmt failed (exit {rc}) {err.strip()}".strip()

        return ActionResult(
            success=rc == 0,
            message=message,
            duration=time.time() - start,
            exit_code=rc
        )


@dataclass
class DocsAction:
    """Regenerate README.md for every module with terraform-docs."""
    name: str
    tree_root: Optional[Path] = None

    def run(self, context: dict) -> ActionResult:
        start = time.time()

        if shutil.which(TERRAFORM_DOCS_BIN) is None:
            return ActionResult(
                success=False,
                message=f"{TERRAFORM_DOCS_BIN} not found on PATH",
                duration=time.time() - start,
                exit_code=EXIT_NOT_FOUND
            )

        modules_dir = get_modules_dir(self.tree_root)
        modules = sorted(p for p in modules_dir.iterdir() if p.is_dir()) if modules_dir.is_dir() else []
        failed = []
        for module in modules:
            cmd = [TERRAFORM_DOCS_BIN, 'markdown', 'table', '--output-file', 'README.md', '.']
            with working_directory(module):
                rc, _, err = run_command(cmd)
            if rc != 0:
                logger.error(f"[{self.name}] {module.name}: {err.strip()}")
                failed.append(module.name)
            else:
                logger.info(f"[{self.name}] {module.name}: README.md updated")

        if failed:
            return ActionResult(
                success=False,
                message=f"terraform-docs failed for: {', '.join(failed)}",
                duration=time.time() - start,
                exit_code=1
            )
        return ActionResult(
            success=True,
            message=f"Documented {len(modules)} modules",
            duration=time.time() - start
        )


@dataclass
class CleanAction:
    """Remove local .terraform directories and saved plan files.

    Dependency lock files (.terraform.lock.hcl) are kept.
    """
    name: str
    tree_root: Optional[Path] = None

    def run(self, context: dict) -> ActionResult:
        start = time.time()
        removed = []

        for base in (get_live_dir(self.tree_root), get_modules_dir(self.tree_root)):
            if not base.is_dir():
                continue
            for path in sorted(base.rglob('.terraform')):
                if path.is_dir():
                    shutil.rmtree(path)
                    removed.append(path)
            for path in sorted(base.rglob('*.tfplan')):
                if path.is_file():
                    path.unlink()
                    removed.append(path)

        for path in removed:
            logger.debug(f"[{self.name}] Removed {path}")

        return ActionResult(
            success=True,
            message=f"Removed {len(removed)} paths",
            duration=time.time() - start,
            context_updates={'removed': [str(p) for p in removed]}
        )
