"""Common utilities and types for terraform orchestration."""

import logging
import os
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

# Shell convention for "command not found"
EXIT_NOT_FOUND = 127


@dataclass
class ActionResult:
    """Result returned by an action."""
    success: bool
    message: str = ''
    duration: float = 0.0
    exit_code: int = 0
    output: str = ''
    context_updates: dict = field(default_factory=dict)


def exit_status(returncode: int) -> int:
    """Convert a subprocess returncode to a process exit status.

    subprocess reports death-by-signal as -N; shells report it as 128+N.
    """
    if returncode < 0:
        return 128 - returncode
    return returncode


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    stdout/stderr are empty strings when capture is False (output goes
    straight to the terminal).

    On KeyboardInterrupt the child is not killed: it shares the terminal's
    process group and already received SIGINT, so we wait for it to finish
    its own shutdown (terraform releases the state lock) and re-raise.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    pipe = subprocess.PIPE if capture else None
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdout=pipe,
            stderr=pipe,
            text=True,
            env=env,
        )
    except FileNotFoundError as e:
        return EXIT_NOT_FOUND, '', f"{cmd[0]}: command not found ({e})"

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        return -1, '', f'Command timed out after {timeout}s'
    except KeyboardInterrupt:
        logger.warning(f"Interrupted, waiting for {cmd[0]} to exit")
        proc.communicate()
        raise
    return proc.returncode, stdout or '', stderr or ''


@contextmanager
def working_directory(path: Path) -> Iterator[Path]:
    """Change into path for the duration of the block.

    The previous working directory is restored on every exit path,
    including exceptions and KeyboardInterrupt.
    """
    previous = os.getcwd()
    os.chdir(path)
    logger.debug(f"Entered {path}")
    try:
        yield Path(path)
    finally:
        os.chdir(previous)
        logger.debug(f"Restored {previous}")
