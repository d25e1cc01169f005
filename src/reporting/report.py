"""Run reporting for terraform invocations."""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

# GitHub rejects comment bodies above 65536 characters
MAX_COMMENT_OUTPUT = 60000


@dataclass
class RunReport:
    """Collects the outcome of one (environment, layer, action) run."""
    environment: str
    layer: str
    action: str
    report_dir: Optional[Path] = None
    command: list[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    message: str = ''
    output: str = ''
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def target(self) -> str:
        return f'{self.environment}/{self.layer}'

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def start(self, command: list[str]):
        """Mark run start."""
        self.started_at = datetime.now()
        self.command = list(command)

    def finish(self, exit_code: int, message: str = '', output: str = ''):
        """Record result and write report files when a report dir is set."""
        self.finished_at = datetime.now()
        self.exit_code = exit_code
        self.message = message
        self.output = output
        if self.report_dir:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            self._write_json()
            self._write_markdown()

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        result = {
            'environment': self.environment,
            'layer': self.layer,
            'action': self.action,
            'command': self.command,
            'success': self.success,
            'exit_code': self.exit_code,
            'duration_seconds': round(self.duration, 1),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
        if not self.success and self.message:
            result['error'] = self.message
        if self.output:
            result['output'] = self.output
        return result

    @classmethod
    def from_dict(cls, data: dict) -> 'RunReport':
        """Rebuild a report from to_dict() output (e.g. a CI artifact)."""
        report = cls(
            environment=data['environment'],
            layer=data['layer'],
            action=data['action'],
            command=data.get('command', []),
            exit_code=data.get('exit_code'),
            message=data.get('error', ''),
            output=data.get('output', ''),
        )
        if data.get('started_at'):
            report.started_at = datetime.fromisoformat(data['started_at'])
        if data.get('finished_at'):
            report.finished_at = datetime.fromisoformat(data['finished_at'])
        return report

    def to_markdown(self) -> str:
        """Render the report as markdown (report file and PR comment body)."""
        status = 'succeeded' if self.success else f'failed (exit {self.exit_code})'
        icon = '✅' if self.success else '❌'

        lines = [
            f"### {icon} terraform {self.action}: `{self.target}`",
            "",
            f"**Status**: {status}",
            f"**Duration**: {self.duration:.1f}s",
        ]
        if self.command:
            lines.append(f"**Command**: `{' '.join(self.command)}`")
        if self.message:
            lines.extend(["", self.message])

        if self.output:
            output = self.output
            if len(output) > MAX_COMMENT_OUTPUT:
                output = output[-MAX_COMMENT_OUTPUT:]
                lines.extend(["", f"_Output truncated to the last {MAX_COMMENT_OUTPUT} characters._"])
            # Fence must be longer than any backtick run inside the output
            longest = max((len(run) for run in re.findall(r'`+', output)), default=0)
            fence = '`' * max(3, longest + 1)
            lines.extend([
                "",
                "<details><summary>Output</summary>",
                "",
                fence,
                output.rstrip(),
                fence,
                "",
                "</details>",
            ])

        return '\n'.join(lines)

    def _write_json(self):
        with open(self._report_filename('json'), 'w', encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def _write_markdown(self):
        with open(self._report_filename('md'), 'w', encoding="utf-8") as f:
            f.write(self.to_markdown())
            f.write('\n')

    def _report_filename(self, ext: str) -> Path:
        """Generate report filename.

        Includes environment, layer and action so parallel CI jobs never collide.
        """
        assert self.report_dir is not None
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        return self.report_dir / f"{timestamp}.{self.environment}-{self.layer}-{self.action}.{status}.{ext}"
