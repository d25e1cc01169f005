"""Tests for terraform action classes.

run_command is patched so no terraform binary is needed. The fake records
the working directory at call time to verify the scoped directory change.
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest


class FakeTerraform:
    """Stand-in for run_command that records calls."""

    def __init__(self, rc=0, out='', err=''):
        self.rc = rc
        self.out = out
        self.err = err
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append({'cmd': cmd, 'cwd': Path(os.getcwd()).resolve(), **kwargs})
        return self.rc, self.out, self.err


def _run(action, config, fake):
    with patch('actions.terraform.run_command', side_effect=fake):
        return action.run(config, {})


class TestTerraformAction:
    """Behaviour shared by every terraform action."""

    def test_runs_inside_root_and_restores_cwd(self, tree_root, dev_config):
        from actions.terraform import TerraformPlanAction
        action = TerraformPlanAction(name='t', layer='data', tree_root=tree_root)
        fake = FakeTerraform()
        before = os.getcwd()

        result = _run(action, dev_config, fake)

        assert result.success is True
        assert fake.calls[0]['cwd'] == (tree_root / 'live' / 'dev' / 'data').resolve()
        assert os.getcwd() == before

    def test_restores_cwd_on_failure(self, tree_root, dev_config):
        from actions.terraform import TerraformApplyAction
        action = TerraformApplyAction(name='t', layer='app', tree_root=tree_root)
        before = os.getcwd()

        result = _run(action, dev_config, FakeTerraform(rc=1, err='Error: quota exceeded'))

        assert result.success is False
        assert os.getcwd() == before

    def test_restores_cwd_on_interrupt(self, tree_root, dev_config):
        from actions.terraform import TerraformApplyAction
        action = TerraformApplyAction(name='t', layer='app', tree_root=tree_root)
        before = os.getcwd()

        with patch('actions.terraform.run_command', side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                action.run(dev_config, {})

        assert os.getcwd() == before

    @pytest.mark.parametrize('rc', [0, 1, 2, 3])
    def test_exit_code_propagated(self, tree_root, dev_config, rc):
        from actions.terraform import TerraformValidateAction
        action = TerraformValidateAction(name='t', layer='platform', tree_root=tree_root)
        result = _run(action, dev_config, FakeTerraform(rc=rc))
        assert result.exit_code == rc
        assert result.success is (rc == 0)

    def test_signal_exit_code(self, tree_root, dev_config):
        from actions.terraform import TerraformApplyAction
        action = TerraformApplyAction(name='t', layer='app', tree_root=tree_root)
        result = _run(action, dev_config, FakeTerraform(rc=-15))
        assert result.exit_code == 143

    def test_missing_root_runs_nothing(self, tmp_path, dev_config):
        from actions.terraform import TerraformPlanAction
        action = TerraformPlanAction(name='t', layer='data', tree_root=tmp_path)
        fake = FakeTerraform()

        result = _run(action, dev_config, fake)

        assert result.success is False
        assert result.exit_code == 1
        assert 'not found' in result.message
        assert fake.calls == []

    def test_environment_carries_credential_context(self, tree_root, dev_config):
        from actions.terraform import TerraformPlanAction
        action = TerraformPlanAction(name='t', layer='data', tree_root=tree_root)
        fake = FakeTerraform()

        _run(action, dev_config, fake)

        env = fake.calls[0]['env']
        assert env['AWS_PROFILE'] == 'test-dev'
        assert env['TF_VAR_environment'] == 'dev'
        assert env['TF_VAR_layer'] == 'data'
        assert 'PATH' in env

    def test_error_message_uses_last_stderr_line(self, tree_root, dev_config):
        from actions.terraform import TerraformApplyAction
        action = TerraformApplyAction(name='t', layer='app', tree_root=tree_root, capture=True)
        result = _run(action, dev_config, FakeTerraform(rc=1, err='\nError: acquiring the state lock\n'))
        assert result.message == 'terraform apply failed (exit 1): Error: acquiring the state lock'

    def test_capture_flag_and_output(self, tree_root, dev_config):
        from actions.terraform import TerraformPlanAction
        action = TerraformPlanAction(name='t', layer='data', tree_root=tree_root, capture=True)
        fake = FakeTerraform(out='Plan: 1 to add\n')

        result = _run(action, dev_config, fake)

        assert fake.calls[0]['capture'] is True
        assert result.output == 'Plan: 1 to add\n'

    def test_no_timeout_passed(self, tree_root, dev_config):
        from actions.terraform import TerraformApplyAction
        action = TerraformApplyAction(name='t', layer='app', tree_root=tree_root)
        fake = FakeTerraform()
        _run(action, dev_config, fake)
        assert 'timeout' not in fake.calls[0]


class TestCommands:
    """Command lines built for each action."""

    def test_init_with_backend(self, dev_config):
        from actions.terraform import TerraformInitAction
        cmd = TerraformInitAction(name='t', layer='data').command(dev_config)
        assert cmd[:3] == ['terraform', 'init', '-input=false']
        assert '-backend-config=key=dev/data/terraform.tfstate' in cmd
        assert '-backend-config=bucket=test-state' in cmd
        assert '-reconfigure' not in cmd

    def test_init_reconfigure(self, dev_config):
        from actions.terraform import TerraformInitAction
        cmd = TerraformInitAction(name='t', layer='data', reconfigure=True).command(dev_config)
        assert '-reconfigure' in cmd

    def test_plan(self, dev_config):
        from actions.terraform import TerraformPlanAction
        assert TerraformPlanAction(name='t', layer='data').command(dev_config) == \
            ['terraform', 'plan', '-input=false']

    def test_plan_out(self, dev_config):
        from actions.terraform import TerraformPlanAction
        cmd = TerraformPlanAction(name='t', layer='data', out='dev.tfplan').command(dev_config)
        assert '-out=dev.tfplan' in cmd

    def test_apply_interactive_by_default(self, dev_config):
        from actions.terraform import TerraformApplyAction
        assert TerraformApplyAction(name='t', layer='app').command(dev_config) == ['terraform', 'apply']

    def test_apply_auto_approve(self, dev_config):
        from actions.terraform import TerraformApplyAction
        cmd = TerraformApplyAction(name='t', layer='app', auto_approve=True).command(dev_config)
        assert cmd == ['terraform', 'apply', '-auto-approve']

    def test_apply_plan_file(self, dev_config):
        from actions.terraform import TerraformApplyAction
        cmd = TerraformApplyAction(name='t', layer='app', auto_approve=True,
                                   plan_file='dev.tfplan').command(dev_config)
        assert cmd == ['terraform', 'apply', 'dev.tfplan']

    def test_destroy(self, dev_config):
        from actions.terraform import TerraformDestroyAction
        cmd = TerraformDestroyAction(name='t', layer='app', auto_approve=True).command(dev_config)
        assert cmd == ['terraform', 'destroy', '-auto-approve']

    def test_drift_check(self, dev_config):
        from actions.terraform import TerraformDriftCheckAction
        cmd = TerraformDriftCheckAction(name='t', layer='app').command(dev_config)
        assert cmd == ['terraform', 'plan', '-input=false', '-detailed-exitcode', '-lock=false']

    def test_format_check(self, dev_config):
        from actions.terraform import TerraformFormatAction
        cmd = TerraformFormatAction(name='t', layer='app', check=True).command(dev_config)
        assert cmd == ['terraform', 'fmt', '-recursive', '-check', '-diff']

    def test_validate(self, dev_config):
        from actions.terraform import TerraformValidateAction
        assert TerraformValidateAction(name='t', layer='app').command(dev_config) == \
            ['terraform', 'validate']

    def test_actions_registry(self):
        from actions.terraform import ACTIONS
        assert list(ACTIONS) == ['init', 'plan', 'apply', 'destroy', 'drift-check', 'format', 'validate']


class TestDriftCheck:
    """Drift detection messages."""

    @pytest.mark.parametrize('rc,fragment', [
        (0, 'No drift'),
        (2, 'Drift detected'),
        (1, 'Drift check failed'),
    ])
    def test_messages(self, tree_root, dev_config, rc, fragment):
        from actions.terraform import TerraformDriftCheckAction
        action = TerraformDriftCheckAction(name='t', layer='data', tree_root=tree_root)
        result = _run(action, dev_config, FakeTerraform(rc=rc))
        assert fragment in result.message
        assert result.exit_code == rc
