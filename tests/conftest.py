"""Shared pytest fixtures for tf-driver tests."""

import shutil
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

ENVIRONMENTS = ('dev', 'stage', 'prod')
LAYERS = ('platform', 'data', 'app')


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with requires_terraform when terraform is not installed."""
    if shutil.which('terraform'):
        return
    skip_marker = pytest.mark.skip(reason="requires terraform on PATH")
    for item in items:
        if "requires_terraform" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove environment variables that change driver behaviour."""
    for var in ('TF_DRIVER_ROOT', 'TF_DRIVER_CONFIG', 'CI', 'GITHUB_ACTIONS',
                'GITHUB_EVENT_NAME', 'GITHUB_EVENT_PATH', 'GITHUB_TOKEN',
                'GITHUB_REPOSITORY', 'GITHUB_API_URL', 'AWS_ACCESS_KEY_ID',
                'AWS_WEB_IDENTITY_TOKEN_FILE', 'AWS_PROFILE'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tree_root(tmp_path):
    """Create a temporary Terraform tree.

    Creates:
    - live/{env}/{layer}/main.tf for every pair
    - modules/network/main.tf
    - environments.yaml
    """
    for env in ENVIRONMENTS:
        for layer in LAYERS:
            root = tmp_path / 'live' / env / layer
            root.mkdir(parents=True)
            (root / 'main.tf').write_text('terraform {\n  backend "s3" {}\n}\n')
            (root / 'terraform.tfvars').write_text(
                f'environment = "{env}"\nlayer       = "{layer}"\n'
            )

    (tmp_path / 'modules' / 'network').mkdir(parents=True)
    (tmp_path / 'modules' / 'network' / 'main.tf').write_text('variable "cidr_block" {}\n')

    (tmp_path / 'environments.yaml').write_text("""
defaults:
  region: us-east-1
  state_bucket: test-state
  lock_table: test-locks
environments:
  dev:
    account_id: "111111111111"
    profile: test-dev
  prod:
    account_id: "333333333333"
    role_arn: arn:aws:iam::333333333333:role/state
    region: us-east-2
""")
    return tmp_path


@pytest.fixture
def driver_root(tree_root, monkeypatch):
    """Point the driver at the temporary tree via TF_DRIVER_ROOT."""
    monkeypatch.setenv('TF_DRIVER_ROOT', str(tree_root))
    return tree_root


@pytest.fixture
def dev_config():
    """EnvironmentConfig for dev with backend settings."""
    from config import EnvironmentConfig
    return EnvironmentConfig(
        name='dev',
        region='us-east-1',
        account_id='111111111111',
        profile='test-dev',
        state_bucket='test-state',
        lock_table='test-locks',
    )
