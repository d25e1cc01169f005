"""Environment, layer and tree configuration.

The Terraform tree is laid out as:
- live/{env}/{layer}/: one root configuration per environment and layer
- modules/*/: reusable module library
- environments.yaml: per-environment credential and backend settings

Environments and layers are fixed sets. environments.yaml can tune the
settings of a known environment but never add a new one.

Merge order for environment settings: built-in defaults → defaults → environments.{env}.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# Deployment targets, each a separate AWS account and state scope
ENVIRONMENTS = ('dev', 'stage', 'prod')

# Conventional apply order: platform → data → app (not enforced)
LAYERS = ('platform', 'data', 'app')

CONFIG_FILENAME = 'environments.yaml'

DEFAULT_REGION = 'us-east-1'

EXPLICIT_CREDENTIAL_VARS = ('AWS_ACCESS_KEY_ID', 'AWS_WEB_IDENTITY_TOKEN_FILE')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class EnvironmentConfig:
    """Credential and backend context for one environment.

    Values are handed to terraform through environment variables and
    -backend-config arguments; nothing here talks to AWS directly.
    """
    name: str
    region: str = DEFAULT_REGION
    account_id: str = ''
    profile: str = ''
    role_arn: str = ''
    state_bucket: str = ''
    lock_table: str = ''
    extra_env: dict = field(default_factory=dict)

    def state_key(self, layer: str) -> str:
        """Remote state object key for a layer of this environment."""
        return f'{self.name}/{layer}/terraform.tfstate'

    def backend_config(self, layer: str) -> list[str]:
        """Return -backend-config key=value pairs for terraform init.

        Without a state bucket the root's own backend block is used as-is.
        """
        if not self.state_bucket:
            return []
        pairs = [
            f'bucket={self.state_bucket}',
            f'key={self.state_key(layer)}',
            f'region={self.region}',
            'encrypt=true',
        ]
        if self.lock_table:
            pairs.append(f'dynamodb_table={self.lock_table}')
        if self.role_arn:
            pairs.append(f'role_arn={self.role_arn}')
        return pairs

    def subprocess_env(self, layer: str) -> dict[str, str]:
        """Environment variable overrides for a terraform subprocess."""
        env = {
            'AWS_REGION': self.region,
            'AWS_DEFAULT_REGION': self.region,
            'TF_VAR_environment': self.name,
            'TF_VAR_layer': layer,
        }
        # Explicit credentials (e.g. exported by CI via OIDC) win over the profile
        if self.profile and not any(os.environ.get(k) for k in EXPLICIT_CREDENTIAL_VARS):
            env['AWS_PROFILE'] = self.profile
        if self.account_id:
            env['TF_VAR_account_id'] = self.account_id
        if os.environ.get('CI'):
            env['TF_IN_AUTOMATION'] = '1'
        env.update({str(k): str(v) for k, v in self.extra_env.items()})
        return env


def get_base_dir() -> Path:
    """Get the repository directory."""
    return Path(__file__).resolve().parent.parent  # src/ -> repo/


def get_tree_root() -> Path:
    """Discover the Terraform tree root.

    Resolution order:
    1. $TF_DRIVER_ROOT environment variable
    2. Repository directory (src/..)
    """
    if env_path := os.environ.get('TF_DRIVER_ROOT'):
        path = Path(env_path).resolve()
        if path.is_dir():
            return path
        raise ConfigError(f"TF_DRIVER_ROOT={env_path} does not exist")
    return get_base_dir()


def get_live_dir(root: Optional[Path] = None) -> Path:
    """Directory holding the per-environment root configurations."""
    return (root or get_tree_root()) / 'live'


def get_modules_dir(root: Optional[Path] = None) -> Path:
    """Directory holding the module library."""
    return (root or get_tree_root()) / 'modules'


def root_dir(env: str, layer: str, root: Optional[Path] = None) -> Path:
    """Resolve the root configuration directory for (env, layer).

    The result is absolute and independent of the caller's working
    directory. Existence is not checked here.
    """
    if env not in ENVIRONMENTS:
        raise ConfigError(f"Unknown environment '{env}'")
    if layer not in LAYERS:
        raise ConfigError(f"Unknown layer '{layer}'")
    return get_live_dir(root) / env / layer


def list_roots(root: Optional[Path] = None) -> list[tuple[str, str, Path]]:
    """List (env, layer, path) for every pair, in environment then layer order."""
    return [
        (env, layer, root_dir(env, layer, root))
        for env in ENVIRONMENTS
        for layer in LAYERS
    ]


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def get_config_file(root: Optional[Path] = None) -> Path:
    """Locate environments.yaml ($TF_DRIVER_CONFIG overrides)."""
    if env_path := os.environ.get('TF_DRIVER_CONFIG'):
        return Path(env_path)
    return (root or get_tree_root()) / CONFIG_FILENAME


def load_environments(config_file: Optional[Path] = None) -> dict[str, EnvironmentConfig]:
    """Load settings for every environment.

    A missing file yields built-in defaults for all environments.
    """
    path = config_file or get_config_file()
    data = _parse_yaml(path) if path.exists() else {}

    defaults = data.get('defaults') or {}
    environments = data.get('environments') or {}

    unknown = sorted(set(environments) - set(ENVIRONMENTS))
    if unknown:
        raise ConfigError(
            f"Unknown environment(s) in {path}: {', '.join(unknown)}\n"
            f"  Valid environments: {', '.join(ENVIRONMENTS)}"
        )

    result = {}
    for name in ENVIRONMENTS:
        merged = {**defaults, **(environments.get(name) or {})}
        result[name] = EnvironmentConfig(
            name=name,
            region=str(merged.get('region', DEFAULT_REGION)),
            account_id=str(merged.get('account_id', '')),
            profile=str(merged.get('profile', '')),
            role_arn=str(merged.get('role_arn', '')),
            state_bucket=str(merged.get('state_bucket', '')),
            lock_table=str(merged.get('lock_table', '')),
            extra_env=merged.get('env') or {},
        )
    return result


def load_environment_config(env: str, config_file: Optional[Path] = None) -> EnvironmentConfig:
    """Load settings for a single environment."""
    if env not in ENVIRONMENTS:
        raise ConfigError(f"Unknown environment '{env}'")
    return load_environments(config_file)[env]
