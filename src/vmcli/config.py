"""
Configuration loading — global defaults layered under per-cluster files.

Layout under the config root (``~/.config/vmcli`` unless
``VMCLI_CONFIG_HOME`` is set)::

    config.yaml                      # optional global defaults
    aws/<cluster>/config.yaml        # cluster config (created by init)
    aws/<cluster>/ssh_config         # generated by status

Both files share one shape::

    cluster_name: dev               # cluster file only
    aws:
      region: ap-northeast-1
      ssh_public_key_path: ~/.ssh/vmcli.pub
      default_instance_type: t3.micro
      ami_id: ""

Strings are trimmed and blank values count as unset, so a cluster file can
leave a field empty and still inherit the global value.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import CONFIG_HOME
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"
SSH_CONFIG_FILE = "ssh_config"
AWS_PROVIDER = "aws"

DEFAULT_REGION = "ap-northeast-1"
DEFAULT_INSTANCE_TYPE = "t3.micro"
DEFAULT_INSTANCE_OS_USER = "ubuntu"
DEFAULT_SSH_PUBLIC_KEY_PATH = "~/.ssh/vmcli.pub"


def _normalize(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ProviderSection(BaseModel):
    """The ``aws:`` section shared by global and cluster files."""

    model_config = ConfigDict(extra="ignore")

    region: Optional[str] = None
    ssh_public_key_path: Optional[str] = None
    default_instance_type: Optional[str] = None
    ami_id: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Optional[str]:
        return _normalize(value)

    def overlay(self, other: Optional["ProviderSection"]) -> "ProviderSection":
        """Return a copy where every field set in *other* wins.

        Args:
            other: Higher-precedence section (may be None).

        Returns:
            ProviderSection: Merged section.
        """
        if other is None:
            return self.model_copy()
        overrides = other.model_dump(exclude_none=True)
        return self.model_copy(update=overrides)


class GlobalConfig(BaseModel):
    """Global defaults file."""

    model_config = ConfigDict(extra="ignore")

    aws: Optional[ProviderSection] = None


class ClusterConfig(BaseModel):
    """Per-cluster config file."""

    model_config = ConfigDict(extra="ignore")

    cluster_name: Optional[str] = None
    aws: Optional[ProviderSection] = None

    @field_validator("cluster_name", mode="before")
    @classmethod
    def _blank_name_is_unset(cls, value: Any) -> Optional[str]:
        return _normalize(value)


class EffectiveConfig(BaseModel):
    """Immutable merged configuration threaded through every operation."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    region: str
    ssh_public_key_path: str
    default_instance_type: str = DEFAULT_INSTANCE_TYPE
    ami_id: Optional[str] = None
    ssh_config_path: Path

    @field_validator("cluster_name", "region", "ssh_public_key_path", mode="before")
    @classmethod
    def _required(cls, value: Any) -> str:
        text = _normalize(value)
        if text is None:
            raise ValueError("must be set and non-empty")
        return text

    @field_validator("ami_id", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Optional[str]:
        return _normalize(value)


@dataclass
class ProviderEnvironment:
    """Ambient credential facts captured once at startup.

    Attributes:
        access_key_id: Access key id shown in the banner.
        problems: Reasons the environment is unsupported (empty when fine).
    """

    access_key_id: str = "N/A (role/SSO)"
    problems: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def config_root() -> Path:
    """Root directory holding all vmcli configuration."""
    return Path(CONFIG_HOME).expanduser()


def global_config_path() -> Path:
    return config_root() / CONFIG_FILE_NAME


def cluster_dir(cluster: str) -> Path:
    return config_root() / AWS_PROVIDER / cluster


def cluster_config_path(cluster: str) -> Path:
    return cluster_dir(cluster) / CONFIG_FILE_NAME


def cluster_ssh_config_path(cluster: str) -> Path:
    return cluster_dir(cluster) / SSH_CONFIG_FILE


def expand_home_path(path: str) -> Path:
    """Expand a leading ``~`` or ``~/`` to the caller's home directory.

    Args:
        path: Path string, possibly starting with ``~``.

    Returns:
        Path: Expanded path. Other forms (``~user``) are left alone.
    """
    trimmed = path.strip()
    if trimmed == "~":
        return Path.home()
    if trimmed.startswith("~/"):
        return Path.home() / trimmed[2:]
    return Path(trimmed)


def derive_private_key_path(public_key_path: str) -> str:
    """Strip a trailing ``.pub`` to get the matching private key path."""
    trimmed = public_key_path.strip()
    if trimmed.endswith(".pub"):
        return trimmed[: -len(".pub")]
    return trimmed


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parse config {path}: {exc}") from exc


def load_global_config(path: Optional[Path] = None) -> GlobalConfig:
    """Load global defaults, or empty defaults when the file is absent.

    Args:
        path: Override for the global config path.

    Returns:
        GlobalConfig: Parsed and normalised defaults.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    path = path or global_config_path()
    if not path.exists():
        return GlobalConfig()
    try:
        return GlobalConfig.model_validate(_read_yaml(path))
    except ValidationError as exc:
        raise ConfigError(f"parse config {path}: {exc}") from exc


def load_cluster_config(path: Path) -> ClusterConfig:
    """Load a cluster config file.

    Args:
        path: Cluster config path.

    Returns:
        ClusterConfig: Parsed and normalised cluster config.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if not path.exists():
        raise ConfigError(
            f"config file {path} not found; run 'vmcli aws init <cluster>'"
        )
    try:
        return ClusterConfig.model_validate(_read_yaml(path))
    except ValidationError as exc:
        raise ConfigError(f"parse config {path}: {exc}") from exc


def load_config(
    cluster: str,
    override_path: Optional[str] = None,
    global_path: Optional[Path] = None,
) -> EffectiveConfig:
    """Resolve the effective configuration for one cluster.

    Args:
        cluster: Requested cluster name.
        override_path: Explicit cluster config file (``-c/--config``).
        global_path: Override for the global config path.

    Returns:
        EffectiveConfig: Merged, validated configuration.

    Raises:
        ConfigError: If files are missing/invalid, the file's cluster_name
            disagrees with *cluster*, or a required field is unset.
    """
    global_config = load_global_config(global_path)
    path = Path(override_path) if override_path else cluster_config_path(cluster)
    cluster_config = load_cluster_config(path)

    if cluster_config.cluster_name and cluster_config.cluster_name != cluster:
        raise ConfigError(
            f"cluster_name '{cluster_config.cluster_name}' does not match "
            f"requested cluster '{cluster}' in {path}"
        )

    merged = (global_config.aws or ProviderSection()).overlay(cluster_config.aws)
    if merged.region is None:
        raise ConfigError("aws.region must be set in config")
    if merged.ssh_public_key_path is None:
        raise ConfigError("aws.ssh_public_key_path must be set in config")

    try:
        config = EffectiveConfig(
            cluster_name=cluster,
            region=merged.region,
            ssh_public_key_path=merged.ssh_public_key_path,
            default_instance_type=merged.default_instance_type or DEFAULT_INSTANCE_TYPE,
            ami_id=merged.ami_id,
            ssh_config_path=cluster_ssh_config_path(cluster),
        )
    except ValidationError as exc:
        raise ConfigError(f"invalid config for cluster '{cluster}' in {path}: {exc}") from exc
    logger.debug("Loaded config for cluster %s from %s", cluster, path)
    return config


def resolve_instance_type(config: EffectiveConfig, override: Optional[str] = None) -> str:
    """Explicit instance type wins over the configured default."""
    return _normalize(override) or config.default_instance_type


def resolve_environment(environ: Optional[Mapping[str, str]] = None) -> ProviderEnvironment:
    """Capture the credential-related environment once, at startup.

    Named profiles are rejected: only explicit key credentials (or an
    ambient role) are supported.

    Args:
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        ProviderEnvironment: Banner facts plus any problems found.
    """
    environ = os.environ if environ is None else environ
    env = ProviderEnvironment()
    if environ.get("AWS_PROFILE") is not None or environ.get("AWS_DEFAULT_PROFILE") is not None:
        env.problems.append(
            "AWS profile is not supported; use AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY"
        )
    key_id = (environ.get("AWS_ACCESS_KEY_ID") or "").strip()
    if key_id:
        env.access_key_id = key_id
    return env


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def default_config_contents(
    cluster: str,
    region: str,
    ssh_public_key_path: str,
    default_instance_type: str,
) -> str:
    """Render the YAML written by ``vmcli aws init``.

    The key path is written verbatim so a ``~`` survives until use.
    """
    data = {
        "cluster_name": cluster,
        "aws": {
            "region": region,
            "ssh_public_key_path": ssh_public_key_path,
            "default_instance_type": default_instance_type,
            "ami_id": "",
        },
    }
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def init_cluster(cluster: str, global_path: Optional[Path] = None) -> List[tuple]:
    """Create the cluster config directory and default files.

    Existing files are never overwritten.

    Args:
        cluster: Cluster name.
        global_path: Override for the global config path.

    Returns:
        list: ``(action, path)`` pairs where action is ``created`` or ``exists``.
    """
    directory = cluster_dir(cluster)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"create config dir {directory}: {exc}") from exc

    results = []
    config_path = directory / CONFIG_FILE_NAME
    if config_path.exists():
        results.append(("exists", config_path))
    else:
        defaults = (load_global_config(global_path).aws or ProviderSection())
        contents = default_config_contents(
            cluster,
            defaults.region or DEFAULT_REGION,
            defaults.ssh_public_key_path or DEFAULT_SSH_PUBLIC_KEY_PATH,
            defaults.default_instance_type or DEFAULT_INSTANCE_TYPE,
        )
        config_path.write_text(contents, encoding="utf-8")
        logger.info("Wrote default cluster config %s", config_path)
        results.append(("created", config_path))

    ssh_config_path = directory / SSH_CONFIG_FILE
    if ssh_config_path.exists():
        results.append(("exists", ssh_config_path))
    else:
        ssh_config_path.write_text("", encoding="utf-8")
        results.append(("created", ssh_config_path))

    return results
