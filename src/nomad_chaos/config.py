"""Tool configuration loaded from ``chaos.yaml``."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from nomad_chaos.errors import ConfigError

CONFIG_NAMES = ("chaos.yaml", "chaos.yml", ".chaos.yaml", ".chaos.yml")
DEFAULT_NOMAD_ADDRESS = "http://localhost:4646"


class DiscoveryMethod(str, Enum):
    TERRAFORM = "terraform"
    STATIC = "static"


class ClusterConfig(BaseModel):
    name: str = "libvirt-test"


class TerraformConfig(BaseModel):
    working_dir: str = "./terraform"


class StaticConfig(BaseModel):
    """Manually listed nodes as ``public_ip`` or ``public_ip/private_ip``."""

    servers: list[str] = Field(default_factory=list)
    clients: list[str] = Field(default_factory=list)


class DiscoveryConfig(BaseModel):
    method: DiscoveryMethod = DiscoveryMethod.TERRAFORM
    terraform: TerraformConfig = Field(default_factory=TerraformConfig)
    static: StaticConfig = Field(default_factory=StaticConfig)

    @model_validator(mode="after")
    def _check_method(self) -> DiscoveryConfig:
        if self.method is DiscoveryMethod.TERRAFORM and not self.terraform.working_dir:
            raise ValueError("discovery.terraform.working_dir is required")
        if self.method is DiscoveryMethod.STATIC and not self.static.servers:
            raise ValueError("discovery.static.servers is required for static discovery")
        return self


class SSHConfig(BaseModel):
    user: str = Field(default="ubuntu", min_length=1)
    key_path: str = Field(default="./terraform/keys/libvirt-test.pem", min_length=1)
    port: int = Field(default=22, gt=0, lt=65536)
    connect_timeout: int = Field(default=10, gt=0, description="Seconds")


class TLSConfig(BaseModel):
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""
    insecure: bool = False


class NomadConfig(BaseModel):
    address: str = DEFAULT_NOMAD_ADDRESS
    token: str = ""
    tls: TLSConfig = Field(default_factory=TLSConfig)


class Config(BaseModel):
    """Top-level configuration of the chaos tool."""

    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    nomad: NomadConfig = Field(default_factory=NomadConfig)

    def resolve_paths(self, base_dir: str | Path) -> Config:
        """Return a copy with relative file paths anchored at *base_dir*."""
        base = Path(base_dir)

        def resolve(path: str) -> str:
            if not path or Path(path).is_absolute():
                return path
            return str(base / path)

        data = self.model_dump()
        data["discovery"]["terraform"]["working_dir"] = resolve(self.discovery.terraform.working_dir)
        data["ssh"]["key_path"] = resolve(self.ssh.key_path)
        for key in ("ca_cert", "client_cert", "client_key"):
            data["nomad"]["tls"][key] = resolve(getattr(self.nomad.tls, key))
        return Config.model_validate(data)


def load_config(path: str | Path) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Validated Config with relative paths resolved against the file's directory.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"reading config file: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config file: {e}") from e

    try:
        cfg = Config.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"validating config: {e}") from e
    return cfg.resolve_paths(path.parent)


def load_config_from_dir(directory: str | Path) -> Config:
    """Search *directory* and its parents for a chaos config file."""
    current = Path(directory).resolve()
    for candidate in (current, *current.parents):
        for name in CONFIG_NAMES:
            path = candidate / name
            if path.is_file():
                return load_config(path)
    raise ConfigError(f"no chaos.yaml found in {directory} or parent directories")
