"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
from typing import Optional

from cloudmount.logger import log


@dataclass
class StorageConfig:
    """Configuration variables related to the remote storage."""

    endpoint: str = "tcp://localhost:7710"
    timeout: int = 5000  # ms

    # Shared secret exchanged for an access token when mounting
    secret: Optional[str] = None

    @staticmethod
    def load(section: SectionProxy) -> StorageConfig:
        """Load overridden variables from a section within a config file."""
        config = StorageConfig()

        config.endpoint = section.get("endpoint", fallback=config.endpoint)
        config.timeout = section.getint("timeout", fallback=config.timeout)
        config.secret = section.get("secret", fallback=config.secret)

        return config


@dataclass
class HostConfig:
    """Configuration variables related to the host that delivers requests."""

    endpoint: str = "ipc://" + os.path.expanduser("~/.cloudmount/host.sock")

    # Token that the host has to present with every request
    token: Optional[str] = None

    @staticmethod
    def load(section: SectionProxy) -> HostConfig:
        """Load overridden variables from a section within a config file."""
        config = HostConfig()

        config.endpoint = _expand_endpoint(
            section.get("endpoint", fallback=config.endpoint)
        )
        config.token = section.get("token", fallback=config.token)

        return config


@dataclass
class StateConfig:
    """Configuration variables related to state that persists across restarts."""

    path: str = os.path.expanduser("~/.cloudmount")

    @staticmethod
    def load(section: SectionProxy) -> StateConfig:
        """Load overridden variables from a section within a config file."""
        config = StateConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        return config

    @property
    def registry_path(self) -> str:
        """Return the path to the registry of mounted file systems."""
        return os.path.join(self.path, "mounts.json")

    @property
    def store_path(self) -> str:
        """Return the path to the persistent key-value store."""
        return os.path.join(self.path, "storage.json")


@dataclass
class Config:
    """Configuration variables."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    host: HostConfig = field(default_factory=HostConfig)
    state: StateConfig = field(default_factory=StateConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "storage" in parser:
                config.storage = StorageConfig.load(parser["storage"])
            if "host" in parser:
                config.host = HostConfig.load(parser["host"])
            if "state" in parser:
                config.state = StateConfig.load(parser["state"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            # Don't log the secrets
            log.info(f"loaded config from {filename}")

        return config


def _expand_endpoint(endpoint: str) -> str:
    """Expand the home directory in the path of an ipc:// endpoint."""
    if endpoint.startswith("ipc://"):
        return "ipc://" + os.path.expanduser(endpoint[len("ipc://") :])
    else:
        return endpoint
